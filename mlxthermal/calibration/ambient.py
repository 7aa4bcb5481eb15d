# Supply voltage and ambient die temperature from the auxiliary words of a raw frame.

from ..config import (
	FRAME_TA_PTAT,
	FRAME_TA_VBE,
	FRAME_VDD_PIX,
	TA_REFERENCE,
	TA_SHIFT,
	VDD_REFERENCE,
)
from ..data.eeprom_parser import ParameterBlock
from ..data.frames import resolution_ram, signed16


def get_vdd(frame_data: list[int], params: ParameterBlock) -> float:
	"""Supply voltage in volts, corrected for the ADC resolution the frame was taken with."""
	vdd_pix = signed16(frame_data[FRAME_VDD_PIX])
	resolution_corr = pow(2, params.resolution_ee) / pow(2, resolution_ram(frame_data))
	return (resolution_corr * vdd_pix - params.vdd25) / params.k_vdd + VDD_REFERENCE


def get_ta(frame_data: list[int], params: ParameterBlock) -> float:
	"""Ambient (die) temperature in degrees Celsius."""
	vdd = get_vdd(frame_data, params)
	ta_ptat = signed16(frame_data[FRAME_TA_PTAT])
	ta_vbe = signed16(frame_data[FRAME_TA_VBE])
	v_ptat_art = (ta_ptat / (ta_ptat * params.alpha_ptat + ta_vbe)) * pow(2, 18)
	ta = v_ptat_art / (1 + params.kv_ptat * (vdd - VDD_REFERENCE)) - params.v_ptat25
	return ta / params.kt_ptat + TA_REFERENCE


def reflected_temperature(frame_data: list[int], params: ParameterBlock, ta_shift: float = TA_SHIFT) -> float:
	# Sensor in open air: the surroundings sit a fixed shift below the die temperature
	return get_ta(frame_data, params) - ta_shift
