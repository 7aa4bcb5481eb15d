# MLX90640 EEPROM parameter extraction.
# Decodes the 832-word calibration image once into a ParameterBlock; the temperature kernel
# only ever sees the decoded scalars and per-pixel tables.

import logging
from dataclasses import dataclass, field

import numpy as np

from ..config import (
	EE_DATA_BUFFER_SIZE,
	FRAME_BUFFER_SIZE,
	FRAME_HEIGHT,
	FRAME_WIDTH,
	MAX_DEVIATING_PIXELS,
	SCALEALPHA,
)
from ..errors import BadEEPROM

logger = logging.getLogger(__name__)

PIXEL_DATA_BASE = 0x40
DEVICE_SELECT_MASK = 0x0040


def _signed(value: int, bits: int) -> int:
	return (value - (1 << bits)) if (value >= (1 << (bits - 1))) else value


def _unpack_nibbles(ee: list[int], start: int, count: int) -> list[int]:
	"""Unpack ``count`` signed 4-bit values packed four per word, lowest nibble first."""
	values: list[int] = [0] * count
	for i in range(count // 4):
		word = ee[start + i]
		values[i * 4] = _signed(word & 0x000F, 4)
		values[i * 4 + 1] = _signed((word & 0x00F0) >> 4, 4)
		values[i * 4 + 2] = _signed((word & 0x0F00) >> 8, 4)
		values[i * 4 + 3] = _signed((word & 0xF000) >> 12, 4)
	return values


def _split_index(pixel: int) -> int:
	# 0: odd row / odd column, 1: odd row / even column, 2: even row / odd column, 3: even / even
	return 2 * (pixel // 32 - (pixel // 64) * 2) + pixel % 2


@dataclass(frozen=True)
class ParameterBlock:
	"""Decoded calibration state of one MLX90640 device. Read-only once built."""

	# Supply voltage
	k_vdd: int
	vdd25: int
	# Ambient temperature
	kv_ptat: float
	kt_ptat: float
	v_ptat25: int
	alpha_ptat: float
	# Gain, gradient compensation, resolution
	gain_ee: int
	tgc: float
	resolution_ee: int
	ks_ta: float
	# Temperature range correction
	ks_to: tuple[float, float, float, float]
	ct: tuple[int, int, int, int]
	# Compensation pixel
	cp_alpha: tuple[float, float]
	cp_offset: tuple[int, int]
	cp_kta: float
	cp_kv: float
	# Interleaved / chess pattern
	calibration_mode_ee: int
	il_chess_c: tuple[float, float, float]
	# Per-pixel tables and their power-of-two scales
	alpha_scale: int
	kta_scale: int
	kv_scale: int
	offset: np.ndarray = field(repr=False)
	alpha: np.ndarray = field(repr=False)
	kta: np.ndarray = field(repr=False)
	kv: np.ndarray = field(repr=False)
	# Deviating pixels
	broken_pixels: tuple[int, ...] = ()
	outlier_pixels: tuple[int, ...] = ()

	@property
	def bad_pixels(self) -> tuple[int, ...]:
		return tuple(sorted(set(self.broken_pixels) | set(self.outlier_pixels)))

	def is_pixel_bad(self, pixel: int) -> bool:
		return pixel in self.broken_pixels or pixel in self.outlier_pixels


def _validate_eeprom(ee_data) -> list[int]:
	ee = [int(word) for word in ee_data]
	if len(ee) != EE_DATA_BUFFER_SIZE:
		raise BadEEPROM(f"EEPROM image must hold {EE_DATA_BUFFER_SIZE} words, got {len(ee)}")
	for index, word in enumerate(ee):
		if word < 0 or word > 0xFFFF:
			raise BadEEPROM(f"EEPROM word {index} is not a 16-bit value: {word}")
	if ee[10] & DEVICE_SELECT_MASK:
		raise BadEEPROM("EEPROM device select bit is set, image is not an MLX90640 calibration", code=-7)
	return ee


def _extract_vdd(ee: list[int]) -> tuple[int, int]:
	k_vdd = _signed((ee[51] & 0xFF00) >> 8, 8) * 32
	vdd25 = ((ee[51] & 0x00FF) - 256) << 5
	vdd25 = vdd25 - 8192
	return k_vdd, vdd25


def _extract_ptat(ee: list[int]) -> tuple[float, float, int, float]:
	kv_ptat = _signed((ee[50] & 0xFC00) >> 10, 6) / 4096
	kt_ptat = _signed(ee[50] & 0x03FF, 10) / 8
	v_ptat25 = _signed(ee[49], 16)
	alpha_ptat = (ee[16] & 0xF000) / pow(2, 14) + 8.0
	return kv_ptat, kt_ptat, v_ptat25, alpha_ptat


def _extract_ks_to(ee: list[int]) -> tuple[tuple[float, ...], tuple[int, ...]]:
	step = ((ee[63] & 0x3000) >> 12) * 10
	ct2 = ((ee[63] & 0x00F0) >> 4) * step
	ct3 = ct2 + ((ee[63] & 0x0F00) >> 8) * step
	ks_to_scale = 1 << ((ee[63] & 0x000F) + 8)
	ks_to = (
		_signed(ee[61] & 0x00FF, 8) / ks_to_scale,
		_signed((ee[61] & 0xFF00) >> 8, 8) / ks_to_scale,
		_signed(ee[62] & 0x00FF, 8) / ks_to_scale,
		_signed((ee[62] & 0xFF00) >> 8, 8) / ks_to_scale,
	)
	return ks_to, (-40, 0, ct2, ct3)


def _extract_cp(ee: list[int]) -> dict:
	alpha_scale = ((ee[32] & 0xF000) >> 12) + 27
	offset_sp0 = _signed(ee[58] & 0x03FF, 10)
	offset_sp1 = _signed((ee[58] & 0xFC00) >> 10, 6) + offset_sp0

	alpha_sp0 = _signed(ee[57] & 0x03FF, 10) / pow(2, alpha_scale)
	alpha_sp1 = (1 + _signed((ee[57] & 0xFC00) >> 10, 6) / 128) * alpha_sp0

	kta_scale1 = ((ee[56] & 0x00F0) >> 4) + 8
	kv_scale = (ee[56] & 0x0F00) >> 8
	return {
		"cp_offset": (offset_sp0, offset_sp1),
		"cp_alpha": (alpha_sp0, alpha_sp1),
		"cp_kta": _signed(ee[59] & 0x00FF, 8) / pow(2, kta_scale1),
		"cp_kv": _signed((ee[59] & 0xFF00) >> 8, 8) / pow(2, kv_scale),
	}


def _extract_alpha(ee: list[int], tgc: float, cp_alpha: tuple[float, float]) -> tuple[np.ndarray, int]:
	acc_rem_scale = ee[32] & 0x000F
	acc_column_scale = (ee[32] & 0x00F0) >> 4
	acc_row_scale = (ee[32] & 0x0F00) >> 8
	alpha_scale = ((ee[32] & 0xF000) >> 12) + 30
	alpha_ref = ee[33]
	acc_row = _unpack_nibbles(ee, 34, FRAME_HEIGHT)
	acc_column = _unpack_nibbles(ee, 40, FRAME_WIDTH)

	alpha_temp: list[float] = [0.0] * FRAME_BUFFER_SIZE
	for i in range(FRAME_HEIGHT):
		for j in range(FRAME_WIDTH):
			p = 32 * i + j
			alpha_ee = _signed((ee[PIXEL_DATA_BASE + p] & 0x03F0) >> 4, 6)
			sensitivity = alpha_ref + (acc_row[i] << acc_row_scale) + (acc_column[j] << acc_column_scale) + alpha_ee * (1 << acc_rem_scale)
			sensitivity = sensitivity / pow(2, alpha_scale)
			sensitivity = sensitivity - tgc * (cp_alpha[0] + cp_alpha[1]) / 2
			if sensitivity <= 0:
				raise BadEEPROM(f"pixel {p} decodes to a non-positive sensitivity ({sensitivity})")
			alpha_temp[p] = SCALEALPHA / sensitivity

	# Re-quantize to uint16 with the largest power of two that keeps every entry in range
	temp = max(alpha_temp)
	scale = 0
	while temp < 32768:
		temp = temp * 2
		scale = scale + 1
	alpha = np.array([min(int(a * pow(2, scale) + 0.5), 0xFFFF) for a in alpha_temp], dtype=np.uint16)
	return alpha, scale


def _extract_offset(ee: list[int]) -> np.ndarray:
	occ_rem_scale = ee[16] & 0x000F
	occ_column_scale = (ee[16] & 0x00F0) >> 4
	occ_row_scale = (ee[16] & 0x0F00) >> 8
	offset_ref = _signed(ee[17], 16)
	occ_row = _unpack_nibbles(ee, 18, FRAME_HEIGHT)
	occ_column = _unpack_nibbles(ee, 24, FRAME_WIDTH)

	offset: list[int] = [0] * FRAME_BUFFER_SIZE
	for i in range(FRAME_HEIGHT):
		for j in range(FRAME_WIDTH):
			p = 32 * i + j
			offset[p] = _signed((ee[PIXEL_DATA_BASE + p] & 0xFC00) >> 10, 6)
			offset[p] = offset[p] * (1 << occ_rem_scale)
			offset[p] += offset_ref + (occ_row[i] << occ_row_scale) + (occ_column[j] << occ_column_scale)
	# int16 store, out-of-range sums wrap
	return np.array(offset, dtype=np.int64).astype(np.int16)


def _quantize_int8(values: list[float]) -> tuple[np.ndarray, int]:
	"""Scale ``values`` by the power of two that brings the largest magnitude to [64, 128), round half away from zero."""
	temp = max(abs(v) for v in values)
	scale = 0
	if temp > 0:
		while temp < 64:
			temp = temp * 2
			scale = scale + 1
	quantized: list[int] = [0] * len(values)
	for i, v in enumerate(values):
		scaled = v * pow(2, scale)
		quantized[i] = int(scaled - 0.5) if scaled < 0 else int(scaled + 0.5)
	return np.array(quantized, dtype=np.int64).astype(np.int8), scale


def _extract_kta(ee: list[int]) -> tuple[np.ndarray, int]:
	# Row-Column average; Ro/Re = odd/even row, Co/Ce = odd/even column (1-based)
	kta_rc: list[int] = [0, 0, 0, 0]
	kta_rc[0] = _signed((ee[54] & 0xFF00) >> 8, 8)  # RoCo
	kta_rc[1] = _signed((ee[55] & 0xFF00) >> 8, 8)  # RoCe
	kta_rc[2] = _signed(ee[54] & 0x00FF, 8)         # ReCo
	kta_rc[3] = _signed(ee[55] & 0x00FF, 8)         # ReCe
	kta_scale1 = ((ee[56] & 0x00F0) >> 4) + 8
	kta_scale2 = ee[56] & 0x000F

	kta_temp: list[float] = [0.0] * FRAME_BUFFER_SIZE
	for i in range(FRAME_HEIGHT):
		for j in range(FRAME_WIDTH):
			p = 32 * i + j
			kta_ee = _signed((ee[PIXEL_DATA_BASE + p] & 0x000E) >> 1, 3)
			kta_temp[p] = (kta_rc[_split_index(p)] + kta_ee * (1 << kta_scale2)) / pow(2, kta_scale1)
	return _quantize_int8(kta_temp)


def _extract_kv(ee: list[int]) -> tuple[np.ndarray, int]:
	kv_t: list[int] = [0, 0, 0, 0]
	kv_t[0] = _signed((ee[52] & 0xF000) >> 12, 4)  # RoCo
	kv_t[1] = _signed((ee[52] & 0x00F0) >> 4, 4)   # RoCe
	kv_t[2] = _signed((ee[52] & 0x0F00) >> 8, 4)   # ReCo
	kv_t[3] = _signed(ee[52] & 0x000F, 4)          # ReCe
	kv_scale = (ee[56] & 0x0F00) >> 8

	kv_temp: list[float] = [0.0] * FRAME_BUFFER_SIZE
	for p in range(FRAME_BUFFER_SIZE):
		kv_temp[p] = kv_t[_split_index(p)] / pow(2, kv_scale)
	return _quantize_int8(kv_temp)


def _extract_cilc(ee: list[int]) -> tuple[int, tuple[float, float, float]]:
	# EEPROM bit 11 of word 10 is cleared on chess-calibrated devices
	calibration_mode_ee = ((ee[10] & 0x0800) >> 11) ^ 1
	il_chess_c = (
		_signed(ee[53] & 0x003F, 6) / 16.0,
		_signed((ee[53] & 0x07C0) >> 6, 5) / 2.0,
		_signed((ee[53] & 0xF800) >> 11, 5) / 8.0,
	)
	return calibration_mode_ee, il_chess_c


def _pixels_adjacent(pix1: int, pix2: int) -> bool:
	line_diff = (pix1 >> 5) - (pix2 >> 5)
	column_diff = (pix1 & 0x1F) - (pix2 & 0x1F)
	return -2 < line_diff < 2 and -2 < column_diff < 2


def _extract_deviating_pixels(ee: list[int]) -> tuple[tuple[int, ...], tuple[int, ...]]:
	broken: list[int] = []
	outliers: list[int] = []
	limit = MAX_DEVIATING_PIXELS + 1

	pixel = 0
	while pixel < FRAME_BUFFER_SIZE and len(broken) < limit and len(outliers) < limit:
		word = ee[PIXEL_DATA_BASE + pixel]
		if word == 0:
			broken.append(pixel)
		elif word & 0x0001:
			outliers.append(pixel)
		pixel += 1

	if len(broken) > MAX_DEVIATING_PIXELS:
		raise BadEEPROM(f"more than {MAX_DEVIATING_PIXELS} broken pixels", code=-3)
	if len(outliers) > MAX_DEVIATING_PIXELS:
		raise BadEEPROM(f"more than {MAX_DEVIATING_PIXELS} outlier pixels", code=-4)
	if len(broken) + len(outliers) > MAX_DEVIATING_PIXELS:
		raise BadEEPROM(f"more than {MAX_DEVIATING_PIXELS} broken and outlier pixels", code=-5)

	deviating = broken + outliers
	for a in range(len(deviating)):
		for b in range(a + 1, len(deviating)):
			if _pixels_adjacent(deviating[a], deviating[b]):
				raise BadEEPROM(f"deviating pixels {deviating[a]} and {deviating[b]} are adjacent", code=-6)
	return tuple(broken), tuple(outliers)


def extract_parameters(ee_data) -> ParameterBlock:
	"""Decode an 832-word EEPROM image into a ParameterBlock.

	Raises BadEEPROM when the image fails a structural check. Broken and outlier pixels
	within the vendor limits are reported on the returned block, not raised.
	"""
	ee = _validate_eeprom(ee_data)

	k_vdd, vdd25 = _extract_vdd(ee)
	if k_vdd == 0:
		raise BadEEPROM("EEPROM Vdd slope kVdd decodes to zero")
	kv_ptat, kt_ptat, v_ptat25, alpha_ptat = _extract_ptat(ee)
	if kt_ptat == 0:
		raise BadEEPROM("EEPROM PTAT slope KtPTAT decodes to zero")

	gain_ee = _signed(ee[48], 16)
	tgc = _signed(ee[60] & 0x00FF, 8) / 32.0
	resolution_ee = (ee[56] & 0x3000) >> 12
	ks_ta = _signed((ee[60] & 0xFF00) >> 8, 8) / 8192.0
	ks_to, ct = _extract_ks_to(ee)
	cp = _extract_cp(ee)
	alpha, alpha_scale = _extract_alpha(ee, tgc, cp["cp_alpha"])
	offset = _extract_offset(ee)
	kta, kta_scale = _extract_kta(ee)
	kv, kv_scale = _extract_kv(ee)
	calibration_mode_ee, il_chess_c = _extract_cilc(ee)
	broken, outliers = _extract_deviating_pixels(ee)

	for table in (offset, alpha, kta, kv):
		table.setflags(write=False)

	if broken or outliers:
		logger.warning("EEPROM flags broken pixels %s and outlier pixels %s", list(broken), list(outliers))
	logger.debug(
		"extracted parameters: gainEE=%d tgc=%.4f resolutionEE=%d calibrationModeEE=%d ct=%s",
		gain_ee, tgc, resolution_ee, calibration_mode_ee, ct,
	)

	return ParameterBlock(
		k_vdd=k_vdd,
		vdd25=vdd25,
		kv_ptat=kv_ptat,
		kt_ptat=kt_ptat,
		v_ptat25=v_ptat25,
		alpha_ptat=alpha_ptat,
		gain_ee=gain_ee,
		tgc=tgc,
		resolution_ee=resolution_ee,
		ks_ta=ks_ta,
		ks_to=ks_to,
		ct=ct,
		calibration_mode_ee=calibration_mode_ee,
		il_chess_c=il_chess_c,
		alpha_scale=alpha_scale,
		kta_scale=kta_scale,
		kv_scale=kv_scale,
		offset=offset,
		alpha=alpha,
		kta=kta,
		kv=kv,
		broken_pixels=broken,
		outlier_pixels=outliers,
		**cp,
	)
