# Temperature reconstruction for MLX90640 sub-page frames.
# Follows the vendor CalculateTo, with the emissivity allowed to be a distribution and the
# ADC quantization error of every pixel count optionally modelled as UniformDist(raw - 0.5, raw + 0.5).

import logging
import math
from dataclasses import dataclass, field
from functools import lru_cache

import numpy as np

from ..config import (
	DISTRIBUTION_SAMPLES,
	FRAME_BUFFER_SIZE,
	FRAME_CP_SUBPAGE_0,
	FRAME_CP_SUBPAGE_1,
	FRAME_GAIN,
	FRAME_HEIGHT,
	FRAME_WIDTH,
	KELVIN_OFFSET,
	SCALEALPHA,
	TA_REFERENCE,
	VDD_REFERENCE,
)
from ..data.eeprom_parser import ParameterBlock
from ..data.frames import readout_mode, signed16, subpage_number, validate_frame
from . import uncertain
from .ambient import get_ta, get_vdd, reflected_temperature

logger = logging.getLogger(__name__)

INTERLEAVED = 0
CHESS = 1


def il_pattern(pixel: int) -> int:
	"""Row parity: 0 on even rows, 1 on odd rows."""
	return pixel // 32 - (pixel // 64) * 2


def chess_pattern(pixel: int) -> int:
	return il_pattern(pixel) ^ (pixel - (pixel // 2) * 2)


def conversion_pattern(pixel: int) -> int:
	return ((pixel + 2) // 4 - (pixel + 3) // 4 + (pixel + 1) // 4 - pixel // 4) * (1 - 2 * il_pattern(pixel))


def pixel_pattern(pixel: int, mode: int) -> int:
	"""Sub-page that refreshes ``pixel`` in the given read-out mode."""
	return il_pattern(pixel) if mode == INTERLEAVED else chess_pattern(pixel)


@lru_cache(maxsize=4)
def subpage_pixels(subpage: int, mode: int) -> tuple[int, ...]:
	return tuple(p for p in range(FRAME_BUFFER_SIZE) if pixel_pattern(p, mode) == subpage)


def select_range(to, ct) -> int:
	"""Temperature range of ``to`` among the corner temperatures.

	A distribution is classified by its representative value so that one smooth formula is
	applied to every sample.
	"""
	t = uncertain.representative(to)
	if t < ct[1]:
		return 0
	elif t < ct[2]:
		return 1
	elif t < ct[3]:
		return 2
	return 3


def alpha_correction(params: ParameterBlock) -> tuple[float, float, float, float]:
	ks_to = params.ks_to
	ct = params.ct
	corr0 = 1 / (1 + ks_to[0] * 40)
	corr2 = 1 + ks_to[1] * ct[2]
	corr3 = corr2 * (1 + ks_to[2] * (ct[3] - ct[2]))
	return corr0, 1.0, corr2, corr3


def compensation_pixel_ir(frame_data, params: ParameterBlock, gain, vdd, ta, mode: int) -> tuple:
	"""Offset-compensated IR signal of the two compensation pixels."""
	drift = (1 + params.cp_kta * (ta - TA_REFERENCE)) * (1 + params.cp_kv * (vdd - VDD_REFERENCE))
	ir_cp0 = signed16(frame_data[FRAME_CP_SUBPAGE_0]) * gain - params.cp_offset[0] * drift
	if mode == params.calibration_mode_ee:
		ir_cp1 = signed16(frame_data[FRAME_CP_SUBPAGE_1]) * gain - params.cp_offset[1] * drift
	else:
		ir_cp1 = signed16(frame_data[FRAME_CP_SUBPAGE_1]) * gain - (params.cp_offset[1] + params.il_chess_c[0]) * drift
	return ir_cp0, ir_cp1


def pixel_ir(raw, pixel_number: int, params: ParameterBlock, gain, vdd, ta, ir_cp, mode: int, emissivity):
	"""Compensated IR signal of one pixel divided by the emissivity, before alpha compensation.

	``raw`` is the signed pixel count (or a distribution around it) and ``ir_cp`` the
	compensation pixel signal of the frame's sub-page.
	"""
	ir_data = raw * gain

	kta = params.kta[pixel_number] / pow(2, params.kta_scale)
	kv = params.kv[pixel_number] / pow(2, params.kv_scale)
	ir_data = ir_data - params.offset[pixel_number] * (1 + kta * (ta - TA_REFERENCE)) * (1 + kv * (vdd - VDD_REFERENCE))

	if mode != params.calibration_mode_ee:
		ir_data = ir_data + params.il_chess_c[2] * (2 * il_pattern(pixel_number) - 1) - params.il_chess_c[1] * conversion_pattern(pixel_number)

	ir_data = ir_data - params.tgc * ir_cp
	return ir_data / emissivity


def new_result_buffer() -> list:
	return [math.nan] * FRAME_BUFFER_SIZE


def _check_emissivity(emissivity) -> None:
	lo, hi = uncertain.support(emissivity)
	if not (0 < lo and hi <= 1):
		raise ValueError(f"emissivity must lie in (0, 1], got support [{lo}, {hi}]")


def _check_sample_counts(emissivity, tr, substrate: uncertain.Substrate | None) -> None:
	counts = {
		"emissivity": uncertain.sample_count(emissivity),
		"tr": uncertain.sample_count(tr),
	}
	if substrate is not None and substrate.supports_distributions:
		counts["quantization"] = substrate.samples
	sized = {name: n for name, n in counts.items() if n}
	if len(set(sized.values())) > 1:
		detail = ", ".join(f"{name} {n}" for name, n in sized.items())
		raise ValueError(f"distributions must carry the same number of samples, got {detail}")


def default_substrate(emissivity, tr=None) -> uncertain.Substrate:
	"""Sampler sized to the distributions already in play, or the default sample count."""
	return uncertain.Substrate(samples=max(uncertain.sample_count(emissivity), uncertain.sample_count(tr)) or DISTRIBUTION_SAMPLES)


def _fault_all(pixels, result) -> list[int]:
	for pixel_number in pixels:
		result[pixel_number] = math.nan
	return list(pixels)


def calculate_to(
	frame_data,
	params: ParameterBlock,
	emissivity,
	tr,
	result: list,
	quantization_error: bool = False,
	substrate: uncertain.Substrate | None = None,
) -> list[int]:
	"""Write calibrated temperatures (Celsius) of the frame's sub-page into ``result``.

	Only pixels read out in the frame's sub-page are written; the rest of ``result`` keeps
	whatever the previous call left there, so two calls with complementary sub-pages build a
	full image. ``emissivity`` and ``tr`` may be distributions (sample arrays).

	Returns the indices of the pixels that could not be computed (division by zero or a
	negative root); those are written as NaN.
	Distributions that do not carry the same number of samples raise ``ValueError``.
	"""
	validate_frame(frame_data)
	if len(result) != FRAME_BUFFER_SIZE:
		raise ValueError(f"result buffer must hold {FRAME_BUFFER_SIZE} values, got {len(result)}")
	_check_emissivity(emissivity)
	if quantization_error and substrate is None:
		substrate = default_substrate(emissivity, tr)
	_check_sample_counts(emissivity, tr, substrate if quantization_error else None)

	subpage = subpage_number(frame_data)
	mode = readout_mode(frame_data)
	pixels = subpage_pixels(subpage, mode)

	# ------------------------- Gain calculation -----------------------------------
	gain_count = signed16(frame_data[FRAME_GAIN])
	if gain_count == 0:
		logger.warning("gain word of sub-page %d is zero, writing NaN for its %d pixels", subpage, len(pixels))
		return _fault_all(pixels, result)
	gain = np.float64(params.gain_ee) / gain_count

	try:
		vdd = np.float64(get_vdd(frame_data, params))
		ta = np.float64(get_ta(frame_data, params))
	except ZeroDivisionError:
		logger.warning("ambient temperature of sub-page %d is not computable, writing NaN", subpage)
		return _fault_all(pixels, result)

	faults: list[int] = []
	with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
		ta4 = ta + KELVIN_OFFSET
		ta4 = ta4 * ta4
		ta4 = ta4 * ta4
		tr4 = tr + KELVIN_OFFSET
		tr4 = tr4 * tr4
		tr4 = tr4 * tr4
		ta_tr = tr4 - (tr4 - ta4) / emissivity

		alpha_scale = pow(2, params.alpha_scale)
		alpha_corr_r = alpha_correction(params)
		ks_to = params.ks_to
		ct = params.ct

		# ------------------------- To calculation -------------------------------------
		ir_data_cp = compensation_pixel_ir(frame_data, params, gain, vdd, ta, mode)

		for pixel_number in pixels:
			raw = signed16(frame_data[pixel_number])
			if quantization_error:
				raw = substrate.uniform_dist(raw - 0.5, raw + 0.5)
			ir_data = pixel_ir(raw, pixel_number, params, gain, vdd, ta, ir_data_cp[subpage], mode, emissivity)

			if params.alpha[pixel_number] == 0:
				faults.append(pixel_number)
				result[pixel_number] = math.nan
				continue
			alpha_compensated = SCALEALPHA * alpha_scale / params.alpha[pixel_number]
			alpha_compensated = alpha_compensated * (1 + params.ks_ta * (ta - TA_REFERENCE))

			sx = alpha_compensated * alpha_compensated * alpha_compensated * (ir_data + alpha_compensated * ta_tr)
			sx = uncertain.fourth_root(sx) * ks_to[1]
			to = uncertain.fourth_root(ir_data / (alpha_compensated * (1 - ks_to[1] * KELVIN_OFFSET) + sx) + ta_tr) - KELVIN_OFFSET

			range_idx = select_range(to, ct)
			to = uncertain.fourth_root(
				ir_data / (alpha_compensated * alpha_corr_r[range_idx] * (1 + ks_to[range_idx] * (to - ct[range_idx]))) + ta_tr
			) - KELVIN_OFFSET

			if not uncertain.is_finite(to):
				faults.append(pixel_number)
				result[pixel_number] = math.nan
				continue
			result[pixel_number] = to if uncertain.is_distribution(to) else uncertain.representative(to)

	if faults:
		logger.debug("sub-page %d: %d pixels faulted", subpage, len(faults))
	return faults


@dataclass
class TemperatureImage:
	"""A full 32x24 temperature image built from two complementary sub-pages."""

	values: list
	faults: list[int] = field(default_factory=list)
	bad_pixels: tuple[int, ...] = ()
	subpages: tuple[int, ...] = ()

	def pixel(self, index: int):
		return self.values[index]

	def representative(self) -> np.ndarray:
		return np.array([uncertain.representative(v) for v in self.values])

	def mean(self) -> np.ndarray:
		return np.array([uncertain.mean(v) for v in self.values])

	def support_width(self) -> np.ndarray:
		return np.array([uncertain.support_width(v) for v in self.values])

	def as_grid(self) -> np.ndarray:
		return self.representative().reshape(FRAME_HEIGHT, FRAME_WIDTH)

	def masked(self) -> np.ndarray:
		"""Representative image with NaN at the pixels the EEPROM flags as broken or outliers."""
		image = self.representative()
		image[list(self.bad_pixels)] = math.nan
		return image

	@property
	def complete(self) -> bool:
		return set(self.subpages) == {0, 1}


def render(
	frame0,
	frame1,
	params: ParameterBlock,
	emissivity,
	tr=None,
	quantization_error: bool = False,
	substrate: uncertain.Substrate | None = None,
) -> TemperatureImage:
	"""Build a full image from two sub-page frames into a fresh buffer.

	``tr=None`` uses the reflected-temperature estimate of each frame (Ta - TA_SHIFT).
	"""
	if quantization_error and substrate is None:
		substrate = default_substrate(emissivity, tr)
	result = new_result_buffer()
	faults: set[int] = set()
	subpages = []
	for frame_data in (frame0, frame1):
		validate_frame(frame_data)
		frame_tr = tr
		if frame_tr is None:
			try:
				frame_tr = reflected_temperature(frame_data, params)
			except ZeroDivisionError:
				frame_tr = math.nan
		faults.update(calculate_to(frame_data, params, emissivity, frame_tr, result, quantization_error, substrate))
		subpages.append(subpage_number(frame_data))

	if len(set(subpages)) < 2:
		logger.warning("both frames carry sub-page %d, half of the image was not refreshed", subpages[0])
	return TemperatureImage(result, sorted(faults), params.bad_pixels, tuple(subpages))


def _median(values):
	if any(uncertain.is_distribution(v) for v in values):
		return np.median(np.vstack(np.broadcast_arrays(*values)), axis=0)
	return float(np.median(values))


def correct_bad_pixels(to: list, pixels, mode: int, params: ParameterBlock) -> None:
	"""Replace the listed pixels of ``to`` in place by interpolating their neighbours.

	Chess mode uses the diagonal neighbours (same sub-page), interleaved mode the horizontal
	neighbours with gradient extrapolation when the pixels two columns away are good.
	"""
	for pixel in pixels:
		line = pixel >> 5
		column = pixel - (line << 5)

		if mode == CHESS:
			if line == 0:
				if column == 0:
					to[pixel] = to[33]
				elif column == 31:
					to[pixel] = to[62]
				else:
					to[pixel] = (to[pixel + 31] + to[pixel + 33]) / 2.0
			elif line == 23:
				if column == 0:
					to[pixel] = to[705]
				elif column == 31:
					to[pixel] = to[734]
				else:
					to[pixel] = (to[pixel - 33] + to[pixel - 31]) / 2.0
			elif column == 0:
				to[pixel] = (to[pixel - 31] + to[pixel + 33]) / 2.0
			elif column == 31:
				to[pixel] = (to[pixel - 33] + to[pixel + 31]) / 2.0
			else:
				to[pixel] = _median([to[pixel - 33], to[pixel - 31], to[pixel + 31], to[pixel + 33]])
		else:
			if column == 0:
				to[pixel] = to[pixel + 1]
			elif column == 1 or column == 30:
				to[pixel] = (to[pixel - 1] + to[pixel + 1]) / 2.0
			elif column == 31:
				to[pixel] = to[pixel - 1]
			elif not params.is_pixel_bad(pixel - 2) and not params.is_pixel_bad(pixel + 2):
				ap0 = to[pixel + 1] - to[pixel + 2]
				ap1 = to[pixel - 1] - to[pixel - 2]
				if abs(uncertain.representative(ap0)) > abs(uncertain.representative(ap1)):
					to[pixel] = to[pixel - 1] + ap1
				else:
					to[pixel] = to[pixel + 1] + ap0
			else:
				to[pixel] = (to[pixel - 1] + to[pixel + 1]) / 2.0
