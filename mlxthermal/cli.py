"""Convert MLX90640 raw frame data to calibrated temperatures.

Reads the sensor EEPROM dump and a file of raw frames (one frame per CSV line, or a JSON
log of ``[timestamp, [words...]]`` entries), runs every frame through the temperature
kernel into one image buffer and prints the selected pixel or the whole image.
"""

import argparse
import logging
import math
import os
import sys
import time

from .calibration import uncertain
from .calibration.ambient import reflected_temperature
from .calibration.temperature import calculate_to, correct_bad_pixels, default_substrate, new_result_buffer, TemperatureImage
from .config import (
    DEFAULT_EE_DATA_PATH,
    DEFAULT_PIXEL,
    DEFAULT_RAW_DATA_PATH,
    DISTRIBUTION_SAMPLES,
    EMISSIVITY_LOWER_BOUND,
    EMISSIVITY_UPPER_BOUND,
    FRAME_BUFFER_SIZE,
    RANDOM_SEED,
)
from .data import report
from .data.eeprom_parser import extract_parameters
from .data.frames import load_eeprom, load_frames, readout_mode, subpage_number
from .errors import BadEEPROM, MLXThermalError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mlxthermal",
        description="MLX90640 sensor conversion routines with emissivity and ADC quantization uncertainty",
    )
    parser.add_argument(
        "-c",
        "--ee-data",
        type=str,
        default=DEFAULT_EE_DATA_PATH,
        help="Path to the EEPROM calibration data (CSV or JSON)",
    )
    parser.add_argument(
        "-i",
        "--input",
        type=str,
        default=DEFAULT_RAW_DATA_PATH,
        help="Path to the raw frame data (CSV or JSON), one frame per entry",
    )
    parser.add_argument(
        "-e",
        "--emissivity",
        type=float,
        default=None,
        help=f"Emissivity of the measured object (default: UniformDist({EMISSIVITY_LOWER_BOUND}, {EMISSIVITY_UPPER_BOUND}))",
    )
    parser.add_argument(
        "-q",
        "--quantization-error",
        action="store_true",
        help="Disable modelling of the ADC quantization error",
    )
    parser.add_argument(
        "-p",
        "--pixel",
        type=int,
        default=DEFAULT_PIXEL,
        help=f"Selected pixel, range = [0,{FRAME_BUFFER_SIZE - 1}] (default: {DEFAULT_PIXEL})",
    )
    parser.add_argument(
        "-a",
        "--print-all-temperatures",
        action="store_true",
        help="Print the temperatures of all pixels",
    )
    parser.add_argument(
        "-b",
        "--correct-bad-pixels",
        action="store_true",
        help="Interpolate the pixels the EEPROM flags as broken or outliers",
    )
    parser.add_argument("-j", "--json", action="store_true", help="Print JSON output")
    parser.add_argument("-t", "--time", action="store_true", help="Report the CPU time used")
    parser.add_argument(
        "-n",
        "--iterations",
        type=int,
        default=1,
        help="Repeat parameter extraction and conversion (benchmarking)",
    )
    parser.add_argument(
        "--samples",
        type=int,
        default=DISTRIBUTION_SAMPLES,
        help="Samples per distribution; 0 or 1 evaluates every distribution at its midpoint",
    )
    parser.add_argument("--seed", type=int, default=RANDOM_SEED, help="Seed of the distribution sampler")
    parser.add_argument("--plot", type=str, default=None, help="Save a heat map of the image to this path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _check_arguments(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if not 0 <= args.pixel < FRAME_BUFFER_SIZE:
        parser.error(f"the pixel must be in [0, {FRAME_BUFFER_SIZE - 1}]")
    if args.emissivity is not None and not 0 < args.emissivity <= 1:
        parser.error("the emissivity must be in (0, 1]")
    if args.iterations < 1:
        parser.error("the number of iterations must be positive")
    if args.samples < 0:
        parser.error("the number of samples must be non-negative")


def convert(ee_data, frames, emissivity=None, quantization_error=True, correct=False, substrate=None) -> TemperatureImage:
    """Extract the parameters and run every frame, in order, into one result buffer."""
    if substrate is None:
        substrate = default_substrate(emissivity)
    if emissivity is None:
        emissivity = substrate.uniform_dist(EMISSIVITY_LOWER_BOUND, EMISSIVITY_UPPER_BOUND)
    if not frames:
        raise MLXThermalError("no raw frame to convert")

    params = extract_parameters(ee_data)
    result = new_result_buffer()
    faults: set[int] = set()
    subpages = []
    for frame_data in frames:
        try:
            tr = reflected_temperature(frame_data, params)
        except ZeroDivisionError:
            tr = math.nan
        faults.update(calculate_to(frame_data, params, emissivity, tr, result, quantization_error, substrate))
        subpages.append(subpage_number(frame_data))

    if len(set(subpages)) < 2:
        logger.warning("only sub-page %d was read, half of the image was not refreshed", subpages[0])
    if correct and params.bad_pixels:
        correct_bad_pixels(result, params.bad_pixels, readout_mode(frames[-1]), params)
    return TemperatureImage(result, sorted(faults), params.bad_pixels, tuple(sorted(set(subpages))))


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _check_arguments(parser, args)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        ee_data = load_eeprom(args.ee_data)
    except (MLXThermalError, OSError) as e:
        print(f"Error in reading sensor ee data: {e}", file=sys.stderr)
        return 1
    try:
        frames = load_frames(args.input)
    except (MLXThermalError, OSError) as e:
        print(f"Error in reading sensor raw data: {e}", file=sys.stderr)
        return 1
    if not frames:
        print("Error in reading sensor raw data: no frame found", file=sys.stderr)
        return 1

    start = time.process_time()
    image = None
    emissivity = args.emissivity
    for _ in range(args.iterations):
        substrate = uncertain.Substrate(samples=args.samples, seed=args.seed)
        if args.emissivity is None:
            emissivity = substrate.uniform_dist(EMISSIVITY_LOWER_BOUND, EMISSIVITY_UPPER_BOUND)
        try:
            image = convert(
                ee_data,
                frames,
                emissivity=emissivity,
                quantization_error=not args.quantization_error,
                correct=args.correct_bad_pixels,
                substrate=substrate,
            )
        except BadEEPROM as e:
            print(f"Error in extracting parameters from EE: {e}", file=sys.stderr)
            return 1
        except MLXThermalError as e:
            print(f"Error in converting raw data: {e}", file=sys.stderr)
            return 1
    cpu_time_used = time.process_time() - start

    pixel_temp = image.pixel(args.pixel)
    if args.json:
        if args.print_all_temperatures:
            print(report.dumps(report.image_report(image.values)))
        else:
            print(report.dumps(report.pixel_report(pixel_temp)))
    else:
        print(f"Converting raw data to temperature using emissivity = {report.format_pixel(emissivity)}")
        if args.print_all_temperatures:
            print(report.format_grid(image.values))
        else:
            print(f"Temperature of pixel {args.pixel}: {report.format_pixel(pixel_temp)} Celsius.\n")
        if image.faults:
            print(f"{len(image.faults)} pixels could not be computed: {image.faults}")
        if args.time:
            print(f"CPU time used: {cpu_time_used:f} seconds")

    if args.plot:
        from .visualization.plotter import plot_temperature_image, plot_uncertainty_map

        plot_temperature_image(image, args.plot, title=f"MLX90640 temperatures, emissivity {report.format_pixel(emissivity)}")
        if any(uncertain.is_distribution(v) for v in image.values):
            root, ext = os.path.splitext(args.plot)
            uncertainty_path = f"{root}-uncertainty{ext}"
            plot_uncertainty_map(image, uncertainty_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
