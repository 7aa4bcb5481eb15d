import json
import math

from ..calibration import uncertain
from ..config import FRAME_HEIGHT, FRAME_WIDTH

REPORT_DESCRIPTION = "MLX90640 Conversion Values."
PIXEL_SYMBOL = "temperature"
PIXEL_DESCRIPTION = "Temperature (calibrated)"
IMAGE_SYMBOL = "temperatures"
IMAGE_DESCRIPTION = "Temperatures (calibrated)"


def _json_value(value) -> float | None:
    """Distributions are summarized by their mean; NaN becomes null."""
    value = uncertain.mean(value)
    return None if math.isnan(value) else value


def json_variables(values, symbol: str, description: str, report_description: str = REPORT_DESCRIPTION) -> dict:
    return {
        "description": report_description,
        "variables": [
            {
                "symbol": symbol,
                "description": description,
                "type": "float",
                "values": [_json_value(v) for v in values],
            }
        ],
    }


def pixel_report(value) -> dict:
    return json_variables([value], PIXEL_SYMBOL, PIXEL_DESCRIPTION)


def image_report(values) -> dict:
    return json_variables(values, IMAGE_SYMBOL, IMAGE_DESCRIPTION)


def dumps(report: dict) -> str:
    return json.dumps(report, indent=4)


def format_pixel(value) -> str:
    """``12.345678`` for a concrete value, ``12.345678 [12.1, 12.6]`` with the 95% interval for a distribution."""
    text = f"{uncertain.mean(value):f}"
    if uncertain.is_distribution(value):
        lo, hi = uncertain.interval(value)
        text += f" [{lo:f}, {hi:f}]"
    return text


def format_grid(values) -> str:
    rows = []
    for h in range(FRAME_HEIGHT):
        row = values[h * FRAME_WIDTH:(h + 1) * FRAME_WIDTH]
        rows.append(" ".join(f"{uncertain.mean(v):f}" for v in row))
    return "\n".join(rows)
