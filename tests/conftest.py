"""
Shared fixtures: a synthetic but physically plausible MLX90640 EEPROM image and raw frames.

The EEPROM decodes to a chess-calibrated device with Vdd25 at 3.3 V, Ta close to 25 degC for
the default auxiliary words, and every pixel carrying the same calibration. A raw count of 40
reads about 33.6 degC at emissivity 0.95.
"""

import pytest

from mlxthermal.calibration import uncertain
from mlxthermal.calibration.ambient import get_ta, get_vdd
from mlxthermal.data.eeprom_parser import extract_parameters


# ============================================================================
# EEPROM
# ============================================================================

EEPROM_WORDS = {
    10: 0x0000,  # chess calibration, device select clear
    16: 0x4210,  # alphaPTAT 9, offset row scale 2, column scale 1, remnant scale 0
    17: 0xFFC4,  # offset reference -60
    32: 0x6221,  # alpha scale nibble 6, row scale 2, column scale 2, remnant scale 1
    33: 0x2000,  # alpha reference 8192
    48: 0x1881,  # gainEE 6273
    49: 0x2FF1,  # VPTAT25 12273
    50: 0x5952,  # KvPTAT 22/4096, KtPTAT 42.25
    51: 0x9D68,  # kVdd -3168, vdd25 -13056
    52: 0x4444,  # Kv 4 in every split
    53: 0x1108,  # ilChessC 0.5, 2.0, 0.25
    54: 0x5050,  # Kta row/column averages 80
    55: 0x5050,
    56: 0x2363,  # resolutionEE 2, Kv scale 3, Kta scale1 6 (+8), Kta scale2 3
    57: 0x0022,  # CP alpha 34
    58: 0x0BB5,  # CP offset -75, delta 2
    59: 0x0442,  # CP Kv 4, CP Kta 66
    60: 0xF020,  # KsTa -16, TGC 32 (1.0)
    61: 0x9797,  # KsTo -105
    62: 0x9797,
    63: 0x1849,  # step 10, CT2 4 steps, CT3 +8 steps, KsTo scale 9 (+8)
}
PIXEL_WORD = 0x0422  # offset remnant 1, alpha remnant 2, Kta remnant 1, not an outlier


def build_eeprom(overrides=None, pixel_word=PIXEL_WORD):
    ee = [0] * 832
    for address, word in EEPROM_WORDS.items():
        ee[address] = word
    for pixel in range(768):
        ee[0x40 + pixel] = pixel_word
    for address, word in (overrides or {}).items():
        ee[address] = word
    return ee


# ============================================================================
# RAW FRAMES
# ============================================================================

GAIN_WORD = 6383
TA_VBE_WORD = 21147
TA_PTAT_WORD = 1711
CP_WORD = 0xFFB5  # -75
VDD_WORD = 0xCD00  # -13056, i.e. exactly vdd25
CHESS = 1
INTERLEAVED = 0


def build_frame(subpage, raw=40, mode=CHESS, resolution=2, gain=GAIN_WORD, pixels=None):
    """834-word frame with every pixel at ``raw`` (or per-pixel counts from ``pixels``)."""
    frame = [0] * 834
    counts = pixels if pixels is not None else [raw] * 768
    for i, count in enumerate(counts):
        frame[i] = count & 0xFFFF
    frame[768] = TA_VBE_WORD
    frame[776] = CP_WORD
    frame[778] = gain & 0xFFFF
    frame[800] = TA_PTAT_WORD
    frame[808] = CP_WORD
    frame[810] = VDD_WORD
    frame[832] = (mode << 12) | (resolution << 10)
    frame[833] = subpage
    return frame


def write_csv(path, rows):
    with open(path, "w") as f:
        for row in rows:
            f.write(",".join(str(w) for w in row) + "\n")
    return path


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def ee_data():
    """832-word EEPROM image of the synthetic device."""
    return build_eeprom()


@pytest.fixture
def eeprom_factory():
    """Build an EEPROM image with selected words replaced."""
    return build_eeprom


@pytest.fixture
def frame_factory():
    """Build a raw frame for a sub-page."""
    return build_frame


@pytest.fixture
def params(ee_data):
    """ParameterBlock decoded from the synthetic EEPROM."""
    return extract_parameters(ee_data)


@pytest.fixture
def frame0():
    return build_frame(0)


@pytest.fixture
def frame1():
    return build_frame(1)


@pytest.fixture
def ambient(frame0, params):
    """(gain, vdd, ta) of the default frame."""
    gain = params.gain_ee / GAIN_WORD
    return gain, get_vdd(frame0, params), get_ta(frame0, params)


@pytest.fixture
def substrate():
    """Small reproducible sampler; odd sample count so medians are sample points."""
    return uncertain.Substrate(samples=201, seed=7)


@pytest.fixture
def data_files(tmp_path, ee_data):
    """EEPROM and raw frame CSV files holding one full sub-page cycle."""
    ee_path = write_csv(tmp_path / "EEPROM-calibration-data.csv", [ee_data])
    raw_path = write_csv(tmp_path / "raw-frame-data.csv", [build_frame(0), build_frame(1)])
    return str(ee_path), str(raw_path)
