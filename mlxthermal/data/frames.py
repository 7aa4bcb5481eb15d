import csv
import json
import logging
import os

from ..config import (
    CTRL_MEAS_MODE_MASK,
    CTRL_MEAS_MODE_SHIFT,
    CTRL_RESOLUTION_MASK,
    CTRL_RESOLUTION_SHIFT,
    EE_DATA_BUFFER_SIZE,
    FRAME_CONTROL_REGISTER,
    FRAME_SUBPAGE,
    RAW_FRAME_BUFFER_SIZE,
)
from ..errors import FrameFormatError

logger = logging.getLogger(__name__)


def signed16(word: int) -> int:
    """Interpret an unsigned 16-bit word as two's complement."""
    word = int(word) & 0xFFFF
    return (word - 65536) if (word > 32767) else word


def validate_frame(frame) -> None:
    """Raise FrameFormatError unless ``frame`` is a complete 834-word raw frame."""
    if len(frame) != RAW_FRAME_BUFFER_SIZE:
        raise FrameFormatError(f"raw frame must hold {RAW_FRAME_BUFFER_SIZE} words, got {len(frame)}")
    if frame[FRAME_SUBPAGE] not in (0, 1):
        raise FrameFormatError(f"sub-page word must be 0 or 1, got {frame[FRAME_SUBPAGE]}")


def subpage_number(frame) -> int:
    return int(frame[FRAME_SUBPAGE])


def readout_mode(frame) -> int:
    """0 for interleaved read-out, 1 for chess pattern read-out."""
    return (int(frame[FRAME_CONTROL_REGISTER]) & CTRL_MEAS_MODE_MASK) >> CTRL_MEAS_MODE_SHIFT


def resolution_ram(frame) -> int:
    return (int(frame[FRAME_CONTROL_REGISTER]) & CTRL_RESOLUTION_MASK) >> CTRL_RESOLUTION_SHIFT


def _parse_row(tokens, max_len: int, source: str) -> list[int]:
    words = []
    for token in tokens:
        token = token.strip()
        if not token:
            continue
        if len(words) >= max_len:
            break
        try:
            word = int(token, 10)
        except ValueError:
            raise FrameFormatError(f"{source}: '{token}' is not an unsigned integer")
        if word < 0 or word > 0xFFFF:
            raise FrameFormatError(f"{source}: {word} does not fit in 16 bits")
        words.append(word)
    return words


def iter_uint16_csv(path: str, max_len: int):
    """Yield one list of words per line of a CSV file, at most ``max_len`` words each."""
    with open(path, "r", newline="") as f:
        for line_number, row in enumerate(csv.reader(f)):
            yield _parse_row(row, max_len, f"{path}:{line_number + 1}")


def read_uint16_csv(path: str, line: int, max_len: int) -> list[int] | None:
    """Read line ``line`` (0-based) of a CSV file; ``None`` when the file has no such line."""
    for line_number, words in enumerate(iter_uint16_csv(path, max_len)):
        if line_number == line:
            return words
    return None


def load_eeprom_csv(path: str) -> list[int]:
    """Load the 832-word EEPROM image from the first line of a CSV file."""
    words = read_uint16_csv(path, 0, EE_DATA_BUFFER_SIZE)
    if words is None or len(words) < EE_DATA_BUFFER_SIZE:
        count = 0 if words is None else len(words)
        raise FrameFormatError(f"{path}: EEPROM data must contain {EE_DATA_BUFFER_SIZE} values, got {count}")
    return words


def load_frames_csv(path: str) -> list[list[int]]:
    """Load every raw frame of a CSV file, one frame per line. Blank lines are skipped."""
    frames = []
    for line_number, words in enumerate(iter_uint16_csv(path, RAW_FRAME_BUFFER_SIZE)):
        if not words:
            continue
        if len(words) < RAW_FRAME_BUFFER_SIZE:
            raise FrameFormatError(
                f"{path}:{line_number + 1}: raw frame must contain {RAW_FRAME_BUFFER_SIZE} values, got {len(words)}"
            )
        frames.append(words)
    logger.debug("loaded %d frames from %s", len(frames), path)
    return frames


def load_matrix_from_json(filename: str) -> list:
    """Loads a JSON log: a list of ``[timestamp, [words...]]`` entries."""
    with open(filename, "r") as f:
        data: list = json.load(f)
    if not isinstance(data, list):
        raise FrameFormatError(f"{filename}: expected a list of [timestamp, words] entries")
    if data and data[-1] == []:
        data.pop()
    return data


def _entry_words(entry, filename: str, expected: int) -> list[int]:
    # Expected format: [timestamp, [words]]
    if not isinstance(entry, list) or len(entry) < 2 or not isinstance(entry[1], (list, tuple)):
        raise FrameFormatError(f"{filename}: invalid entry, expected [timestamp, [words]]")
    words = entry[1]
    if len(words) != expected:
        raise FrameFormatError(f"{filename}: entry must contain {expected} uint16 values, got {len(words)}")
    return _parse_row((str(w) for w in words), expected, filename)


def load_eeprom_json(path: str) -> list[int]:
    """Load EEPROM list (832 uint16) from the JSON log (first entry)."""
    data = load_matrix_from_json(path)
    if not data:
        raise FrameFormatError(f"{path}: EEPROM JSON has no entries")
    return _entry_words(data[0], path, EE_DATA_BUFFER_SIZE)


def load_frames_json(path: str) -> list[list[int]]:
    """Load raw frames (834 uint16 each) from a JSON log, in file order."""
    return [_entry_words(entry, path, RAW_FRAME_BUFFER_SIZE) for entry in load_matrix_from_json(path)]


def _is_json(path: str) -> bool:
    return os.path.splitext(path)[1].lower() == ".json"


def load_eeprom(path: str) -> list[int]:
    return load_eeprom_json(path) if _is_json(path) else load_eeprom_csv(path)


def load_frames(path: str) -> list[list[int]]:
    return load_frames_json(path) if _is_json(path) else load_frames_csv(path)
