"""Exceptions raised by the conversion pipeline.

Only structural problems raise. Per-pixel arithmetic faults are reported as NaN values
together with the list of faulted indices returned by the kernel.
"""


class MLXThermalError(Exception):
    """Base class for all conversion errors."""


class BadEEPROM(MLXThermalError, ValueError):
    """EEPROM image failed a structural check; no parameters are available.

    ``code`` carries the vendor error number (-3 .. -7) when the failure maps to one,
    otherwise ``None``.
    """

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class FrameFormatError(MLXThermalError, ValueError):
    """A raw frame or an input row does not have the expected shape."""
