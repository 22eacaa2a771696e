"""
Errors raised while converting a FIT file.

Every error is scoped to a single file; batch callers catch
FitConversionError and move on to the next file.
"""


class FitConversionError(Exception):
    """Base class for per-file conversion failures."""


class InputNotFound(FitConversionError):
    pass


class InputUnreadable(FitConversionError):
    pass


class IntegrityError(FitConversionError):
    """Header or CRC pre-check failed; the file was not decoded."""


class RecoverableFraming(FitConversionError):
    """
    Declared data size does not match the stream.

    The reader stays positioned at the start of the offending segment,
    call FitReader.resync() and iterate again.
    """

    def __init__(self, message, offset):
        super().__init__(message)
        self.offset = offset


class MalformedContainer(FitConversionError):
    pass


class OutputWriteError(FitConversionError):
    pass


class UnknownDeviceError(FitConversionError, ValueError):
    """Target device has no canonical product name."""
