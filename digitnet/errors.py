"""
errors.py
~~~~~~~~~

Exception types raised by the digitnet core.
"""

from typing import Optional


class DigitNetError(Exception):
    """Base class for all digitnet errors."""


class OutOfBoundsError(DigitNetError, IndexError):
    """A matrix entry was addressed outside the matrix shape."""


class DimensionMismatchError(DigitNetError, ValueError):
    """Two operands (or a matrix and an architecture) have incompatible shapes."""


class MalformedInputError(DigitNetError, ValueError):
    """
    Bad input data.

    Args:
        message: Description of the problem
        line_number: 1-based line of the offending input, if known
    """

    def __init__(self, message: str, line_number: Optional[int] = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class MalformedRecordError(MalformedInputError):
    """A training/classification record could not be parsed."""


class MalformedMatrixError(MalformedInputError):
    """A serialized matrix could not be parsed."""


class MalformedWeightFileError(MalformedInputError):
    """A weight file is missing a block or does not match the architecture."""
