"""Exception classes, warnings and helper functions used across ``gptrealign``."""

from __future__ import annotations

from enum import Enum
from typing import Any

__all__ = [
    'RealignError',
    'ArgumentError',
    'LoadError',
    'SizeError',
    'AllocationError',
    'ValidationError',
    'StructuralError',
    'StructuralFault',
    'BoundsError',
    'PersistError',
    'ValidationWarning',
    'is_power_of_two',
]


class RealignError(Exception):
    """Base class of all errors raised by ``gptrealign``.

    ``exit_code`` is the process exit status the command line interface reports
    for an error of this kind.
    """

    exit_code = 1


class ArgumentError(RealignError, ValueError):
    """Exception raised if a command line token or a numeric parameter such as the
    disk size is not understood.
    """

    exit_code = 2


class LoadError(RealignError, OSError):
    """Exception raised if an image file cannot be opened or read."""

    exit_code = 3


class SizeError(RealignError, ValueError):
    """Exception raised if an image file is too small, is not a multiple of the
    sector size or cannot hold the structures its header describes.
    """

    exit_code = 4


class AllocationError(RealignError, MemoryError):
    """Exception raised if no buffer could be allocated for an image file."""

    exit_code = 5


class ValidationError(RealignError, ValueError):
    """Exception raised if an object representing a specific structure -- for example
    a GPT header -- cannot be created because the data to be parsed as the structure
    does not conform to the standard of the structure.
    """

    exit_code = 6


class StructuralFault(Enum):
    """Reason a GPT header was rejected by the structural validator."""

    BAD_SIGNATURE = 'BadSignature'
    BAD_REVISION = 'BadRevision'
    UNSUPPORTED_ENTRY_SIZE = 'UnsupportedEntrySize'


class StructuralError(ValidationError):
    """Exception raised if a GPT header fails a structural check.

    ``fault`` names the check which failed, ``expected`` and ``found`` hold the
    value required by that check and the value actually read from the header.
    """

    def __init__(self, fault: StructuralFault, expected: Any, found: Any):
        self.fault = fault
        self.expected = expected
        self.found = found
        super().__init__(f'{fault.value}: expected {expected!r}, found {found!r}')


class BoundsError(RealignError, ValueError):
    """Exception raised if the bounds of a realigned partition are considered
    illegal.
    """

    exit_code = 7


class PersistError(RealignError, OSError):
    """Exception raised if a modified image could not be written back.

    Unlike the errors raised before the buffer is modified, the file on disk might
    be left truncated or partially written.
    """

    exit_code = 8


class ValidationWarning(UserWarning):
    """Warning emitted if a value found in a structure or image does not match what
    is expected for the device family but might still be usable.
    """


def is_power_of_two(value: int) -> bool:
    """Check if ``value`` is a power of two.

    ``value`` must be an ``int`` greater than zero.

    Returns whether ``value`` can be expressed as 2 to the power of x, with x being
    an integer greater than or equal to zero.
    """
    if value <= 0:
        raise ValueError('Value must be greater than 0')
    return value & (value - 1) == 0
