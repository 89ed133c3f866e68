"""Certain types used across the package."""

from __future__ import annotations

from os import PathLike
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from array import array
    from mmap import mmap
    from typing import Any

    StrPath = Union[str, PathLike[str]]
    WriteableBuffer = Union[bytearray, memoryview, array[Any], mmap]
    ReadableBuffer = Union[bytes, WriteableBuffer]


__all__ = ['StrPath', 'WriteableBuffer', 'ReadableBuffer']
