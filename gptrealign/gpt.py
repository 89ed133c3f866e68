"""GPT header and partition entry structures.

See https://uefi.org/specifications.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence
from zlib import crc32

from typing_extensions import Annotated

from .base import StructuralError, StructuralFault, ValidationWarning
from .bytestruct import ByteStruct

__all__ = [
    'ImageVariant',
    'GptHeader',
    'GptPartitionEntry',
    'validate_header',
    'check_placement',
    'count_unused',
    'entry_array_size',
    'entry_array_crc32',
    'header_crc32',
    'pack_entries',
    'SECTOR_SIZE',
    'SIGNATURE',
    'REVISION',
    'HEADER_SIZE',
    'PARTITION_ENTRY_SIZE',
]


log = logging.getLogger(__name__)


# eMMC devices of the MSM8916 family use 512 byte sectors
SECTOR_SIZE = 512

SIGNATURE = b'EFI PART'
REVISION = 0x00010000  # 1.0
HEADER_SIZE = 92  # significant part of the header sector
PARTITION_ENTRY_SIZE = 128  # the only entry size supported

PRIMARY_HEADER_LBA = 1
EXPECTED_FIRST_USABLE_LBA = 34  # MBR + header + 32 sectors of entries

UNUSED_TYPE_GUID = b'\x00' * 16
PARTITION_NAME_LENGTH = 36  # UTF-16 code units


class ImageVariant(Enum):
    """Which of the two copies of a GPT an image file holds.

    - ``MAIN``: protective MBR, header at sector 1, entries from sector 2.
    - ``BACKUP``: entries from sector 0, header in the last sector of the file.
    """

    MAIN = 'main'
    BACKUP = 'backup'


@dataclass(frozen=True)
class GptHeader(ByteStruct, byteorder='<'):
    """GPT header, without the zero padding filling the rest of its sector."""

    signature: Annotated[bytes, 8]
    revision: Annotated[int, 4]
    header_size: Annotated[int, 4]
    header_crc32: Annotated[int, 4]
    reserved: Annotated[int, 4]
    my_lba: Annotated[int, 8]
    alternate_lba: Annotated[int, 8]
    first_usable_lba: Annotated[int, 8]
    last_usable_lba: Annotated[int, 8]
    disk_guid: Annotated[bytes, 16]
    partition_entry_lba: Annotated[int, 8]
    num_of_partition_entries: Annotated[int, 4]
    size_of_partition_entry: Annotated[int, 4]
    part_entry_array_crc32: Annotated[int, 4]


@dataclass(frozen=True)
class GptPartitionEntry(ByteStruct, byteorder='<'):
    """GPT partition entry of 128 bytes.

    ``starting_lba`` and ``ending_lba`` are both inclusive.
    """

    part_type_guid: Annotated[bytes, 16]
    unique_guid: Annotated[bytes, 16]
    starting_lba: Annotated[int, 8]
    ending_lba: Annotated[int, 8]
    attributes: Annotated[int, 8]
    part_name: Annotated[bytes, PARTITION_NAME_LENGTH * 2]

    @property
    def unused(self) -> bool:
        """Whether the entry is an unused slot (all-zero partition type GUID)."""
        return self.part_type_guid == UNUSED_TYPE_GUID

    @property
    def length_lba(self) -> int:
        """Length of the partition in sectors.

        Might be zero or negative for malformed entries.
        """
        return self.ending_lba + 1 - self.starting_lba

    @property
    def name(self) -> str:
        """Partition name up to the first NUL code unit.

        The name field is not required to be NUL-terminated. If it is completely
        filled, all 36 code units are returned.
        """
        units = self.part_name.decode('utf-16-le', errors='replace')
        return units.split('\x00', 1)[0]

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(name={self.name!r}, '
            f'starting_lba={self.starting_lba}, ending_lba={self.ending_lba}, '
            f'unused={self.unused})'
        )


def validate_header(header: GptHeader) -> None:
    """Check that ``header`` is a GPT header this package is able to process.

    Raises ``StructuralError`` naming the first failed check. Does not modify
    anything.
    """
    if header.signature != SIGNATURE:
        raise StructuralError(
            StructuralFault.BAD_SIGNATURE, SIGNATURE, header.signature
        )
    if header.revision != REVISION:
        raise StructuralError(
            StructuralFault.BAD_REVISION, hex(REVISION), hex(header.revision)
        )
    if header.size_of_partition_entry != PARTITION_ENTRY_SIZE:
        raise StructuralError(
            StructuralFault.UNSUPPORTED_ENTRY_SIZE,
            PARTITION_ENTRY_SIZE,
            header.size_of_partition_entry,
        )
    log.debug('GPT header passed structural checks')


def check_placement(header: GptHeader, variant: ImageVariant) -> None:
    """Emit ``ValidationWarning`` for header values which are valid GPT but
    unexpected for a main or backup table of this device family.
    """
    if variant is ImageVariant.MAIN and header.my_lba != PRIMARY_HEADER_LBA:
        warnings.warn(
            f'"My LBA" of main GPT header is {header.my_lba}, expected '
            f'{PRIMARY_HEADER_LBA}',
            ValidationWarning,
        )
    if variant is ImageVariant.BACKUP and header.alternate_lba != PRIMARY_HEADER_LBA:
        warnings.warn(
            f'"Alternate LBA" of backup GPT header is {header.alternate_lba}, '
            f'expected {PRIMARY_HEADER_LBA}',
            ValidationWarning,
        )
    if header.first_usable_lba != EXPECTED_FIRST_USABLE_LBA:
        warnings.warn(
            f'"First usable LBA" is {header.first_usable_lba}, expected '
            f'{EXPECTED_FIRST_USABLE_LBA}',
            ValidationWarning,
        )


def count_unused(entries: Iterable[GptPartitionEntry]) -> int:
    """Return the number of unused slots in ``entries``."""
    return sum(1 for entry in entries if entry.unused)


def entry_array_size(header: GptHeader) -> int:
    """Size of the partition entry array described by ``header`` in bytes."""
    return header.num_of_partition_entries * PARTITION_ENTRY_SIZE


def entry_array_crc32(header: GptHeader, entry_array: bytes) -> int:
    """CRC32 of the partition entry array as stored in ``part_entry_array_crc32``.

    Only the first ``num_of_partition_entries`` entries of ``entry_array`` are
    covered.
    """
    size = entry_array_size(header)
    if len(entry_array) < size:
        raise ValueError(
            f'Partition entry array is {len(entry_array)} bytes long, header '
            f'describes {size} bytes'
        )
    return crc32(entry_array[:size])


def header_crc32(header: GptHeader) -> int:
    """CRC32 of ``header`` as stored in its ``header_crc32`` field.

    The field itself is read as zero during the computation.
    """
    b = bytes(header)
    offset = GptHeader.offset_of('header_crc32')
    return crc32(b[:offset] + b'\x00' * 4 + b[offset + 4 :])


def pack_entries(entries: Sequence[GptPartitionEntry]) -> bytes:
    """Get the ``bytes`` form of a partition entry array."""
    return b''.join(bytes(entry) for entry in entries)
