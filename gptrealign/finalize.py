"""Updating GPT headers after their partition entries were realigned."""

from __future__ import annotations

import logging
from dataclasses import replace
from zlib import crc32

from .gpt import GptHeader, entry_array_crc32, header_crc32

__all__ = [
    'finalize_main',
    'finalize_backup',
    'with_checksums',
    'verify_checksums',
    'BACKUP_REGION_SECTORS',
]


log = logging.getLogger(__name__)


# Backup GPT at the end of the disk: 32 sectors of entries and 1 header sector
BACKUP_REGION_SECTORS = 33


def with_checksums(header: GptHeader, entry_array: bytes) -> GptHeader:
    """Return a copy of ``header`` with both CRC32 fields recomputed.

    ``entry_array`` must start with the partition entries ``header`` describes,
    already in their final form.
    """
    header = replace(
        header, part_entry_array_crc32=entry_array_crc32(header, entry_array)
    )

    # The header checksum covers its own field, which must read as zero.
    zeroed = replace(header, header_crc32=0)
    header = replace(zeroed, header_crc32=crc32(bytes(zeroed)))

    log.info(
        f'CRC32 (partitions): {header.part_entry_array_crc32:08X}, '
        f'CRC32 (GPT header): {header.header_crc32:08X}'
    )
    return header


def verify_checksums(header: GptHeader, entry_array: bytes) -> bool:
    """Check whether both CRC32 fields of ``header`` match the header and
    ``entry_array``.
    """
    return (
        header.part_entry_array_crc32 == entry_array_crc32(header, entry_array)
        and header.header_crc32 == header_crc32(header)
    )


def finalize_main(header: GptHeader, entry_array: bytes, disk_size: int) -> GptHeader:
    """Return the finalized main (primary) GPT header for a disk of ``disk_size``
    sectors.

    The alternate header is expected in the last sector of the disk. Partitions
    may use every sector before the backup GPT region.
    """
    header = replace(
        header,
        alternate_lba=disk_size - 1,
        last_usable_lba=disk_size - BACKUP_REGION_SECTORS - 1,
    )
    log.info(f'Location of alternate (backup) header: {header.alternate_lba}')
    log.info(f'Updated "Last usable LBA": {header.last_usable_lba}')
    return with_checksums(header, entry_array)


def finalize_backup(
    header: GptHeader, entry_array: bytes, disk_size: int, image_sectors: int
) -> GptHeader:
    """Return the finalized backup GPT header for a disk of ``disk_size`` sectors.

    ``image_sectors`` is the size of the backup image file in sectors. Both the
    entry array and the header are placed at the very end of the disk, in the same
    order as found in the image file.
    """
    partition_entry_lba = disk_size - image_sectors
    header = replace(
        header,
        my_lba=disk_size - 1,
        partition_entry_lba=partition_entry_lba,
        last_usable_lba=partition_entry_lba - 1,
    )
    log.info(f'Location of this (backup) header: {header.my_lba}')
    log.info(f'Partition entry array location: {header.partition_entry_lba}')
    log.info(f'Updated "Last usable LBA": {header.last_usable_lba}')
    return with_checksums(header, entry_array)
