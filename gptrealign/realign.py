"""Realignment of GPT partitions to erase unit boundaries."""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Iterable

from .base import ArgumentError, BoundsError, is_power_of_two
from .gpt import SECTOR_SIZE, GptPartitionEntry

__all__ = [
    'Alignment',
    'alignment_sectors',
    'realign',
    'realign_partition',
    'aligned_start',
    'growable_end',
    'FIRST_USABLE_SECTOR',
    'GROWABLE_PARTITION_NAME',
    'MAX_LBA',
]


log = logging.getLogger(__name__)


# On MSM8916 devices the first 64 MiB are reserved, data partitions start here.
FIRST_USABLE_SECTOR = 131072

# Last data partition, expanded to fill the remaining space of the disk
GROWABLE_PARTITION_NAME = 'userdata'

MAX_LBA = (1 << 64) - 1


class Alignment(Enum):
    """Supported erase unit sizes in bytes."""

    A_256K = 256 * 1024
    A_512K = 512 * 1024
    A_1M = 1024 * 1024
    A_2M = 2 * 1024 * 1024
    A_4M = 4 * 1024 * 1024
    A_8M = 8 * 1024 * 1024
    A_16M = 16 * 1024 * 1024

    @classmethod
    def from_token(cls, token: str) -> Alignment:
        """Parse a command line token like ``'8M'`` or ``'256K'``."""
        try:
            return cls[f'A_{token}']
        except KeyError:
            raise ArgumentError(
                f'Incorrect or unsupported alignment {token!r}, must be one of '
                f'{", ".join(a.token for a in cls)}'
            ) from None

    @property
    def token(self) -> str:
        return self.name[2:]

    @property
    def sectors(self) -> int:
        return alignment_sectors(self.value)


def alignment_sectors(alignment_bytes: int) -> int:
    """Convert an alignment in bytes to a count of sectors.

    The alignment must be a power of two and a multiple of the sector size.
    """
    if alignment_bytes <= 0 or not is_power_of_two(alignment_bytes):
        raise ValueError(
            f'Alignment must be a positive power of 2, got {alignment_bytes} bytes'
        )
    if alignment_bytes % SECTOR_SIZE != 0:
        raise ValueError(
            f'Alignment must be a multiple of the sector size of {SECTOR_SIZE} '
            f'bytes, got {alignment_bytes} bytes'
        )
    return alignment_bytes // SECTOR_SIZE


def aligned_start(next_usable: int, alignment: int) -> int:
    """Return the first sector a partition may start at, given the first sector
    following the previous partition.

    A sector already on a boundary is used as is. Any other sector is rounded up
    to the next multiple of ``alignment``.
    """
    if next_usable % alignment == 0:
        return next_usable
    return (next_usable // alignment + 1) * alignment


def growable_end(disk_size: int, alignment: int) -> int:
    """Return the last sector of the growable partition on a disk of
    ``disk_size`` sectors.

    The last ``alignment`` sectors (or more, see below) are left free for the
    backup GPT.
    """
    if disk_size % alignment == 0:
        return disk_size - alignment - 1

    # Known to be conservative for disks not sized in whole erase units: up to one
    # extra erase unit is left unused. Kept as is so results stay reproducible.
    log.debug(
        f'Disk size of {disk_size} sectors is not a multiple of {alignment} '
        f'sectors, using conservative end of growable partition'
    )
    return ((disk_size - alignment * 2) // alignment) * alignment - 1


def realign_partition(
    entry: GptPartitionEntry, next_usable: int, alignment: int, disk_size: int
) -> GptPartitionEntry:
    """Return a copy of ``entry`` moved to the first boundary at or after
    ``next_usable``.

    The length of the partition is preserved, except for the growable partition
    which is expanded to the end of the disk.
    """
    start = aligned_start(next_usable, alignment)

    if entry.name == GROWABLE_PARTITION_NAME:
        end = growable_end(disk_size, alignment)
        if end < start:
            raise BoundsError(
                f'Partition {entry.name!r} would end at LBA {end} before its start '
                f'at LBA {start}, disk of {disk_size} sectors is too small'
            )
    else:
        if entry.length_lba < 0:
            raise BoundsError(
                f'Partition {entry.name!r} ends at LBA {entry.ending_lba} before '
                f'its start at LBA {entry.starting_lba}'
            )
        # zero-length entries end up with end == start - 1
        end = start + entry.length_lba - 1

    if end < 0 or max(start, end) > MAX_LBA:
        raise BoundsError(
            f'Partition {entry.name!r} (LBA {entry.starting_lba} to '
            f'{entry.ending_lba}) would be moved to LBA {start} to {end}, which is '
            f'outside the range of 64 bit LBAs'
        )

    return replace(entry, starting_lba=start, ending_lba=end)


def realign(
    entries: Iterable[GptPartitionEntry],
    alignment: int,
    disk_size: int,
    *,
    first_usable: int = FIRST_USABLE_SECTOR,
) -> tuple[GptPartitionEntry, ...]:
    """Realign all used partitions of a partition entry array.

    ``alignment`` is the erase unit size and ``disk_size`` the size of the disk,
    both in sectors.

    Entries are processed in array order; each used partition starts at the first
    boundary following the previous used partition, beginning at
    ``first_usable``. Unused slots are returned unchanged and do not advance the
    position. Nothing is sorted, added or removed.

    Returns a new tuple of entries of the same length and order.
    """
    if alignment <= 0:
        raise ValueError(f'Alignment must be greater than 0, got {alignment}')

    log.info(
        f'Re-calculating partition table (alignment: {alignment} sectors / '
        f'{alignment * SECTOR_SIZE} bytes)'
    )

    next_usable = first_usable
    result = []

    for i, entry in enumerate(entries, start=1):
        if entry.unused:
            log.debug(f'Partition {i}: not used')
            result.append(entry)
            continue

        new = realign_partition(entry, next_usable, alignment, disk_size)
        gap = new.starting_lba - next_usable
        expanded = entry.name == GROWABLE_PARTITION_NAME

        log.info(
            f'Partition {i}: {entry.name} (length: {entry.length_lba} sectors)\n'
            f'  First: {entry.starting_lba} -> {new.starting_lba} '
            f'({gap} unused sectors from previous partition)\n'
            f'  Last:  {entry.ending_lba} -> {new.ending_lba}'
            f'{" (expanded to fill free space)" if expanded else ""}\n'
            f'  start_byte_hex={new.starting_lba * SECTOR_SIZE:#x}'
        )

        result.append(new)
        next_usable = new.ending_lba + 1

    return tuple(result)
