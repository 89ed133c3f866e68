"""GPT image files and the realignment of their partition tables."""

from __future__ import annotations

import logging
import os
import warnings
from typing import TYPE_CHECKING

from .base import (
    AllocationError,
    ArgumentError,
    LoadError,
    PersistError,
    SizeError,
    ValidationWarning,
)
from .finalize import finalize_backup, finalize_main
from .gpt import (
    HEADER_SIZE,
    PARTITION_ENTRY_SIZE,
    SECTOR_SIZE,
    GptHeader,
    GptPartitionEntry,
    ImageVariant,
    check_placement,
    count_unused,
    entry_array_size,
    pack_entries,
    validate_header,
)
from .realign import FIRST_USABLE_SECTOR, realign

if TYPE_CHECKING:
    from .typing_ import StrPath

__all__ = ['GptImage', 'patch_image', 'MAIN_IMAGE_SIZE', 'BACKUP_IMAGE_SIZE']


log = logging.getLogger(__name__)


# gpt_main0.bin: protective MBR, header, 32 sectors of entries
MAIN_IMAGE_SIZE = 34 * SECTOR_SIZE
# gpt_backup0.bin: 32 sectors of entries, header
BACKUP_IMAGE_SIZE = 33 * SECTOR_SIZE

EXPECTED_SIZES = {
    ImageVariant.MAIN: MAIN_IMAGE_SIZE,
    ImageVariant.BACKUP: BACKUP_IMAGE_SIZE,
}


class GptImage:
    """In-memory copy of a main or backup GPT image file.

    The header and the partition entry array are regions of one buffer. Both are
    read as immutable snapshots and written back explicitly.

    Do not use ``__init__`` directly, use ``GptImage.load()`` instead.
    """

    def __init__(self, data: bytearray, variant: ImageVariant, path: StrPath = None):
        _check_image_size(len(data), variant)
        if len(data) != EXPECTED_SIZES[variant]:
            warnings.warn(
                f'Size of {variant.value} image ({len(data)} bytes) differs from the '
                f'expected {EXPECTED_SIZES[variant]} bytes',
                ValidationWarning,
            )
        self._data = data
        self._variant = variant
        self._path = None if path is None else str(path)

    @classmethod
    def load(cls, path: StrPath, variant: ImageVariant) -> GptImage:
        """Read the whole image file at ``path`` into memory."""
        log.info(f'Loading {variant.value} GPT image from {path}')

        try:
            fd = os.open(path, os.O_RDONLY | getattr(os, 'O_BINARY', 0))
        except OSError as e:
            raise LoadError(f'Error opening file {path}: {e}') from e

        try:
            size = os.fstat(fd).st_size
            _check_image_size(size, variant)

            try:
                data = bytearray(size)
            except MemoryError as e:
                raise AllocationError(
                    f'Cannot allocate {size} bytes for image {path}'
                ) from e

            with os.fdopen(fd, 'rb', closefd=False) as f:
                bytes_read = f.readinto(data)
        except OSError as e:
            raise LoadError(f'Error reading from file {path}: {e}') from e
        finally:
            os.close(fd)

        if bytes_read != size:
            raise LoadError(
                f'Did not read the expected amount of bytes from {path} (expected '
                f'{size} bytes, got {bytes_read} bytes)'
            )

        log.info(f'{size} bytes loaded from {path}')
        return cls(data, variant, path)

    def save(self, path: StrPath = None) -> None:
        """Write the whole image to ``path``, or back to the file it was loaded from.

        There is no rollback: if writing fails, the target file might be left
        truncated.
        """
        if path is None:
            path = self._path
        if path is None:
            raise ValueError('No path to save the image to')

        log.info(f'Saving {len(self._data)} bytes to {path}')
        try:
            with open(path, 'wb') as f:
                bytes_written = f.write(self._data)
        except OSError as e:
            raise PersistError(f'Error writing to file {path}: {e}') from e

        if bytes_written != len(self._data):
            raise PersistError(
                f'Did not write the expected amount of bytes to {path} (expected '
                f'{len(self._data)} bytes, wrote {bytes_written} bytes)'
            )

    @property
    def header_offset(self) -> int:
        if self._variant is ImageVariant.MAIN:
            return SECTOR_SIZE  # LBA 1
        return len(self._data) - SECTOR_SIZE  # last sector

    @property
    def entries_offset(self) -> int:
        if self._variant is ImageVariant.MAIN:
            return SECTOR_SIZE * 2  # LBA 2
        return 0

    def read_header(self) -> GptHeader:
        """Parse the GPT header of the image without validating it."""
        return GptHeader.from_buffer(self._data, self.header_offset)

    def entry_array(self, header: GptHeader) -> bytes:
        """Get a copy of the partition entry array described by ``header``."""
        start = self.entries_offset
        end = start + entry_array_size(header)
        if self._variant is ImageVariant.MAIN:
            limit = len(self._data)
        else:
            limit = self.header_offset  # backup entries precede the header sector

        if end > limit:
            raise SizeError(
                f'{header.num_of_partition_entries} partition entries of '
                f'{PARTITION_ENTRY_SIZE} bytes do not fit into the '
                f'{self._variant.value} image ({limit - start} bytes available)'
            )
        return bytes(self._data[start:end])

    def read_entries(self, header: GptHeader) -> tuple[GptPartitionEntry, ...]:
        """Parse all partition entries described by an already validated
        ``header``, unused slots included.
        """
        array = self.entry_array(header)
        return tuple(
            GptPartitionEntry.from_buffer(array, offset)
            for offset in range(0, len(array), PARTITION_ENTRY_SIZE)
        )

    def write_header(self, header: GptHeader) -> None:
        header.write_into(self._data, self.header_offset)

    def write_entries(self, entries: tuple[GptPartitionEntry, ...]) -> None:
        start = self.entries_offset
        for i, entry in enumerate(entries):
            entry.write_into(self._data, start + i * PARTITION_ENTRY_SIZE)

    @property
    def data(self) -> bytes:
        """Copy of the complete image."""
        return bytes(self._data)

    @property
    def variant(self) -> ImageVariant:
        return self._variant

    @property
    def size_lba(self) -> int:
        return len(self._data) // SECTOR_SIZE

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}({self._variant.value}, '
            f'{len(self._data)} bytes, path={self._path!r})'
        )


def _check_image_size(size: int, variant: ImageVariant) -> None:
    """Check that an image of ``size`` bytes can hold a GPT of ``variant``."""
    if size < SECTOR_SIZE:
        raise SizeError(
            f'Image is too small ({size} bytes), must be at least {SECTOR_SIZE} bytes'
        )
    if size % SECTOR_SIZE != 0:
        raise SizeError(
            f'Image size must be a multiple of the sector size of {SECTOR_SIZE} '
            f'bytes, got {size} bytes'
        )
    if variant is ImageVariant.MAIN and size < SECTOR_SIZE + HEADER_SIZE:
        raise SizeError(f'Main image of {size} bytes does not contain a GPT header')


def patch_image(
    path: StrPath,
    variant: ImageVariant,
    alignment: int,
    disk_size: int,
    *,
    first_usable: int = FIRST_USABLE_SECTOR,
    output: StrPath = None,
    dry_run: bool = False,
) -> GptHeader:
    """Realign the partitions of the GPT image at ``path`` and update its header.

    ``alignment`` is the erase unit size and ``disk_size`` the size of the whole
    disk, both in sectors. The result is written to ``output`` if given, back to
    ``path`` otherwise, or nowhere if ``dry_run`` is ``True``.

    The image is checked completely before anything is modified. Returns the
    finalized header.
    """
    if disk_size < alignment:
        raise ArgumentError(
            f'Incorrect disk size {disk_size}, must be at least {alignment} sectors'
        )

    image = GptImage.load(path, variant)
    header = image.read_header()
    validate_header(header)
    check_placement(header, variant)

    entries = image.read_entries(header)
    used = len(entries) - count_unused(entries)
    log.info(f'Partition entries used: {used}/{len(entries)}')

    realigned = realign(entries, alignment, disk_size, first_usable=first_usable)
    entry_array = pack_entries(realigned)

    if image.variant is ImageVariant.MAIN:
        header = finalize_main(header, entry_array, disk_size)
    else:
        header = finalize_backup(header, entry_array, disk_size, image.size_lba)

    image.write_entries(realigned)
    image.write_header(header)

    if dry_run:
        log.info('Dry run, image not saved')
    else:
        image.save(output)
    return header
