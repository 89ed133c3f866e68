"""Tests for the ``realign`` module."""

import logging

import pytest

from gptrealign.base import ArgumentError, BoundsError
from gptrealign.realign import (
    FIRST_USABLE_SECTOR,
    MAX_LBA,
    Alignment,
    aligned_start,
    alignment_sectors,
    growable_end,
    realign,
    realign_partition,
)

from .images import (
    ALIGNMENT_8M,
    DISK_SIZE,
    empty_entry,
    example_entries,
    make_entry,
)


@pytest.mark.parametrize(
    ['token', 'bytes_', 'sectors'],
    [
        ('256K', 262144, 512),
        ('512K', 524288, 1024),
        ('1M', 1048576, 2048),
        ('2M', 2097152, 4096),
        ('4M', 4194304, 8192),
        ('8M', 8388608, 16384),
        ('16M', 16777216, 32768),
    ],
)
def test_alignment_tokens(token, bytes_, sectors):
    """Test all supported alignment tokens."""
    alignment = Alignment.from_token(token)
    assert alignment.value == bytes_
    assert alignment.sectors == sectors
    assert alignment.token == token


@pytest.mark.parametrize('token', ['', '8m', '32M', '128K', '8', 'A_8M', '8MB'])
def test_alignment_tokens_fail(token):
    """Test that unsupported alignment tokens raise ``ArgumentError``."""
    with pytest.raises(ArgumentError, match='.*alignment.*'):
        Alignment.from_token(token)


@pytest.mark.parametrize('value', [0, -512, 1000, 1536, 256])
def test_alignment_sectors_fail(value):
    """Test that alignments which are no power of two or smaller than a sector are
    rejected.
    """
    with pytest.raises(ValueError):
        alignment_sectors(value)


@pytest.mark.parametrize(
    ['next_usable', 'alignment', 'expected'],
    [
        (131072, 16384, 131072),  # already on a boundary, no gap
        (150000, 16384, 163840),
        (131073, 16384, 147456),
        (147455, 16384, 147456),
        (0, 16384, 0),
        (1, 512, 512),
        (262143, 32768, 262144),
    ],
)
def test_aligned_start(next_usable, alignment, expected):
    """Test rounding up to the next boundary."""
    assert aligned_start(next_usable, alignment) == expected


@pytest.mark.parametrize(
    ['disk_size', 'alignment', 'expected'],
    [
        (15302656, 16384, 15286271),  # multiple of the alignment
        (15302656, 32768, 15269887),
        (15302657, 16384, 15269887),  # conservative, one erase unit unused
        (15302000, 16384, 15253503),
        (30535680, 512, 30535167),
    ],
)
def test_growable_end(disk_size, alignment, expected):
    """Test the last sector of the growable partition, including the conservative
    formula for disks not sized in whole erase units.
    """
    assert growable_end(disk_size, alignment) == expected


class TestRealignPartition:
    """Tests for ``realign_partition()``."""

    def test_preserves_length(self):
        """Test that a regular partition keeps its length and everything else."""
        entry = make_entry('boot', 263168, 295935, attributes=1 << 63)
        new = realign_partition(entry, 263168, ALIGNMENT_8M, DISK_SIZE)

        assert (new.starting_lba, new.ending_lba) == (278528, 311295)
        assert new.part_type_guid == entry.part_type_guid
        assert new.unique_guid == entry.unique_guid
        assert new.attributes == entry.attributes
        assert new.part_name == entry.part_name

    def test_growable(self):
        """Test that ``userdata`` is expanded to the end of the disk."""
        entry = make_entry('userdata', 295936, 300000)
        new = realign_partition(entry, 311296, ALIGNMENT_8M, DISK_SIZE)
        assert (new.starting_lba, new.ending_lba) == (311296, 15286271)

    @pytest.mark.parametrize('name', ['Userdata', 'USERDATA', 'userdata2', 'user'])
    def test_growable_exact_name(self, name):
        """Test that only the exact name ``userdata`` is expanded."""
        entry = make_entry(name, 311296, 311395)
        new = realign_partition(entry, 311296, ALIGNMENT_8M, DISK_SIZE)
        assert new.ending_lba == 311395

    def test_zero_length(self):
        """Test that an empty range is kept empty instead of being rejected."""
        entry = make_entry('empty', 200000, 199999)
        new = realign_partition(entry, 200000, ALIGNMENT_8M, DISK_SIZE)
        assert (new.starting_lba, new.ending_lba) == (212992, 212991)

    def test_growable_fail_small_disk(self):
        """Test that ``BoundsError`` is raised if the growable partition would end
        before it starts.
        """
        entry = make_entry('userdata', 295936, 300000)
        with pytest.raises(BoundsError):
            realign_partition(entry, 311296, ALIGNMENT_8M, 311296 + ALIGNMENT_8M)

    def test_fail_reversed(self):
        """Test that an entry ending before its start raises ``BoundsError``
        naming the partition.
        """
        entry = make_entry('bad', 500000, 10)
        with pytest.raises(BoundsError, match=".*'bad'.*500000.*"):
            realign_partition(entry, 131072, ALIGNMENT_8M, DISK_SIZE)

    def test_fail_beyond_64_bit(self):
        """Test that a partition moved past the last 64 bit LBA raises
        ``BoundsError`` instead of a packing error.
        """
        entry = make_entry('huge', 0, MAX_LBA - 1)
        with pytest.raises(BoundsError, match=".*'huge'.*64 bit.*"):
            realign_partition(entry, 131072, ALIGNMENT_8M, DISK_SIZE)


class TestRealign:
    """Tests for ``realign()``."""

    def test_example(self):
        """Test realignment of the example layout to 8 MiB."""
        entries = example_entries()
        new = realign(entries, ALIGNMENT_8M, DISK_SIZE)
        bounds = [(e.starting_lba, e.ending_lba) for e in new[:5]]

        assert bounds == [
            (131072, 262143),  # no gap
            (262144, 263167),  # no gap
            (0, 0),  # unused
            (278528, 311295),
            (311296, 15286271),  # expanded
        ]

    @pytest.mark.parametrize('alignment', [a.sectors for a in Alignment])
    def test_alignment_property(self, alignment):
        """Test that every used partition starts on a boundary."""
        new = realign(example_entries(), alignment, DISK_SIZE)
        for entry in new:
            if not entry.unused:
                assert entry.starting_lba % alignment == 0

    @pytest.mark.parametrize('alignment', [a.sectors for a in Alignment])
    def test_length_property(self, alignment):
        """Test that every partition except ``userdata`` keeps its length."""
        entries = example_entries()
        new = realign(entries, alignment, DISK_SIZE)
        for old_entry, new_entry in zip(entries, new):
            if old_entry.unused or old_entry.name == 'userdata':
                continue
            assert (
                new_entry.ending_lba - new_entry.starting_lba
                == old_entry.ending_lba - old_entry.starting_lba
            )

    @pytest.mark.parametrize('alignment', [a.sectors for a in Alignment])
    def test_order_and_sentinel_property(self, alignment):
        """Test that no entry is moved, added or removed and unused slots stay
        byte-identical.
        """
        entries = example_entries()
        new = realign(entries, alignment, DISK_SIZE)

        assert len(new) == len(entries)
        for old_entry, new_entry in zip(entries, new):
            assert old_entry.unique_guid == new_entry.unique_guid
            assert old_entry.unused == new_entry.unused
            if old_entry.unused:
                assert bytes(new_entry) == bytes(old_entry)

    def test_no_overlap(self):
        """Test that partitions follow each other in array order without
        overlapping.
        """
        new = [e for e in realign(example_entries(), 2048, DISK_SIZE) if not e.unused]
        for previous, following in zip(new, new[1:]):
            assert following.starting_lba > previous.ending_lba

    def test_deterministic(self):
        """Test that realigning an already realigned table changes nothing."""
        once = realign(example_entries(), ALIGNMENT_8M, DISK_SIZE)
        twice = realign(once, ALIGNMENT_8M, DISK_SIZE)
        assert once == twice

    def test_array_order_not_address_order(self):
        """Test that entries are laid out in array order even if their original
        addresses were in a different order.
        """
        entries = (
            make_entry('b', 500000, 500099),
            make_entry('a', 131072, 131171),
        )
        new = realign(entries, ALIGNMENT_8M, DISK_SIZE)
        assert [(e.name, e.starting_lba) for e in new] == [('b', 131072), ('a', 147456)]

    def test_unused_does_not_advance(self):
        """Test that unused slots leave the next usable sector unchanged."""
        entries = (
            make_entry('a', 131072, 147455),
            empty_entry(),
            empty_entry(),
            make_entry('b', 147456, 147457),
        )
        new = realign(entries, ALIGNMENT_8M, DISK_SIZE)
        assert new[3].starting_lba == 147456

    def test_first_usable(self):
        """Test that the first partition starts at the reserved region boundary by
        default and at ``first_usable`` if given.
        """
        entries = (make_entry('a', 34, 1000),)
        assert realign(entries, 2048, DISK_SIZE)[0].starting_lba == FIRST_USABLE_SECTOR
        new = realign(entries, 2048, DISK_SIZE, first_usable=34)
        assert new[0].starting_lba == 2048

    def test_empty(self):
        """Test an entry array without any entries."""
        assert realign((), ALIGNMENT_8M, DISK_SIZE) == ()

    def test_fail_alignment(self):
        """Test that a non-positive alignment is rejected."""
        with pytest.raises(ValueError):
            realign(example_entries(), 0, DISK_SIZE)

    def test_fail_malformed_entry(self):
        """Test that a malformed entry anywhere in the array stops the realignment."""
        entries = (make_entry('bad', 500000, 10),) + example_entries()[1:]
        with pytest.raises(BoundsError):
            realign(entries, ALIGNMENT_8M, DISK_SIZE)

    def test_logging(self, caplog):
        """Test the per partition report."""
        with caplog.at_level(logging.INFO, logger='gptrealign.realign'):
            realign(example_entries(), ALIGNMENT_8M, DISK_SIZE)

        assert 'alignment: 16384 sectors / 8388608 bytes' in caplog.text
        assert 'Partition 4: boot' in caplog.text
        assert '263168 -> 278528 (15360 unused sectors' in caplog.text
        assert 'expanded to fill free space' in caplog.text
        assert f'start_byte_hex={278528 * 512:#x}' in caplog.text
