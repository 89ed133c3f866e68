"""Fixtures used across the test suite."""

import pytest

from .images import backup_image, main_image


@pytest.fixture
def main_path(tmp_path):
    """Fixture providing a main GPT image file with the example layout.

    Returns a ``pathlib.Path`` object representing the path of the image file.
    """
    path = tmp_path / 'gpt_main0.bin'
    path.write_bytes(main_image())
    return path


@pytest.fixture
def backup_path(tmp_path):
    """Fixture providing a backup GPT image file with the example layout.

    Returns a ``pathlib.Path`` object representing the path of the image file.
    """
    path = tmp_path / 'gpt_backup0.bin'
    path.write_bytes(backup_image())
    return path


@pytest.fixture
def image_path(request, tmp_path):
    """Fixture providing a GPT image file with arbitrary content.

    Parametrized using the ``bytes`` to write to the file.
    """
    path = tmp_path / 'gpt.bin'
    path.write_bytes(request.param)
    return path
