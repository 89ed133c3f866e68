"""Realignment of GPT partitions to flash erase unit boundaries.

Rewrites the main and backup GPT images of MSM8916-based devices so that every
partition starts on an erase unit boundary.
"""

__version__ = '1.0.0'

from .gpt import GptHeader, GptPartitionEntry, ImageVariant
from .image import GptImage, patch_image
from .realign import Alignment, realign

__all__ = [
    'GptHeader',
    'GptPartitionEntry',
    'ImageVariant',
    'GptImage',
    'patch_image',
    'Alignment',
    'realign',
]
