"""Generation adapters, one per external media provider."""

from nabi.services.generation.base import GenerationAdapter, GenerationResult
from nabi.services.generation.image import ImageAdapter
from nabi.services.generation.song import SongAdapter
from nabi.services.generation.video import VideoAdapter

__all__ = [
    "GenerationAdapter",
    "GenerationResult",
    "ImageAdapter",
    "SongAdapter",
    "VideoAdapter",
]
