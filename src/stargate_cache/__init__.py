"""Stargate timeline imagery cache package."""

from .config import AppConfig, load_config
from .schemas import BoundingBox, ImageEntry, IndexDocument

__all__ = [
    "AppConfig",
    "BoundingBox",
    "ImageEntry",
    "IndexDocument",
    "load_config",
]
