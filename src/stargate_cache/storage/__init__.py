"""Storage layer: image blobs on disk + JSON index, reconciled on read."""

from .blobs import BlobStore
from .index import INDEX_FILENAME, IndexStore
from .reconciler import Reconciler
from .repo import CacheStatus, ImageRejectedError, ImageRepository
from .validator import PNG_SIGNATURE, ImageValidator

__all__ = [
    "INDEX_FILENAME",
    "PNG_SIGNATURE",
    "BlobStore",
    "CacheStatus",
    "ImageRejectedError",
    "ImageRepository",
    "ImageValidator",
    "IndexStore",
    "Reconciler",
]
