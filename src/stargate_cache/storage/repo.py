from __future__ import annotations

import base64
import logging
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from time import perf_counter

from stargate_cache.schemas import (
    BoundingBox,
    ImageEntry,
    IndexDocument,
    ReferenceStrategy,
    RejectReason,
    coerce_date,
    now_utc,
)

from .blobs import BlobStore
from .index import INDEX_FILENAME, IndexStore
from .reconciler import DEFAULT_REBUILD_SLACK, Reconciler
from .validator import DEFAULT_MIN_IMAGE_BYTES, ImageValidator

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = "data:image/png;base64,"
_STATUS_READY = "ready"
_STATUS_EMPTY = "empty"


class ImageRejectedError(ValueError):
    def __init__(self, image_date: date, reason: RejectReason | None, size: int) -> None:
        super().__init__(
            f"image for {image_date.isoformat()} rejected: {reason} ({size} bytes)"
        )
        self.image_date = image_date
        self.reason = reason
        self.size = size


@dataclass(slots=True, frozen=True)
class CacheStatus:
    cache_exists: bool
    image_count: int
    load_time_ms: float
    start: date
    end: date
    bounding_box: BoundingBox
    status: str


class ImageRepository:
    """Dated imagery cache: a blob directory plus a JSON index, re-read on every call.

    Nothing is held in memory between calls, so several repositories can point
    at different directories in one process and a crash leaves at worst an
    index that the reconciler repairs on the next range query.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        default_bounding_box: BoundingBox | None = None,
        min_image_bytes: int = DEFAULT_MIN_IMAGE_BYTES,
        rebuild_slack: int = DEFAULT_REBUILD_SLACK,
        reference_strategy: ReferenceStrategy = ReferenceStrategy.DATA_URL,
        static_prefix: str = "/cache",
        enforce_bbox_match: bool = False,
        max_age_seconds: int | None = None,
    ) -> None:
        if max_age_seconds is not None and max_age_seconds < 0:
            raise ValueError("max_age_seconds must be >= 0")

        self.directory = Path(directory)
        self.default_bounding_box = default_bounding_box or BoundingBox.zero()
        self.reference_strategy = ReferenceStrategy(reference_strategy)
        self.static_prefix = static_prefix.rstrip("/")
        self.enforce_bbox_match = enforce_bbox_match
        self.max_age_seconds = max_age_seconds

        self.blobs = BlobStore(self.directory)
        self.index = IndexStore(self.directory / INDEX_FILENAME)
        self.validator = ImageValidator(min_bytes=min_image_bytes)
        self.reconciler = Reconciler(
            index=self.index,
            blobs=self.blobs,
            default_bounding_box=self.default_bounding_box,
            slack=rebuild_slack,
        )

    def get_cached_images(
        self,
        bounding_box: BoundingBox,
        start: date | str,
        end: date | str,
    ) -> list[ImageEntry] | None:
        """Entries in ``[start, end]`` whose blobs are present and valid.

        Returns None both when no index exists yet and when nothing in the
        range survives validation.
        """
        start_date = coerce_date(start)
        end_date = coerce_date(end)

        self.reconciler.check_and_repair()
        document = self.index.load()
        if document is None:
            logger.info("cached images miss reason=no_index")
            return None

        if not self._passes_secondary_policies(document, bounding_box):
            return None

        resolved: list[ImageEntry] = []
        for entry in document.entries:
            if not start_date <= entry.date <= end_date:
                continue
            data = self.validator.check_stored(self.blobs, entry.date)
            if data is None:
                continue
            resolved.append(
                entry.model_copy(update={"reference": self._resolve_reference(entry.date, data)})
            )

        resolved.sort(key=lambda item: item.date)
        logger.info(
            "cached images start=%s end=%s found=%d",
            start_date.isoformat(),
            end_date.isoformat(),
            len(resolved),
        )
        if not resolved:
            return None
        return resolved

    def cache_image(self, image_date: date | str, data: bytes) -> str:
        """Validate and store one image; write failures propagate to the caller."""
        normalized_date = coerce_date(image_date)
        result = self.validator.accept(data)
        if not result.accepted:
            logger.warning(
                "cache image rejected date=%s reason=%s bytes=%d",
                normalized_date.isoformat(),
                result.reason,
                len(data),
            )
            raise ImageRejectedError(normalized_date, result.reason, len(data))

        self.blobs.write(normalized_date, data)
        return self._resolve_reference(normalized_date, data)

    def add_images(
        self,
        entries: Iterable[ImageEntry],
        *,
        bounding_box: BoundingBox | None = None,
    ) -> int:
        return self.index.merge(entries, bounding_box=bounding_box)

    def get_missing_dates(self, candidates: Iterable[date | str]) -> list[date]:
        document = self.index.load()
        known = document.known_dates() if document is not None else set()
        missing = [
            candidate
            for candidate in (coerce_date(value) for value in candidates)
            if candidate not in known
        ]
        logger.info("missing dates count=%d known=%d", len(missing), len(known))
        return missing

    def clear_cache(self) -> None:
        try:
            shutil.rmtree(self.directory)
        except FileNotFoundError:
            logger.info("cache clear skipped dir=%s reason=not_found", self.directory)
            return
        logger.info("cache cleared dir=%s", self.directory)

    def read_image(self, image_date: date | str) -> bytes | None:
        return self.validator.check_stored(self.blobs, coerce_date(image_date))

    def rebuild_index(self) -> int:
        """Rebuild the index from blob keys; OSError if the directory cannot be listed."""
        return len(self.reconciler.rebuild().entries)

    def status(
        self,
        bounding_box: BoundingBox,
        start: date | str,
        end: date | str,
        *,
        ready_threshold: int = 5,
    ) -> CacheStatus:
        started_at = perf_counter()
        images = self.get_cached_images(bounding_box, start, end)
        load_time_ms = (perf_counter() - started_at) * 1_000.0
        image_count = len(images) if images else 0
        return CacheStatus(
            cache_exists=images is not None,
            image_count=image_count,
            load_time_ms=load_time_ms,
            start=coerce_date(start),
            end=coerce_date(end),
            bounding_box=bounding_box,
            status=_STATUS_READY if image_count >= ready_threshold else _STATUS_EMPTY,
        )

    def _resolve_reference(self, image_date: date, data: bytes) -> str:
        if self.reference_strategy == ReferenceStrategy.STATIC_PATH:
            return f"{self.static_prefix}/{self.blobs.key_for(image_date)}"
        return _DATA_URL_PREFIX + base64.b64encode(data).decode("ascii")

    def _passes_secondary_policies(
        self,
        document: IndexDocument,
        bounding_box: BoundingBox,
    ) -> bool:
        if self.enforce_bbox_match and document.bounding_box != bounding_box:
            logger.info(
                "cached images miss reason=bbox_mismatch stored=%s requested=%s",
                document.bounding_box.as_tuple(),
                bounding_box.as_tuple(),
            )
            return False

        if self.max_age_seconds is not None:
            age_seconds = (now_utc() - document.last_updated).total_seconds()
            if age_seconds > self.max_age_seconds:
                logger.info(
                    "cached images miss reason=expired age_seconds=%.0f max_age_seconds=%d",
                    age_seconds,
                    self.max_age_seconds,
                )
                return False
        return True
