from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from time import perf_counter
from typing import Protocol

from stargate_cache.schemas import BoundingBox, ImageEntry, coerce_date, now_utc
from stargate_cache.storage import ImageRejectedError, ImageRepository

logger = logging.getLogger(__name__)

_SOURCE_MIXED = "mixed"
_SOURCE_REPOSITORY = "repository"


class ImageFetcher(Protocol):
    def fetch_image(self, image_date: date, bounding_box: BoundingBox) -> bytes | None: ...

    def search_available_dates(
        self,
        bounding_box: BoundingBox,
        start: date,
        end: date,
    ) -> list[date]: ...


@dataclass(slots=True, frozen=True)
class SyncResult:
    entries: list[ImageEntry]
    source: str
    new_image_count: int
    total_image_count: int
    available_image_count: int
    attempted: int
    remaining_to_fetch: int
    rejected: int
    errors: int
    duration_seconds: float


def sample_dates(start: date | str, end: date | str, interval_days: int = 3) -> list[date]:
    """Every ``interval_days`` from ``start`` up to and including ``end``."""
    if interval_days < 1:
        raise ValueError("interval_days must be >= 1")
    current = coerce_date(start)
    last = coerce_date(end)
    step = timedelta(days=interval_days)

    dates: list[date] = []
    while current <= last:
        dates.append(current)
        current += step
    return dates


def run_sync(
    *,
    repo: ImageRepository,
    fetcher: ImageFetcher,
    bounding_box: BoundingBox,
    start: date | str,
    end: date | str,
    max_fetch_count: int = 20,
    sample_interval_days: int = 3,
    sleep_seconds: float = 0.5,
    skip_if_ready: bool = False,
    ready_threshold: int = 5,
) -> SyncResult:
    """Fetch missing dates for the range and merge them into ``repo``.

    With ``skip_if_ready`` the provider is not contacted at all when the range
    already holds at least ``ready_threshold`` valid images.
    """
    if max_fetch_count < 1:
        raise ValueError("max_fetch_count must be >= 1")
    if sleep_seconds < 0:
        raise ValueError("sleep_seconds must be >= 0")

    started_at = perf_counter()
    start_date = coerce_date(start)
    end_date = coerce_date(end)

    if skip_if_ready:
        cached = repo.get_cached_images(bounding_box, start_date, end_date) or []
        if len(cached) >= ready_threshold:
            logger.info(
                "sync skipped reason=ready images=%d threshold=%d",
                len(cached),
                ready_threshold,
            )
            return SyncResult(
                entries=cached,
                source=_SOURCE_REPOSITORY,
                new_image_count=0,
                total_image_count=len(cached),
                available_image_count=0,
                attempted=0,
                remaining_to_fetch=0,
                rejected=0,
                errors=0,
                duration_seconds=perf_counter() - started_at,
            )

    candidates = fetcher.search_available_dates(bounding_box, start_date, end_date)
    if not candidates:
        candidates = sample_dates(start_date, end_date, sample_interval_days)
        logger.info(
            "sync catalog empty, sampling every %d days candidates=%d",
            sample_interval_days,
            len(candidates),
        )

    missing = repo.get_missing_dates(candidates)
    to_fetch = missing[:max_fetch_count]
    logger.info(
        "sync fetching=%d remaining_after=%d",
        len(to_fetch),
        len(missing) - len(to_fetch),
    )

    new_entries: list[ImageEntry] = []
    rejected = 0
    errors = 0
    for index, image_date in enumerate(to_fetch):
        if index > 0 and sleep_seconds > 0:
            time.sleep(sleep_seconds)

        try:
            data = fetcher.fetch_image(image_date, bounding_box)
        except Exception:
            logger.exception("failed to fetch image date=%s", image_date.isoformat())
            errors += 1
            continue

        if data is None:
            logger.info("sync no image date=%s", image_date.isoformat())
            continue

        try:
            reference = repo.cache_image(image_date, data)
        except ImageRejectedError:
            rejected += 1
            continue
        except OSError:
            logger.exception("failed to cache image date=%s", image_date.isoformat())
            errors += 1
            continue

        new_entries.append(ImageEntry(date=image_date, reference=reference, fetched_at=now_utc()))

    appended = 0
    if new_entries:
        appended = repo.add_images(new_entries, bounding_box=bounding_box)

    entries = repo.get_cached_images(bounding_box, start_date, end_date) or []

    return SyncResult(
        entries=entries,
        source=_SOURCE_MIXED if appended else _SOURCE_REPOSITORY,
        new_image_count=appended,
        total_image_count=len(entries),
        available_image_count=len(candidates),
        attempted=len(to_fetch),
        remaining_to_fetch=len(missing) - len(to_fetch),
        rejected=rejected,
        errors=errors,
        duration_seconds=perf_counter() - started_at,
    )


def render_sync_table(result: SyncResult) -> str:
    headers = ("date", "fetched_at", "reference")
    rows = [
        (
            entry.date.isoformat(),
            entry.fetched_at.isoformat(timespec="seconds"),
            _truncate(entry.reference, limit=48),
        )
        for entry in result.entries
    ]
    if not rows:
        return "no cached images in range"

    widths = [
        max(len(headers[column]), *(len(row[column]) for row in rows))
        for column in range(len(headers))
    ]

    def _line(values: tuple[str, str, str]) -> str:
        return " | ".join(value.ljust(widths[index]) for index, value in enumerate(values))

    divider = "-+-".join("-" * width for width in widths)
    body = [_line(headers), divider]
    body.extend(_line(row) for row in rows)
    return "\n".join(body)


def _truncate(text: str, *, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[: limit - 3]}..."
