"""Fetch-and-cache orchestration for a date range."""

from .run import (
    ImageFetcher,
    SyncResult,
    render_sync_table,
    run_sync,
    sample_dates,
)

__all__ = [
    "ImageFetcher",
    "SyncResult",
    "render_sync_table",
    "run_sync",
    "sample_dates",
]
