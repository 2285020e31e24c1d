from __future__ import annotations

import os
from datetime import date, datetime, timezone

import pytest

from stargate_cache.schemas import BoundingBox, ImageEntry, IndexDocument
from stargate_cache.storage import (
    INDEX_FILENAME,
    PNG_SIGNATURE,
    BlobStore,
    ImageRepository,
    IndexStore,
    Reconciler,
)

DEFAULT_BOX = BoundingBox.model_validate([-99.8, 32.49, -99.77, 32.51])


def _png() -> bytes:
    return PNG_SIGNATURE + b"\x00" * 12_000


def _setup(tmp_path, *, slack: int = 10) -> tuple[BlobStore, IndexStore, Reconciler]:
    blobs = BlobStore(tmp_path)
    index = IndexStore(tmp_path / INDEX_FILENAME)
    reconciler = Reconciler(
        index=index,
        blobs=blobs,
        default_bounding_box=DEFAULT_BOX,
        slack=slack,
    )
    return blobs, index, reconciler


def _write_days(blobs: BlobStore, count: int) -> list[date]:
    days = [date(2024, 1, day) for day in range(1, count + 1)]
    for day in reversed(days):
        blobs.write(day, _png())
    return days


def test_empty_store_without_index_is_left_alone(tmp_path) -> None:
    _, index, reconciler = _setup(tmp_path)

    assert reconciler.check_and_repair() is False
    assert index.load() is None


def test_missing_index_with_blobs_triggers_rebuild(tmp_path) -> None:
    blobs, index, reconciler = _setup(tmp_path)
    days = _write_days(blobs, 3)

    assert reconciler.check_and_repair() is True

    document = index.load()
    assert document is not None
    assert [entry.date for entry in document.entries] == days
    assert [entry.reference for entry in document.entries] == [
        "2024-01-01.png",
        "2024-01-02.png",
        "2024-01-03.png",
    ]
    assert document.bounding_box == DEFAULT_BOX


def test_malformed_index_with_blobs_triggers_rebuild(tmp_path) -> None:
    blobs, index, reconciler = _setup(tmp_path)
    _write_days(blobs, 2)
    (tmp_path / INDEX_FILENAME).write_text("[]", encoding="utf-8")

    assert reconciler.check_and_repair() is True
    document = index.load()
    assert document is not None
    assert len(document.entries) == 2


def test_drift_within_slack_keeps_index(tmp_path) -> None:
    blobs, index, reconciler = _setup(tmp_path, slack=10)
    _write_days(blobs, 10)
    index.save(IndexDocument(bounding_box=BoundingBox.zero()))

    assert reconciler.check_and_repair() is False
    document = index.load()
    assert document is not None
    assert document.entries == []
    assert document.bounding_box == BoundingBox.zero()


def test_drift_beyond_slack_rebuilds_from_blobs(tmp_path) -> None:
    blobs, index, reconciler = _setup(tmp_path, slack=10)
    _write_days(blobs, 11)
    index.save(IndexDocument())

    assert reconciler.check_and_repair() is True
    document = index.load()
    assert document is not None
    assert len(document.entries) == 11


def test_rebuild_drops_dangling_entries(tmp_path) -> None:
    blobs, index, reconciler = _setup(tmp_path, slack=2)
    dangling = [
        ImageEntry(date=date(2023, 6, day), reference=f"2023-06-{day:02d}.png")
        for day in range(1, 6)
    ]
    index.save(IndexDocument(entries=dangling))
    _write_days(blobs, 1)

    assert reconciler.check_and_repair() is True
    document = index.load()
    assert document is not None
    assert [entry.date for entry in document.entries] == [date(2024, 1, 1)]


def test_rebuild_uses_blob_timestamp(tmp_path) -> None:
    blobs, index, reconciler = _setup(tmp_path)
    path = blobs.write("2024-01-05", _png())
    stamp = datetime(2024, 1, 6, 8, 30, tzinfo=timezone.utc).timestamp()
    os.utime(path, (stamp, stamp))

    document = reconciler.rebuild()

    assert document.entries[0].fetched_at == datetime(2024, 1, 6, 8, 30, tzinfo=timezone.utc)
    assert index.load() == document


def _unlistable(self) -> list[str]:
    raise PermissionError(13, "Permission denied", str(self.directory))


def test_listing_failure_keeps_existing_index(tmp_path, monkeypatch) -> None:
    blobs, index, reconciler = _setup(tmp_path, slack=10)
    days = _write_days(blobs, 15)
    index.save(
        IndexDocument(
            bounding_box=DEFAULT_BOX,
            entries=[ImageEntry(date=day, reference=blobs.key_for(day)) for day in days],
        )
    )
    monkeypatch.setattr(BlobStore, "_scan_names", _unlistable)

    assert blobs.list_keys() is None
    assert reconciler.check_and_repair() is False
    document = index.load()
    assert document is not None
    assert len(document.entries) == 15

    with pytest.raises(OSError):
        reconciler.rebuild()
    assert len(index.load().entries) == 15


def test_listing_failure_does_not_wipe_index_on_range_query(tmp_path, monkeypatch) -> None:
    repo = ImageRepository(tmp_path, default_bounding_box=DEFAULT_BOX, rebuild_slack=10)
    days = _write_days(repo.blobs, 15)
    repo.add_images([ImageEntry(date=day, reference=repo.blobs.key_for(day)) for day in days])
    monkeypatch.setattr(BlobStore, "_scan_names", _unlistable)

    cached = repo.get_cached_images(DEFAULT_BOX, days[0], days[-1])

    assert cached is not None
    assert [entry.date for entry in cached] == days
    assert len(repo.index.load().entries) == 15


def test_rebuild_indexes_invalid_blob_until_read_purges_it(tmp_path) -> None:
    repo = ImageRepository(tmp_path, default_bounding_box=DEFAULT_BOX)
    repo.blobs.write("2024-01-01", _png())
    repo.blobs.write("2024-01-02", b"not an image")

    document = repo.reconciler.rebuild()
    assert [entry.date for entry in document.entries] == [date(2024, 1, 1), date(2024, 1, 2)]

    cached = repo.get_cached_images(DEFAULT_BOX, "2024-01-01", "2024-01-31")
    assert cached is not None
    assert [entry.date for entry in cached] == [date(2024, 1, 1)]
    assert repo.blobs.exists("2024-01-02") is False
