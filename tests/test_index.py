from __future__ import annotations

from datetime import date

from stargate_cache.schemas import (
    BoundingBox,
    ImageEntry,
    IndexDocument,
    IndexLoadStatus,
)
from stargate_cache.storage import IndexStore


def _entries(*days: str) -> list[ImageEntry]:
    return [ImageEntry(date=day, reference=f"{day}.png") for day in days]


def test_index_load_three_way_result(tmp_path) -> None:
    index = IndexStore(tmp_path / "metadata.json")
    assert index.load_result().status == IndexLoadStatus.ABSENT
    assert index.load() is None

    (tmp_path / "metadata.json").write_text("{not json", encoding="utf-8")
    assert index.load_result().status == IndexLoadStatus.MALFORMED
    assert index.load() is None

    (tmp_path / "metadata.json").write_text('{"entries": "nope"}', encoding="utf-8")
    assert index.load_result().status == IndexLoadStatus.MALFORMED

    assert index.save(IndexDocument(entries=_entries("2024-01-05")))
    result = index.load_result()
    assert result.status == IndexLoadStatus.VALID
    assert result.is_valid
    assert result.document is not None
    assert [entry.date for entry in result.document.entries] == [date(2024, 1, 5)]


def test_index_save_failure_is_reported_not_raised(tmp_path) -> None:
    target = tmp_path / "metadata.json"
    target.mkdir()
    index = IndexStore(target)

    assert index.save(IndexDocument()) is False
    assert sorted(path.name for path in tmp_path.iterdir()) == ["metadata.json"]


def test_merge_reports_nothing_appended_when_save_fails(tmp_path) -> None:
    target = tmp_path / "metadata.json"
    target.mkdir()
    index = IndexStore(target)

    assert index.merge(_entries("2024-01-05", "2024-01-08")) == 0
    assert target.is_dir()


def test_merge_creates_document_with_zero_box(tmp_path) -> None:
    index = IndexStore(tmp_path / "metadata.json")

    appended = index.merge(_entries("2024-01-05"))

    document = index.load()
    assert appended == 1
    assert document is not None
    assert document.bounding_box == BoundingBox.zero()


def test_merge_uses_given_box_only_for_new_document(tmp_path) -> None:
    index = IndexStore(tmp_path / "metadata.json")
    first_box = BoundingBox.model_validate([1.0, 2.0, 3.0, 4.0])
    second_box = BoundingBox.model_validate([5.0, 6.0, 7.0, 8.0])

    index.merge(_entries("2024-01-05"), bounding_box=first_box)
    index.merge(_entries("2024-01-06"), bounding_box=second_box)

    document = index.load()
    assert document is not None
    assert document.bounding_box == first_box
    assert len(document.entries) == 2


def test_merge_disjoint_batches_is_order_independent(tmp_path) -> None:
    first = _entries("2024-01-05", "2024-01-08")
    second = _entries("2024-01-02", "2024-01-11")

    forward = IndexStore(tmp_path / "forward.json")
    forward.merge(first)
    forward.merge(second)

    backward = IndexStore(tmp_path / "backward.json")
    backward.merge(second)
    backward.merge(first)

    forward_doc = forward.load()
    backward_doc = backward.load()
    assert forward_doc is not None and backward_doc is not None
    expected = {entry.date for entry in first + second}
    assert forward_doc.known_dates() == expected
    assert backward_doc.known_dates() == expected
    assert len(forward_doc.entries) == len(backward_doc.entries) == 4


def test_merge_is_idempotent(tmp_path) -> None:
    index = IndexStore(tmp_path / "metadata.json")
    batch = _entries("2024-01-05", "2024-01-08")

    assert index.merge(batch) == 2
    before = index.load()
    assert index.merge(batch) == 0
    after = index.load()

    assert before == after


def test_merge_keeps_first_entry_for_a_date(tmp_path) -> None:
    index = IndexStore(tmp_path / "metadata.json")
    index.merge([ImageEntry(date="2024-01-05", reference="first")])

    appended = index.merge(
        [
            ImageEntry(date="2024-01-05", reference="second"),
            ImageEntry(date="2024-01-06", reference="a"),
            ImageEntry(date="2024-01-06", reference="b"),
        ]
    )

    document = index.load()
    assert appended == 1
    assert document is not None
    references = {entry.date.isoformat(): entry.reference for entry in document.entries}
    assert references == {"2024-01-05": "first", "2024-01-06": "a"}


def test_merge_replaces_malformed_document(tmp_path) -> None:
    (tmp_path / "metadata.json").write_text("garbage", encoding="utf-8")
    index = IndexStore(tmp_path / "metadata.json")

    assert index.merge(_entries("2024-01-05")) == 1
    assert index.load_result().status == IndexLoadStatus.VALID


def test_index_delete_is_tolerant(tmp_path) -> None:
    index = IndexStore(tmp_path / "metadata.json")
    index.delete()
    index.save(IndexDocument())
    index.delete()
    assert index.load_result().status == IndexLoadStatus.ABSENT
