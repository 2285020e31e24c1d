from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from stargate_cache.schemas import (
    BoundingBox,
    ImageEntry,
    IndexDocument,
    IndexLoadResult,
    IndexLoadStatus,
    now_utc,
    validate_json,
)

logger = logging.getLogger(__name__)

INDEX_FILENAME = "metadata.json"


class IndexStore:
    """The durable date -> entry index, read and written as one JSON document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load_result(self) -> IndexLoadResult:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return IndexLoadResult(status=IndexLoadStatus.ABSENT)
        except OSError:
            logger.warning("index load failed path=%s reason=unreadable", self.path, exc_info=True)
            return IndexLoadResult(status=IndexLoadStatus.ABSENT)

        try:
            document = validate_json(IndexDocument, raw)
        except ValidationError as exc:
            logger.warning(
                "index load failed path=%s reason=malformed errors=%d",
                self.path,
                exc.error_count(),
            )
            return IndexLoadResult(status=IndexLoadStatus.MALFORMED)

        return IndexLoadResult(status=IndexLoadStatus.VALID, document=document)

    def load(self) -> IndexDocument | None:
        return self.load_result().document

    def save(self, document: IndexDocument) -> bool:
        payload = json.dumps(document.model_dump(mode="json"), ensure_ascii=False, indent=2)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp.{uuid.uuid4().hex}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError:
            logger.warning("index save failed path=%s", self.path, exc_info=True)
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                logger.debug("index tmp cleanup failed path=%s", tmp_path)
            return False

        logger.info("index saved entries=%d", len(document.entries))
        return True

    def merge(
        self,
        entries: Iterable[ImageEntry],
        *,
        bounding_box: BoundingBox | None = None,
    ) -> int:
        """Append entries for dates not yet indexed and return how many were appended.

        An existing entry for a date is never replaced, so resubmitting the same
        batch is a no-op. A missing or malformed document is replaced by a fresh
        one using ``bounding_box`` (or the zero box).
        """
        document = self.load()
        if document is None:
            document = IndexDocument(bounding_box=bounding_box or BoundingBox.zero())

        known = document.known_dates()
        appended: list[ImageEntry] = []
        for entry in entries:
            if entry.date in known:
                continue
            known.add(entry.date)
            appended.append(entry)

        if not appended:
            logger.info("index merge appended=0")
            return 0

        updated = document.model_copy(
            update={
                "entries": [*document.entries, *appended],
                "last_updated": now_utc(),
            }
        )
        if not self.save(updated):
            logger.warning("index merge not persisted dropped=%d", len(appended))
            return 0
        logger.info("index merge appended=%d total=%d", len(appended), len(updated.entries))
        return len(appended)

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            logger.warning("index delete failed path=%s", self.path, exc_info=True)
