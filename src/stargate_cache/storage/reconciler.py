from __future__ import annotations

import logging
from datetime import date

from stargate_cache.schemas import BoundingBox, ImageEntry, IndexDocument, now_utc

from .blobs import BlobStore
from .index import IndexStore

logger = logging.getLogger(__name__)

DEFAULT_REBUILD_SLACK = 10


class Reconciler:
    """Keeps the index aligned with the blobs actually present on disk.

    The index lags the blob directory after a crash between a blob write and
    the index save, and overcounts when blobs are removed out-of-band. A
    rebuild cannot recover the bounding box the blobs were fetched for, so it
    writes ``default_bounding_box``.
    """

    def __init__(
        self,
        *,
        index: IndexStore,
        blobs: BlobStore,
        default_bounding_box: BoundingBox,
        slack: int = DEFAULT_REBUILD_SLACK,
    ) -> None:
        if slack < 0:
            raise ValueError("slack must be >= 0")
        self.index = index
        self.blobs = blobs
        self.default_bounding_box = default_bounding_box
        self.slack = slack

    def check_and_repair(self) -> bool:
        """Rebuild the index when it has drifted from the blob store; True if rebuilt."""
        keys = self.blobs.list_keys()
        if keys is None:
            logger.warning("reconcile skipped reason=blob_listing_failed")
            return False
        result = self.index.load_result()

        if not result.is_valid:
            if not keys:
                return False
            logger.info(
                "reconcile rebuild reason=index_%s blobs=%d",
                result.status,
                len(keys),
            )
            self.rebuild(keys)
            return True

        document = result.document
        if document is None:
            return False
        indexed = len(document.entries)
        drift = abs(indexed - len(keys))
        if drift <= self.slack:
            return False

        logger.info(
            "reconcile rebuild reason=drift indexed=%d blobs=%d slack=%d",
            indexed,
            len(keys),
            self.slack,
        )
        self.rebuild(keys)
        return True

    def rebuild(self, keys: set[date] | None = None) -> IndexDocument:
        """Replace the index with one entry per blob key.

        Blob content is not checked here; an invalid blob gets an entry and is
        purged by the read-time validation of the first range query that
        covers it. Raises OSError when the blob directory cannot be listed.
        """
        if keys is None:
            keys = self.blobs.list_keys()
        if keys is None:
            raise OSError(f"blob directory could not be listed: {self.blobs.directory}")

        entries: list[ImageEntry] = []
        for blob_date in sorted(keys):
            fetched_at = self.blobs.modified_at(blob_date)
            if fetched_at is None:
                # removed between listing and stat
                continue
            entries.append(
                ImageEntry(
                    date=blob_date,
                    reference=self.blobs.key_for(blob_date),
                    fetched_at=fetched_at,
                )
            )

        document = IndexDocument(
            bounding_box=self.default_bounding_box,
            entries=entries,
            last_updated=now_utc(),
        )
        self.index.save(document)
        logger.info("reconcile rebuilt entries=%d", len(entries))
        return document
