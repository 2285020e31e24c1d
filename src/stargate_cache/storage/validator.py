from __future__ import annotations

import logging
from datetime import date

from stargate_cache.schemas import RejectReason, ValidationResult

from .blobs import BlobStore

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
DEFAULT_MIN_IMAGE_BYTES = 10_000


class ImageValidator:
    """Size and PNG signature checks for fetched and stored image payloads."""

    def __init__(
        self,
        *,
        min_bytes: int = DEFAULT_MIN_IMAGE_BYTES,
        signature: bytes | None = PNG_SIGNATURE,
    ) -> None:
        if min_bytes < 0:
            raise ValueError("min_bytes must be >= 0")
        self.min_bytes = min_bytes
        self.signature = signature

    def accept(self, data: bytes) -> ValidationResult:
        if len(data) < self.min_bytes:
            return ValidationResult.rejected(RejectReason.TOO_SMALL)
        if self.signature and not data.startswith(self.signature):
            return ValidationResult.rejected(RejectReason.BAD_SIGNATURE)
        return ValidationResult.ok()

    def check_stored(
        self,
        blobs: BlobStore,
        blob_date: date,
        *,
        purge: bool = True,
    ) -> bytes | None:
        """Return the stored bytes for ``blob_date`` only if they pass validation.

        A stored blob that fails validation is deleted when ``purge`` is set so
        it cannot satisfy a later read.
        """
        data = blobs.read(blob_date)
        if data is None:
            return None

        result = self.accept(data)
        if result.accepted:
            return data

        logger.warning(
            "invalid cached image date=%s reason=%s bytes=%d purge=%s",
            blob_date.isoformat(),
            result.reason,
            len(data),
            purge,
        )
        if purge:
            blobs.delete(blob_date)
        return None
