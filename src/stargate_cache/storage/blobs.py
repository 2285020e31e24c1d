from __future__ import annotations

import logging
import os
import uuid
from datetime import date, datetime, timezone
from pathlib import Path

from stargate_cache.schemas import coerce_date

logger = logging.getLogger(__name__)


class BlobStore:
    """One image file per calendar day, named ``<YYYY-MM-DD>.<extension>``."""

    def __init__(self, directory: str | Path, extension: str = "png") -> None:
        normalized_extension = extension.strip().lstrip(".").lower()
        if not normalized_extension:
            raise ValueError("extension must not be empty")

        self.directory = Path(directory)
        self.extension = normalized_extension
        self.ensure_directory()

    def ensure_directory(self) -> bool:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.warning("blob_store mkdir failed dir=%s", self.directory, exc_info=True)
            return False
        return True

    def key_for(self, blob_date: date | str) -> str:
        return f"{coerce_date(blob_date).isoformat()}.{self.extension}"

    def path_for(self, blob_date: date | str) -> Path:
        return self.directory / self.key_for(blob_date)

    def write(self, blob_date: date | str, data: bytes) -> Path:
        """Replace the blob for ``blob_date``. Storage errors propagate."""
        path = self.path_for(blob_date)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.stem}.tmp.{uuid.uuid4().hex}")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.info("blob_store write key=%s bytes=%d", path.name, len(data))
        return path

    def read(self, blob_date: date | str) -> bytes | None:
        path = self.path_for(blob_date)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            logger.debug("blob_store miss key=%s reason=not_found", path.name)
            return None
        except OSError:
            logger.warning("blob_store miss key=%s reason=unreadable", path.name, exc_info=True)
            return None

    def exists(self, blob_date: date | str) -> bool:
        return self.path_for(blob_date).is_file()

    def delete(self, blob_date: date | str) -> None:
        path = self.path_for(blob_date)
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("blob_store delete failed key=%s", path.name, exc_info=True)
            return
        logger.info("blob_store delete key=%s", path.name)

    def modified_at(self, blob_date: date | str) -> datetime | None:
        try:
            mtime = self.path_for(blob_date).stat().st_mtime
        except OSError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def list_keys(self) -> set[date] | None:
        """Dates with a stored blob, or None when the directory cannot be listed.

        A missing directory lists as empty. Any other listing error returns None
        so callers can tell "no blobs" apart from "blobs unknown".
        """
        try:
            names = self._scan_names()
        except FileNotFoundError:
            return set()
        except OSError:
            logger.warning("blob_store list failed dir=%s", self.directory, exc_info=True)
            return None

        keys: set[date] = set()
        suffix = f".{self.extension}"
        for name in names:
            if name.startswith(".") or not name.endswith(suffix):
                continue
            stem = name[: -len(suffix)]
            # fromisoformat also accepts the basic YYYYMMDD form
            if len(stem) != 10:
                continue
            try:
                keys.add(date.fromisoformat(stem))
            except ValueError:
                continue
        return keys

    def _scan_names(self) -> list[str]:
        with os.scandir(self.directory) as entries:
            return [entry.name for entry in entries if entry.is_file()]
