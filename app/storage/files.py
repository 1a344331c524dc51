"""
Attachment storage.

The message ledger only keeps what ``store`` returns; the bytes live here.
Deletion is best-effort: failures are logged, never raised.
"""

import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

from fastapi import UploadFile

from app.core.errors import BadRequest

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class StoredFile:
    locator: str
    original_name: str
    size: int
    mime_type: str


class FileStorage(ABC):
    @abstractmethod
    def store(self, upload: UploadFile) -> StoredFile: ...

    @abstractmethod
    def delete(self, locator: str) -> None: ...


def clean_filename(name: str | None) -> str:
    name = name or "file"
    if "%" in name:
        # some clients percent-encode non-ASCII names
        name = unquote(name)
    return os.path.basename(name.replace("\\", "/")) or "file"


class LocalFileStorage(FileStorage):
    def __init__(self, root: str, url_prefix: str = "/uploads", max_bytes: int | None = None):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, locator: str) -> Path | None:
        prefix = self.url_prefix + "/"
        if not locator.startswith(prefix):
            return None
        name = locator[len(prefix):]
        if not name or "/" in name or name in (".", ".."):
            return None
        return self.root / name

    def store(self, upload: UploadFile) -> StoredFile:
        original = clean_filename(upload.filename)
        stored_name = f"file-{uuid.uuid4().hex}{Path(original).suffix.lower()}"
        path = self.root / stored_name

        size = 0
        try:
            with path.open("wb") as out:
                while chunk := upload.file.read(CHUNK_SIZE):
                    size += len(chunk)
                    if self.max_bytes is not None and size > self.max_bytes:
                        raise BadRequest(f"file exceeds {self.max_bytes} bytes")
                    out.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        logger.info("Stored upload %s as %s (%d bytes)", original, stored_name, size)
        return StoredFile(
            locator=f"{self.url_prefix}/{stored_name}",
            original_name=original,
            size=size,
            mime_type=upload.content_type or "application/octet-stream",
        )

    def delete(self, locator: str) -> None:
        path = self._path_for(locator)
        if path is None:
            logger.warning("Refusing to delete unknown locator %s", locator)
            return
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.exception("Could not delete stored file %s", locator)
