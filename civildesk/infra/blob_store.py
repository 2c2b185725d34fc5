from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable, Protocol
from uuid import uuid4

from civildesk.config import settings
from civildesk.domain.errors import NotFoundError, ValidationError
from civildesk.domain.models import UploadedFile

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES: dict[str, str] = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}
ALLOWED_EXTENSIONS = {".pdf", ".jpg", ".jpeg", ".png", ".docx"}


class BlobStore(Protocol):
    def save(self, upload: UploadedFile) -> str:
        ...

    def read(self, stored_path: str) -> bytes:
        ...

    def delete(self, stored_path: str) -> None:
        ...


def validate_uploads(
    uploads: Iterable[UploadedFile],
    *,
    max_files: int | None = None,
    max_bytes: int | None = None,
) -> list[UploadedFile]:
    files = list(uploads)
    limit_files = max_files if max_files is not None else settings.max_upload_files
    limit_bytes = max_bytes if max_bytes is not None else settings.max_upload_bytes

    if len(files) > limit_files:
        raise ValidationError(f"At most {limit_files} files can be attached")
    for upload in files:
        ext = Path(upload.file_name).suffix.lower()
        if upload.mime_type not in ALLOWED_MIME_TYPES and ext not in ALLOWED_EXTENSIONS:
            raise ValidationError("Unsupported file type")
        if upload.size > limit_bytes:
            raise ValidationError(f"Files must be {limit_bytes // (1024 * 1024)}MB or smaller")
    return files


class LocalBlobStore:
    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or settings.upload_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, stored_path: str) -> Path:
        path = (self.root / Path(stored_path).name).resolve()
        if path.parent != self.root.resolve():
            raise NotFoundError("Document not found")
        return path

    def save(self, upload: UploadedFile) -> str:
        ext = Path(upload.file_name).suffix.lower() or ALLOWED_MIME_TYPES.get(upload.mime_type, "")
        name = f"{int(time.time() * 1000)}-{uuid4().hex[:12]}{ext}"
        (self.root / name).write_bytes(upload.data)
        return name

    def read(self, stored_path: str) -> bytes:
        path = self._resolve(stored_path)
        if not path.exists():
            raise NotFoundError("Stored file is missing")
        return path.read_bytes()

    def delete(self, stored_path: str) -> None:
        path = self._resolve(stored_path)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Stored file already removed: %s", stored_path)
