import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import UploadFile

from intranet.config import settings
from intranet.core.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)

MESSAGE_SUBDIR = "messages"


@dataclass
class StoredAttachment:
    name: str
    path: str


def attachment_dir() -> str:
    return os.path.join(settings.UPLOAD_DIR, MESSAGE_SUBDIR)


def _validate(file: UploadFile) -> str:
    allowed = {ext.lower() for ext in settings.ALLOWED_ATTACHMENT_TYPES}
    filename = file.filename or ""
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    content_type = (file.content_type or "").lower()
    mime_subtype = content_type.split("/", 1)[1] if content_type.startswith("image/") else ""

    if extension not in allowed or mime_subtype not in allowed:
        raise ValidationError(
            "Only images are allowed (JPEG, PNG, GIF, WEBP)",
            details={"filename": filename, "content_type": content_type},
        )

    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    if size > settings.MAX_ATTACHMENT_BYTES:
        raise ValidationError(
            "File too large",
            details={"size": size, "max_size": settings.MAX_ATTACHMENT_BYTES},
        )
    return extension


def save_attachment(file: UploadFile, owner_id: int) -> StoredAttachment:
    extension = _validate(file)
    upload_dir = attachment_dir()
    unique_filename = f"{owner_id}_{uuid.uuid4().hex}.{extension}"
    file_path = os.path.join(upload_dir, unique_filename)

    try:
        os.makedirs(upload_dir, exist_ok=True)
        with open(file_path, "wb") as buffer:
            shutil.copyfileobj(file.file, buffer)
    except OSError as exc:
        logger.error(
            "Attachment write failed",
            exc_info=True,
            extra={"context": {"operation": "save_attachment", "user_id": owner_id, "path": file_path}},
        )
        raise StorageError("Could not store attachment") from exc

    return StoredAttachment(name=os.path.basename(file.filename or unique_filename), path=file_path)


def attachment_exists(path: Optional[str]) -> bool:
    return bool(path) and os.path.isfile(path)


def delete_attachment(path: Optional[str]) -> bool:
    """Remove a stored file. Failures are logged, never raised."""
    if not path:
        return False
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning("Attachment already missing", extra={"context": {"path": path}})
        return False
    except OSError:
        logger.warning(
            "Attachment cleanup failed",
            exc_info=True,
            extra={"context": {"operation": "delete_attachment", "path": path}},
        )
        return False
    return True
