"""
Attachment uploads. Files go to S3 when configured, otherwise to UPLOAD_DIR.

Uploads happen before a message is sent: the resulting URLs are held as
pending attachments and referenced by the attachment rows.
"""
import os
import re
import uuid
import logging
from typing import Iterable, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from app.aws.s3 import upload_to_s3
from app.core.config import settings
from app.core.exceptions import UploadError
from app.schema.chat import UploadBatchResponse, UploadedFile, UploadFailure

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

# (file name, content, mime type)
FileInput = Tuple[str, bytes, Optional[str]]


def safe_file_name(name: str) -> str:
    base = os.path.basename(name or "").strip()
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "file"


def validate_upload(name: str, size: int, mime_type: Optional[str]) -> None:
    """Client-side constraints checked before any bytes are stored."""
    if not name:
        raise UploadError(message="File name is required.", file_name=name)
    if size <= 0:
        raise UploadError(message=f"{name} is empty.", file_name=name)
    if size > settings.CHAT_MAX_FILE_SIZE:
        limit_mb = settings.CHAT_MAX_FILE_SIZE // (1024 * 1024)
        raise UploadError(message=f"{name} exceeds the {limit_mb}MB limit.", file_name=name)
    if mime_type not in settings.CHAT_ALLOWED_MIME_TYPES:
        raise UploadError(message=f"{name}: file type {mime_type or 'unknown'} is not allowed.", file_name=name)


def _store_local(key: str, content: bytes) -> str:
    path = os.path.join(settings.UPLOAD_DIR, *key.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)
    return f"{settings.UPLOAD_BASE_URL.rstrip('/')}/{key}"


def upload_file(name: str, content: bytes, mime_type: Optional[str]) -> UploadedFile:
    """Validate and store one file. Raises UploadError on rejection or storage failure."""
    validate_upload(name, len(content), mime_type)
    key = f"chat/{uuid.uuid4()}/{safe_file_name(name)}"
    try:
        if settings.use_s3:
            url = upload_to_s3(key=key, body=content, content_type=mime_type, file_name=name)
        else:
            url = _store_local(key, content)
    except (ClientError, BotoCoreError, OSError, ValueError) as e:
        logger.error("Upload of %s failed: %s", name, e)
        raise UploadError(message=f"Failed to upload {name}.", file_name=name)
    logger.info("Uploaded %s (%d bytes) -> %s", name, len(content), url)
    return UploadedFile(url=url, name=name, size=len(content), type=mime_type)


def upload_many(files: Iterable[FileInput]) -> UploadBatchResponse:
    """Upload each file independently; one failure does not stop the rest."""
    result = UploadBatchResponse()
    for name, content, mime_type in files:
        try:
            result.uploaded.append(upload_file(name, content, mime_type))
        except UploadError as e:
            result.failed.append(UploadFailure(name=name, code=e.code, message=e.message))
    return result
