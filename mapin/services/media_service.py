from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
import uuid

from mapin.core.errors import APIError
from mapin.core.settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "jpg"

# mimetypes.guess_extension picks the first registered suffix, which is not
# always the one clients expect.
_PREFERRED_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/3gpp": "3gp",
}


def extension_for_mime_type(mime_type: str | None) -> str:
    if not mime_type:
        return DEFAULT_EXTENSION
    normalized = mime_type.split(";", 1)[0].strip().lower()
    preferred = _PREFERRED_EXTENSIONS.get(normalized)
    if preferred is not None:
        return preferred
    guessed = mimetypes.guess_extension(normalized)
    if guessed:
        return guessed.lstrip(".")
    return DEFAULT_EXTENSION


def media_kind(mime_type: str | None) -> str:
    if mime_type and mime_type.strip().lower().startswith("video/"):
        return "videos"
    return "images"


def build_event_media_path(user_id: str, mime_type: str | None, object_id: str | None = None) -> str:
    name = object_id or uuid.uuid4().hex
    return f"events/{user_id}/{media_kind(mime_type)}/{name}.{extension_for_mime_type(mime_type)}"


def store_event_media(*, user_id: str, mime_type: str | None, content: bytes) -> str:
    settings = get_settings()
    max_bytes = settings.media_max_upload_mb * 1024 * 1024
    if not content:
        raise APIError(status_code=400, code="empty_upload", message="Uploaded file is empty")
    if len(content) > max_bytes:
        raise APIError(
            status_code=413,
            code="upload_too_large",
            message=f"File too large. Maximum is {settings.media_max_upload_mb}MB.",
        )

    object_path = build_event_media_path(user_id, mime_type)
    root = Path(settings.media_root).resolve()
    destination = (root / object_path).resolve()
    if root not in destination.parents:
        raise APIError(status_code=400, code="invalid_path", message="Invalid media path")

    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(content)
    logger.info("Event media stored user_id=%s path=%s bytes=%s", user_id, object_path, len(content))
    return object_path
