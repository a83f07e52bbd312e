#uploads.py
"""
Media Uploader

Writes files attached to media messages under UPLOADS_DIR and returns the URL
they are served from. Files are grouped by namespace and thread:

    UPLOADS_DIR/<namespace>/<thread_id>/<uuid>-<safe name>
"""
import asyncio
import os
import re
import uuid

import logging
from ConfigChat import get_config
from src.models import UploadedFile

config = get_config()
logger = logging.getLogger("MediaUploader")
logger.setLevel(logging.DEBUG)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class UploadError(Exception):
    """Raised when a file cannot be accepted or written."""
    pass


def _safe_segment(value: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("-", os.path.basename(value)).strip(".-")
    return cleaned or "file"


def _write_file(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as buffer:
        buffer.write(data)


async def upload_image(file: UploadedFile, namespace: str, thread_id: str) -> str:
    """Validates and stores an image, returning its public URL."""
    allowed_types = config.get("ALLOWED_IMAGE_TYPES", [])
    if file.type not in allowed_types:
        raise UploadError(f"Files of type '{file.type}' cannot be uploaded.")

    max_bytes = config.get("MAX_UPLOAD_SIZE_MB", 25) * 1024 * 1024
    size = len(file.data)
    if size == 0:
        raise UploadError("The uploaded file is empty.")
    if size > max_bytes:
        raise UploadError(f"File '{file.name}' is larger than {config.get('MAX_UPLOAD_SIZE_MB', 25)} MB.")

    stored_name = f"{uuid.uuid4().hex}-{_safe_segment(file.name)}"
    relative_parts = [_safe_segment(namespace), _safe_segment(thread_id), stored_name]
    destination = os.path.join(config["UPLOADS_DIR"], *relative_parts)

    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _write_file, destination, file.data)
    except OSError as e:
        logger.error(f"Failed to write upload to {destination}: {e}", exc_info=True)
        raise UploadError(f"Could not store file '{file.name}'.") from e

    url = "/".join([config.get("MEDIA_BASE_URL", "/uploads").rstrip("/")] + relative_parts)
    logger.info(f"Stored upload '{file.name}' ({size} bytes) at {destination}.")
    return url
