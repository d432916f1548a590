"""
Image Store
Data-URI decoding, per-submission staging of the decoded image and cleanup
of staged files left behind by crashed submissions.
"""
import base64
import binascii
import logging
import os
import re
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from services.errors import InvalidInput

logger = logging.getLogger("image-store")

DATA_URI_PATTERN = re.compile(r"^data:(image/[\w.+-]+);base64,", re.IGNORECASE)

SUPPORTED_MIME_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/heif": "heif",
}


class UnsupportedImageFormat(InvalidInput):
    """Image payload without a declared or with an unknown encoding"""


class MalformedImagePayload(InvalidInput):
    """Declared image type is fine but the base64 body is not"""


def decode_image_payload(payload: str) -> Tuple[bytes, str]:
    """
    Decode a "data:image/<type>;base64,<data>" payload.

    Returns:
        (image bytes, mime type)
    """
    match = DATA_URI_PATTERN.match(payload)
    if not match:
        raise UnsupportedImageFormat(detail="image payload does not declare an image encoding")

    mime_type = match.group(1).lower()
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise UnsupportedImageFormat(detail=f"unsupported image encoding: {mime_type}")

    encoded = re.sub(r"\s+", "", payload[match.end():])
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedImagePayload(detail=f"image payload is not valid base64: {e}")

    if not data:
        raise MalformedImagePayload(detail="image payload is empty")

    return data, mime_type


class ImageStore:
    """Local staging folder for images on their way to recognition"""

    def __init__(self, upload_folder: str):
        self.upload_folder = upload_folder
        os.makedirs(upload_folder, exist_ok=True)

    @contextmanager
    def stage(self, data: bytes, mime_type: str) -> Iterator[str]:
        """
        Write the image to a file only this submission knows about and
        remove it when the block exits, whatever happened inside.
        """
        filename = f"{uuid.uuid4()}.{SUPPORTED_MIME_TYPES.get(mime_type, 'img')}"
        filepath = os.path.join(self.upload_folder, filename)

        with open(filepath, "wb") as f:
            f.write(data)

        try:
            yield filepath
        finally:
            try:
                os.remove(filepath)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"Failed to remove staged image {filename}: {e}")

    def cleanup_stale_files(self, max_age_hours: int = 24, now: Optional[float] = None) -> int:
        """
        Staged files older than max_age_hours can only belong to submissions
        that never finished; delete them. Files without a staging extension
        are left alone.

        Returns:
            number of deleted files
        """
        if not os.path.isdir(self.upload_folder):
            logger.warning(f"Staging folder {self.upload_folder} is missing, nothing to clean up")
            return 0

        cutoff = (time.time() if now is None else now) - max_age_hours * 3600
        staged_suffixes = tuple(f".{ext}" for ext in set(SUPPORTED_MIME_TYPES.values()) | {"img"})

        removed = []
        with os.scandir(self.upload_folder) as entries:
            stale = [
                entry for entry in entries
                if entry.is_file() and entry.name.endswith(staged_suffixes)
                and entry.stat().st_mtime < cutoff
            ]

        for entry in stale:
            try:
                os.remove(entry.path)
                removed.append(entry.name)
            except FileNotFoundError:
                # finished submission removed it first
                continue
            except OSError as e:
                logger.error(f"Failed to remove stale staged image {entry.name}: {e}")

        if removed:
            logger.info(f"Removed {len(removed)} staged images older than {max_age_hours}h from {self.upload_folder}")
        else:
            logger.debug(f"No staged images older than {max_age_hours}h in {self.upload_folder}")

        return len(removed)
