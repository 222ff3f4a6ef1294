import io
import logging

from fastapi import HTTPException
from google.cloud import storage
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ValidationError
from .settings import BUCKET_NAME

IMAGE_CONTENT_TYPES = {"image/png", "image/jpeg", "image/webp", "image/gif"}
BADGE_SIZE = (256, 256)

_storage_client = None


def get_storage_client():
    global _storage_client
    if _storage_client is None:
        _storage_client = storage.Client()
    return _storage_client


def image_to_badge(contents: bytes, size=BADGE_SIZE) -> bytes:
    """Shrink an uploaded image to a badge-sized PNG, keeping transparency."""
    try:
        tmp = Image.open(io.BytesIO(contents))
        tmp = ImageOps.exif_transpose(tmp)
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError("The uploaded file is not a readable image") from e

    tmp.thumbnail(size)
    tmp = tmp.convert("RGBA")

    imgByteArr = io.BytesIO()
    tmp.save(imgByteArr, format="PNG")
    return imgByteArr.getvalue()


async def send_bytes_to_storage(contents: bytes, path, content_type):
    try:
        blob = get_storage_client().bucket(BUCKET_NAME).blob(path)
        blob.upload_from_string(contents, content_type=content_type)
        return blob.public_url
    except Exception as e:
        logging.error(f"Failed to upload {path} to {BUCKET_NAME}: {e}")
        raise HTTPException(500, {"error": "Failed to upload file."})
