"""Profile image upload: validate an image and forward it to ImageKit."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from app.schemas.upload import ImageUploadResponse

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024  # 5 MB
DEFAULT_FOLDER = "/uploads/"


class ImageUploadNotConfiguredError(Exception):
    """Raised when an upload is attempted without ImageKit credentials."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ImageUploadError(Exception):
    """Raised for rejected files (400) or failed uploads (status_code from ImageKit or None)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def is_imagekit_configured(settings: "Settings") -> bool:
    return bool(
        settings.IMAGEKIT_PUBLIC_KEY
        and settings.IMAGEKIT_PRIVATE_KEY
        and settings.IMAGEKIT_PRIVATE_KEY.get_secret_value()
        and settings.IMAGEKIT_URL_ENDPOINT
    )


def validate_image(content_type: str | None, size: int) -> None:
    """Reject non-images and files over the size limit. Raises ImageUploadError(status_code=400)."""
    if size <= 0:
        raise ImageUploadError("No file provided", status_code=400)
    if not (content_type or "").lower().startswith("image/"):
        raise ImageUploadError("File must be an image", status_code=400)
    if size > MAX_IMAGE_BYTES:
        raise ImageUploadError("File size must be less than 5MB", status_code=400)


def upload_image(
    content: bytes,
    file_name: str,
    content_type: str | None,
    settings: "Settings",
    folder: str | None = None,
    client: httpx.Client | None = None,
) -> ImageUploadResponse:
    """Upload one image; ImageKit picks a unique file name."""
    validate_image(content_type, len(content))
    if not is_imagekit_configured(settings):
        raise ImageUploadNotConfiguredError("ImageKit configuration error")

    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=settings.IMAGEKIT_REQUEST_TIMEOUT_SEC)
    try:
        response = client.post(
            settings.IMAGEKIT_UPLOAD_URL,
            auth=(settings.IMAGEKIT_PRIVATE_KEY.get_secret_value(), ""),
            files={"file": (file_name, content, content_type or "application/octet-stream")},
            data={
                "fileName": file_name,
                "folder": folder or DEFAULT_FOLDER,
                "useUniqueFileName": "true",
            },
        )
    except httpx.HTTPError as e:
        logger.warning("ImageKit upload failed: %s", e)
        raise ImageUploadError("Failed to upload image") from e
    finally:
        if owns_client:
            client.close()

    if response.status_code >= 400:
        logger.warning("ImageKit upload rejected: HTTP %s", response.status_code)
        raise ImageUploadError("Failed to upload image", status_code=response.status_code)
    try:
        data = response.json()
    except ValueError as e:
        raise ImageUploadError("Failed to upload image") from e
    if not data.get("url"):
        raise ImageUploadError("Failed to upload image")
    return ImageUploadResponse(
        url=data["url"],
        fileId=data.get("fileId"),
        thumbnailUrl=data.get("thumbnailUrl"),
    )
