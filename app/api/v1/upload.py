"""Image upload endpoint: validate a profile image and forward it to ImageKit."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from app.core.config import Settings, get_settings
from app.schemas.upload import ImageUploadResponse
from app.services.image_upload import (
    MAX_IMAGE_BYTES,
    ImageUploadError,
    ImageUploadNotConfiguredError,
    upload_image,
    validate_image,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/image", response_model=ImageUploadResponse)
def post_image(
    settings: Annotated[Settings, Depends(get_settings)],
    file: Annotated[UploadFile | None, File()] = None,
    fileName: Annotated[str | None, Form()] = None,
    folder: Annotated[str | None, Form()] = None,
) -> ImageUploadResponse:
    """
    Upload a profile image (multipart field `file`, optional `fileName` and `folder`).

    Open to anonymous callers: sign-up uploads the avatar before the account
    exists. Returns the ImageKit URL to store as the user's image. Images must
    be `image/*` and at most 5 MB.
    """
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")
    # Read one byte past the limit so oversized files are rejected without buffering them whole.
    content = file.file.read(MAX_IMAGE_BYTES + 1)
    try:
        validate_image(file.content_type, len(content))
        return upload_image(
            content,
            fileName or file.filename or "upload",
            file.content_type,
            settings,
            folder=folder,
        )
    except ImageUploadNotConfiguredError as e:
        logger.error("Image upload attempted without ImageKit configuration")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
    except ImageUploadError as e:
        if e.status_code == 400:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
