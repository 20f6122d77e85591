"""Pydantic schemas for image upload responses."""

from pydantic import BaseModel, Field


class ImageUploadResponse(BaseModel):
    """Response body for POST /api/v1/upload/image."""

    url: str = Field(..., description="Public URL of the uploaded image")
    fileId: str | None = Field(default=None, description="ImageKit file id")
    thumbnailUrl: str | None = Field(default=None, description="ImageKit thumbnail URL")
