"""Link preview and encrypted image REST API endpoints.

This module is the boundary the chat UI talks to:
- Scraping link previews (urlScrape)
- Downloading preview images (downloadImage)
- Encrypting images for sending (encryptImage)
- Decrypting received images into blobs (decryptImage)

Every call returns a whole result; nothing is streamed to the UI.
"""

import base64
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from safepreview.exceptions import (
    BlobNotFound,
    CipherFailure,
    FileSystemFailure,
    ImageTooLarge,
    MalformedUrl,
    NetworkFailure,
    NotAnImage,
    PathOutsideArtifactDir,
    SafePreviewError,
    SuspiciousUrl,
)
from safepreview.services.blob_store import get_blob_store
from safepreview.services.preview_service import get_preview_service


logger = logging.getLogger(__name__)

# Initialize router
router = APIRouter(prefix="/api/preview", tags=["Preview"])


class ScrapeRequest(BaseModel):
    """Request model for scraping a link preview."""
    url: str = Field(..., description="Link pasted by the user")
    include_image: bool = Field(True, description="Also download the preview image into a blob")
    encrypt_image: bool = Field(False, description="Also encrypt the preview image for sending")


class ImageRequest(BaseModel):
    """Request model for downloading a preview image."""
    url: str = Field(..., description="Image URL")


class RefRequest(BaseModel):
    """Request model for encrypt/decrypt calls."""
    ref: str = Field(..., description="Blob reference, https URL or artifact path")


class CleanupRequest(BaseModel):
    """Request model for deleting a decrypted file."""
    path: str = Field(..., description="File inside the encrypted directory")


class LinkMetadataResponse(BaseModel):
    """Response model for a link preview."""
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    preview_blob_ref: Optional[str] = None
    encrypted_image_ref: Optional[str] = None


class ImageResponse(BaseModel):
    """Response model for a downloaded image."""
    data: str = Field(..., description="Base64 encoded image bytes")
    content_type: str
    size: int


class EncryptResponse(BaseModel):
    """Response model for an encrypted artifact."""
    path: str


class BlobResponse(BaseModel):
    """Response model for a blob handle."""
    ref: str
    content_type: str
    size: int


def _to_http_error(error: SafePreviewError) -> HTTPException:
    """Map service errors to HTTP status codes."""
    if isinstance(error, (SuspiciousUrl, MalformedUrl, PathOutsideArtifactDir)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, BlobNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ImageTooLarge):
        code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    elif isinstance(error, NotAnImage):
        code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    elif isinstance(error, CipherFailure):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(error, NetworkFailure):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(error, FileSystemFailure):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(error))


@router.post("/scrape", response_model=Optional[LinkMetadataResponse])
async def url_scrape(request: ScrapeRequest):
    """Build a link preview.

    Returns:
        LinkMetadataResponse, or null if the link has no safe preview
    """
    preview_service = get_preview_service()
    metadata = await preview_service.build_preview(
        request.url,
        include_image=request.include_image,
        encrypt_image=request.encrypt_image
    )
    if metadata is None:
        return None
    return LinkMetadataResponse(**metadata.to_dict())


@router.post("/download-image", response_model=Optional[ImageResponse])
async def download_image(request: ImageRequest):
    """Download a preview image.

    Returns:
        ImageResponse with base64 data, or null on any failure
    """
    preview_service = get_preview_service()
    image = await preview_service.download_image(request.url)
    if image is None:
        return None
    return ImageResponse(
        data=base64.b64encode(image.data).decode('ascii'),
        content_type=image.content_type,
        size=image.size
    )


@router.post("/encrypt-image", response_model=EncryptResponse)
async def encrypt_image(request: RefRequest):
    """Encrypt a blob or image URL into a local artifact.

    Raises:
        HTTPException: If the source is rejected or encryption fails
    """
    preview_service = get_preview_service()
    try:
        path = await preview_service.encrypt_for_send(request.ref)
    except SafePreviewError as e:
        logger.error(f"Encryption failed: {e}")
        raise _to_http_error(e)
    return EncryptResponse(path=str(path))


@router.post("/decrypt-image", response_model=BlobResponse)
async def decrypt_image(request: RefRequest):
    """Decrypt an artifact into a blob.

    Raises:
        HTTPException: If the artifact is unreadable or corrupt
    """
    preview_service = get_preview_service()
    try:
        handle = await preview_service.decrypt_for_display(request.ref)
    except SafePreviewError as e:
        logger.error(f"Decryption failed: {e}")
        raise _to_http_error(e)
    return BlobResponse(**handle.to_dict())


@router.get("/blobs/{ref}")
async def get_blob(ref: str):
    """Serve blob bytes with their declared content type."""
    try:
        handle, data = get_blob_store().get(ref)
    except BlobNotFound as e:
        raise _to_http_error(e)
    return Response(content=data, media_type=handle.content_type)


@router.delete("/blobs/{ref}")
async def revoke_blob(ref: str):
    """Release a blob once the UI clears the preview."""
    handle = get_blob_store().revoke(ref)
    return {"revoked": handle is not None, "ref": ref}


@router.post("/cleanup")
async def cleanup_decrypted_file(request: CleanupRequest):
    """Delete a decrypted file.

    Raises:
        HTTPException: 400 for paths outside the encrypted directory,
            404 if the file does not exist, 500 for other failures
    """
    preview_service = get_preview_service()
    try:
        path = await preview_service.cleanup(request.path)
    except FileSystemFailure as e:
        logger.error(f"Cleanup failed: {e}")
        if isinstance(e.__cause__, FileNotFoundError):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        raise _to_http_error(e)
    return {"deleted": str(path)}
