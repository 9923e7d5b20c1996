"""safepreview data models."""

from .safe_url import SafeUrl
from .link_metadata import ExtractedMetadata, LinkMetadata
from .media import BlobHandle, DownloadedImage

__all__ = [
    "SafeUrl",
    "ExtractedMetadata",
    "LinkMetadata",
    "BlobHandle",
    "DownloadedImage",
]
