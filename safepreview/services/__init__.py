"""safepreview core services."""

from .blob_store import BlobStore, get_blob_store
from .key_store import SecretKey, SecretKeyStore, get_key_store
from .crypto_service import ChunkMode, ImageCryptoService, get_crypto_service
from .image_fetch_service import ImageFetchService, get_image_fetch_service
from .metadata_service import MetadataService, OpenGraphExtractor, get_metadata_service
from .preview_service import PreviewService, get_preview_service

__all__ = [
    "BlobStore",
    "get_blob_store",
    "SecretKey",
    "SecretKeyStore",
    "get_key_store",
    "ChunkMode",
    "ImageCryptoService",
    "get_crypto_service",
    "ImageFetchService",
    "get_image_fetch_service",
    "MetadataService",
    "OpenGraphExtractor",
    "get_metadata_service",
    "PreviewService",
    "get_preview_service",
]
