"""Paste-to-preview and send/receive flow for chat images.

Paste: metadata fetch, then the preview image is downloaded into the blob
store. Send: the image is encrypted into an artifact. Receive: the artifact
is decrypted into a blob for display.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

from safepreview.config import settings
from safepreview.exceptions import PathOutsideArtifactDir, SafePreviewError, SuspiciousUrl
from safepreview.models.link_metadata import LinkMetadata
from safepreview.models.media import BlobHandle, DownloadedImage
from safepreview.services.blob_store import BlobStore, get_blob_store
from safepreview.services.crypto_service import ImageCryptoService, get_crypto_service
from safepreview.services.image_fetch_service import ImageFetchService, get_image_fetch_service
from safepreview.services.key_store import SecretKeyStore, get_key_store
from safepreview.services.metadata_service import MetadataService, get_metadata_service
from safepreview.utils.security import LinkValidator


logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".enc"


class PreviewService:
    """Orchestrates previews and encrypted image exchange for the UI."""

    def __init__(
        self,
        metadata_service: Optional[MetadataService] = None,
        image_fetch_service: Optional[ImageFetchService] = None,
        crypto_service: Optional[ImageCryptoService] = None,
        key_store: Optional[SecretKeyStore] = None,
        blob_store: Optional[BlobStore] = None,
        encrypted_dir: Optional[str] = None
    ):
        self.metadata_service = metadata_service or get_metadata_service()
        self.image_fetch_service = image_fetch_service or get_image_fetch_service()
        self.crypto_service = crypto_service or get_crypto_service()
        self.key_store = key_store or get_key_store()
        self.blob_store = blob_store or get_blob_store()
        self.encrypted_dir = (
            Path(encrypted_dir).expanduser() if encrypted_dir else settings.encrypted_path()
        )

    async def build_preview(
        self,
        url: str,
        include_image: bool = True,
        encrypt_image: bool = False
    ) -> Optional[LinkMetadata]:
        """
        Build a link preview for a pasted URL.

        A preview whose image cannot be fetched is still returned, just
        without ``preview_blob_ref``. With ``encrypt_image`` the downloaded
        image is also encrypted for sending and the artifact path is set as
        ``encrypted_image_ref``; an encryption failure leaves it unset.

        Returns:
            LinkMetadata, or None if there is no preview for this link
        """
        metadata = await self.metadata_service.get_metadata(url)
        if metadata is None or not include_image or metadata.image_url is None:
            return metadata

        image = await self.download_image(metadata.image_url.href)
        if image is None:
            return metadata

        handle = self.blob_store.create(image.data, image.content_type)
        if not encrypt_image:
            return metadata.with_refs(preview_blob_ref=handle.ref)

        try:
            artifact = await self.encrypt_for_send(handle.ref)
        except SafePreviewError as e:
            logger.warning(f"Could not encrypt preview image for {LinkValidator.mask_url(url)}: {e}")
            return metadata.with_refs(preview_blob_ref=handle.ref)
        return metadata.with_refs(preview_blob_ref=handle.ref, encrypted_image_ref=str(artifact))

    async def download_image(self, url: str) -> Optional[DownloadedImage]:
        """Best-effort image download; every failure becomes None."""
        try:
            return await self.image_fetch_service.fetch_image(url)
        except SafePreviewError as e:
            logger.warning(f"Image unavailable for {LinkValidator.mask_url(url)}: {e}")
            return None

    async def encrypt_for_send(self, ref: str) -> Path:
        """
        Encrypt a previewed image for sending.

        Args:
            ref: Blob reference or https image URL

        Returns:
            Path of the new artifact inside the encrypted directory
        """
        secret_key = await self.key_store.get_secret_key()
        dest = self.encrypted_dir / f"{uuid.uuid4().hex}{ARTIFACT_SUFFIX}"

        if BlobStore.is_blob_ref(ref):
            return await self.crypto_service.encrypt_image_from_blob(ref, secret_key, dest, include_iv=True)

        if LinkValidator.is_link_suspicious(ref):
            raise SuspiciousUrl(f"Refusing to encrypt from {LinkValidator.mask_url(ref)}")
        return await self.crypto_service.encrypt_image(ref, secret_key, dest)

    async def decrypt_for_display(self, ref: str) -> BlobHandle:
        """
        Decrypt an artifact into a blob for display.

        Args:
            ref: https artifact URL or artifact path inside the encrypted directory
        """
        secret_key = await self.key_store.get_secret_key()

        if ref.lower().startswith(('http://', 'https://')):
            source = ref
        else:
            source = str(self._resolve_artifact(ref))

        return await self.crypto_service.decrypt_image_to_blob(source, secret_key)

    async def cleanup(self, path: str) -> Path:
        """Delete a file inside the encrypted directory."""
        artifact = self._resolve_artifact(path)
        await self.crypto_service.cleanup_decrypted_file(artifact)
        return artifact

    def _resolve_artifact(self, path: str) -> Path:
        """Resolve a local artifact path, refusing anything outside the encrypted directory."""
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.encrypted_dir / candidate

        resolved = candidate.resolve()
        base = self.encrypted_dir.resolve()
        if resolved != base and base not in resolved.parents:
            raise PathOutsideArtifactDir(f"Path is outside the encrypted directory: {path}")
        return resolved


_preview_service_instance: Optional[PreviewService] = None


def get_preview_service() -> PreviewService:
    """Get singleton PreviewService instance."""
    global _preview_service_instance
    if _preview_service_instance is None:
        _preview_service_instance = PreviewService()
    return _preview_service_instance
