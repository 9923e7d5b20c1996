"""
Unit tests for PreviewService.

Network-facing services are mocked; key storage, encryption and the blob
store are real and rooted in temporary directories.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from safepreview.exceptions import (
    DeleteFailed,
    FileSystemFailure,
    ImageTooLarge,
    NetworkFailure,
    NotAnImage,
    PathOutsideArtifactDir,
    SuspiciousUrl,
)
from safepreview.models.link_metadata import LinkMetadata
from safepreview.models.media import DownloadedImage
from safepreview.models.safe_url import SafeUrl
from safepreview.services.crypto_service import ImageCryptoService
from safepreview.services.preview_service import PreviewService


IMAGE_BYTES = b"\xff\xd8\xff\xe0 jpeg body " * 100
PAGE_URL = "https://example.com/post"
IMAGE_URL = "https://cdn.example.com/cover.jpg"


@pytest.fixture
def metadata_service():
    service = MagicMock()
    service.get_metadata = AsyncMock(return_value=LinkMetadata(
        title="Post",
        description="A post",
        image_url=SafeUrl.parse(IMAGE_URL),
    ))
    return service


@pytest.fixture
def image_fetch_service():
    service = MagicMock()
    service.fetch_image = AsyncMock(return_value=DownloadedImage(data=IMAGE_BYTES, content_type="image/jpeg"))
    return service


@pytest.fixture
def preview_service(metadata_service, image_fetch_service, key_store, blob_store, encrypted_dir):
    return PreviewService(
        metadata_service=metadata_service,
        image_fetch_service=image_fetch_service,
        crypto_service=ImageCryptoService(blob_store=blob_store),
        key_store=key_store,
        blob_store=blob_store,
        encrypted_dir=encrypted_dir,
    )


@pytest.mark.asyncio
class TestBuildPreview:
    """Tests for PreviewService.build_preview()."""

    async def test_preview_with_image(self, preview_service, blob_store, image_fetch_service):
        preview = await preview_service.build_preview(PAGE_URL)

        assert preview.title == "Post"
        handle, data = blob_store.get(preview.preview_blob_ref)
        assert data == IMAGE_BYTES
        assert handle.content_type == "image/jpeg"
        image_fetch_service.fetch_image.assert_awaited_once_with(IMAGE_URL)
        assert preview.encrypted_image_ref is None

    async def test_preview_without_image_requested(self, preview_service, blob_store, image_fetch_service):
        preview = await preview_service.build_preview(PAGE_URL, include_image=False)

        assert preview.preview_blob_ref is None
        assert len(blob_store) == 0
        image_fetch_service.fetch_image.assert_not_called()

    async def test_no_preview(self, preview_service, metadata_service):
        metadata_service.get_metadata.return_value = None

        assert await preview_service.build_preview(PAGE_URL) is None

    async def test_page_without_image(self, preview_service, metadata_service, image_fetch_service):
        metadata_service.get_metadata.return_value = LinkMetadata(title="Text only")

        preview = await preview_service.build_preview(PAGE_URL)

        assert preview.title == "Text only"
        image_fetch_service.fetch_image.assert_not_called()

    @pytest.mark.parametrize("error", [
        ImageTooLarge(3000000, 2097152),
        NotAnImage("text/html"),
        NetworkFailure("HTTP 404"),
    ])
    async def test_image_failure_keeps_text_preview(self, preview_service, image_fetch_service, blob_store, error):
        image_fetch_service.fetch_image.side_effect = error

        preview = await preview_service.build_preview(PAGE_URL)

        assert preview.title == "Post"
        assert preview.preview_blob_ref is None
        assert len(blob_store) == 0

    async def test_preview_with_encrypted_image(self, preview_service, blob_store, encrypted_dir):
        preview = await preview_service.build_preview(PAGE_URL, encrypt_image=True)

        artifact = Path(preview.encrypted_image_ref)
        assert artifact.parent == encrypted_dir
        assert artifact.suffix == ".enc"
        handle = await preview_service.decrypt_for_display(preview.encrypted_image_ref)
        assert blob_store.get(handle.ref)[1] == IMAGE_BYTES

    async def test_encrypt_failure_keeps_blob_preview(self, preview_service, blob_store):
        preview_service.crypto_service = MagicMock()
        preview_service.crypto_service.encrypt_image_from_blob = AsyncMock(
            side_effect=FileSystemFailure("disk full")
        )

        preview = await preview_service.build_preview(PAGE_URL, encrypt_image=True)

        assert preview.preview_blob_ref in blob_store
        assert preview.encrypted_image_ref is None

    async def test_no_encryption_without_image(self, preview_service, encrypted_dir):
        preview = await preview_service.build_preview(PAGE_URL, include_image=False, encrypt_image=True)

        assert preview.encrypted_image_ref is None
        assert list(encrypted_dir.iterdir()) == []

    async def test_download_image_best_effort(self, preview_service, image_fetch_service):
        image_fetch_service.fetch_image.side_effect = NotAnImage("text/html")

        assert await preview_service.download_image(IMAGE_URL) is None


@pytest.mark.asyncio
class TestSendAndReceive:
    """Tests for encrypt_for_send() and decrypt_for_display()."""

    async def test_blob_round_trip(self, preview_service, blob_store, encrypted_dir):
        preview = await preview_service.build_preview(PAGE_URL)

        artifact = await preview_service.encrypt_for_send(preview.preview_blob_ref)
        handle = await preview_service.decrypt_for_display(str(artifact))

        assert artifact.parent == encrypted_dir
        assert artifact.suffix == ".enc"
        assert blob_store.get(handle.ref)[1] == IMAGE_BYTES

    async def test_relative_artifact_name(self, preview_service, blob_store):
        source = blob_store.create(IMAGE_BYTES, "image/jpeg")

        artifact = await preview_service.encrypt_for_send(source.ref)
        handle = await preview_service.decrypt_for_display(artifact.name)

        assert blob_store.get(handle.ref)[1] == IMAGE_BYTES

    async def test_each_send_gets_its_own_artifact(self, preview_service, blob_store):
        source = blob_store.create(IMAGE_BYTES, "image/jpeg")

        first = await preview_service.encrypt_for_send(source.ref)
        second = await preview_service.encrypt_for_send(source.ref)

        assert first != second
        assert first.read_bytes() != second.read_bytes()

    async def test_send_uses_persisted_key(self, preview_service, key_store, blob_store):
        source = blob_store.create(IMAGE_BYTES, "image/jpeg")

        await preview_service.encrypt_for_send(source.ref)

        assert key_store.default_path.exists()

    @pytest.mark.parametrize("ref", [
        "http://cdn.example.com/a.jpg",
        "/etc/passwd",
        "file:///etc/passwd",
    ])
    async def test_send_refuses_non_https_sources(self, preview_service, ref):
        with pytest.raises(SuspiciousUrl):
            await preview_service.encrypt_for_send(ref)

    async def test_send_from_https_url(self, preview_service, encrypted_dir):
        preview_service.crypto_service = MagicMock()
        preview_service.crypto_service.encrypt_image = AsyncMock(side_effect=lambda src, key, dest: dest)

        artifact = await preview_service.encrypt_for_send(IMAGE_URL)

        args = preview_service.crypto_service.encrypt_image.call_args.args
        assert args[0] == IMAGE_URL
        assert artifact.parent == encrypted_dir

    async def test_receive_refuses_paths_outside_encrypted_dir(self, preview_service, tmp_path):
        outside = tmp_path / "elsewhere.enc"
        outside.write_bytes(b"0" * 64)

        with pytest.raises(PathOutsideArtifactDir):
            await preview_service.decrypt_for_display(str(outside))
        with pytest.raises(PathOutsideArtifactDir):
            await preview_service.decrypt_for_display("../elsewhere.enc")

    async def test_receive_from_url_passes_through(self, preview_service):
        preview_service.crypto_service = MagicMock()
        preview_service.crypto_service.decrypt_image_to_blob = AsyncMock()

        await preview_service.decrypt_for_display("https://cdn.example.com/a.enc")

        args = preview_service.crypto_service.decrypt_image_to_blob.call_args.args
        assert args[0] == "https://cdn.example.com/a.enc"


@pytest.mark.asyncio
class TestCleanup:
    """Tests for PreviewService.cleanup()."""

    async def test_cleanup_removes_artifact(self, preview_service, encrypted_dir):
        target = encrypted_dir / "decrypted.jpg"
        target.write_bytes(b"x")

        removed = await preview_service.cleanup("decrypted.jpg")

        assert removed == target.resolve()
        assert not target.exists()

    async def test_cleanup_missing_file(self, preview_service):
        with pytest.raises(DeleteFailed):
            await preview_service.cleanup("missing.jpg")

    async def test_cleanup_outside_encrypted_dir(self, preview_service, tmp_path):
        victim = tmp_path / "keep.txt"
        victim.write_text("keep")

        with pytest.raises(PathOutsideArtifactDir) as exc_info:
            await preview_service.cleanup(str(victim))
        assert isinstance(exc_info.value, FileSystemFailure)
        assert victim.exists()
