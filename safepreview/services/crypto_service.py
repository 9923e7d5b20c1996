"""Streaming image encryption and decryption.

Artifact layout::

    [32 ASCII hex bytes: IV][AES-256-CBC ciphertext, PKCS7 padded]

There is no magic header, version byte or integrity tag. The format is
unauthenticated: tampering with the ciphertext is not detected.
"""

import asyncio
import logging
import os
from contextlib import aclosing
from enum import Enum
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, List, Optional, Union

import aiofiles
import aiofiles.os
import aiohttp
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from safepreview.config import settings
from safepreview.exceptions import (
    CipherFailure,
    DeleteFailed,
    FileSystemFailure,
    NetworkFailure,
    SafePreviewError,
    SuspiciousUrl,
)
from safepreview.models.media import BlobHandle
from safepreview.models.safe_url import SafeUrl
from safepreview.services.blob_store import BlobStore, get_blob_store
from safepreview.services.key_store import SecretKey
from safepreview.utils.security import REDIRECT_STATUSES, LinkValidator


logger = logging.getLogger(__name__)

IV_LENGTH = 16
IV_HEADER_LENGTH = IV_LENGTH * 2  # hex encoded
DERIVED_KEY_LENGTH = 32
BLOCK_SIZE_BITS = algorithms.AES.block_size

# scrypt parameters; fixed so existing artifacts stay readable
KDF_SALT = b"salt"
KDF_N = 2 ** 14
KDF_R = 8
KDF_P = 1

PathLike = Union[str, Path]


class ChunkMode(Enum):
    """How ciphertext chunks after the first are decrypted."""
    STREAMING = "streaming"
    # Legacy: fresh context per chunk seeded with the header IV. Only
    # correct when the whole ciphertext arrives in one chunk.
    RESEED_PER_CHUNK = "reseed"


def derive_key(secret_key: SecretKey) -> bytes:
    """Derive the AES-256 key from the secret key's hex text."""
    kdf = Scrypt(salt=KDF_SALT, length=DERIVED_KEY_LENGTH, n=KDF_N, r=KDF_R, p=KDF_P)
    return kdf.derive(secret_key.hex().encode('ascii'))


async def derive_key_async(secret_key: SecretKey) -> bytes:
    """Run the (deliberately slow) KDF off the event loop."""
    return await asyncio.to_thread(derive_key, secret_key)


class StreamEncryptor:
    """Cipher state for a single encryption."""

    def __init__(self, key: bytes, iv: Optional[bytes] = None):
        self.iv = iv if iv is not None else os.urandom(IV_LENGTH)
        if len(self.iv) != IV_LENGTH:
            raise CipherFailure(f"IV must be {IV_LENGTH} bytes")
        try:
            self._encryptor = Cipher(algorithms.AES(key), modes.CBC(self.iv)).encryptor()
        except ValueError as e:
            raise CipherFailure("Invalid encryption key") from e
        self._padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()

    def header(self) -> bytes:
        return self.iv.hex().encode('ascii')

    def update(self, chunk: bytes) -> bytes:
        return self._encryptor.update(self._padder.update(chunk))

    def finalize(self) -> bytes:
        return self._encryptor.update(self._padder.finalize()) + self._encryptor.finalize()


class StreamDecryptor:
    """Cipher state for a single decryption.

    The IV header is buffered until all 32 hex bytes have arrived, even if
    the transport splits it, and is decoded exactly once.
    """

    def __init__(self, key: bytes, chunk_mode: ChunkMode = ChunkMode.STREAMING):
        self._key = key
        self.chunk_mode = chunk_mode
        self.iv: Optional[bytes] = None
        self._header = bytearray()
        self._decryptor = None
        self._unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        self._ciphertext_length = 0

    def feed(self, chunk: bytes) -> bytes:
        """Decrypt the next transport chunk, returning any plaintext ready."""
        if self.iv is None:
            self._header.extend(chunk)
            if len(self._header) < IV_HEADER_LENGTH:
                return b''

            buffered = bytes(self._header)
            self._header.clear()
            self.iv = self._parse_iv(buffered[:IV_HEADER_LENGTH])
            self._decryptor = self._new_context()
            return self._decrypt(buffered[IV_HEADER_LENGTH:])

        if self.chunk_mode is ChunkMode.RESEED_PER_CHUNK:
            self._reseed()
        return self._decrypt(chunk)

    def finalize(self) -> bytes:
        """Flush the last block and strip padding.

        Raises:
            CipherFailure: If the stream was truncated or the key is wrong
        """
        if self.iv is None:
            raise CipherFailure("Encrypted stream is shorter than its IV header")

        try:
            tail = self._decryptor.finalize()
        except ValueError as e:
            raise CipherFailure("Ciphertext is not a whole number of blocks") from e

        if self._ciphertext_length == 0:
            raise CipherFailure("Encrypted stream contains no ciphertext")

        try:
            return self._unpadder.update(tail) + self._unpadder.finalize()
        except ValueError as e:
            raise CipherFailure("Invalid padding: wrong key or corrupt ciphertext") from e

    @staticmethod
    def _parse_iv(header: bytes) -> bytes:
        try:
            return bytes.fromhex(header.decode('ascii'))
        except (UnicodeDecodeError, ValueError) as e:
            raise CipherFailure("IV header is not valid hex") from e

    def _new_context(self):
        try:
            return Cipher(algorithms.AES(self._key), modes.CBC(self.iv)).decryptor()
        except ValueError as e:
            raise CipherFailure("Invalid decryption key") from e

    def _reseed(self):
        try:
            self._decryptor.finalize()
        except ValueError as e:
            raise CipherFailure("Chunk boundary does not align with the cipher block size") from e
        self._decryptor = self._new_context()

    def _decrypt(self, data: bytes) -> bytes:
        self._ciphertext_length += len(data)
        return self._unpadder.update(self._decryptor.update(data))


async def _single_chunk(data: bytes) -> AsyncIterator[bytes]:
    yield data


class ImageCryptoService:
    """
    Service for encrypting images at rest and decrypting them for display.

    Sources are either http(s) URLs, streamed with aiohttp after passing the
    link policy, or local file paths read with aiofiles.
    """

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        chunk_size: Optional[int] = None,
        chunk_mode: Optional[Union[ChunkMode, str]] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        max_redirects: Optional[int] = None
    ):
        self.blob_store = blob_store or get_blob_store()
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self.chunk_mode = ChunkMode(chunk_mode or settings.DECRYPT_CHUNK_MODE)
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self.user_agent = user_agent or settings.USER_AGENT
        self.max_redirects = settings.MAX_REDIRECTS if max_redirects is None else max_redirects

        if self.chunk_mode is ChunkMode.RESEED_PER_CHUNK:
            logger.warning(
                "Decryption uses legacy per-chunk reseeding; multi-chunk ciphertext will not decrypt correctly"
            )

    async def encrypt_image(self, source: str, secret_key: SecretKey, dest_path: PathLike) -> Path:
        """
        Encrypt an image from a URL or local path into an artifact file.

        Args:
            source: http(s) URL or local file path of the plaintext image
            secret_key: Secret key to derive the cipher key from
            dest_path: Artifact file to write

        Returns:
            Path: The artifact path

        Raises:
            SuspiciousUrl: If a URL source fails the link policy
            NetworkFailure: If a URL source cannot be fetched
            FileSystemFailure: If reading the source or writing the artifact fails
        """
        async with aclosing(self.iter_source(source)) as chunks:
            dest = await self.encrypt_stream(chunks, secret_key, dest_path)
        logger.info(f"Image from {self._describe(source)} has been encrypted and saved to {dest}")
        return dest

    async def encrypt_image_from_blob(
        self,
        blob_ref: str,
        secret_key: SecretKey,
        dest_path: Optional[PathLike] = None,
        include_iv: bool = False
    ) -> Path:
        """
        Encrypt bytes already held in the blob store.

        By default this writes ciphertext only, without the IV header, to the
        fixed artifact name; such output cannot be decrypted by
        ``decrypt_image``. Pass ``include_iv=True`` for the full layout.

        Raises:
            BlobNotFound: If the blob reference is unknown
            FileSystemFailure: If writing the artifact fails
        """
        _, data = self.blob_store.get(blob_ref)
        dest = Path(dest_path) if dest_path else settings.encrypted_path(settings.BLOB_ARTIFACT_NAME)

        dest = await self.encrypt_stream(_single_chunk(data), secret_key, dest, include_iv=include_iv)
        logger.info(f"Image has been encrypted and saved to {dest}")
        return dest

    async def encrypt_stream(
        self,
        chunks: AsyncIterable[bytes],
        secret_key: SecretKey,
        dest_path: PathLike,
        include_iv: bool = True
    ) -> Path:
        """
        Encrypt an async stream of plaintext chunks into a file.

        The IV header is written before the first source chunk is read.
        Chunks are processed strictly in arrival order. On failure the
        partially written file is left in place.
        """
        dest = Path(dest_path)
        key = await derive_key_async(secret_key)
        encryptor = StreamEncryptor(key)

        try:
            await aiofiles.os.makedirs(dest.parent, exist_ok=True)
            async with aiofiles.open(dest, 'wb') as output:
                if include_iv:
                    await output.write(encryptor.header())

                async for chunk in chunks:
                    await output.write(encryptor.update(chunk))

                await output.write(encryptor.finalize())
        except SafePreviewError:
            raise
        except OSError as e:
            raise FileSystemFailure(f"Failed to write encrypted artifact {dest}: {e.strerror}") from e

        return dest

    async def decrypt_image(
        self,
        source: str,
        secret_key: SecretKey,
        dest_path: PathLike,
        chunk_mode: Optional[ChunkMode] = None
    ) -> Path:
        """
        Decrypt an artifact from a URL or local path into a file.

        Raises:
            CipherFailure: If the artifact is corrupt, truncated or keyed differently
            NetworkFailure: If a URL source cannot be fetched
            FileSystemFailure: If reading the source or writing the output fails
        """
        dest = Path(dest_path)

        try:
            await aiofiles.os.makedirs(dest.parent, exist_ok=True)
            async with aclosing(self.iter_source(source)) as chunks, \
                    aclosing(self.decrypt_stream(chunks, secret_key, chunk_mode)) as plaintext, \
                    aiofiles.open(dest, 'wb') as output:
                async for chunk in plaintext:
                    await output.write(chunk)
        except SafePreviewError:
            raise
        except OSError as e:
            raise FileSystemFailure(f"Failed to write decrypted file {dest}: {e.strerror}") from e

        logger.info(f"Artifact from {self._describe(source)} has been decrypted to {dest}")
        return dest

    async def decrypt_image_to_blob(
        self,
        source: str,
        secret_key: SecretKey,
        content_type: Optional[str] = None,
        chunk_mode: Optional[ChunkMode] = None
    ) -> BlobHandle:
        """
        Decrypt an artifact into memory and register it as a blob.

        Returns:
            BlobHandle: Handle with the declared content type
        """
        chunks: List[bytes] = []
        async with aclosing(self.iter_source(source)) as encrypted, \
                aclosing(self.decrypt_stream(encrypted, secret_key, chunk_mode)) as plaintext:
            async for chunk in plaintext:
                chunks.append(chunk)

        handle = self.blob_store.create(b''.join(chunks), content_type or settings.BLOB_CONTENT_TYPE)
        logger.info(f"Artifact from {self._describe(source)} has been decrypted to {handle.ref}")
        return handle

    async def decrypt_stream(
        self,
        chunks: AsyncIterable[bytes],
        secret_key: SecretKey,
        chunk_mode: Optional[ChunkMode] = None
    ) -> AsyncIterator[bytes]:
        """
        Decrypt an async stream of artifact chunks, yielding plaintext.

        Raises:
            CipherFailure: If the stream is not a valid artifact for this key
        """
        key = await derive_key_async(secret_key)
        decryptor = StreamDecryptor(key, chunk_mode or self.chunk_mode)

        async for chunk in chunks:
            plaintext = decryptor.feed(chunk)
            if plaintext:
                yield plaintext

        tail = decryptor.finalize()
        if tail:
            yield tail

    async def cleanup_decrypted_file(self, path: PathLike) -> None:
        """
        Delete a decrypted file.

        Raises:
            DeleteFailed: On any I/O error, including a file that does not exist
        """
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise DeleteFailed(f"Failed to delete {path}: {e.strerror}") from e
        logger.info(f"Removed decrypted file {path}")

    async def iter_source(self, source: str) -> AsyncIterator[bytes]:
        """Yield the bytes of a URL or local file in arrival order."""
        if source.lower().startswith(('http://', 'https://')):
            inner = self._iter_url(source)
        else:
            inner = self._iter_file(source)

        async with aclosing(inner) as chunks:
            async for chunk in chunks:
                yield chunk

    async def _iter_url(self, source: str) -> AsyncIterator[bytes]:
        url = SafeUrl.parse(source)
        if LinkValidator.is_internal_host(url.href):
            raise SuspiciousUrl(f"Refusing to fetch from internal host: {url.sanitized}")

        timeout_obj = aiohttp.ClientTimeout(total=self.timeout)
        headers = {'User-Agent': self.user_agent}
        target = url.href

        try:
            async with aiohttp.ClientSession(timeout=timeout_obj) as session:
                for _ in range(self.max_redirects + 1):
                    async with session.get(target, headers=headers, allow_redirects=False) as response:
                        if response.status in REDIRECT_STATUSES:
                            target = LinkValidator.follow_redirect(target, response.headers.get('Location'))
                            continue

                        if response.status != 200:
                            raise NetworkFailure(f"HTTP {response.status}: Failed to fetch {url.sanitized}")

                        async for chunk in response.content.iter_chunked(self.chunk_size):
                            yield chunk
                        return

                raise NetworkFailure(f"Too many redirects for {url.sanitized}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkFailure(f"Failed to fetch {url.sanitized}: {e.__class__.__name__}") from e

    async def _iter_file(self, source: str) -> AsyncIterator[bytes]:
        try:
            async with aiofiles.open(source, 'rb') as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except OSError as e:
            raise FileSystemFailure(f"Failed to read {source}: {e.strerror}") from e

    @staticmethod
    def _describe(source: str) -> str:
        if source.lower().startswith(('http://', 'https://')):
            return LinkValidator.mask_url(source)
        return source


_crypto_service_instance: Optional[ImageCryptoService] = None


def get_crypto_service() -> ImageCryptoService:
    """Get singleton ImageCryptoService instance."""
    global _crypto_service_instance
    if _crypto_service_instance is None:
        _crypto_service_instance = ImageCryptoService()
    return _crypto_service_instance
