"""Persistent secret key store.

The key file holds the 32-byte key as 64 lowercase hex characters. The
key is loaded once per path and cached for the life of the process.
"""

import asyncio
import logging
import os
import secrets
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

import aiofiles

from safepreview.config import settings
from safepreview.exceptions import FileSystemFailure


logger = logging.getLogger(__name__)

KEY_LENGTH = 32


@dataclass(frozen=True, repr=False)
class SecretKey:
    """Raw symmetric key material. Never logged."""
    raw: bytes

    def __post_init__(self):
        if len(self.raw) != KEY_LENGTH:
            raise ValueError(f"Secret key must be {KEY_LENGTH} bytes")

    @classmethod
    def generate(cls) -> 'SecretKey':
        return cls(secrets.token_bytes(KEY_LENGTH))

    @classmethod
    def from_hex(cls, text: str) -> 'SecretKey':
        """Parse the on-disk encoding.

        Raises:
            ValueError: If the text is not exactly 64 hex characters
        """
        if len(text) != KEY_LENGTH * 2:
            raise ValueError("Secret key file has the wrong length")
        return cls(bytes.fromhex(text))

    def hex(self) -> str:
        return self.raw.hex()

    def __repr__(self) -> str:
        return "SecretKey(<redacted>)"


class SecretKeyStore:
    """Loads the secret key from disk, creating it on first use."""

    def __init__(self, default_path: Optional[Union[str, Path]] = None):
        """
        Initialize the key store.

        Args:
            default_path: Key file location. Defaults to configuration.
        """
        self.default_path = Path(default_path or settings.SECRET_KEY_PATH).expanduser()
        self._cache: Dict[Path, SecretKey] = {}
        self._lock = asyncio.Lock()

    async def get_secret_key(self, path_override: Optional[Union[str, Path]] = None) -> SecretKey:
        """
        Load the secret key, generating and persisting it if absent.

        Args:
            path_override: Key file to use instead of the default

        Returns:
            SecretKey: Cached key for the resolved path

        Raises:
            FileSystemFailure: If the key file cannot be read, written or parsed
        """
        path = Path(path_override).expanduser() if path_override else self.default_path

        cached = self._cache.get(path)
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._cache.get(path)
            if cached is not None:
                return cached

            key = await self._read_key(path)
            if key is None:
                logger.info(f"Creating a new secret key at {path}")
                key = await asyncio.to_thread(self._create_key_file, path)

            self._cache[path] = key
            return key

    def forget(self, path_override: Optional[Union[str, Path]] = None) -> None:
        """Drop a cached key so the next call reloads it from disk."""
        path = Path(path_override).expanduser() if path_override else self.default_path
        self._cache.pop(path, None)

    async def _read_key(self, path: Path) -> Optional[SecretKey]:
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                content = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise FileSystemFailure(f"Cannot read secret key file {path}: {e.strerror}") from e

        return self._parse(content, path)

    @staticmethod
    def _parse(content: str, path: Path) -> SecretKey:
        try:
            return SecretKey.from_hex(content.strip())
        except ValueError as e:
            raise FileSystemFailure(f"Secret key file {path} is corrupt") from e

    def _create_key_file(self, path: Path) -> SecretKey:
        """Atomically create the key file.

        The key is written to a temp file and hard-linked into place, so a
        concurrent creator either wins outright or sees FileExistsError and
        adopts the key that is already there.
        """
        key = SecretKey.generate()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix='.secret-', dir=path.parent)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(key.hex())
                    f.flush()
                    os.fsync(f.fileno())

                try:
                    os.link(tmp_name, path)
                except FileExistsError:
                    logger.info(f"Secret key at {path} was created concurrently, reusing it")
                    return self._parse(path.read_text(encoding='utf-8'), path)
            finally:
                try:
                    os.unlink(tmp_name)
                except OSError as e:
                    logger.warning(f"Could not remove temporary key file: {e.strerror}")
        except FileSystemFailure:
            raise
        except OSError as e:
            raise FileSystemFailure(f"Cannot create secret key file {path}: {e.strerror}") from e

        return key


_key_store_instance: Optional[SecretKeyStore] = None


def get_key_store() -> SecretKeyStore:
    """Get singleton SecretKeyStore instance."""
    global _key_store_instance
    if _key_store_instance is None:
        _key_store_instance = SecretKeyStore()
    return _key_store_instance
