"""In-process blob registry backing object references handed to the UI."""

import logging
import uuid
from typing import Dict, Optional, Tuple

from safepreview.exceptions import BlobNotFound
from safepreview.models.media import BlobHandle


logger = logging.getLogger(__name__)

BLOB_REF_PREFIX = "blob:"


class BlobStore:
    """Holds decrypted or downloaded bytes until the UI revokes them."""

    def __init__(self):
        self._blobs: Dict[str, Tuple[BlobHandle, bytes]] = {}

    def create(self, data: bytes, content_type: str) -> BlobHandle:
        """Store bytes and return a handle for them."""
        ref = f"{BLOB_REF_PREFIX}{uuid.uuid4()}"
        handle = BlobHandle(ref=ref, content_type=content_type, size=len(data))
        self._blobs[ref] = (handle, bytes(data))
        logger.debug(f"Created blob {ref} ({handle.size} bytes, {content_type})")
        return handle

    def get(self, ref: str) -> Tuple[BlobHandle, bytes]:
        """Look up a blob.

        Raises:
            BlobNotFound: If the reference is unknown or revoked
        """
        try:
            return self._blobs[ref]
        except KeyError:
            raise BlobNotFound(f"Unknown blob reference: {ref}") from None

    def revoke(self, ref: str) -> Optional[BlobHandle]:
        """Drop a blob; revoking an unknown reference is a no-op."""
        entry = self._blobs.pop(ref, None)
        if entry is None:
            return None
        logger.debug(f"Revoked blob {ref}")
        return entry[0]

    def clear(self) -> None:
        self._blobs.clear()

    def __contains__(self, ref: str) -> bool:
        return ref in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)

    @staticmethod
    def is_blob_ref(ref: str) -> bool:
        return isinstance(ref, str) and ref.startswith(BLOB_REF_PREFIX)


_blob_store_instance: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Get singleton BlobStore instance."""
    global _blob_store_instance
    if _blob_store_instance is None:
        _blob_store_instance = BlobStore()
    return _blob_store_instance
