"""Image payload and blob handle models."""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class DownloadedImage:
    """Image bytes together with the content type the server declared."""
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class BlobHandle:
    """Reference to bytes held in the in-process blob store."""
    ref: str
    content_type: str
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref": self.ref,
            "content_type": self.content_type,
            "size": self.size,
        }
