"""Link preview models."""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from safepreview.models.safe_url import SafeUrl


@dataclass(frozen=True)
class ExtractedMetadata:
    """Raw values pulled out of a page before any URL validation."""
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


@dataclass(frozen=True)
class LinkMetadata:
    """Preview record handed to the chat UI."""
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[SafeUrl] = None
    preview_blob_ref: Optional[str] = None
    encrypted_image_ref: Optional[str] = None

    def with_refs(
        self,
        preview_blob_ref: Optional[str] = None,
        encrypted_image_ref: Optional[str] = None
    ) -> 'LinkMetadata':
        """Return a copy with blob/artifact references filled in."""
        return replace(
            self,
            preview_blob_ref=preview_blob_ref or self.preview_blob_ref,
            encrypted_image_ref=encrypted_image_ref or self.encrypted_image_ref,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "title": self.title,
            "description": self.description,
            "image_url": self.image_url.href if self.image_url else None,
            "preview_blob_ref": self.preview_blob_ref,
            "encrypted_image_ref": self.encrypted_image_ref,
        }
