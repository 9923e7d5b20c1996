"""Exception hierarchy shared by the preview, fetch and cipher services."""


class SafePreviewError(Exception):
    """Base exception for safepreview operations."""
    pass


class MalformedUrl(SafePreviewError, ValueError):
    """Raised when a URL cannot be parsed."""
    pass


class SuspiciousUrl(SafePreviewError):
    """Raised when a URL is rejected by the link policy."""
    pass


class ImageFetchError(SafePreviewError):
    """Base exception for image download gating."""
    pass


class ImageTooLarge(ImageFetchError):
    """Raised when an image exceeds the configured size cap."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Image too large: {size / (1024 * 1024):.1f}MB "
            f"(max {limit / (1024 * 1024):.1f}MB)"
        )


class NotAnImage(ImageFetchError):
    """Raised when the remote resource is not declared as an image."""

    def __init__(self, content_type: str):
        self.content_type = content_type
        super().__init__(f"URL does not point to an image. Content-Type: {content_type or '<missing>'}")


class NetworkFailure(SafePreviewError):
    """Raised when an HTTP request fails or times out."""
    pass


class FileSystemFailure(SafePreviewError, OSError):
    """Raised when reading or writing a local file fails."""
    pass


class DeleteFailed(FileSystemFailure):
    """Raised when a decrypted artifact cannot be removed."""
    pass


class PathOutsideArtifactDir(FileSystemFailure):
    """Raised when a local path resolves outside the encrypted directory."""
    pass


class CipherFailure(SafePreviewError):
    """Raised for corrupt or undersized ciphertext and key mismatches."""
    pass


class BlobNotFound(SafePreviewError, KeyError):
    """Raised when a blob reference is unknown or already revoked."""

    def __str__(self):
        return Exception.__str__(self)
