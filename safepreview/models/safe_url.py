"""Validated URL value object."""

from dataclasses import dataclass

from safepreview.exceptions import SuspiciousUrl
from safepreview.utils.security import LinkValidator


@dataclass(frozen=True)
class SafeUrl:
    """A URL that has passed the link policy.

    Only ``SafeUrl.parse`` should build instances, so anything holding a
    SafeUrl can fetch it without re-validating.
    """
    href: str
    scheme: str
    host: str
    path: str
    query: str
    fragment: str

    @classmethod
    def parse(cls, href: str) -> 'SafeUrl':
        """Validate and split a URL.

        Raises:
            SuspiciousUrl: If the link policy rejects the URL
        """
        if LinkValidator.is_link_suspicious(href):
            raise SuspiciousUrl(f"Suspicious URL rejected: {LinkValidator.mask_url(href)}")

        parsed = LinkValidator.check_parse_url(href)
        return cls(
            href=href,
            scheme=parsed.scheme,
            host=parsed.hostname,
            path=parsed.path or '/',
            query=parsed.query,
            fragment=parsed.fragment,
        )

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def sanitized(self) -> str:
        """URL without credentials, query or fragment."""
        return f"{self.origin}{self.path}"

    def __str__(self) -> str:
        return self.href
