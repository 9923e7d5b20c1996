"""Link metadata (Open Graph / Twitter card) fetching for chat previews.

Previews are best effort: every failure is logged and reported as None.
"""

import logging
import re
from typing import Iterable, Optional, Protocol
from urllib.parse import urlsplit

import httpx
from bs4 import BeautifulSoup

from safepreview.config import settings
from safepreview.exceptions import SuspiciousUrl
from safepreview.models.link_metadata import ExtractedMetadata, LinkMetadata
from safepreview.models.safe_url import SafeUrl
from safepreview.utils.security import LinkValidator


logger = logging.getLogger(__name__)

ABSOLUTE_HTTP_PATTERN = re.compile(r'^https?://', re.IGNORECASE)


class MetadataExtractor(Protocol):
    """Pluggable HTML metadata extractor."""

    def extract(self, html: str, base_url: str) -> ExtractedMetadata: ...


class OpenGraphExtractor:
    """Default extractor reading Open Graph, Twitter card and plain HTML tags."""

    def extract(self, html: str, base_url: str) -> ExtractedMetadata:
        soup = BeautifulSoup(html, "html.parser")

        title = (
            self._meta(soup, property="og:title")
            or self._meta(soup, name="twitter:title")
            or self._title(soup)
        )
        description = (
            self._meta(soup, property="og:description")
            or self._meta(soup, name="twitter:description")
            or self._meta(soup, name="description")
        )
        image_url = (
            self._meta(soup, property="og:image")
            or self._meta(soup, name="twitter:image")
        )

        return ExtractedMetadata(title=title, description=description, image_url=image_url)

    @staticmethod
    def _meta(soup: BeautifulSoup, **attrs) -> Optional[str]:
        tag = soup.find("meta", attrs=attrs)
        if tag is None:
            return None
        content = tag.get("content")
        if not isinstance(content, str):
            return None
        return content.strip() or None

    @staticmethod
    def _title(soup: BeautifulSoup) -> Optional[str]:
        tag = soup.find("title")
        if tag is None:
            return None
        return tag.get_text().strip() or None


class MetadataService:
    """Service for building link previews from remote pages."""

    def __init__(
        self,
        extractor: Optional[MetadataExtractor] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        max_bytes: Optional[int] = None,
        allowed_domains: Optional[Iterable[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the metadata service.

        Args:
            extractor: HTML metadata extractor. Defaults to OpenGraphExtractor.
            timeout: Request timeout in seconds
            max_redirects: Redirect cap for page fetches
            max_bytes: Maximum page bytes read before parsing
            allowed_domains: Host allow-list. Defaults to configuration.
            transport: Optional httpx transport
        """
        self.extractor = extractor or OpenGraphExtractor()
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self.max_redirects = settings.MAX_REDIRECTS if max_redirects is None else max_redirects
        self.max_bytes = max_bytes or settings.METADATA_MAX_BYTES
        self.allowed_domains = list(allowed_domains) if allowed_domains is not None else None
        self.transport = transport

    async def get_metadata(self, url: str) -> Optional[LinkMetadata]:
        """
        Fetch a page and extract its preview metadata.

        Args:
            url: Link pasted by the user

        Returns:
            LinkMetadata, or None if the link is rejected or anything fails
        """
        if LinkValidator.is_link_suspicious(url) or not self._is_allowed(url):
            logger.error(f"Invalid URL or domain not allowed: {LinkValidator.mask_url(url)}")
            return None

        try:
            sanitized = LinkValidator.sanitize_url(url)
            html = await self._fetch_html(sanitized)
            extracted = self.extractor.extract(html, sanitized)
        except Exception as e:
            logger.error(f"Error fetching URL {LinkValidator.mask_url(url)}: {e.__class__.__name__}: {e}")
            return None

        return LinkMetadata(
            title=extracted.title,
            description=extracted.description,
            image_url=self.resolve_image_url(extracted.image_url, sanitized),
        )

    def resolve_image_url(self, image_url: Optional[str], page_url: str) -> Optional[SafeUrl]:
        """
        Make a possibly relative image URL absolute and validate it.

        Args:
            image_url: Image URL as found in the page
            page_url: Sanitized URL of the fetched page

        Returns:
            SafeUrl, or None if absent or rejected by the link policy
        """
        if not image_url:
            return None

        page = urlsplit(page_url)
        origin = f"{page.scheme}://{page.netloc}"

        if ABSOLUTE_HTTP_PATTERN.match(image_url):
            absolute = image_url
        elif image_url.startswith('//'):
            absolute = f"{page.scheme}:{image_url}"
        elif image_url.startswith('/'):
            absolute = f"{origin}{image_url}"
        else:
            absolute = f"{origin}/{image_url}"

        try:
            return SafeUrl.parse(absolute)
        except SuspiciousUrl:
            logger.warning(f"Dropping suspicious preview image URL: {LinkValidator.mask_url(absolute)}")
            return None

    async def _fetch_html(self, url: str) -> str:
        """GET a page, following at most ``max_redirects`` validated hops."""
        async with httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=self.max_redirects,
            timeout=self.timeout,
            transport=self.transport,
            event_hooks={'request': [self._check_hop]},
        ) as client:
            async with client.stream('GET', url) as response:
                response.raise_for_status()

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) >= self.max_bytes:
                        logger.debug(f"Page body truncated at {self.max_bytes} bytes")
                        del body[self.max_bytes:]
                        break

                encoding = response.encoding or 'utf-8'

        try:
            return body.decode(encoding, errors='replace')
        except LookupError:
            return body.decode('utf-8', errors='replace')

    async def _check_hop(self, request: httpx.Request) -> None:
        target = str(request.url)
        if LinkValidator.is_link_suspicious(target) or not self._is_allowed(target):
            raise SuspiciousUrl(f"Redirected to a disallowed URL: {LinkValidator.mask_url(target)}")

    def _is_allowed(self, url: str) -> bool:
        return LinkValidator.is_allowed_domain(url, self.allowed_domains)


_metadata_service_instance: Optional[MetadataService] = None


def get_metadata_service() -> MetadataService:
    """Get singleton MetadataService instance."""
    global _metadata_service_instance
    if _metadata_service_instance is None:
        _metadata_service_instance = MetadataService()
    return _metadata_service_instance
