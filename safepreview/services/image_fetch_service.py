"""Image download for link previews.

Images are gated on a HEAD request (declared size and content type)
before the body is fetched, and the body read is capped again while
streaming in case the server lied in its HEAD response. Redirects are
followed by hand on the HEAD so every hop passes the link policy; the GET
goes straight to the validated final URL and follows nothing.
"""

import asyncio
import logging
from typing import Optional, Tuple

import aiohttp

from safepreview.config import settings
from safepreview.exceptions import ImageTooLarge, NetworkFailure, NotAnImage, SuspiciousUrl
from safepreview.models.media import DownloadedImage
from safepreview.utils.security import REDIRECT_STATUSES, LinkValidator


logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536


class ImageFetchService:
    """Service for downloading preview images under a size and type gate."""

    def __init__(
        self,
        max_image_size: Optional[int] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None
    ):
        self.max_image_size = max_image_size or settings.MAX_IMAGE_SIZE
        self.user_agent = user_agent or settings.USER_AGENT
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self.max_redirects = settings.MAX_REDIRECTS if max_redirects is None else max_redirects

    async def download_image(self, url: str) -> Optional[bytes]:
        """
        Download image bytes.

        Args:
            url: Image URL

        Returns:
            Image bytes, or None if the link policy rejects the URL, its
            host is internal, or a redirect hop is disallowed

        Raises:
            ImageTooLarge: If the declared or actual size exceeds the cap
            NotAnImage: If the declared Content-Type is not image/*
            NetworkFailure: If a request fails, times out or returns non-2xx
        """
        image = await self.fetch_image(url)
        return image.data if image is not None else None

    async def fetch_image(self, url: str) -> Optional[DownloadedImage]:
        """Download an image, keeping the declared content type.

        See ``download_image`` for the gating rules.
        """
        if LinkValidator.is_link_suspicious(url) or LinkValidator.is_internal_host(url):
            logger.warning(f"Refusing to download suspicious image URL: {LinkValidator.mask_url(url)}")
            return None

        masked = LinkValidator.mask_url(url)
        headers = {'User-Agent': self.user_agent}
        timeout_obj = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout_obj) as session:
                try:
                    final_url, content_length, content_type = await self._head(session, url, headers)
                except SuspiciousUrl as e:
                    logger.warning(f"Image URL {masked} redirected to a disallowed location: {e}")
                    return None

                if content_length is not None and content_length > self.max_image_size:
                    raise ImageTooLarge(content_length, self.max_image_size)

                if not content_type.lower().startswith('image/'):
                    raise NotAnImage(content_type)

                # The HEAD already resolved redirects; the GET must not follow new ones
                async with session.get(final_url, headers=headers, allow_redirects=False) as response:
                    if not 200 <= response.status < 300:
                        raise NetworkFailure(f"HTTP {response.status}: Failed to download image from {masked}")

                    data = await self._read_capped(response)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkFailure(f"Failed to download image from {masked}: {e.__class__.__name__}") from e

        logger.info(f"Downloaded image from {masked} ({len(data)} bytes, {content_type})")
        return DownloadedImage(data=data, content_type=content_type.split(';')[0].strip())

    async def _head(
        self,
        session: aiohttp.ClientSession,
        url: str,
        headers: dict
    ) -> Tuple[str, Optional[int], str]:
        """HEAD an image URL, validating every redirect hop.

        Returns:
            Final URL, declared Content-Length and Content-Type

        Raises:
            SuspiciousUrl: If a redirect points somewhere disallowed
            NetworkFailure: On non-2xx or too many redirects
        """
        target = url
        for _ in range(self.max_redirects + 1):
            async with session.head(target, headers=headers, allow_redirects=False) as head:
                if head.status in REDIRECT_STATUSES:
                    target = LinkValidator.follow_redirect(target, head.headers.get('Location'))
                    continue

                if not 200 <= head.status < 300:
                    raise NetworkFailure(f"HTTP {head.status}: HEAD failed for {LinkValidator.mask_url(target)}")

                return (
                    target,
                    self._parse_content_length(head.headers.get('Content-Length')),
                    head.headers.get('Content-Type') or '',
                )

        raise NetworkFailure(f"Too many redirects for {LinkValidator.mask_url(url)}")

    async def _read_capped(self, response) -> bytes:
        """Read a response body, aborting once it exceeds the size cap."""
        buffer = bytearray()
        async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
            buffer.extend(chunk)
            if len(buffer) > self.max_image_size:
                raise ImageTooLarge(len(buffer), self.max_image_size)
        return bytes(buffer)

    @staticmethod
    def _parse_content_length(value: Optional[str]) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None


_image_fetch_service_instance: Optional[ImageFetchService] = None


def get_image_fetch_service() -> ImageFetchService:
    """Get singleton ImageFetchService instance."""
    global _image_fetch_service_instance
    if _image_fetch_service_instance is None:
        _image_fetch_service_instance = ImageFetchService()
    return _image_fetch_service_instance
