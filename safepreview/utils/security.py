"""Link safety validation for URLs pasted into chat.

Every check here is pure: no DNS lookups, no network, no filesystem.
Rejections are reported as a boolean verdict rather than raised, so
malformed input is simply another kind of suspicious link. The one
exception is `follow_redirect`, which raises so fetch loops can abort.
"""

import ipaddress
import re
import string
import unicodedata
from typing import Iterable, Optional
from urllib.parse import urljoin, urlsplit, SplitResult

from safepreview.exceptions import MalformedUrl, SuspiciousUrl


MAX_HREF_LENGTH = 2 ** 12
MAX_HOSTNAME_LENGTH = 2048

# See <https://tools.ietf.org/html/rfc3986>.
UNRESERVED_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-._~")
GEN_DELIMS = frozenset(":/?#[]@")
SUB_DELIMS = frozenset("!$&'()*+,;=")
VALID_URI_CHARACTERS = UNRESERVED_CHARACTERS | GEN_DELIMS | SUB_DELIMS | {"%"}

# Schemes that always carry an authority component
SPECIAL_SCHEMES = frozenset({"http", "https", "ftp", "ws", "wss"})
FORBIDDEN_HOST_CHARACTERS = frozenset(' "#<>?@\\^`{|}')

ASCII_PATTERN = re.compile(r'[ -\u007f]')
CONTROL_OR_SPACE_PATTERN = re.compile(r'[\x00-\x20\x7f]')

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


class LinkValidator:
    """Link policy checks and log-safe URL rendering."""

    @staticmethod
    def check_parse_url(value) -> Optional[SplitResult]:
        """Strictly parse a URL, returning None instead of raising.

        Args:
            value: Candidate URL

        Returns:
            SplitResult if the value is a well-formed URL, None otherwise
        """
        if not isinstance(value, str) or not value:
            return None

        # RFC 3986 has no room for raw whitespace or control characters
        if CONTROL_OR_SPACE_PATTERN.search(value):
            return None

        try:
            parsed = urlsplit(value)
            # Accessing port validates it (non-numeric or out of range)
            parsed.port
        except ValueError:
            return None

        if not parsed.scheme:
            return None

        if parsed.scheme in SPECIAL_SCHEMES and not parsed.netloc:
            return None

        hostname = parsed.hostname
        if hostname and any(char in FORBIDDEN_HOST_CHARACTERS for char in hostname):
            return None

        return parsed

    @staticmethod
    def hostname_to_unicode(hostname: str) -> Optional[str]:
        """Decode punycode labels of a hostname.

        Returns:
            Unicode hostname, or None if an ``xn--`` label cannot be decoded
        """
        labels = []
        for label in hostname.split('.'):
            if label.startswith('xn--'):
                try:
                    label = label.encode('ascii').decode('idna')
                except UnicodeError:
                    return None
            labels.append(label)
        return '.'.join(labels)

    @staticmethod
    def is_mixed_script(hostname: str) -> bool:
        """Whether a hostname mixes ASCII and non-ASCII code points."""
        unicode_host = LinkValidator.hostname_to_unicode(hostname)
        if unicode_host is None:
            return True

        without_periods = unicodedata.normalize('NFKC', unicode_host).replace('.', '')
        has_ascii = ASCII_PATTERN.search(without_periods) is not None
        without_ascii = ASCII_PATTERN.sub('', without_periods)
        return has_ascii and len(without_ascii) > 0

    @staticmethod
    def is_link_suspicious(href) -> bool:
        """Decide whether a link must not be fetched.

        Checks run in order so cheap checks short-circuit the expensive ones:
        length cap, strict parse, https only, no credentials, hostname
        present and bounded, no percent-encoding in the hostname, at least
        two non-empty labels, no mixed-script hostname, and only RFC 3986
        characters after the authority.

        Args:
            href: Raw link text

        Returns:
            True if the link is suspicious, False if it may be fetched
        """
        if not isinstance(href, str):
            return True

        # Avoid extremely long urls
        if len(href) > MAX_HREF_LENGTH:
            return True

        url = LinkValidator.check_parse_url(href)
        if url is None:
            return True

        if url.scheme != 'https':
            return True

        if url.username or url.password:
            return True

        hostname = url.hostname
        if not hostname:
            return True

        if len(hostname) > MAX_HOSTNAME_LENGTH:
            return True

        # Encoded characters in the hostname are not allowed
        if '%' in hostname:
            return True

        labels = hostname.split('.')
        if len(labels) < 2 or any(not label for label in labels):
            return True

        if LinkValidator.is_mixed_script(hostname):
            return True

        start_of_path = href.find('/', len(url.scheme) + 5)
        path_and_hash = '' if start_of_path == -1 else href[start_of_path:]
        return any(char not in VALID_URI_CHARACTERS for char in path_and_hash)

    @staticmethod
    def sanitize_url(url: str) -> str:
        """Strip credentials, port, query and fragment from a URL.

        Args:
            url: URL that has already been checked to parse

        Returns:
            ``scheme://host/path``

        Raises:
            MalformedUrl: If the URL does not parse or has no hostname
        """
        parsed = LinkValidator.check_parse_url(url)
        if parsed is None or not parsed.hostname:
            raise MalformedUrl("Cannot sanitize a malformed URL")

        host = parsed.hostname
        if ':' in host:
            host = f"[{host}]"
        return f"{parsed.scheme}://{host}{parsed.path or '/'}"

    @staticmethod
    def is_allowed_domain(url: str, allowed_domains: Optional[Iterable[str]] = None) -> bool:
        """Allow-list gate applied after the link policy.

        Literal loopback, private, link-local and reserved addresses are
        always refused. With an empty allow-list every other host passes.

        Args:
            url: URL to check
            allowed_domains: Hostnames to allow; defaults to configuration

        Returns:
            True if the host may be contacted
        """
        if LinkValidator.is_internal_host(url):
            return False
        host = LinkValidator.check_parse_url(url).hostname

        if allowed_domains is None:
            from safepreview.config import settings
            allowed_domains = settings.allowed_domains

        domains = [domain.lower() for domain in allowed_domains]
        if not domains:
            return True
        return host in domains

    @staticmethod
    def is_internal_host(url: str) -> bool:
        """Check for hosts that must never be contacted.

        Unparseable URLs, ``localhost`` names and literal loopback, private,
        link-local, reserved, multicast or unspecified addresses count as
        internal. No DNS lookup is done.
        """
        parsed = LinkValidator.check_parse_url(url)
        if parsed is None or not parsed.hostname:
            return True

        host = parsed.hostname
        if host == 'localhost' or host.endswith('.localhost'):
            return True

        try:
            ip = ipaddress.ip_address(host)
        except ValueError:
            return False

        return (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        )

    @staticmethod
    def follow_redirect(current_url: str, location: Optional[str]) -> str:
        """Resolve a redirect ``Location`` and validate the next hop.

        Args:
            current_url: URL that answered with the redirect
            location: Raw ``Location`` header value

        Returns:
            Absolute URL of the next hop

        Raises:
            SuspiciousUrl: If the location is missing, fails the link
                policy or points at an internal host
        """
        if not location:
            raise SuspiciousUrl(f"Redirect without a location from {LinkValidator.mask_url(current_url)}")

        target = urljoin(current_url, location)
        if LinkValidator.is_link_suspicious(target) or LinkValidator.is_internal_host(target):
            raise SuspiciousUrl(f"Redirected to a disallowed URL: {LinkValidator.mask_url(target)}")
        return target

    @staticmethod
    def mask_url(url) -> str:
        """Render a URL for logging without credentials, query or fragment."""
        try:
            return LinkValidator.sanitize_url(url)
        except MalformedUrl:
            return "<malformed url>"


is_link_suspicious = LinkValidator.is_link_suspicious
sanitize_url = LinkValidator.sanitize_url
mask_url = LinkValidator.mask_url
