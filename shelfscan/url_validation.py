"""Checks applied to every URL before the transport fetches it.

Provider payloads hand us image URLs we did not build ourselves, so those go
through the same allow-list as the API endpoints. A host is allowed when it
equals an allowed domain or is a subdomain of one.
"""

import re
from typing import AbstractSet, Optional
from urllib.parse import urlparse

__all__ = ["URLValidationError", "ALLOWED_DOMAINS", "sanitize_url", "validate_url"]


class URLValidationError(ValueError):
    """A URL was rejected before any request was made."""
    pass


# Retailer sites, their APIs and image CDNs
ALLOWED_DOMAINS: AbstractSet[str] = frozenset({
    "amazon.com",
    "media-amazon.com",
    "ssl-images-amazon.com",
    "target.com",
    "scene7.com",
})

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_SUSPICIOUS = re.compile(r"\.\./|%2e%2e|<script", re.IGNORECASE)


def sanitize_url(url: str) -> str:
    """Drop surrounding whitespace, control characters and encoded NULs."""
    if not url:
        return ""
    return _CONTROL_CHARS.sub("", url.strip()).replace("%00", "")


def _host_allowed(host: str, allowed: AbstractSet[str]) -> bool:
    return any(host == domain or host.endswith("." + domain) for domain in allowed)


def validate_url(
    url: str,
    allowed_domains: Optional[AbstractSet[str]] = None,
    require_https: bool = False,
) -> str:
    """Sanitize ``url`` and make sure it is safe to fetch.

    Args:
        url: URL to check
        allowed_domains: Domains to accept (default: ``ALLOWED_DOMAINS``).
            An empty set accepts any host.
        require_https: Reject plain http

    Returns:
        The sanitized URL

    Raises:
        URLValidationError: If the URL is empty, not http(s), has no host,
            points outside the allowed domains or looks like an injection
    """
    url = sanitize_url(url)
    if not url:
        raise URLValidationError("URL is empty")

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https"):
        raise URLValidationError(f"Unsupported URL scheme: {scheme or '(none)'}")
    if require_https and scheme != "https":
        raise URLValidationError(f"URL must use https: {url}")

    host = (parsed.hostname or "").lower()
    if not host:
        raise URLValidationError(f"URL has no host: {url}")

    allowed = ALLOWED_DOMAINS if allowed_domains is None else allowed_domains
    if allowed and not _host_allowed(host, allowed):
        raise URLValidationError(f"Host '{host}' is not an allowed domain")

    match = _SUSPICIOUS.search(url)
    if match:
        raise URLValidationError(f"URL contains suspicious sequence: {match.group(0)!r}")

    return url
