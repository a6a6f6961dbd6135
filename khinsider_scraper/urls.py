from __future__ import annotations

import ipaddress
from typing import Iterable
from urllib.parse import urljoin, urlsplit

from .errors import ValidationError

ALLOWED_SCHEMES = ("http", "https")


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def is_allowed_host(hostname: str, allowed_domains: Iterable[str]) -> bool:
    hostname = hostname.lower().rstrip(".")
    for domain in allowed_domains:
        domain = domain.lower()
        if hostname == domain or hostname.endswith("." + domain):
            return True
    return False


def validate_url(url: str, allowed_domains: Iterable[str]) -> str:
    """Return ``url`` unchanged if it is an http(s) URL on an allow-listed host.

    Raises ``ValidationError`` otherwise. Only the parsed hostname is checked,
    so an allowed domain appearing in the path or query does not count.
    """
    if not isinstance(url, str) or not url:
        raise ValidationError(f"Invalid URL: {url!r}")
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError as exc:
        raise ValidationError(f"Invalid URL: {url}") from exc

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise ValidationError(f"Only http(s) URLs are allowed, got: {parts.scheme or 'none'}")
    if not hostname:
        raise ValidationError(f"Invalid URL: {url}")
    if _is_ip_literal(hostname):
        raise ValidationError("IP addresses are not allowed in URLs")
    if not is_allowed_host(hostname, allowed_domains):
        raise ValidationError(f"URL domain not allowed: {hostname}")
    return url


def build_url(
    href: str | None,
    base_url: str,
    allowed_domains: Iterable[str],
) -> str | None:
    """Resolve ``href`` against ``base_url``.

    Returns None when there is nothing to resolve. A resolved URL that fails
    the allow-list still raises ``ValidationError``.
    """
    if not href or not isinstance(href, str):
        return None
    href = href.strip()
    if not href:
        return None
    try:
        full_url = urljoin(base_url, href)
    except ValueError:
        return None
    if not full_url:
        return None
    return validate_url(full_url, allowed_domains)
