"""Canonicalization of URLs and attribution keys.

We keep canonicalization conservative but consistent: two URLs that only differ
in host case, default port or fragment are the same hop for loop detection, and
two hosts that only differ in case, trailing dot or IDNA form share one
attribution key.
"""

from __future__ import annotations

import ipaddress
from typing import Literal, Optional
from urllib.parse import urljoin, urlparse, urlunparse

KeyKind = Literal["ip", "domain"]


def _to_punycode(host: str) -> str:
    """Convert unicode hostname to punycode (idna)."""
    try:
        return host.encode("idna").decode("ascii")
    except Exception:
        return host


def _canonical_ip(value: str) -> Optional[str]:
    raw = value.strip()
    if raw.startswith("[") and raw.endswith("]"):
        raw = raw[1:-1]
    try:
        ip = ipaddress.ip_address(raw)
    except ValueError:
        return None
    # IPv4-mapped IPv6 senders are attributed as their IPv4 address.
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return ip.compressed


def attribution_key(value: str) -> tuple[str, KeyKind]:
    """Return (key, kind) for an IP literal or a hostname.

    Raises ValueError for empty input.
    """
    ip = _canonical_ip(value)
    if ip is not None:
        return ip, "ip"

    host = value.strip().rstrip(".").lower()
    if not host:
        raise ValueError("empty host")
    return _to_punycode(host), "domain"


def is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in ("http", "https") and bool(parsed.hostname)


def url_host(url: str) -> Optional[str]:
    """Return the normalized attribution key for the host of `url`."""
    try:
        host = urlparse(url.strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    try:
        return attribution_key(host)[0]
    except ValueError:
        return None


def canonical_url(url: str) -> str:
    """Canonical form of an absolute http(s) URL used for loop detection.

    Lowercases scheme and host, converts the host to punycode, strips default
    ports and the fragment. Path and query are kept verbatim.
    """
    parsed = urlparse(url.strip())
    scheme = (parsed.scheme or "http").lower()

    host = parsed.hostname or ""
    ip = _canonical_ip(host)
    if ip is not None:
        host = f"[{ip}]" if ":" in ip else ip
    else:
        host = _to_punycode(host.rstrip(".").lower())

    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is not None and not (
        (scheme == "http" and port == 80) or (scheme == "https" and port == 443)
    ):
        host = f"{host}:{port}"

    userinfo = ""
    if "@" in parsed.netloc:
        userinfo = parsed.netloc.rsplit("@", 1)[0] + "@"

    return urlunparse((scheme, f"{userinfo}{host}", parsed.path or "/", "", parsed.query or "", ""))


def resolve_location(base_url: str, location: str) -> Optional[str]:
    """Resolve a Location header against the URL that returned it.

    Returns None when the result is not an absolute http(s) URL.
    """
    value = location.strip()
    if not value:
        return None
    try:
        target = urljoin(base_url, value)
    except ValueError:
        return None
    return target if is_http_url(target) else None
