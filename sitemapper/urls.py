"""URL canonicalization and small URL helpers."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import tldextract
from slugify import slugify

logger = logging.getLogger("sitemapper.urls")

PROTOCOL_RE = re.compile(r"^https?://", re.I)
# letters glued in front of a protocol, e.g. "lockhttps://example.com"
STRAY_PREFIX_RE = re.compile(r"^[a-z]+(?=https?://)", re.I)
FILE_EXTENSION_RE = re.compile(r"\.[a-z0-9]{2,4}$", re.I)

# bundled public suffix snapshot only, no network lookups
_extract = tldextract.TLDExtract(suffix_list_urls=())


def normalize_url(url: str) -> str:
    """Return the canonical form used to compare and store URLs.

    https is assumed when no protocol is given, the host is lowercased,
    query and fragment are dropped, and extension-less paths end in "/".
    Never raises: malformed input is returned unchanged.
    """
    raw = url
    clean = (url or "").strip()
    clean = STRAY_PREFIX_RE.sub("", clean, count=1)
    if not PROTOCOL_RE.match(clean):
        clean = "https://" + clean
    try:
        parts = urlsplit(clean)
        host = parts.hostname
        if not host:
            raise ValueError("missing host")
        netloc = host.lower()
        if ":" in netloc:
            netloc = f"[{netloc}]"
        if parts.port is not None:
            netloc = f"{netloc}:{parts.port}"
        path = parts.path or "/"
        if not FILE_EXTENSION_RE.search(path) and not path.endswith("/"):
            path += "/"
        return urlunsplit((parts.scheme.lower(), netloc, path, "", ""))
    except ValueError as e:
        logger.warning(f"Could not normalize URL {raw!r}: {e}")
        return raw


def validate_url(url: Optional[str]) -> Optional[str]:
    """Return an error message for an unusable seed URL, None when valid."""
    if not url or not url.strip():
        return "URL is required"
    url = url.strip()
    if not PROTOCOL_RE.match(url):
        return "URL must start with http:// or https://"
    try:
        parts = urlsplit(url)
        if not parts.hostname:
            return "Invalid URL format"
        parts.port
    except ValueError:
        return "Invalid URL format"
    return None


def origin_of(url: str) -> Optional[str]:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc.lower()}"


def hostname_of(url: str) -> Optional[str]:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def sha1_short(s: str) -> str:
    return hashlib.sha1(s.encode("utf-8", errors="ignore")).hexdigest()[:8]


def derive_site_slug(site_url: str) -> str:
    ext = _extract(site_url)
    base = ".".join(p for p in (ext.subdomain, ext.domain, ext.suffix) if p)
    base = base or hostname_of(site_url) or site_url
    return slugify(base, max_length=60, allow_unicode=False).strip("-_.") or sha1_short(site_url)
