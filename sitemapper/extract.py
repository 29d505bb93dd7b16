"""HTML parsing: links, images, last-modified and robots meta directives."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Mapping, Optional
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from .models import parse_timestamp, unique, utcnow

SKIPPED_HREF_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "sms:", "ftp:")

LASTMOD_META_SELECTORS = (
    'meta[name="last-modified"]',
    'meta[property="article:modified_time"]',
    'meta[property="og:updated_time"]',
)


@dataclasses.dataclass
class PageContent:
    links: list[str]
    images: list[str]
    last_modified: datetime
    noindex: bool


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def extract_links(soup: BeautifulSoup, page_url: str) -> list[str]:
    """Resolve every anchor href against the page URL. Unresolvable hrefs are dropped."""
    links: list[str] = []
    for a in soup.find_all("a", href=True):
        href = (a.get("href") or "").strip()
        if not href or href.lower().startswith(SKIPPED_HREF_SCHEMES):
            continue
        try:
            absolute = urljoin(page_url, href)
            if urlsplit(absolute).scheme not in ("http", "https"):
                continue
        except ValueError:
            continue
        links.append(absolute)
    return unique(links)


def extract_images(soup: BeautifulSoup, page_url: str) -> list[str]:
    images: list[str] = []
    for img in soup.find_all("img", src=True):
        src = (img.get("src") or "").strip()
        if not src or src.lower().startswith("data:"):
            continue
        try:
            images.append(urljoin(page_url, src))
        except ValueError:
            continue
    return unique(images)


def has_noindex(soup: BeautifulSoup) -> bool:
    for meta in soup.select('meta[name="robots" i], meta[name="googlebot" i]'):
        if "noindex" in (meta.get("content") or "").lower():
            return True
    return False


def resolve_last_modified(soup: Optional[BeautifulSoup], headers: Mapping[str, str]) -> datetime:
    """Meta tags first, then the Last-Modified header, then now."""
    if soup is not None:
        for selector in LASTMOD_META_SELECTORS:
            meta = soup.select_one(selector)
            if meta is None:
                continue
            parsed = parse_timestamp(meta.get("content"))
            if parsed is not None:
                return parsed
    header = _header(headers, "last-modified")
    parsed = parse_timestamp(header)
    if parsed is not None:
        return parsed
    return utcnow()


def parse_page(
    html: str,
    page_url: str,
    headers: Optional[Mapping[str, str]] = None,
    include_images: bool = False,
) -> PageContent:
    soup = parse_html(html)
    return PageContent(
        links=extract_links(soup, page_url),
        images=extract_images(soup, page_url) if include_images else [],
        last_modified=resolve_last_modified(soup, headers or {}),
        noindex=has_noindex(soup),
    )


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None
