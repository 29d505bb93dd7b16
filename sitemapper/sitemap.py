"""Sitemap XML generation (sitemaps.org protocol 0.9 with the image extension)."""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Iterable, Optional
from urllib.parse import urljoin, urlsplit

from lxml import etree

from .config import CHANGE_FREQUENCIES
from .errors import EmptySitemapError
from .models import PageRecord, format_timestamp, unique, utcnow
from .urls import normalize_url, origin_of

logger = logging.getLogger("sitemapper.sitemap")

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
IMAGE_NS = "http://www.google.com/schemas/sitemap-image/1.1"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'


def _newer(a: Optional[datetime], b: Optional[datetime]) -> bool:
    return a is not None and (b is None or a > b)


def merge_pair(first: PageRecord, second: PageRecord) -> PageRecord:
    """Keep the more recently modified record (``first`` on ties) with both image lists."""
    keep = second if _newer(second.last_modified, first.last_modified) else first
    return dataclasses.replace(keep, images=tuple(unique([*first.images, *second.images])))


def merge_records(pages: Iterable[PageRecord], hostname: Optional[str] = None) -> list[PageRecord]:
    """Normalize every URL and collapse records that share one, in first-seen order.

    Relative URLs are resolved against ``hostname``. Records whose URL
    cannot be normalized into an absolute http(s) URL are dropped.
    """
    merged: dict[str, PageRecord] = {}
    for page in pages:
        url = (page.url or "").strip()
        if not url:
            continue
        if hostname and not urlsplit(url).netloc and not url.lower().startswith(("http:", "https:")):
            url = urljoin(hostname.rstrip("/") + "/", url)
        url = normalize_url(url)
        if origin_of(url) is None:
            logger.warning(f"Dropping sitemap entry with unusable URL: {page.url!r}")
            continue
        record = page.with_url(url)
        existing = merged.get(url)
        merged[url] = merge_pair(existing, record) if existing else record
    return list(merged.values())


def filter_images(images: Iterable[str]) -> list[str]:
    """Drop data URIs, inline SVG and base64 payloads, then deduplicate."""
    kept = []
    for image in images:
        value = (image or "").strip()
        lowered = value.lower()
        if not value or lowered.startswith(("data:", "<svg")) or "base64" in lowered:
            continue
        kept.append(value)
    return unique(kept)


def _q(tag: str, ns: str = SITEMAP_NS) -> str:
    return f"{{{ns}}}{tag}"


def build_urlset(
    records: list[PageRecord],
    include_images: bool = False,
    default_lastmod: Optional[datetime] = None,
    default_changefreq: str = "weekly",
) -> str:
    """Serialize records without any indentation."""
    fallback = default_lastmod or utcnow()
    images_by_url = {r.url: filter_images(r.images) if include_images else [] for r in records}
    nsmap = {None: SITEMAP_NS}
    if any(images_by_url.values()):
        nsmap["image"] = IMAGE_NS

    root = etree.Element(_q("urlset"), nsmap=nsmap)
    for record in records:
        url_el = etree.SubElement(root, _q("url"))
        etree.SubElement(url_el, _q("loc")).text = record.url
        etree.SubElement(url_el, _q("lastmod")).text = format_timestamp(record.last_modified or fallback)
        changefreq = record.change_frequency if record.change_frequency in CHANGE_FREQUENCIES else default_changefreq
        etree.SubElement(url_el, _q("changefreq")).text = changefreq
        priority = min(1.0, max(0.0, record.priority))
        etree.SubElement(url_el, _q("priority")).text = f"{priority:.1f}"
        for image in images_by_url[record.url]:
            image_el = etree.SubElement(url_el, _q("image", IMAGE_NS))
            etree.SubElement(image_el, _q("loc", IMAGE_NS)).text = image
    return XML_DECLARATION + etree.tostring(root, encoding="unicode")


def format_xml(xml: str) -> str:
    """Re-indent serialized XML with two spaces. Content is left untouched."""
    body = xml
    if body.startswith("<?xml"):
        body = body[body.index("?>") + 2 :]
    parser = etree.XMLParser(remove_blank_text=True)
    root = etree.fromstring(body.strip().encode("utf-8"), parser)
    etree.indent(root, space="  ")
    return f"{XML_DECLARATION}\n{etree.tostring(root, encoding='unicode')}\n"


def generate_sitemap(
    pages: Iterable[PageRecord],
    hostname: Optional[str] = None,
    include_images: bool = False,
    pretty: bool = True,
    default_changefreq: str = "weekly",
    default_lastmod: Optional[datetime] = None,
) -> str:
    pages = list(pages)
    if not pages:
        raise EmptySitemapError("No pages provided for sitemap generation")
    records = merge_records(pages, hostname)
    if not records:
        raise EmptySitemapError("No valid URLs left for sitemap generation")
    if len(records) < len(pages):
        logger.info(f"Merged {len(pages)} page record(s) into {len(records)} sitemap entries")
    xml = build_urlset(records, include_images, default_lastmod, default_changefreq)
    return format_xml(xml) if pretty else xml
