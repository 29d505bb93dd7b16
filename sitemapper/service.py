"""Request-level operations: start, batch, sitemap, progress and cancel.

Every method validates its input and raises ``InvalidRequestError`` (or a
subclass) for anything the caller must fix; an HTTP layer only has to map
``error.status`` and ``error.message`` onto a response.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence, Union

from .config import CrawlConfig
from .coordinator import CrawlCoordinator, progress_of, stats_of
from .errors import ConfigError, EmptySitemapError, InvalidRequestError
from .models import PageRecord
from .sitemap import generate_sitemap
from .urls import origin_of, validate_url

logger = logging.getLogger("sitemapper.service")

XML_CONTENT_TYPE = "application/xml"

UrlItem = Union[str, PageRecord, Mapping[str, Any]]


class SitemapService:
    def __init__(self, coordinator: CrawlCoordinator) -> None:
        self.coordinator = coordinator

    def start_crawl(self, url: Optional[str], options: Optional[Mapping[str, Any]] = None) -> str:
        error = validate_url(url)
        if error:
            raise InvalidRequestError(error)
        config = _config_from(options)
        state = self.coordinator.start(url.strip(), config)
        return state.crawl_id

    async def process_batch(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        urls = payload.get("urls")
        base_url = payload.get("baseUrl")
        if not urls or not isinstance(urls, (list, tuple)):
            raise InvalidRequestError("URLs array is required")
        if not base_url:
            raise InvalidRequestError("Base URL is required")
        config = _config_from(payload.get("options"))
        depths = payload.get("depths") or None
        result = await self.coordinator.worker.process([str(u) for u in urls], base_url, config, depths)
        return {"results": result.to_dict()}

    def generate_sitemap(
        self,
        urls: Optional[Sequence[UrlItem]] = None,
        options: Optional[Mapping[str, Any]] = None,
        crawl_id: Optional[str] = None,
    ) -> tuple[str, str]:
        options = dict(options or {})
        root_url = None
        if crawl_id is not None:
            state = self.coordinator.load(crawl_id)
            config = state.config
            records = state.records()
            root_url = state.root_url
            options.setdefault("includeImages", config.include_images)
        else:
            config = _config_from(options)
            records = [_to_record(item, config) for item in urls or ()]
        if not records:
            raise EmptySitemapError("No URLs provided. Cannot generate sitemap.")

        hostname = options.get("hostname") or root_url or origin_of(records[0].url)
        if not hostname or origin_of(hostname) is None:
            raise InvalidRequestError("Could not determine the sitemap hostname")

        xml = generate_sitemap(
            records,
            hostname=hostname,
            include_images=bool(options.get("includeImages", False)),
            pretty=bool(options.get("pretty", True)),
            default_changefreq=config.change_frequency,
        )
        return xml, XML_CONTENT_TYPE

    def get_progress(self, crawl_id: str) -> dict[str, Any]:
        state = self.coordinator.load(crawl_id)
        if state.is_finished:
            return {
                "isComplete": True,
                "isCancelled": state.is_cancelled,
                "result": {
                    "urls": [r.to_dict() for r in state.records()],
                    "startUrl": state.root_url,
                    "crawlTime": stats_of(state)["crawlTime"],
                },
            }
        return {"isComplete": False, "progress": progress_of(state).to_dict()}

    def cancel(self, crawl_id: str) -> dict[str, Any]:
        self.coordinator.cancel(crawl_id)
        return {"success": True, "message": "Crawling canceled"}


def _config_from(options: Optional[Mapping[str, Any]]) -> CrawlConfig:
    try:
        return CrawlConfig.from_options(options)
    except ConfigError as e:
        raise InvalidRequestError(str(e)) from e


def _to_record(item: UrlItem, config: CrawlConfig) -> PageRecord:
    if isinstance(item, PageRecord):
        return item
    if isinstance(item, str):
        return PageRecord(url=item, change_frequency=config.change_frequency, priority=config.priority)
    if not isinstance(item, Mapping):
        raise InvalidRequestError(f"Invalid URL entry: {item!r}")
    try:
        return PageRecord.from_dict(item, config)
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"Invalid URL entry {item!r}: {e}") from e
