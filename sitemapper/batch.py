"""Batch processing: the unit of work a stateless fetch worker performs.

A batch is a handful of frontier URLs. Each one is fetched, classified,
parsed and turned into a ``PageRecord``; links that pass the inclusion
policy come back as candidates for the coordinator to deduplicate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Optional, Protocol, Sequence

import httpx

from .config import DEFAULT_USER_AGENT, CrawlConfig
from .extract import parse_page
from .fetcher import FetchFailure, PageFetcher, build_client
from .models import BatchResult, PageRecord
from .policy import InclusionPolicy, RobotsPolicy
from .urls import normalize_url, origin_of

logger = logging.getLogger("sitemapper.batch")


def priority_for_depth(depth: int) -> float:
    """1.0 for the root, 0.8 one hop away, then 0.2 less per hop down to 0.1."""
    if depth <= 0:
        return 1.0
    if depth == 1:
        return 0.8
    return round(max(0.1, 0.6 - (depth - 2) * 0.2), 1)


class BatchWorker(Protocol):
    async def process(
        self,
        urls: Sequence[str],
        base_url: str,
        config: CrawlConfig,
        depths: Optional[Mapping[str, int]] = None,
    ) -> BatchResult:
        ...


class BatchProcessor:
    """In-process batch worker.

    Use as an async context manager so the HTTP client is closed. Robots
    rules are cached per host for the lifetime of the processor.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._robots_cache: dict[str, RobotsPolicy] = {}
        self.logger = log or logging.LoggerAdapter(logger, extra={"crawl": "-"})

    async def __aenter__(self) -> "BatchProcessor":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_client(DEFAULT_USER_AGENT)
        return self._client

    async def robots_for(self, fetcher: PageFetcher, base_url: str, config: CrawlConfig) -> Optional[RobotsPolicy]:
        origin = origin_of(base_url)
        if origin is None:
            return None
        entry = self._robots_cache.get(origin)
        if entry is None:
            robots_text = await fetcher.fetch_robots(origin)
            entry = RobotsPolicy(robots_text, origin, config.user_agent)
            self._robots_cache[origin] = entry
            if robots_text:
                self.logger.debug(f"Loaded robots.txt for {origin}")
        return entry

    async def process(
        self,
        urls: Sequence[str],
        base_url: str,
        config: CrawlConfig,
        depths: Optional[Mapping[str, int]] = None,
    ) -> BatchResult:
        fetcher = PageFetcher(self.client, config, log=self.logger)
        robots = await self.robots_for(fetcher, base_url, config) if config.respect_robots_txt else None
        policy = InclusionPolicy(base_url, robots, config.respect_robots_txt)
        depths = depths or {}
        result = BatchResult()

        tasks = []
        for url in urls:
            if not policy.include(url):
                self.logger.debug(f"Skipping batch URL outside crawl policy: {url}")
                result.excluded_urls.append(normalize_url(url))
                continue
            depth = depths.get(url)
            if depth is None:
                depth = depths.get(normalize_url(url))
            tasks.append(self._process_isolated(fetcher, policy, url, depth, config, result))
        await asyncio.gather(*tasks)
        return result

    async def _process_isolated(
        self,
        fetcher: PageFetcher,
        policy: InclusionPolicy,
        url: str,
        depth: Optional[int],
        config: CrawlConfig,
        result: BatchResult,
    ) -> None:
        try:
            await self._process_url(fetcher, policy, url, depth, config, result)
        except Exception as e:
            self.logger.exception(f"Unhandled error processing {url}: {e}")
            result.processed_pages.append(stub_record(url, depth, config))

    async def _process_url(
        self,
        fetcher: PageFetcher,
        policy: InclusionPolicy,
        url: str,
        depth: Optional[int],
        config: CrawlConfig,
        result: BatchResult,
    ) -> None:
        fetched = await fetcher.fetch(url)
        if isinstance(fetched, FetchFailure):
            self.logger.warning(f"Failed to fetch {url}: {fetched.reason}")
            result.processed_pages.append(stub_record(url, depth, config))
            return
        if not fetched.is_html:
            self.logger.debug(f"Non-HTML response for {url} ({fetched.content_type or 'no content type'})")
            result.processed_pages.append(stub_record(url, depth, config))
            return

        page = parse_page(fetched.text, fetched.final_url, fetched.headers, config.include_images)

        if depth is None or depth < config.max_depth:
            link_depth = depth + 1 if depth is not None else None
            for link in policy.filter(page.links, source_url=fetched.final_url):
                result.add_link(normalize_url(link), link_depth)

        if config.exclude_noindex and page.noindex:
            self.logger.info(f"Excluding noindex page from sitemap: {url}")
            result.excluded_urls.append(normalize_url(url))
            return

        result.processed_pages.append(
            PageRecord(
                url=normalize_url(url),
                last_modified=page.last_modified,
                change_frequency=config.change_frequency,
                priority=_priority(depth, config),
                images=tuple(page.images),
            )
        )


class RemoteBatchWorker:
    """Sends batches to a batch-processing endpoint over HTTP.

    Transport and HTTP errors propagate so the coordinator can put the
    batch back on the frontier.
    """

    def __init__(self, endpoint: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 60.0) -> None:
        self.endpoint = endpoint
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = client is None

    async def __aenter__(self) -> "RemoteBatchWorker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def process(
        self,
        urls: Sequence[str],
        base_url: str,
        config: CrawlConfig,
        depths: Optional[Mapping[str, int]] = None,
    ) -> BatchResult:
        payload = {
            "urls": list(urls),
            "baseUrl": base_url,
            "options": config.to_options(),
            "depths": dict(depths or {}),
        }
        resp = await self._client.post(self.endpoint, json=payload)
        resp.raise_for_status()
        data = resp.json()
        return BatchResult.from_dict(data.get("results", data), config)


def stub_record(url: str, depth: Optional[int], config: CrawlConfig) -> PageRecord:
    """Minimal record for a URL that was handled but could not be parsed."""
    return PageRecord(
        url=normalize_url(url),
        change_frequency=config.change_frequency,
        priority=_priority(depth, config),
    )


def _priority(depth: Optional[int], config: CrawlConfig) -> float:
    return priority_for_depth(depth) if depth is not None else config.priority
