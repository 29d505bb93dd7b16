"""HTTP fetching with timeouts, bounded retries and typed failures."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
import time
from typing import Mapping, Optional, Union
from urllib.parse import urlsplit

import httpx

from .config import CrawlConfig

logger = logging.getLogger("sitemapper.fetcher")

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")

RETRIABLE_ERRORS = (httpx.ConnectError, httpx.TimeoutException, httpx.RemoteProtocolError)


@dataclasses.dataclass
class FetchResult:
    url: str
    final_url: str
    status: int
    content_type: str
    text: str
    headers: Mapping[str, str]

    @property
    def is_html(self) -> bool:
        ct = self.content_type.lower()
        if any(t in ct for t in HTML_CONTENT_TYPES):
            return True
        if not ct:
            return bool(re.search(r"\.(?:x?html?)$", urlsplit(self.final_url).path, flags=re.I))
        return False


@dataclasses.dataclass
class FetchFailure:
    url: str
    reason: str
    status: Optional[int] = None


Fetched = Union[FetchResult, FetchFailure]


class RateLimiter:
    """Keeps at least ``delay`` seconds between consecutive ``wait()`` returns."""

    def __init__(self, delay: float):
        self.delay = max(0.0, delay)
        self._lock = asyncio.Lock()
        self._last_time: float = 0.0

    async def wait(self) -> None:
        if self.delay <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            wait_for = self._last_time + self.delay - now
            if self._last_time and wait_for > 0:
                await asyncio.sleep(wait_for)
            self._last_time = time.monotonic()


def build_client(user_agent: str, timeout: float = 10.0, concurrency: int = 15) -> httpx.AsyncClient:
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en;q=0.7, *;q=0.5",
    }
    limits = httpx.Limits(max_keepalive_connections=20, max_connections=max(concurrency, 10))
    return httpx.AsyncClient(
        headers=headers, limits=limits, timeout=httpx.Timeout(timeout), follow_redirects=True
    )


class PageFetcher:
    """Fetches single URLs. Never raises for network or HTTP errors."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: CrawlConfig,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.client = client
        self.config = config
        self.logger = log or logging.LoggerAdapter(logger, extra={"crawl": "-"})

    async def fetch(self, url: str, timeout: Optional[float] = None) -> Fetched:
        timeout = timeout or self.config.request_timeout
        max_attempts = self.config.retry_count + 1
        headers = {"User-Agent": self.config.user_agent}
        attempt = 0
        last_error = "no attempt made"
        while attempt < max_attempts:
            attempt += 1
            try:
                resp = await self.client.get(url, timeout=timeout, headers=headers, follow_redirects=True)
                if resp.status_code >= 500:
                    raise httpx.HTTPStatusError(
                        f"Server error {resp.status_code}", request=resp.request, response=resp
                    )
            except (*RETRIABLE_ERRORS, httpx.HTTPStatusError) as e:
                last_error = str(e) or type(e).__name__
                if attempt < max_attempts:
                    wait = (2 ** (attempt - 1)) * self.config.retry_backoff
                    self.logger.warning(f"Attempt {attempt} failed for {url}: {last_error}. Retrying in {wait:.1f}s")
                    await asyncio.sleep(wait)
                continue
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                self.logger.warning(f"Non-retriable error for {url}: {e}")
                return FetchFailure(url=url, reason=str(e) or type(e).__name__)

            if not resp.is_success:
                return FetchFailure(url=url, reason=f"HTTP {resp.status_code}", status=resp.status_code)
            return FetchResult(
                url=url,
                final_url=str(resp.url),
                status=resp.status_code,
                content_type=resp.headers.get("Content-Type", ""),
                text=_decode(resp),
                headers=dict(resp.headers),
            )
        self.logger.warning(f"Giving up on {url} after {attempt} attempt(s): {last_error}")
        return FetchFailure(url=url, reason=last_error)

    async def fetch_robots(self, base_url: str) -> Optional[str]:
        """Fetch robots.txt text for the host of ``base_url``; None when unavailable."""
        parts = urlsplit(base_url)
        robots_url = f"{parts.scheme}://{parts.netloc}/robots.txt"
        result = await self.fetch(robots_url, timeout=self.config.effective_robots_timeout)
        if isinstance(result, FetchFailure):
            self.logger.info(f"No robots.txt for {parts.netloc} ({result.reason}), no restrictions apply")
            return None
        ctype = result.content_type.lower()
        if ctype == "" or "text" in ctype:
            return result.text
        return None


def _decode(resp: httpx.Response) -> str:
    try:
        return resp.text
    except UnicodeDecodeError:
        return resp.content.decode("utf-8", errors="replace")
