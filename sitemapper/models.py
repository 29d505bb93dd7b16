"""Data models shared by the crawl pipeline."""

from __future__ import annotations

import dataclasses
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, Mapping, Optional

from .config import CrawlConfig


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO 8601 or RFC 2822 (HTTP date) text into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                dt = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


@dataclasses.dataclass(frozen=True)
class PageRecord:
    """One sitemap entry candidate."""

    url: str
    last_modified: Optional[datetime] = None
    change_frequency: str = "weekly"
    priority: float = 0.7
    images: tuple[str, ...] = ()

    def with_url(self, url: str) -> "PageRecord":
        return dataclasses.replace(self, url=url)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "changefreq": self.change_frequency,
            "priority": self.priority,
        }
        if self.last_modified is not None:
            data["lastmod"] = format_timestamp(self.last_modified)
        if self.images:
            data["images"] = list(self.images)
        return data

    @staticmethod
    def from_dict(data: Mapping[str, Any], defaults: Optional[CrawlConfig] = None) -> "PageRecord":
        defaults = defaults or CrawlConfig()
        priority = data.get("priority")
        return PageRecord(
            url=str(data.get("url") or ""),
            last_modified=parse_timestamp(data.get("lastmod")),
            change_frequency=data.get("changefreq") or defaults.change_frequency,
            priority=float(priority) if priority is not None else defaults.priority,
            images=tuple(data.get("images") or ()),
        )


@dataclasses.dataclass(frozen=True)
class FrontierEntry:
    url: str
    depth: int

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "depth": self.depth}

    @staticmethod
    def from_dict(data: Any) -> "FrontierEntry":
        # bare strings come from snapshots written before depths were tracked
        if isinstance(data, str):
            return FrontierEntry(url=data, depth=0)
        return FrontierEntry(url=data["url"], depth=int(data.get("depth", 0)))


@dataclasses.dataclass
class BatchResult:
    """Output of one batch of frontier URLs."""

    processed_pages: list[PageRecord] = dataclasses.field(default_factory=list)
    new_urls: set[str] = dataclasses.field(default_factory=set)
    link_depths: dict[str, int] = dataclasses.field(default_factory=dict)
    excluded_urls: list[str] = dataclasses.field(default_factory=list)

    def add_link(self, url: str, depth: Optional[int]) -> None:
        self.new_urls.add(url)
        if depth is None:
            return
        known = self.link_depths.get(url)
        if known is None or depth < known:
            self.link_depths[url] = depth

    def to_dict(self) -> dict[str, Any]:
        return {
            "processedUrls": [p.to_dict() for p in self.processed_pages],
            "newUrls": sorted(self.new_urls),
            "linkDepths": dict(self.link_depths),
            "excludedUrls": list(self.excluded_urls),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any], defaults: Optional[CrawlConfig] = None) -> "BatchResult":
        return BatchResult(
            processed_pages=[PageRecord.from_dict(p, defaults) for p in data.get("processedUrls") or ()],
            new_urls=set(data.get("newUrls") or ()),
            link_depths={k: int(v) for k, v in (data.get("linkDepths") or {}).items()},
            excluded_urls=list(data.get("excludedUrls") or ()),
        )


@dataclasses.dataclass
class CrawlState:
    """Everything needed to resume a crawl between rounds.

    ``discovered`` only ever grows and holds every URL that is processed,
    excluded, pending or in flight.
    """

    crawl_id: str
    root_url: str
    config: CrawlConfig
    all_urls: list[str] = dataclasses.field(default_factory=list)
    processed: dict[str, PageRecord] = dataclasses.field(default_factory=dict)
    pending: list[FrontierEntry] = dataclasses.field(default_factory=list)
    discovered: set[str] = dataclasses.field(default_factory=set)
    depths: dict[str, int] = dataclasses.field(default_factory=dict)
    attempts: dict[str, int] = dataclasses.field(default_factory=dict)
    excluded: set[str] = dataclasses.field(default_factory=set)
    current_batch: list[FrontierEntry] = dataclasses.field(default_factory=list)
    current_depth: int = 0
    start_time: float = dataclasses.field(default_factory=time.time)
    end_time: Optional[float] = None
    counters: dict[str, int] = dataclasses.field(
        default_factory=lambda: {"total": 0, "processed": 0, "pending": 0}
    )
    is_cancelled: bool = False
    is_complete: bool = False
    # pages fetched so far, sitemap entry or not; survives shrink_state
    handled_count: int = 0

    @property
    def is_finished(self) -> bool:
        return self.is_complete or self.is_cancelled

    def discover(self, url: str, depth: int) -> bool:
        if url in self.discovered:
            return False
        self.discovered.add(url)
        self.all_urls.append(url)
        self.depths[url] = depth
        self.pending.append(FrontierEntry(url, depth))
        self.counters["total"] += 1
        return True

    def refresh_counters(self) -> None:
        self.counters["total"] = len(self.discovered)
        self.counters["processed"] = len(self.processed)
        self.counters["pending"] = len(self.pending)

    def requeue_in_flight(self) -> list[FrontierEntry]:
        """Put URLs left in flight back at the front of the frontier."""
        entries = list(self.current_batch)
        if entries:
            in_flight = {e.url for e in entries}
            self.pending = entries + [e for e in self.pending if e.url not in in_flight]
            self.current_batch = []
            self.refresh_counters()
        return entries

    def records(self) -> list[PageRecord]:
        return list(self.processed.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "crawlId": self.crawl_id,
            "rootUrl": self.root_url,
            "config": self.config.to_dict(),
            "options": self.config.to_options(),
            "allUrls": list(self.all_urls),
            "processedUrls": {url: rec.to_dict() for url, rec in self.processed.items()},
            "pendingUrls": [e.to_dict() for e in self.pending],
            "discovered": list(self.all_urls),
            "depths": dict(self.depths),
            "attempts": dict(self.attempts),
            "excludedUrls": sorted(self.excluded),
            "currentBatchUrls": [e.to_dict() for e in self.current_batch],
            "currentDepth": self.current_depth,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "urlsCount": dict(self.counters),
            "isCancelled": self.is_cancelled,
            "isComplete": self.is_complete,
            "handledCount": self.handled_count,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "CrawlState":
        if data.get("config"):
            config = CrawlConfig.from_mapping(data["config"])
        else:
            config = CrawlConfig.from_options(data.get("options"))
        all_urls = list(data.get("allUrls") or ())
        discovered = data.get("discovered") or all_urls
        processed = {
            url: PageRecord.from_dict(rec, config) for url, rec in (data.get("processedUrls") or {}).items()
        }
        excluded = set(data.get("excludedUrls") or ())
        handled = data.get("handledCount")
        if handled is None:
            handled = len(processed) + len(excluded - processed.keys())
        state = CrawlState(
            crawl_id=data["crawlId"],
            root_url=data["rootUrl"],
            config=config,
            all_urls=all_urls,
            processed=processed,
            pending=[FrontierEntry.from_dict(e) for e in data.get("pendingUrls") or ()],
            discovered=set(discovered),
            depths={k: int(v) for k, v in (data.get("depths") or {}).items()},
            attempts={k: int(v) for k, v in (data.get("attempts") or {}).items()},
            excluded=excluded,
            current_batch=[FrontierEntry.from_dict(e) for e in data.get("currentBatchUrls") or ()],
            current_depth=int(data.get("currentDepth", 0)),
            start_time=float(data.get("startTime") or time.time()),
            end_time=data.get("endTime"),
            is_cancelled=bool(data.get("isCancelled", False)),
            is_complete=bool(data.get("isComplete", False)),
            handled_count=int(handled),
        )
        state.refresh_counters()
        return state


@dataclasses.dataclass(frozen=True)
class CrawlProgress:
    urls_scanned: int
    total_urls: int
    time_elapsed: str
    estimated_time_remaining: str
    current_url: str
    percent_complete: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "urlsScanned": self.urls_scanned,
            "totalUrls": self.total_urls,
            "timeElapsed": self.time_elapsed,
            "estimatedTimeRemaining": self.estimated_time_remaining,
            "currentUrl": self.current_url,
            "percentComplete": self.percent_complete,
        }


def format_elapsed(seconds: float) -> str:
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
