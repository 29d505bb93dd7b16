"""Round-based website crawler that emits sitemaps.org XML sitemaps."""

from .batch import BatchProcessor, RemoteBatchWorker, priority_for_depth
from .config import CrawlConfig
from .coordinator import CrawlCoordinator
from .errors import (
    ConfigError,
    CrawlNotFoundError,
    EmptySitemapError,
    InvalidRequestError,
    SitemapperError,
    StateCapacityError,
)
from .models import BatchResult, CrawlState, FrontierEntry, PageRecord
from .service import SitemapService
from .sitemap import generate_sitemap, merge_records
from .store import JsonFileStateStore, MemoryStateStore, StateStore
from .urls import normalize_url

__version__ = "1.0.0"

__all__ = [
    "BatchProcessor",
    "BatchResult",
    "ConfigError",
    "CrawlConfig",
    "CrawlCoordinator",
    "CrawlNotFoundError",
    "CrawlState",
    "EmptySitemapError",
    "FrontierEntry",
    "InvalidRequestError",
    "JsonFileStateStore",
    "MemoryStateStore",
    "PageRecord",
    "RemoteBatchWorker",
    "SitemapService",
    "SitemapperError",
    "StateCapacityError",
    "StateStore",
    "generate_sitemap",
    "merge_records",
    "normalize_url",
    "priority_for_depth",
]
