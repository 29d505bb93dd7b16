"""Crawl configuration.

One immutable ``CrawlConfig`` is resolved when a crawl starts and travels
with the crawl state, so every layer sees the same defaults.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigError

DEFAULT_USER_AGENT = "SitemapGenerator/1.0 (+https://www.sitemaps.org/)"

CHANGE_FREQUENCIES = ("always", "hourly", "daily", "weekly", "monthly", "yearly", "never")

# camelCase wire option -> (field name, converter)
_OPTION_FIELDS: dict[str, tuple[str, Any]] = {
    "maxDepth": ("max_depth", int),
    "maxPages": ("max_pages", int),
    "includeImages": ("include_images", bool),
    "excludeNoindex": ("exclude_noindex", bool),
    "respectRobotsTxt": ("respect_robots_txt", bool),
    "changeFrequency": ("change_frequency", str),
    "priority": ("priority", float),
    "crawlRate": ("crawl_rate", lambda ms: float(ms) / 1000.0),
    "requestTimeout": ("request_timeout", lambda ms: float(ms) / 1000.0),
    "retryCount": ("retry_count", int),
}


@dataclasses.dataclass(frozen=True)
class CrawlConfig:
    max_depth: int = 3
    max_pages: int = 1000
    include_images: bool = False
    exclude_noindex: bool = True
    respect_robots_txt: bool = True
    change_frequency: str = "weekly"
    priority: float = 0.7
    request_timeout: float = 10.0  # seconds per request
    robots_timeout: float = 5.0
    crawl_rate: float = 0.0  # seconds between rounds
    retry_count: int = 1
    retry_backoff: float = 0.5
    batch_size: int = 5
    concurrent_batches: int = 3
    max_batch_attempts: int = 3
    user_agent: str = DEFAULT_USER_AGENT
    state_keep_on_overflow: int = 100

    def __post_init__(self) -> None:
        if self.change_frequency not in CHANGE_FREQUENCIES:
            raise ConfigError(f"Unknown change frequency: {self.change_frequency!r}")
        if not 0.0 <= self.priority <= 1.0:
            raise ConfigError(f"Priority must be between 0.0 and 1.0, got {self.priority}")
        if self.max_depth < 0:
            raise ConfigError("max_depth must not be negative")
        for name in ("max_pages", "batch_size", "concurrent_batches", "max_batch_attempts"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")
        if self.request_timeout <= 0 or self.robots_timeout <= 0:
            raise ConfigError("Timeouts must be positive")
        if self.crawl_rate < 0 or self.retry_count < 0 or self.retry_backoff < 0:
            raise ConfigError("crawl_rate, retry_count and retry_backoff must not be negative")

    @property
    def round_size(self) -> int:
        return self.batch_size * self.concurrent_batches

    @property
    def effective_robots_timeout(self) -> float:
        return min(self.request_timeout, self.robots_timeout)

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "CrawlConfig":
        """Build from snake_case keys, ignoring keys that are not settings."""
        names = {f.name: f for f in dataclasses.fields(CrawlConfig)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            field = names.get(key)
            if field is None or value is None:
                continue
            default = field.default
            try:
                kwargs[key] = type(default)(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {key}: {value!r}") from e
        return CrawlConfig(**kwargs)

    @staticmethod
    def from_yaml(path: Path) -> "CrawlConfig":
        return CrawlConfig.from_mapping(load_yaml(path))

    @staticmethod
    def from_options(options: Optional[Mapping[str, Any]]) -> "CrawlConfig":
        """Build from the camelCase options object used on the wire."""
        kwargs: dict[str, Any] = {}
        for key, value in (options or {}).items():
            spec = _OPTION_FIELDS.get(key)
            if spec is None or value is None:
                continue
            name, convert = spec
            try:
                kwargs[name] = convert(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for option {key}: {value!r}") from e
        return CrawlConfig(**kwargs)

    def to_options(self) -> dict[str, Any]:
        return {
            "maxDepth": self.max_depth,
            "maxPages": self.max_pages,
            "includeImages": self.include_images,
            "excludeNoindex": self.exclude_noindex,
            "respectRobotsTxt": self.respect_robots_txt,
            "changeFrequency": self.change_frequency,
            "priority": self.priority,
            "crawlRate": int(self.crawl_rate * 1000),
            "requestTimeout": int(self.request_timeout * 1000),
            "retryCount": self.retry_count,
        }

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data

