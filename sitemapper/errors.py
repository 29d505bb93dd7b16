"""Exception types raised at the edges of the crawl pipeline.

Per-URL fetch and parse problems are not exceptions: they travel as
``FetchFailure`` values and end up as stub page records. The classes here
cover what the caller has to see.
"""

from __future__ import annotations


class SitemapperError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(SitemapperError):
    pass


class InvalidRequestError(SitemapperError):
    """Caller supplied input the pipeline cannot act on."""

    status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CrawlNotFoundError(InvalidRequestError):
    status = 404

    def __init__(self, crawl_id: str) -> None:
        super().__init__(f"Crawl session not found: {crawl_id}")
        self.crawl_id = crawl_id


class EmptySitemapError(InvalidRequestError):
    pass


class StateCapacityError(SitemapperError):
    """A state snapshot is larger than the store accepts."""

    def __init__(self, crawl_id: str, size: int, limit: int) -> None:
        super().__init__(f"State for {crawl_id} is {size} bytes, store limit is {limit}")
        self.crawl_id = crawl_id
        self.size = size
        self.limit = limit
