import pytest

from helpers import FakeSite, html
from sitemapper.config import CrawlConfig


@pytest.fixture
def fast_config() -> CrawlConfig:
    return CrawlConfig(retry_backoff=0.0, retry_count=1, request_timeout=2.0)


@pytest.fixture
def small_site() -> FakeSite:
    return FakeSite(
        {
            "/": html('<a href="/a">A</a> <a href="/b">B</a> <a href="https://other.com/x">ext</a>'),
            "/a": html('<a href="/c">C</a> <a href="/">home</a>'),
            "/b": html('<a href="/c#top">C again</a> <a href="/d">D</a>'),
            "/c": html('<a href="/e">E</a>'),
            "/d": html(""),
            "/e": html(""),
        }
    )
