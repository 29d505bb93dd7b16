import httpx

from helpers import run
from sitemapper.config import CrawlConfig
from sitemapper.fetcher import FetchFailure, FetchResult, PageFetcher, RateLimiter

CONFIG = CrawlConfig(retry_count=2, retry_backoff=0.0)


def fetch_with(handler, url="https://example.com/", config=CONFIG):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await PageFetcher(client, config).fetch(url)

    return run(go())


def test_successful_fetch_sends_user_agent():
    seen = {}

    def handler(request):
        seen["ua"] = request.headers["User-Agent"]
        return httpx.Response(
            200, text="<html></html>", headers={"Content-Type": "text/html", "Last-Modified": "x"}
        )

    result = fetch_with(handler)
    assert isinstance(result, FetchResult)
    assert result.status == 200
    assert result.is_html
    assert result.headers["last-modified"] == "x"
    assert seen["ua"] == CONFIG.user_agent


def test_server_errors_are_retried_then_succeed():
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, text="ok", headers={"Content-Type": "text/plain"})

    result = fetch_with(handler)
    assert isinstance(result, FetchResult)
    assert len(calls) == 3
    assert not result.is_html


def test_retries_are_bounded():
    calls = []

    def handler(request):
        calls.append(1)
        raise httpx.ConnectError("connection refused", request=request)

    result = fetch_with(handler)
    assert isinstance(result, FetchFailure)
    assert len(calls) == CONFIG.retry_count + 1
    assert "connection refused" in result.reason


def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(404)

    result = fetch_with(handler)
    assert isinstance(result, FetchFailure)
    assert result.status == 404
    assert len(calls) == 1


def test_html_detection_without_content_type():
    result = FetchResult("u", "https://example.com/page.html", 200, "", "", {})
    assert result.is_html
    assert not FetchResult("u", "https://example.com/data", 200, "application/json", "", {}).is_html
    assert FetchResult("u", "https://example.com/", 200, "application/xhtml+xml", "", {}).is_html


def test_robots_fetch():
    def handler(request):
        if request.url.path == "/robots.txt":
            return httpx.Response(200, text="User-agent: *\nDisallow: /x\n", headers={"Content-Type": "text/plain"})
        return httpx.Response(404)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await PageFetcher(client, CONFIG).fetch_robots("https://example.com/some/page/")

    assert run(go()) == "User-agent: *\nDisallow: /x\n"


def test_missing_robots_is_none():
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404))) as client:
            return await PageFetcher(client, CONFIG).fetch_robots("https://example.com/")

    assert run(go()) is None


def test_rate_limiter_without_delay_does_not_sleep():
    async def go():
        limiter = RateLimiter(0)
        for _ in range(3):
            await limiter.wait()
        return True

    assert run(go())


def test_unfollowed_redirect_statuses_are_failures():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(304)

    result = fetch_with(handler)
    assert isinstance(result, FetchFailure)
    assert result.status == 304
    assert len(calls) == 1
