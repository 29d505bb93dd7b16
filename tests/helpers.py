import asyncio
from typing import Callable, Optional

import httpx

from sitemapper.batch import BatchProcessor


def html(body: str, head: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


class FakeSite:
    """Serves canned responses for one host; every other host gets a 404."""

    def __init__(self, pages: dict, host: str = "example.com", robots: Optional[str] = None):
        self.pages = pages
        self.host = host
        self.robots = robots
        self.requests: list[str] = []
        self.failing: dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        path = request.url.path
        if request.url.host != self.host:
            return httpx.Response(404, text="not here")
        if path in self.failing:
            return self.failing[path](request)
        if path == "/robots.txt":
            if self.robots is None:
                return httpx.Response(404, text="")
            return httpx.Response(200, text=self.robots, headers={"Content-Type": "text/plain"})
        page = self.pages.get(path)
        if page is None:
            page = self.pages.get(path.rstrip("/") or "/")
        if page is None:
            return httpx.Response(404, text="missing")
        if isinstance(page, httpx.Response):
            return page
        if isinstance(page, tuple):
            body, headers = page
            return httpx.Response(200, text=body, headers=headers)
        return httpx.Response(200, text=page, headers={"Content-Type": "text/html; charset=utf-8"})

    def fetched_paths(self) -> list[str]:
        return [httpx.URL(u).path for u in self.requests if not u.endswith("/robots.txt")]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), follow_redirects=True)

    def processor(self) -> BatchProcessor:
        return BatchProcessor(client=self.client())


def run(coro):
    return asyncio.run(coro)
