"""Rules deciding which discovered URLs may enter the frontier."""

from __future__ import annotations

import logging
from typing import Iterable, Optional
from urllib import robotparser
from urllib.parse import urldefrag, urlsplit

from .urls import hostname_of, normalize_url

logger = logging.getLogger("sitemapper.policy")

EXCLUDED_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".bmp", ".ico",
    ".css", ".js", ".json", ".xml", ".rss", ".atom",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".rar", ".7z", ".tar", ".gz", ".tgz", ".bz2",
    ".mp3", ".wav", ".mp4", ".avi", ".mov", ".wmv", ".webm", ".mkv",
    ".woff", ".woff2", ".ttf", ".eot",
)

EXCLUDED_PATH_PREFIXES = (
    "/wp-admin",
    "/wp-login",
    "/wp-json",
    "/wp-content/uploads",
    "/admin",
    "/login",
    "/logout",
    "/cdn-cgi/",
    "/search",
    "/tag/",
    "/author/",
    "/feed/",
    "/comments/",
    "/trackback/",
)


# --------------------------------- Robots ---------------------------------- #


def _strip_comment(line: str) -> str:
    i = line.find("#")
    return line if i == -1 else line[:i]


def longest_match_first(robots_text: str) -> list[str]:
    """Reorder each group's Allow/Disallow lines so the longest path comes first.

    urllib.robotparser applies the first rule whose path matches; with the
    rules sorted this way that is the most specific one, and ``Allow`` wins
    a tie. ``User-agent: *`` / ``Allow: /`` / ``Disallow: /cart/`` then
    blocks /cart/.
    """
    lines: list[str] = []
    rules: list[tuple[str, str]] = []

    def flush() -> None:
        rules.sort(key=lambda rule: (-len(rule[1]), rule[0] != "allow"))
        lines.extend(f"{field}: {path}" for field, path in rules)
        rules.clear()

    for raw in robots_text.splitlines():
        if not raw.strip():
            # blank lines end a group for robotparser
            flush()
            lines.append("")
            continue
        line = _strip_comment(raw).strip()
        if not line:
            continue
        field, _, value = line.partition(":")
        field = field.strip().lower()
        if field in ("allow", "disallow"):
            rules.append((field, value.strip()))
            continue
        if field == "user-agent":
            flush()
        lines.append(line)
    flush()
    return lines


class RobotsPolicy:
    """Parsed robots.txt for one host. Missing robots.txt means no restrictions."""

    def __init__(self, robots_text: Optional[str], site_url: str, user_agent: str) -> None:
        self.raw_text = robots_text
        self.user_agent = user_agent
        self.parser = robotparser.RobotFileParser()
        parts = urlsplit(site_url)
        self.parser.set_url(f"{parts.scheme}://{parts.netloc}/robots.txt")
        if robots_text:
            self.parser.parse(longest_match_first(robots_text))
        else:
            self.parser.allow_all = True
        self.allow_all = not robots_text

    def allows(self, url: str) -> bool:
        # falls back to the "*" group when no group names our agent
        return self.parser.can_fetch(self.user_agent, url)


# ------------------------------- Inclusion --------------------------------- #


class InclusionPolicy:
    """URL-level filter applied to every extracted link.

    Checks run in order and stop at the first rejection: same host,
    extension denylist, path-prefix denylist, robots.txt, then same-page
    fragment links.
    """

    def __init__(
        self,
        base_url: str,
        robots: Optional[RobotsPolicy] = None,
        respect_robots_txt: bool = True,
    ) -> None:
        self.base_url = base_url
        self.base_host = hostname_of(base_url)
        self.robots = robots
        self.respect_robots_txt = respect_robots_txt

    def include(self, url: str, source_url: Optional[str] = None) -> bool:
        try:
            parts = urlsplit(url)
            host = parts.hostname
        except ValueError:
            return False
        if parts.scheme not in ("http", "https"):
            return False
        if not host or host.lower() != self.base_host:
            return False

        path = parts.path.lower()
        if path.endswith(EXCLUDED_EXTENSIONS):
            return False
        if path.startswith(EXCLUDED_PATH_PREFIXES):
            return False

        if self.respect_robots_txt and self.robots is not None and not self.robots.allows(url):
            logger.debug(f"Disallowed by robots.txt: {url}")
            return False

        if parts.fragment and source_url is not None:
            stripped, _ = urldefrag(url)
            if normalize_url(stripped) == normalize_url(source_url):
                return False
        return True

    def filter(self, urls: Iterable[str], source_url: Optional[str] = None) -> list[str]:
        return [u for u in urls if self.include(u, source_url)]
