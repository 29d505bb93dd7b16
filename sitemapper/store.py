"""Persistence of crawl state between rounds.

Stores hold serialized snapshots, never live objects, so a coordinator
always works on what was last written. A store may refuse snapshots above
``max_bytes``; the coordinator then retries with ``shrink_state``.
"""

from __future__ import annotations

import abc
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Optional

from .errors import StateCapacityError
from .models import CrawlState

logger = logging.getLogger("sitemapper.store")


def dump_state(state: CrawlState) -> str:
    return json.dumps(state.to_dict(), ensure_ascii=False, separators=(",", ":"))


def shrink_state(state: CrawlState, keep: int) -> CrawlState:
    """Copy of ``state`` keeping only the ``keep`` most recently processed records."""
    data = state.to_dict()
    processed = data["processedUrls"]
    if len(processed) > keep:
        recent = list(processed.items())[-keep:] if keep > 0 else []
        data["processedUrls"] = dict(recent)
    return CrawlState.from_dict(data)


class StateStore(abc.ABC):
    """Crawl snapshots keyed by crawl id, with optional TTL eviction."""

    def __init__(self, max_bytes: Optional[int] = None, ttl: Optional[float] = None) -> None:
        self.max_bytes = max_bytes
        self.ttl = ttl

    @abc.abstractmethod
    def load(self, crawl_id: str) -> Optional[CrawlState]:
        ...

    @abc.abstractmethod
    def _write(self, crawl_id: str, payload: str) -> None:
        ...

    @abc.abstractmethod
    def clear(self, crawl_id: str) -> None:
        ...

    @abc.abstractmethod
    def ids(self) -> list[str]:
        ...

    def save(self, state: CrawlState) -> None:
        payload = dump_state(state)
        size = len(payload.encode("utf-8"))
        if self.max_bytes is not None and size > self.max_bytes:
            raise StateCapacityError(state.crawl_id, size, self.max_bytes)
        self._write(state.crawl_id, payload)

    def sweep(self, now: Optional[float] = None) -> list[str]:
        """Drop crawls started more than ``ttl`` seconds ago. Returns the evicted ids."""
        if self.ttl is None:
            return []
        now = time.time() if now is None else now
        evicted = []
        for crawl_id in self.ids():
            state = self.load(crawl_id)
            if state is None or now - state.start_time > self.ttl:
                self.clear(crawl_id)
                evicted.append(crawl_id)
        for crawl_id in evicted:
            logger.info(f"Evicted expired crawl state {crawl_id}")
        return evicted

    # lifecycle names used by session-style callers
    def create(self, state: CrawlState) -> None:
        self.sweep()
        self.save(state)

    def get(self, crawl_id: str) -> Optional[CrawlState]:
        return self.load(crawl_id)

    def delete(self, crawl_id: str) -> None:
        self.clear(crawl_id)


class MemoryStateStore(StateStore):
    """Process-local store. Sessions expire one hour after they start by default."""

    def __init__(self, max_bytes: Optional[int] = None, ttl: Optional[float] = 3600.0) -> None:
        super().__init__(max_bytes=max_bytes, ttl=ttl)
        self._snapshots: dict[str, str] = {}

    def load(self, crawl_id: str) -> Optional[CrawlState]:
        payload = self._snapshots.get(crawl_id)
        if payload is None:
            return None
        return CrawlState.from_dict(json.loads(payload))

    def _write(self, crawl_id: str, payload: str) -> None:
        self._snapshots[crawl_id] = payload

    def clear(self, crawl_id: str) -> None:
        self._snapshots.pop(crawl_id, None)

    def ids(self) -> list[str]:
        return list(self._snapshots)


class JsonFileStateStore(StateStore):
    """One JSON file per crawl in ``directory``."""

    def __init__(self, directory: Path, max_bytes: Optional[int] = None, ttl: Optional[float] = None) -> None:
        super().__init__(max_bytes=max_bytes, ttl=ttl)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, crawl_id: str) -> Path:
        return self.directory / f"{crawl_id}.json"

    def load(self, crawl_id: str) -> Optional[CrawlState]:
        path = self._path(crawl_id)
        if not path.exists():
            return None
        try:
            data: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Could not read crawl state {path}: {e}")
            return None
        return CrawlState.from_dict(data)

    def _write(self, crawl_id: str, payload: str) -> None:
        fd, tmp = tempfile.mkstemp(prefix=f".{crawl_id}.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self._path(crawl_id))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def clear(self, crawl_id: str) -> None:
        self._path(crawl_id).unlink(missing_ok=True)

    def ids(self) -> list[str]:
        return sorted(p.stem for p in self.directory.glob("*.json"))
