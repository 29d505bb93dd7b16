import json
from datetime import datetime, timezone

import pytest

from sitemapper.config import CrawlConfig
from sitemapper.errors import StateCapacityError
from sitemapper.models import CrawlState, FrontierEntry, PageRecord
from sitemapper.store import JsonFileStateStore, MemoryStateStore, dump_state, shrink_state


def make_state(crawl_id="crawl-1", pages=3, start_time=1000.0):
    state = CrawlState(crawl_id=crawl_id, root_url="https://example.com/", config=CrawlConfig(max_depth=2))
    state.start_time = start_time
    state.discover("https://example.com/", 0)
    state.pending = []
    for i in range(pages):
        url = f"https://example.com/p{i}/"
        state.discover(url, 1)
        state.processed[url] = PageRecord(url, datetime(2024, 1, i + 1, tzinfo=timezone.utc), "daily", 0.8)
    state.pending = [FrontierEntry("https://example.com/p9/", 1)]
    state.excluded.add("https://example.com/hidden/")
    state.refresh_counters()
    return state


def test_memory_store_round_trip():
    store = MemoryStateStore()
    state = make_state()
    store.save(state)
    loaded = store.load("crawl-1")
    assert loaded is not state
    assert loaded.to_dict() == state.to_dict()
    assert loaded.config.max_depth == 2
    assert loaded.processed["https://example.com/p1/"].last_modified == datetime(2024, 1, 2, tzinfo=timezone.utc)


def test_memory_store_returns_snapshots():
    store = MemoryStateStore()
    state = make_state()
    store.save(state)
    state.is_cancelled = True
    assert not store.load("crawl-1").is_cancelled


def test_lifecycle_names():
    store = MemoryStateStore(ttl=None)
    store.create(make_state())
    assert store.get("crawl-1").crawl_id == "crawl-1"
    store.delete("crawl-1")
    assert store.get("crawl-1") is None
    assert store.load("missing") is None


def test_expired_sessions_swept():
    store = MemoryStateStore(ttl=3600)
    store.save(make_state("old", start_time=1000.0))
    store.save(make_state("new", start_time=4000.0))
    assert store.sweep(now=5000.0) == ["old"]
    assert store.ids() == ["new"]


def test_capacity_limit():
    state = make_state()
    size = len(dump_state(state).encode("utf-8"))
    store = MemoryStateStore(max_bytes=size - 1)
    with pytest.raises(StateCapacityError) as exc_info:
        store.save(state)
    assert exc_info.value.size == size
    assert store.load("crawl-1") is None
    MemoryStateStore(max_bytes=size).save(state)


def test_shrink_keeps_most_recent_records():
    state = make_state(pages=5)
    state.handled_count = 6
    shrunk = shrink_state(state, 2)
    assert list(shrunk.processed) == ["https://example.com/p3/", "https://example.com/p4/"]
    assert shrunk.discovered == state.discovered
    assert shrunk.pending == state.pending
    assert shrunk.handled_count == 6
    assert len(state.processed) == 5
    assert shrink_state(state, 0).processed == {}


def test_json_file_store(tmp_path):
    store = JsonFileStateStore(tmp_path / "state")
    state = make_state()
    store.save(state)
    path = tmp_path / "state" / "crawl-1.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["crawlId"] == "crawl-1"
    assert data["pendingUrls"] == [{"url": "https://example.com/p9/", "depth": 1}]
    assert data["urlsCount"] == {"total": 4, "processed": 3, "pending": 1}

    assert store.load("crawl-1").to_dict() == state.to_dict()
    assert store.ids() == ["crawl-1"]
    assert list((tmp_path / "state").glob("*.tmp")) == []

    store.clear("crawl-1")
    assert store.load("crawl-1") is None


def test_json_file_store_unreadable_file(tmp_path):
    store = JsonFileStateStore(tmp_path)
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert store.load("broken") is None


def test_state_accepts_legacy_frontier_strings():
    data = make_state().to_dict()
    data["pendingUrls"] = ["https://example.com/old/"]
    del data["config"]
    data["options"] = {"maxDepth": 5}
    state = CrawlState.from_dict(data)
    assert state.pending == [FrontierEntry("https://example.com/old/", 0)]
    assert state.config.max_depth == 5
