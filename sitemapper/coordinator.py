"""Round-based crawl coordinator.

The coordinator owns the crawl state. Each round it takes a bounded slice
of the frontier, hands it to a batch worker in concurrent sub-batches,
waits for all of them, and then merges the results in one step. All
state mutation happens in that merge, so no locking is needed. State is
written to the store after every mutation and re-read before every
round, so any process can pick a crawl up where the last one stopped.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable, Optional, Sequence

from .batch import BatchWorker, stub_record
from .config import CrawlConfig
from .errors import CrawlNotFoundError, StateCapacityError
from .fetcher import RateLimiter
from .log import get_crawl_logger
from .models import BatchResult, CrawlProgress, CrawlState, FrontierEntry, PageRecord, format_elapsed
from .sitemap import merge_pair
from .store import StateStore, shrink_state
from .urls import derive_site_slug, normalize_url, origin_of

ProgressCallback = Callable[[CrawlProgress], None]


def new_crawl_id(root_url: str) -> str:
    return f"crawl-{derive_site_slug(root_url)}-{uuid.uuid4().hex[:8]}"


class CrawlCoordinator:
    def __init__(self, store: StateStore, worker: BatchWorker) -> None:
        self.store = store
        self.worker = worker

    # --------------------------- Lifecycle --------------------------------- #

    def start(self, root_url: str, config: Optional[CrawlConfig] = None, crawl_id: Optional[str] = None) -> CrawlState:
        root = normalize_url(root_url)
        state = CrawlState(crawl_id=crawl_id or new_crawl_id(root), root_url=root, config=config or CrawlConfig())
        state.discover(root, 0)
        get_crawl_logger(state.crawl_id).info(f"Starting crawl: {root}")
        self.store.create(state)
        return state

    def load(self, crawl_id: str) -> CrawlState:
        state = self.store.load(crawl_id)
        if state is None:
            raise CrawlNotFoundError(crawl_id)
        return state

    def cancel(self, crawl_id: str) -> CrawlState:
        state = self.load(crawl_id)
        if not state.is_finished:
            state.is_cancelled = True
            state.end_time = time.time()
            get_crawl_logger(crawl_id).info("Crawl cancelled")
            self._persist(state)
        return state

    def reset(self, crawl_id: str) -> None:
        self.store.clear(crawl_id)

    def results(self, crawl_id: str) -> list[PageRecord]:
        return self.load(crawl_id).records()

    # ----------------------------- Rounds ---------------------------------- #

    async def run(self, crawl_id: str, on_progress: Optional[ProgressCallback] = None) -> CrawlState:
        """Run rounds until the crawl completes or is cancelled."""
        state = self.load(crawl_id)
        pacer = RateLimiter(state.config.crawl_rate)
        while True:
            await pacer.wait()
            state = await self.run_round(crawl_id)
            if on_progress is not None:
                on_progress(progress_of(state))
            if state.is_finished:
                return state

    async def run_round(self, crawl_id: str) -> CrawlState:
        state = self.load(crawl_id)
        log = get_crawl_logger(crawl_id)
        if state.current_batch:
            # a previous round died mid-flight
            recovered = state.requeue_in_flight()
            log.warning(f"Recovered {len(recovered)} in-flight URL(s) from an interrupted round")
            self._persist(state, log)
        await self._round(state, log)
        return state

    async def _round(self, state: CrawlState, log: logging.LoggerAdapter) -> None:
        cfg = state.config
        if state.is_finished:
            return

        remaining = cfg.max_pages - state.handled_count
        if not state.pending or remaining <= 0:
            self._finish(state, log)
            self._persist(state, log)
            return

        take = min(len(state.pending), cfg.round_size, remaining)
        batch = state.pending[:take]
        state.pending = state.pending[take:]
        state.current_batch = batch
        state.current_depth = max(state.current_depth, max(e.depth for e in batch))
        state.refresh_counters()
        self._persist(state, log)

        sub_batches = [batch[i : i + cfg.batch_size] for i in range(0, len(batch), cfg.batch_size)]
        log.info(f"Round: {len(batch)} URL(s) in {len(sub_batches)} batch(es), {len(state.pending)} pending")
        results = await asyncio.gather(
            *(self._dispatch(state, entries) for entries in sub_batches), return_exceptions=True
        )

        stored = self.store.load(state.crawl_id)
        if stored is not None and stored.is_cancelled:
            state.is_cancelled = True
            state.end_time = stored.end_time or time.time()
        if state.is_cancelled:
            state.requeue_in_flight()
            log.info(f"Cancelled during round; {len(state.pending)} URL(s) left pending")
            self._persist(state, log)
            return

        failed: list[FrontierEntry] = []
        added = 0
        for entries, result in zip(sub_batches, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                log.warning(f"Batch of {len(entries)} URL(s) failed, returning them to the frontier: {result!r}")
                failed.extend(entries)
                continue
            added += self._merge(state, entries, result, failed, log)

        self._requeue_failed(state, failed, log)
        state.current_batch = []
        state.refresh_counters()
        log.info(
            f"Round done: {state.counters['processed']} processed, {added} new, "
            f"{state.counters['pending']} pending, {state.counters['total']} total"
        )
        if not state.pending or state.handled_count >= cfg.max_pages:
            self._finish(state, log)
        self._persist(state, log)

    async def _dispatch(self, state: CrawlState, entries: Sequence[FrontierEntry]) -> BatchResult:
        urls = [e.url for e in entries]
        depths = {e.url: e.depth for e in entries}
        return await self.worker.process(urls, state.root_url, state.config, depths)

    def _merge(
        self,
        state: CrawlState,
        entries: Sequence[FrontierEntry],
        result: BatchResult,
        failed: list[FrontierEntry],
        log: logging.LoggerAdapter,
    ) -> int:
        handled: set[str] = set()
        for record in result.processed_pages:
            if not record.url:
                continue
            url = normalize_url(record.url)
            record = record.with_url(url)
            existing = state.processed.get(url)
            state.processed[url] = merge_pair(existing, record) if existing else record
            self._mark_known(state, url)
            handled.add(url)
        for raw in result.excluded_urls:
            url = normalize_url(raw)
            state.excluded.add(url)
            self._mark_known(state, url)
            handled.add(url)

        for entry in entries:
            if entry.url in handled:
                state.attempts.pop(entry.url, None)
                state.handled_count += 1
            else:
                log.warning(f"Worker returned nothing for {entry.url}")
                failed.append(entry)

        fallback_depth = max(e.depth for e in entries) + 1
        added = 0
        for raw in sorted(result.new_urls):
            if not raw:
                continue
            url = normalize_url(raw)
            if origin_of(url) is None:
                continue
            depth = result.link_depths.get(raw, result.link_depths.get(url, fallback_depth))
            if depth > state.config.max_depth:
                continue
            if state.discover(url, depth):
                added += 1
        return added

    def _mark_known(self, state: CrawlState, url: str) -> None:
        # workers may report a URL in a different form than it was queued
        if url not in state.discovered:
            state.discovered.add(url)
            state.all_urls.append(url)

    def _requeue_failed(self, state: CrawlState, failed: list[FrontierEntry], log: logging.LoggerAdapter) -> None:
        requeue: list[FrontierEntry] = []
        for entry in failed:
            attempts = state.attempts.get(entry.url, 0) + 1
            if attempts >= state.config.max_batch_attempts:
                log.error(f"Giving up on {entry.url} after {attempts} failed batch(es); recording a stub entry")
                state.attempts.pop(entry.url, None)
                state.processed[entry.url] = stub_record(entry.url, entry.depth, state.config)
                state.handled_count += 1
            else:
                state.attempts[entry.url] = attempts
                requeue.append(entry)
        if requeue:
            state.pending = requeue + state.pending

    def _finish(self, state: CrawlState, log: logging.LoggerAdapter) -> None:
        state.is_complete = True
        state.end_time = time.time()
        state.refresh_counters()
        log.info(f"Completed: {state.counters['processed']} page(s), {state.counters['total']} URL(s) discovered")

    def _persist(self, state: CrawlState, log: Optional[logging.LoggerAdapter] = None) -> None:
        log = log or get_crawl_logger(state.crawl_id)
        try:
            self.store.save(state)
        except StateCapacityError as e:
            keep = state.config.state_keep_on_overflow
            log.warning(f"{e}; retrying with the {keep} most recent processed pages")
            try:
                self.store.save(shrink_state(state, keep))
            except StateCapacityError as inner:
                log.error(f"Failed to save reduced state, progress of this round is not persisted: {inner}")

    # ---------------------------- Reporting -------------------------------- #

    def progress(self, crawl_id: str) -> CrawlProgress:
        return progress_of(self.load(crawl_id))

    def stats(self, crawl_id: str) -> dict:
        return stats_of(self.load(crawl_id))


def _elapsed(state: CrawlState, now: Optional[float]) -> float:
    end = state.end_time if state.end_time is not None else (time.time() if now is None else now)
    return max(0.0, end - state.start_time)


def progress_of(state: CrawlState, now: Optional[float] = None) -> CrawlProgress:
    elapsed = _elapsed(state, now)
    processed = state.counters["processed"]
    handled = state.handled_count
    pending = state.counters["pending"]
    total = state.counters["total"]
    if state.is_finished:
        remaining = "00:00:00"
    elif handled > 0 and pending > 0:
        remaining = format_elapsed(elapsed / handled * pending)
    else:
        remaining = "Calculating..."
    return CrawlProgress(
        urls_scanned=processed,
        total_urls=total,
        time_elapsed=format_elapsed(elapsed),
        estimated_time_remaining=remaining,
        current_url=state.current_batch[0].url if state.current_batch else "",
        percent_complete=min(int(handled * 100 / total), 100) if total else 0,
    )


def stats_of(state: CrawlState, now: Optional[float] = None) -> dict:
    crawl_time = max(1, int(_elapsed(state, now)))
    processed = state.counters["processed"]
    return {
        "urlsProcessed": processed,
        "totalUrls": state.counters["total"],
        "crawlTime": crawl_time,
        "averageTimePerUrl": crawl_time / processed if processed else 0,
    }
