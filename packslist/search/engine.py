# packslist/search/engine.py
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from enum import Enum
from typing import Any

from packslist.config import (
    SEARCH_DEBOUNCE_SECONDS,
    SEARCH_DEFAULT_LIMIT,
    SEARCH_FUZZY_THRESHOLD,
    SEARCH_MIN_QUERY_LENGTH,
)
from packslist.search.cache import PrivacyCache
from packslist.search.catalog import CityRecord, ProductTypeRecord
from packslist.search.indexing import EntityIndexer
from packslist.search.matching import fuzzy_match
from packslist.search.models import (
    CityPayload,
    EntityKind,
    IndexEntry,
    ListingPayload,
    ProductTypePayload,
    ScoredResult,
)
from packslist.search.scheduling import Scheduler, TaskHandle, ThreadingScheduler

log = logging.getLogger(__name__)

Matcher = Callable[[str, str, float], float]
ResultsCallback = Callable[[list[ScoredResult], str], Any]

# Shown in the dropdown before the user has typed anything.
POPULAR_CITY_KEYS = ("boston", "providence")
POPULAR_PRODUCT_KEYS = ("indica", "sativa")


class QueryState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    CANCELLED = "cancelled"
    EXECUTED = "executed"


class PendingSearch:
    """Handle for one debounced search call."""

    def __init__(self, seq: int, query: str) -> None:
        self.seq = seq
        self.query = query
        self.state = QueryState.PENDING
        self._timer: TaskHandle | None = None

    def cancel(self) -> None:
        if self.state is QueryState.PENDING:
            self.state = QueryState.CANCELLED
            if self._timer is not None:
                self._timer.cancel()


class SearchEngine:
    """
    Fuzzy search over listings, cities and product types.

    The engine owns the current index (replaced wholesale on every rebuild),
    an optional PrivacyCache that receives sanitized listing copies, and a
    list of result subscribers.

    Ordering guarantee for published results: every search call (direct or
    debounced) takes the next sequence number, and a completed search is only
    published to subscribers if its number is still the latest issued. Timer
    cancellation makes stale work rare; the sequence check makes it harmless.
    """

    def __init__(
        self,
        cache: PrivacyCache | None = None,
        *,
        indexer: EntityIndexer | None = None,
        scheduler: Scheduler | None = None,
        matcher: Matcher = fuzzy_match,
        threshold: float = SEARCH_FUZZY_THRESHOLD,
        min_query_length: int = SEARCH_MIN_QUERY_LENGTH,
        default_limit: int = SEARCH_DEFAULT_LIMIT,
        debounce_seconds: float = SEARCH_DEBOUNCE_SECONDS,
    ) -> None:
        self.cache = cache
        self.indexer = indexer or EntityIndexer(cache)
        if indexer is not None and cache is not None and indexer.cache is None:
            self.indexer.cache = cache
        self.scheduler = scheduler or ThreadingScheduler()
        self.matcher = matcher
        self.threshold = threshold
        self.min_query_length = min_query_length
        self.default_limit = default_limit
        self.debounce_seconds = debounce_seconds

        self._index: tuple[IndexEntry, ...] = ()
        self._subscribers: list[ResultsCallback] = []
        self._lock = threading.Lock()
        self._seq = 0
        self._pending: PendingSearch | None = None
        self._current_results: list[ScoredResult] = []
        self._last_query = ""

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def build_index(
        self,
        listings: Iterable[Mapping[str, Any]] | None,
        cities: Iterable[Mapping[str, Any] | CityRecord] | None = None,
        product_types: Iterable[Mapping[str, Any] | ProductTypeRecord | str] | None = None,
    ) -> list[IndexEntry]:
        """Rebuild the index from scratch; the previous index is discarded."""
        entries = self.indexer.build(listings, cities, product_types)
        # Single reference swap: readers see either the old or the new index.
        self._index = tuple(entries)
        return list(entries)

    @property
    def index(self) -> tuple[IndexEntry, ...]:
        return self._index

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def rank(self, query: str, limit: int | None = None) -> list[ScoredResult]:
        """
        Score, dedupe, sort and truncate. Pure with respect to engine state.

        Matcher exceptions propagate: a broken comparator must fail loudly
        rather than silently skew ranking.
        """
        q = (query or "").strip()
        if len(q) < self.min_query_length:
            return []
        limit = self.default_limit if limit is None else limit

        index = self._index
        seen: set[tuple[EntityKind, str]] = set()
        scored: list[ScoredResult] = []
        for entry in index:
            score = self.matcher(q, entry.searchable_text, self.threshold)
            if score <= 0:
                continue
            if entry.dedup_key in seen:
                continue
            seen.add(entry.dedup_key)
            scored.append(ScoredResult(entry=entry, score=score))

        # list.sort is stable: equal scores keep index order.
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[: max(0, limit)]

    def search(self, query: str, limit: int | None = None) -> list[ScoredResult]:
        """Run a search now, publish it to subscribers and return the results."""
        with self._lock:
            self._seq += 1
            seq = self._seq
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
        results = self.rank(query, limit)
        self._publish(seq, results, query)
        return results

    def debounced_search(
        self,
        query: str,
        delay: float | None = None,
        limit: int | None = None,
    ) -> PendingSearch:
        """
        Schedule a search after `delay` seconds of quiet.

        A newer call (debounced or direct) cancels the pending one. The
        returned handle reports PENDING / CANCELLED / EXECUTED.
        """
        delay = self.debounce_seconds if delay is None else delay
        with self._lock:
            self._seq += 1
            pending = PendingSearch(self._seq, query)
            previous, self._pending = self._pending, pending
            if previous is not None:
                previous.cancel()
        # Armed outside the lock: a scheduler may run the task inline.
        timer = self.scheduler.call_later(delay, lambda: self._run_pending(pending, limit))
        pending._timer = timer
        if pending.state is QueryState.CANCELLED:
            timer.cancel()
        return pending

    def _run_pending(self, pending: PendingSearch, limit: int | None) -> None:
        with self._lock:
            if pending.state is not QueryState.PENDING or pending.seq != self._seq:
                pending.state = QueryState.CANCELLED
                return
        results = self.rank(pending.query, limit)
        if self._publish(pending.seq, results, pending.query):
            pending.state = QueryState.EXECUTED
        else:
            pending.state = QueryState.CANCELLED

    def _publish(self, seq: int, results: list[ScoredResult], query: str) -> bool:
        with self._lock:
            if seq != self._seq:
                log.debug("Discarding stale results for %r (seq=%s latest=%s)", query, seq, self._seq)
                return False
            if self._pending is not None and self._pending.seq == seq:
                self._pending = None
            self._current_results = list(results)
            self._last_query = query
            subscribers = list(self._subscribers)

        log.debug("Search performed for %r - %s results", query, len(results))
        self._notify(subscribers, list(results), query)
        return True

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def on_results(self, callback: ResultsCallback) -> ResultsCallback:
        with self._lock:
            self._subscribers.append(callback)
        return callback

    def remove_subscriber(self, callback: ResultsCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @staticmethod
    def _notify(subscribers: Sequence[ResultsCallback], results: list[ScoredResult], query: str) -> None:
        for callback in subscribers:
            try:
                callback(results, query)
            except Exception:
                log.exception("Search results callback %r failed", callback)

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def current_results(self) -> list[ScoredResult]:
        return list(self._current_results)

    @property
    def last_query(self) -> str:
        return self._last_query

    @property
    def has_pending(self) -> bool:
        pending = self._pending
        return pending is not None and pending.state is QueryState.PENDING

    def clear(self) -> None:
        """Cancel pending work, reset results and tell subscribers the box is empty."""
        with self._lock:
            self._seq += 1
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
            self._current_results = []
            self._last_query = ""
            subscribers = list(self._subscribers)
        self._notify(subscribers, [], "")

    def popular_suggestions(self, limit: int = SEARCH_DEFAULT_LIMIT) -> list[ScoredResult]:
        """Fixed suggestions for an empty search box, resolved against the index."""
        picks: list[ScoredResult] = []
        for entry in self._index:
            payload = entry.payload
            if isinstance(payload, CityPayload) and payload.key in POPULAR_CITY_KEYS:
                picks.append(ScoredResult(entry=entry, score=1.0))
        for entry in self._index:
            payload = entry.payload
            if isinstance(payload, ProductTypePayload) and payload.key in POPULAR_PRODUCT_KEYS:
                picks.append(ScoredResult(entry=entry, score=1.0))
        return picks[: max(0, limit)]

    def results_for_city(self, city_key: str) -> list[IndexEntry]:
        """Listings indexed for a city key (used when focusing the map on a city)."""
        return [
            e
            for e in self._index
            if isinstance(e.payload, ListingPayload) and e.payload.city == city_key
        ]

    @staticmethod
    def filter_listings(
        term: str,
        listings: Iterable[Mapping[str, Any]],
        vendor_filter: str = "all",
    ) -> list[Mapping[str, Any]]:
        """
        Plain substring filter over title / vendor / city.

        `vendor_filter` other than "all" keeps only that vendor's listings.
        """
        needle = (term or "").lower()
        out: list[Mapping[str, Any]] = []
        for item in listings:
            vendor = item.get("vendor")
            vendor_text = vendor if isinstance(vendor, str) else ""
            haystacks = (str(item.get("title") or ""), vendor_text, str(item.get("city") or ""))
            if not any(needle in h.lower() for h in haystacks):
                continue
            if vendor_filter != "all" and vendor != vendor_filter:
                continue
            out.append(item)
        return out

    def close(self) -> None:
        with self._lock:
            self._seq += 1
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
        if self.cache is not None:
            self.cache.stop_auto_sweep()


__all__ = ["SearchEngine", "PendingSearch", "QueryState", "Matcher", "ResultsCallback"]
