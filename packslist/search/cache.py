# packslist/search/cache.py
from __future__ import annotations

import hashlib
import hmac
import logging
import random
import secrets
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from packslist.config import (
    PRIVACY_CACHE_CONFIG_TTL_SECONDS,
    PRIVACY_CACHE_LISTING_TTL_SECONDS,
    PRIVACY_CACHE_MAX_ENTRIES_PER_KIND,
    PRIVACY_CACHE_SEARCH_TTL_SECONDS,
    PRIVACY_CACHE_SESSION_TTL_SECONDS,
    PRIVACY_CACHE_SWEEP_INTERVAL_SECONDS,
    PRIVACY_FUZZ_RADIUS_DEGREES,
)
from packslist.search.models import EntityKind, ListingPayload, ScoredResult
from packslist.search.scheduling import RecurringTask, Scheduler, ThreadingScheduler

log = logging.getLogger(__name__)

# Cache kinds. Listings share their value with EntityKind.LISTING so index
# entries and cache entries agree on naming.
KIND_LISTING = EntityKind.LISTING.value
KIND_SEARCH = "search"
KIND_CONFIG = "config"
KIND_SESSION = "session"

# Never cached, whatever else happens to the record.
SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "realCoords",
        "exactLocation",
        "vendorContact",
        "personalInfo",
        "fullAddress",
        "address",
        "phoneNumber",
        "phone",
        "email",
        "contactEmail",
        "lat",
        "lng",
    }
)

# The only fields a cached listing may carry.
ALLOWED_LISTING_FIELDS: tuple[str, ...] = (
    "publicId",
    "title",
    "description",
    "price",
    "fuzzyCoords",
    "vendorPublicId",
    "city",
    "productType",
    "rating",
    "inStock",
    "verified",
    "images",
    "cached",
    "cacheTimestamp",
)

# Computed by the sanitizer itself.
DERIVED_LISTING_FIELDS: frozenset[str] = frozenset({"fuzzyCoords", "vendorPublicId"})

MAX_CACHED_IMAGES = 3
MAX_SEARCH_HISTORY = 10


def _now() -> float:
    # Wall clock; tests monkeypatch this to drive expiry.
    return time.time()


def _kind_value(kind: EntityKind | str) -> str:
    return kind.value if isinstance(kind, EntityKind) else str(kind)


@dataclass
class CacheEntry:
    key: str
    kind: str
    data: Any
    created_at: float
    ttl: float
    last_accessed: float | None = None

    def expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl

    @property
    def recency(self) -> float:
        # Entries never read rank by creation time.
        return self.last_accessed if self.last_accessed is not None else self.created_at


def fuzz_coordinates(
    lat: float,
    lng: float,
    radius: float = PRIVACY_FUZZ_RADIUS_DEGREES,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """
    Perturb a coordinate pair by a uniform random offset within +/- radius
    degrees on each axis.
    """
    r = rng or random
    return {
        "lat": float(lat) + r.uniform(-radius, radius),
        "lng": float(lng) + r.uniform(-radius, radius),
        "accuracy": "approximate",
    }


def _extract_coordinates(data: Mapping[str, Any]) -> tuple[float, float] | None:
    lat, lng = data.get("lat"), data.get("lng")
    if lat is None or lng is None:
        coords = data.get("coordinates")
        if isinstance(coords, Mapping):
            lat, lng = coords.get("lat"), coords.get("lng")
    if lat is None or lng is None:
        return None
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None


class PrivacyCache:
    """
    In-memory, session-scoped cache that only ever stores sanitized data.

    Listing payloads are stripped of PII and exact coordinates before they are
    stored. Keys embed a session identifier generated per instance, so a new
    process (or a new cache) can never read a previous session's entries.

    Every kind has its own maximum entry count; when an insert pushes a kind
    over the bound, the least-recently-read entries of that kind are evicted.
    Reads (`get`) refresh recency, writes do not.

    All mutation happens under a single re-entrant lock, so `put`, eviction and
    the periodic sweep are safe to interleave with `get` from other threads.
    """

    def __init__(
        self,
        *,
        listing_ttl: float = PRIVACY_CACHE_LISTING_TTL_SECONDS,
        search_ttl: float = PRIVACY_CACHE_SEARCH_TTL_SECONDS,
        config_ttl: float = PRIVACY_CACHE_CONFIG_TTL_SECONDS,
        session_ttl: float = PRIVACY_CACHE_SESSION_TTL_SECONDS,
        max_entries_per_kind: int = PRIVACY_CACHE_MAX_ENTRIES_PER_KIND,
        max_entries_by_kind: Mapping[str, int] | None = None,
        fuzz_radius: float = PRIVACY_FUZZ_RADIUS_DEGREES,
        rng: random.Random | None = None,
    ) -> None:
        self._ttls: dict[str, float] = {
            KIND_LISTING: float(listing_ttl),
            KIND_SEARCH: float(search_ttl),
            KIND_CONFIG: float(config_ttl),
            KIND_SESSION: float(session_ttl),
        }
        self.max_entries_per_kind = int(max_entries_per_kind)
        self._max_by_kind = {_kind_value(k): int(v) for k, v in (max_entries_by_kind or {}).items()}
        self.fuzz_radius = float(fuzz_radius)
        self._rng = rng or random.Random()

        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._sweeper: RecurringTask | None = None

        self._session_id = self._generate_session_id()
        self._session_secret = secrets.token_bytes(32)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @staticmethod
    def _generate_session_id() -> str:
        return f"cache_{secrets.token_hex(6)}{int(_now() * 1000):x}"

    @property
    def session_id(self) -> str:
        return self._session_id

    def _digest(self, namespace: str, value: str, length: int) -> str:
        msg = f"{namespace}:{value}".encode()
        return hmac.new(self._session_secret, msg, hashlib.sha256).hexdigest()[:length]

    def public_id_for(self, kind: EntityKind | str, entity_id: Any = None) -> str:
        """
        Opaque public identifier for an entity, stable for this session.

        The same entity id always maps to the same public id within one cache
        instance and cannot be reversed without the session secret. Entities
        with no id get a fresh random identifier.
        """
        k = _kind_value(kind)
        if entity_id is None or str(entity_id) == "":
            return f"{k}_{secrets.token_hex(8)}"
        return f"{k}_{self._digest(k, str(entity_id), 16)}"

    def vendor_public_id(self, vendor: Any) -> str:
        if isinstance(vendor, Mapping):
            public = vendor.get("publicId")
            if public:
                return str(public)
            ref = vendor.get("id") or vendor.get("uid")
            if ref:
                return f"vendor_{self._digest('vendor', str(ref), 12)}"
            return f"vendor_{secrets.token_hex(4)}"
        return f"vendor_{self._digest('vendor', str(vendor), 12)}"

    def make_key(self, kind: EntityKind | str, public_id: str) -> str:
        return f"{_kind_value(kind)}_{public_id}_{self._session_id}"

    def default_ttl(self, kind: EntityKind | str) -> float:
        return self._ttls.get(_kind_value(kind), self._ttls[KIND_LISTING])

    def max_entries_for(self, kind: EntityKind | str) -> int:
        return self._max_by_kind.get(_kind_value(kind), self.max_entries_per_kind)

    # ------------------------------------------------------------------
    # Sanitization
    # ------------------------------------------------------------------

    def sanitize_listing(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """
        Return a display-safe copy of a listing record.

        Disallow-listed keys are dropped, exact coordinates become a fuzzed
        `fuzzyCoords` pair, an embedded vendor becomes an opaque
        `vendorPublicId`, images are capped at three, and finally only the
        allow-listed fields survive.
        """
        # Derived fields are never taken from the input.
        sanitized = {
            k: v for k, v in data.items() if k not in SENSITIVE_KEYS and k not in DERIVED_LISTING_FIELDS
        }

        coords = _extract_coordinates(data)
        if coords is not None:
            sanitized["fuzzyCoords"] = fuzz_coordinates(
                coords[0],
                coords[1],
                radius=self.fuzz_radius,
                rng=self._rng,
            )

        if sanitized.get("vendor") is not None:
            sanitized["vendorPublicId"] = self.vendor_public_id(sanitized["vendor"])
        elif sanitized.get("vendorRef") not in (None, ""):
            sanitized["vendorPublicId"] = self.vendor_public_id(sanitized["vendorRef"])

        images = sanitized.get("images")
        sanitized["images"] = list(images)[:MAX_CACHED_IMAGES] if isinstance(images, list) else []
        sanitized["publicId"] = sanitized.get("publicId") or sanitized.get("id")
        sanitized["cached"] = True
        sanitized["cacheTimestamp"] = _now()

        return {k: sanitized.get(k) for k in ALLOWED_LISTING_FIELDS}

    def sanitize_user(self, user: Mapping[str, Any]) -> dict[str, Any]:
        last = user.get("lastLocation")
        coords = _extract_coordinates(last) if isinstance(last, Mapping) else None
        return {
            "sessionId": self._session_id,
            "preferences": dict(user.get("preferences") or {}),
            "lastLocation": (
                fuzz_coordinates(coords[0], coords[1], radius=self.fuzz_radius, rng=self._rng)
                if coords is not None
                else None
            ),
            "searchHistory": list(user.get("searchHistory") or [])[:MAX_SEARCH_HISTORY],
            "favoriteRegions": list(user.get("favoriteRegions") or []),
            "userType": user.get("userType") or "anonymous",
            "lastActive": _now(),
        }

    def _sanitize_result(self, result: Any) -> Any:
        if isinstance(result, ScoredResult):
            payload = result.payload
            if isinstance(payload, ListingPayload):
                cached = self.get(payload.cache_key) if payload.cache_key else None
                if cached is not None:
                    return cached
                return self.sanitize_listing(
                    {
                        "publicId": payload.public_id,
                        "title": result.display_text,
                        "price": payload.price,
                        "city": payload.city,
                        "vendorRef": payload.vendor_ref,
                        "productType": payload.product_type,
                    }
                )
            return {
                "type": result.kind.value,
                "display": result.display_text,
                "score": result.score,
            }
        if isinstance(result, Mapping) and result.get("type") == KIND_LISTING:
            return self.sanitize_listing(result.get("data") or {})
        # Cities and product types carry nothing private.
        return result

    # ------------------------------------------------------------------
    # Core store
    # ------------------------------------------------------------------

    def _store_entry(self, key: str, kind: str, data: Any, ttl: float | None) -> str:
        entry = CacheEntry(
            key=key,
            kind=kind,
            data=data,
            created_at=_now(),
            ttl=float(ttl) if ttl is not None else self.default_ttl(kind),
        )
        with self._lock:
            # Store order is latest-put order.
            self._store.pop(key, None)
            self._store[key] = entry
            self._enforce_max_size(kind)
        return key

    def put(
        self,
        kind: EntityKind | str,
        public_id: str,
        data: Any,
        ttl: float | None = None,
    ) -> str:
        """
        Store `data` under a session-scoped key and return that key.

        Listing data is sanitized before it is stored.
        """
        k = _kind_value(kind)
        if k == KIND_LISTING:
            data = self.sanitize_listing(data)
        return self._store_entry(self.make_key(k, public_id), k, data, ttl)

    def get(self, key: str) -> Any | None:
        """Return cached data, or None on miss / expiry (expired entries are dropped)."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            now = _now()
            if entry.expired(now):
                del self._store[key]
                return None
            entry.last_accessed = now
            return entry.data

    def _enforce_max_size(self, kind: str) -> None:
        limit = self.max_entries_for(kind)
        keys = [key for key, e in self._store.items() if e.kind == kind]
        overflow = len(keys) - limit
        if overflow <= 0:
            return
        # sorted() is stable, so equal recency falls back to insertion order.
        keys.sort(key=lambda key: self._store[key].recency)
        for key in keys[:overflow]:
            del self._store[key]
        log.debug("Evicted %s %r cache entries (limit=%s)", overflow, kind, limit)

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    def cache_listing(self, listing: Mapping[str, Any], ttl: float | None = None) -> str:
        public_id = listing.get("publicId") or self.public_id_for(KIND_LISTING, listing.get("id"))
        return self.put(KIND_LISTING, str(public_id), {**listing, "publicId": public_id}, ttl)

    def get_cached_listing(self, public_id: str) -> dict[str, Any] | None:
        return self.get(self.make_key(KIND_LISTING, public_id))

    def cache_config(self, config_type: str, data: Any, ttl: float | None = None) -> str:
        # Configuration is not user-specific, so the key is not session scoped.
        return self._store_entry(f"config_{config_type}", KIND_CONFIG, data, ttl)

    def get_cached_config(self, config_type: str) -> Any | None:
        return self.get(f"config_{config_type}")

    @staticmethod
    def hash_query(query: str) -> str:
        normalized = (query or "").strip().lower()
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]

    def cache_search_results(
        self,
        query: str,
        results: Iterable[Any],
        user_location: Mapping[str, Any] | None = None,
        ttl: float | None = None,
    ) -> str:
        items = list(results)
        coords = _extract_coordinates(user_location) if user_location else None
        payload = {
            "query": query,
            "results": [self._sanitize_result(r) for r in items],
            "userLocation": (
                fuzz_coordinates(coords[0], coords[1], radius=self.fuzz_radius, rng=self._rng)
                if coords is not None
                else None
            ),
            "resultCount": len(items),
        }
        return self.put(KIND_SEARCH, self.hash_query(query), payload, ttl)

    def get_cached_search_results(self, query: str) -> dict[str, Any] | None:
        return self.get(self.make_key(KIND_SEARCH, self.hash_query(query)))

    def cache_user_session(self, user: Mapping[str, Any], ttl: float | None = None) -> str:
        return self._store_entry(
            f"{KIND_SESSION}_{self._session_id}",
            KIND_SESSION,
            self.sanitize_user(user),
            ttl,
        )

    def get_cached_user_session(self) -> dict[str, Any] | None:
        return self.get(f"{KIND_SESSION}_{self._session_id}")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear_expired(self) -> int:
        now = _now()
        with self._lock:
            stale = [key for key, e in self._store.items() if e.expired(now)]
            for key in stale:
                del self._store[key]
        if stale:
            log.info("Cleared %s expired cache entries", len(stale))
        return len(stale)

    def clear_all(self) -> None:
        with self._lock:
            self._store.clear()
        log.info("Privacy cache cleared")

    def clear_kind(self, kind: EntityKind | str) -> int:
        k = _kind_value(kind)
        with self._lock:
            keys = [key for key, e in self._store.items() if e.kind == k]
            for key in keys:
                del self._store[key]
        return len(keys)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            by_kind: dict[str, int] = {}
            for e in self._store.values():
                by_kind[e.kind] = by_kind.get(e.kind, 0) + 1
            total = len(self._store)
        return {
            "totalEntries": total,
            "byKind": by_kind,
            "sessionId": self._session_id,
            "maxEntriesPerKind": self.max_entries_per_kind,
        }

    def start_auto_sweep(
        self,
        scheduler: Scheduler | None = None,
        interval: float = PRIVACY_CACHE_SWEEP_INTERVAL_SECONDS,
    ) -> RecurringTask:
        """Sweep expired entries every `interval` seconds until stopped."""
        self.stop_auto_sweep()
        self._sweeper = RecurringTask(
            scheduler or ThreadingScheduler(),
            interval,
            self.clear_expired,
        ).start()
        return self._sweeper

    def stop_auto_sweep(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store


__all__ = [
    "KIND_LISTING",
    "KIND_SEARCH",
    "KIND_CONFIG",
    "KIND_SESSION",
    "SENSITIVE_KEYS",
    "ALLOWED_LISTING_FIELDS",
    "DERIVED_LISTING_FIELDS",
    "CacheEntry",
    "PrivacyCache",
    "fuzz_coordinates",
]
