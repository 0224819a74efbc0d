# tests/test_privacy_cache.py
from __future__ import annotations

import random

import pytest

from packslist.search.cache import (
    ALLOWED_LISTING_FIELDS,
    KIND_LISTING,
    KIND_SEARCH,
    SENSITIVE_KEYS,
    PrivacyCache,
    fuzz_coordinates,
)
from packslist.search.models import (
    CityPayload,
    EntityKind,
    IndexEntry,
    ListingPayload,
    ScoredResult,
)

RADIUS = 0.004


def _cache(**kwargs) -> PrivacyCache:
    kwargs.setdefault("fuzz_radius", RADIUS)
    kwargs.setdefault("rng", random.Random(1234))
    return PrivacyCache(**kwargs)


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------


def test_phone_and_exact_coordinates_never_come_back() -> None:
    cache = _cache()
    key = cache.put("pack", "p1", {"title": "X", "phone": "555-1234", "lat": 42.36, "lng": -71.05})
    data = cache.get(key)

    assert data is not None
    assert "phone" not in data
    assert "lat" not in data and "lng" not in data
    fuzzy = data["fuzzyCoords"]
    assert fuzzy["accuracy"] == "approximate"
    assert abs(fuzzy["lat"] - 42.36) <= RADIUS
    assert abs(fuzzy["lng"] - -71.05) <= RADIUS


@pytest.mark.parametrize("field", sorted(SENSITIVE_KEYS))
def test_every_disallowed_field_is_dropped(field: str) -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X", field: "secret"})
    assert field not in cache.get(key)


def test_only_allow_listed_fields_survive() -> None:
    cache = _cache()
    key = cache.put(
        KIND_LISTING,
        "p1",
        {
            "id": "raw-id",
            "title": "X",
            "price": 10,
            "internalNotes": "do not leak",
            "ownerUid": "uid-1",
            "coordinates": {"lat": 1.0, "lng": 2.0},
        },
    )
    data = cache.get(key)
    assert set(data) == set(ALLOWED_LISTING_FIELDS)
    assert data["publicId"] == "raw-id"
    assert data["cached"] is True
    # nested coordinates are fuzzed too
    assert abs(data["fuzzyCoords"]["lat"] - 1.0) <= RADIUS


def test_vendor_object_becomes_opaque_public_id() -> None:
    cache = _cache()
    key = cache.put(
        KIND_LISTING,
        "p1",
        {"title": "X", "vendor": {"id": "v1", "phone": "555", "email": "v@example.com"}},
    )
    data = cache.get(key)
    assert "vendor" not in data
    assert data["vendorPublicId"].startswith("vendor_")
    assert "v1" not in data["vendorPublicId"]
    assert "555" not in data.values()


def test_vendor_public_id_is_stable_within_session() -> None:
    cache = _cache()
    a = cache.put(KIND_LISTING, "p1", {"title": "A", "vendorRef": "vendors/1"})
    b = cache.put(KIND_LISTING, "p2", {"title": "B", "vendorRef": "vendors/1"})
    assert cache.get(a)["vendorPublicId"] == cache.get(b)["vendorPublicId"]


def test_vendor_with_public_id_keeps_it() -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X", "vendor": {"publicId": "vend-pub"}})
    assert cache.get(key)["vendorPublicId"] == "vend-pub"


def test_images_truncated_to_three() -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X", "images": ["a", "b", "c", "d", "e"]})
    assert cache.get(key)["images"] == ["a", "b", "c"]


def test_missing_coordinates_give_no_fuzzy_coords() -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X"})
    assert cache.get(key)["fuzzyCoords"] is None


def test_zero_coordinates_are_still_fuzzed() -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X", "lat": 0.0, "lng": 0.0})
    fuzzy = cache.get(key)["fuzzyCoords"]
    assert fuzzy is not None
    assert abs(fuzzy["lat"]) <= RADIUS


def test_fuzz_coordinates_stays_within_radius() -> None:
    rng = random.Random(7)
    for _ in range(200):
        f = fuzz_coordinates(41.824, -71.4128, radius=RADIUS, rng=rng)
        assert abs(f["lat"] - 41.824) <= RADIUS
        assert abs(f["lng"] - -71.4128) <= RADIUS


def test_non_listing_kinds_are_stored_as_given() -> None:
    cache = _cache()
    key = cache.put("config", "cities", {"items": [1, 2]})
    assert cache.get(key) == {"items": [1, 2]}


# ---------------------------------------------------------------------------
# Keys and sessions
# ---------------------------------------------------------------------------


def test_key_is_composite_of_kind_public_id_and_session() -> None:
    cache = _cache()
    key = cache.put(EntityKind.LISTING, "p1", {"title": "X"})
    assert key == f"pack_p1_{cache.session_id}"


def test_new_cache_means_new_session() -> None:
    a, b = _cache(), _cache()
    assert a.session_id != b.session_id
    key = a.put(KIND_LISTING, "p1", {"title": "X"})
    assert b.get(key) is None
    assert b.get_cached_listing("p1") is None
    assert a.get_cached_listing("p1")["title"] == "X"


def test_public_id_for_is_stable_and_opaque() -> None:
    cache = _cache()
    first = cache.public_id_for("pack", "listing-42")
    assert first == cache.public_id_for("pack", "listing-42")
    assert first != cache.public_id_for("pack", "listing-43")
    assert "listing-42" not in first
    # no id: fresh every time
    assert cache.public_id_for("pack") != cache.public_id_for("pack")


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


def test_entry_expires_after_ttl(clock) -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X"}, ttl=0.001)
    clock.advance(0.010)
    assert cache.get(key) is None
    # expired entries are deleted on access
    assert key not in cache


def test_entry_alive_before_ttl(clock) -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X"}, ttl=5)
    clock.advance(4)
    assert cache.get(key) is not None


def test_default_ttls_are_per_kind(clock) -> None:
    cache = _cache(listing_ttl=600, config_ttl=1800)
    listing = cache.cache_listing({"id": "1", "title": "X"})
    cache.cache_config("cities", {"items": []})
    clock.advance(601)
    assert cache.get(listing) is None
    assert cache.get_cached_config("cities") == {"items": []}
    clock.advance(1200)
    assert cache.get_cached_config("cities") is None


def test_clear_expired_sweeps_all_kinds(clock) -> None:
    cache = _cache()
    cache.put(KIND_LISTING, "p1", {"title": "X"}, ttl=1)
    cache.put(KIND_SEARCH, "q1", {"results": []}, ttl=1)
    cache.put(KIND_LISTING, "p2", {"title": "Y"}, ttl=100)
    clock.advance(2)

    assert cache.clear_expired() == 2
    assert cache.stats()["totalEntries"] == 1
    assert cache.clear_expired() == 0


def test_auto_sweep_runs_on_interval(clock, scheduler) -> None:
    cache = _cache()
    cache.put(KIND_LISTING, "p1", {"title": "X"}, ttl=10)
    cache.start_auto_sweep(scheduler, interval=300)

    clock.advance(20)
    scheduler.advance(300)
    assert len(cache) == 0

    # the sweep re-arms itself
    assert len(scheduler.pending()) == 1
    cache.stop_auto_sweep()
    assert scheduler.pending() == []


# ---------------------------------------------------------------------------
# Eviction
# ---------------------------------------------------------------------------


def test_eviction_bound_per_kind(clock) -> None:
    cache = _cache(max_entries_per_kind=5)
    for i in range(5 + 3):
        clock.advance(1)
        cache.put(KIND_LISTING, f"p{i}", {"title": f"T{i}"})
    assert cache.stats()["byKind"][KIND_LISTING] <= 5
    # oldest never-read entries went first
    assert cache.get_cached_listing("p0") is None
    assert cache.get_cached_listing("p7") is not None


def test_eviction_is_least_recently_read(clock) -> None:
    cache = _cache(max_entries_per_kind=3)
    keys = {}
    for name in ("a", "b", "c"):
        keys[name] = cache.put(KIND_LISTING, name, {"title": name})
        clock.advance(1)
    cache.get(keys["a"])  # refresh "a"
    clock.advance(1)
    keys["d"] = cache.put(KIND_LISTING, "d", {"title": "d"})

    assert cache.get(keys["b"]) is None
    for name in ("a", "c", "d"):
        assert cache.get(keys[name]) is not None


def test_earliest_read_is_evicted_first(clock) -> None:
    cache = _cache(max_entries_per_kind=2)
    a = cache.put(KIND_LISTING, "a", {"title": "a"})
    clock.advance(1)
    b = cache.put(KIND_LISTING, "b", {"title": "b"})
    clock.advance(1)
    cache.get(a)
    clock.advance(1)
    cache.get(b)
    clock.advance(1)
    cache.put(KIND_LISTING, "c", {"title": "c"})
    assert cache.get(a) is None
    assert cache.get(b) is not None


def test_kinds_are_bounded_independently(clock) -> None:
    cache = _cache(max_entries_per_kind=2)
    search_key = cache.put(KIND_SEARCH, "q", {"results": []})
    for i in range(4):
        clock.advance(1)
        cache.put(KIND_LISTING, f"p{i}", {"title": "x"})
    assert cache.stats()["byKind"] == {KIND_SEARCH: 1, KIND_LISTING: 2}
    assert cache.get(search_key) is not None


def test_per_kind_override(clock) -> None:
    cache = _cache(max_entries_per_kind=10, max_entries_by_kind={"search": 1})
    cache.put(KIND_SEARCH, "q1", {})
    clock.advance(1)
    cache.put(KIND_SEARCH, "q2", {})
    assert cache.stats()["byKind"][KIND_SEARCH] == 1


# ---------------------------------------------------------------------------
# Clearing and stats
# ---------------------------------------------------------------------------


def test_clear_kind_and_clear_all() -> None:
    cache = _cache()
    cache.put(KIND_LISTING, "p1", {"title": "X"})
    cache.put(KIND_LISTING, "p2", {"title": "Y"})
    cache.put(KIND_SEARCH, "q", {})

    assert cache.clear_kind(EntityKind.LISTING) == 2
    assert cache.stats()["byKind"] == {KIND_SEARCH: 1}
    cache.clear_all()
    assert cache.stats()["totalEntries"] == 0


def test_stats_shape() -> None:
    cache = _cache(max_entries_per_kind=50)
    cache.put(KIND_LISTING, "p1", {"title": "X"})
    stats = cache.stats()
    assert stats == {
        "totalEntries": 1,
        "byKind": {KIND_LISTING: 1},
        "sessionId": cache.session_id,
        "maxEntriesPerKind": 50,
    }


# ---------------------------------------------------------------------------
# Search results / user session helpers
# ---------------------------------------------------------------------------


def test_cache_search_results_sanitizes_listing_results() -> None:
    cache = _cache()
    results = [
        {"type": "pack", "data": {"title": "X", "phone": "555", "lat": 1.0, "lng": 2.0}},
        {"type": "city", "display": "Boston, MA"},
    ]
    cache.cache_search_results("Bos", results, user_location={"lat": 42.0, "lng": -71.0})

    cached = cache.get_cached_search_results("bos")
    assert cached["resultCount"] == 2
    assert "phone" not in cached["results"][0]
    assert "lat" not in cached["results"][0]
    assert cached["results"][1] == {"type": "city", "display": "Boston, MA"}
    assert abs(cached["userLocation"]["lat"] - 42.0) <= RADIUS


def test_cache_search_results_accepts_scored_results() -> None:
    cache = _cache()
    listing_key = cache.put(KIND_LISTING, "pub-1", {"publicId": "pub-1", "title": "Blue Dream", "price": 45})
    listing = ScoredResult(
        entry=IndexEntry(
            kind=EntityKind.LISTING,
            display_text="Blue Dream",
            searchable_text="blue dream",
            payload=ListingPayload(
                listing_id="raw-1",
                public_id="pub-1",
                price=45.0,
                city="boston",
                vendor_ref="vendors/1",
                cache_key=listing_key,
            ),
        ),
        score=1.0,
    )
    city = ScoredResult(
        entry=IndexEntry(
            kind=EntityKind.CITY,
            display_text="Boston, MA",
            searchable_text="boston ma",
            payload=CityPayload(key="boston", name="Boston", state="MA"),
        ),
        score=0.8,
    )
    cache.cache_search_results("blue", [listing, city])
    cached = cache.get_cached_search_results("blue")["results"]
    assert cached[0]["publicId"] == "pub-1"
    assert "vendors/1" not in str(cached[0])
    assert cached[1] == {"type": "city", "display": "Boston, MA", "score": 0.8}


def test_hash_query_is_stable_and_case_insensitive() -> None:
    assert PrivacyCache.hash_query("Boston") == PrivacyCache.hash_query(" boston ")
    assert PrivacyCache.hash_query("boston") != PrivacyCache.hash_query("bostn")


def test_user_session_is_sanitized() -> None:
    cache = _cache()
    cache.cache_user_session(
        {
            "email": "user@example.com",
            "lastLocation": {"lat": 41.8, "lng": -71.4},
            "searchHistory": [f"q{i}" for i in range(15)],
            "preferences": {"units": "mi"},
        }
    )
    session = cache.get_cached_user_session()
    assert "email" not in session
    assert session["sessionId"] == cache.session_id
    assert session["userType"] == "anonymous"
    assert session["searchHistory"] == [f"q{i}" for i in range(10)]
    assert session["lastLocation"]["accuracy"] == "approximate"
    assert session["preferences"] == {"units": "mi"}


# ---------------------------------------------------------------------------
# Derived fields are never trusted from input
# ---------------------------------------------------------------------------


def test_supplied_fuzzy_coords_are_discarded() -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X", "fuzzyCoords": {"lat": 42.36, "lng": -71.05}})
    assert cache.get(key)["fuzzyCoords"] is None


def test_supplied_fuzzy_coords_are_replaced_by_fuzzed_pair() -> None:
    cache = _cache()
    key = cache.put(
        KIND_LISTING,
        "p1",
        {"title": "X", "lat": 41.0, "lng": -71.0, "fuzzyCoords": {"lat": 1.0, "lng": 2.0}},
    )
    fuzzy = cache.get(key)["fuzzyCoords"]
    assert fuzzy["accuracy"] == "approximate"
    assert abs(fuzzy["lat"] - 41.0) <= RADIUS


def test_supplied_vendor_public_id_is_discarded() -> None:
    cache = _cache()
    key = cache.put(KIND_LISTING, "p1", {"title": "X", "vendorPublicId": "vendors/real-uid"})
    assert cache.get(key)["vendorPublicId"] is None

    key = cache.put(KIND_LISTING, "p2", {"title": "X", "vendorRef": "v1", "vendorPublicId": "v1"})
    assert cache.get(key)["vendorPublicId"].startswith("vendor_")


def test_reput_counts_as_newest_for_eviction_ties(clock) -> None:
    # clock never advances: every entry has the same recency
    cache = _cache(max_entries_per_kind=2)
    a = cache.put(KIND_LISTING, "a", {"title": "a"})
    b = cache.put(KIND_LISTING, "b", {"title": "b"})
    cache.put(KIND_LISTING, "a", {"title": "a2"})
    cache.put(KIND_LISTING, "c", {"title": "c"})

    assert b not in cache
    assert cache.get(a)["title"] == "a2"
