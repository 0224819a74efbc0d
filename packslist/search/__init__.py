# packslist/search/__init__.py
"""
Client-side fuzzy search for PacksList.

Listings ("packs"), cities and product types are flattened into one index of
IndexEntry records, scored against a query with a Levenshtein-based matcher,
deduplicated, ranked and truncated by SearchEngine, and turned into
display-ready, HTML-escaped records by the presentation helpers.

Listings passing through the indexer are also copied, sanitized, into a
session-scoped PrivacyCache (no PII, no exact coordinates).
"""

from .cache import PrivacyCache
from .engine import PendingSearch, QueryState, SearchEngine
from .indexing import EntityIndexer, build_index
from .matching import fuzzy_match, levenshtein_distance
from .models import (
    CityPayload,
    DisplayRecord,
    EntityKind,
    IndexEntry,
    ListingPayload,
    ProductTypePayload,
    ScoredResult,
)
from .presentation import highlight, present

__all__ = [
    "PrivacyCache",
    "SearchEngine",
    "PendingSearch",
    "QueryState",
    "EntityIndexer",
    "build_index",
    "fuzzy_match",
    "levenshtein_distance",
    "EntityKind",
    "IndexEntry",
    "ScoredResult",
    "ListingPayload",
    "CityPayload",
    "ProductTypePayload",
    "DisplayRecord",
    "present",
    "highlight",
]
