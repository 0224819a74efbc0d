# packslist/search/indexing.py
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from packslist.config import SEARCH_USE_FALLBACK_CITIES, SEARCH_USE_FALLBACK_PRODUCT_TYPES
from packslist.search.cache import KIND_LISTING, PrivacyCache
from packslist.search.catalog import (
    Catalog,
    CityRecord,
    ListingRecord,
    ProductTypeRecord,
    load_catalog,
    parse_cities,
    parse_product_types,
)
from packslist.search.models import (
    CityPayload,
    EntityKind,
    IndexEntry,
    ListingPayload,
    ProductTypePayload,
)

log = logging.getLogger(__name__)


def _listing_entry(raw: Mapping[str, Any], cache: PrivacyCache | None) -> IndexEntry | None:
    """
    Build a LISTING entry, or None when the record is incomplete.

    Incomplete means: no title, or no price / city / vendor. Records whose
    fields have the wrong type (e.g. a non-numeric price) are treated the same.
    """
    try:
        listing = ListingRecord.model_validate(raw)
    except ValidationError as err:
        listing_id = raw.get("id") if isinstance(raw, Mapping) else None
        log.debug("Skipping malformed listing %r: %s", listing_id, err.error_count())
        return None
    if not listing.is_indexable():
        return None

    title = listing.title.strip()  # type: ignore[union-attr]
    public_id = listing.public_id
    cache_key: str | None = None
    if cache is not None:
        public_id = public_id or cache.public_id_for(KIND_LISTING, listing.id)
        cache_key = cache.put(KIND_LISTING, public_id, {**raw, "publicId": public_id})
    elif not public_id:
        public_id = str(listing.id) if listing.id is not None else title.lower()

    return IndexEntry(
        kind=EntityKind.LISTING,
        display_text=title,
        searchable_text=title.lower(),
        payload=ListingPayload(
            listing_id=str(listing.id) if listing.id is not None else None,
            public_id=public_id,
            price=float(listing.price),  # type: ignore[arg-type]
            city=str(listing.city),
            vendor_ref=listing.vendor_reference() or "",
            product_type=listing.product_type,
            cache_key=cache_key,
        ),
    )


def _city_entry(city: CityRecord) -> IndexEntry | None:
    name = (city.name or "").strip()
    if not name:
        return None
    state = (city.state or "").strip()
    lat, lng = city.latlng()
    return IndexEntry(
        kind=EntityKind.CITY,
        display_text=f"{name}, {state}" if state else name,
        searchable_text=f"{name} {state}".strip().lower(),
        payload=CityPayload(key=city.slug(), name=name, state=state, lat=lat, lng=lng),
    )


def _product_type_entry(product: ProductTypeRecord) -> IndexEntry | None:
    name = (product.name or "").strip()
    if not name:
        return None
    terms = tuple(t.strip() for t in product.search_terms if t and t.strip())
    searchable = " ".join(terms).lower() if terms else name.lower()
    return IndexEntry(
        kind=EntityKind.PRODUCT_TYPE,
        display_text=name,
        searchable_text=searchable,
        payload=ProductTypePayload(key=product.slug(), name=name, search_terms=terms),
    )


def build_index(
    listings: Iterable[Mapping[str, Any]] | None,
    cities: Iterable[Mapping[str, Any] | CityRecord] | None = None,
    product_types: Iterable[Mapping[str, Any] | ProductTypeRecord | str] | None = None,
    *,
    cache: PrivacyCache | None = None,
) -> list[IndexEntry]:
    """
    Flatten listings, cities and product types into one list of IndexEntry.

    Order is listings, then cities, then product types, each in input order;
    ties in ranking fall back to this order. Inactive cities / product types
    (`isActive: false`) are left out. `None` and empty collections are both
    accepted and simply contribute nothing.

    When `cache` is given, a sanitized copy of every indexed listing is stored
    in it and the entry's payload carries the cache key.
    """
    out: list[IndexEntry] = []
    skipped = 0

    for raw in listings or ():
        entry = _listing_entry(raw, cache)
        if entry is None:
            skipped += 1
            continue
        out.append(entry)

    for city in parse_cities(cities or ()):
        if not city.is_active:
            continue
        entry = _city_entry(city)
        if entry is not None:
            out.append(entry)

    for product in parse_product_types(product_types or ()):
        if not product.is_active:
            continue
        entry = _product_type_entry(product)
        if entry is not None:
            out.append(entry)

    log.debug("Built search index: %s entries (%s listings skipped)", len(out), skipped)
    return out


class EntityIndexer:
    """
    Builds the engine's index, filling in fallback cities / product types.

    `cities=None` (or `product_types=None`) means "no dynamic configuration is
    available yet": the fallback catalog is used when the matching
    SEARCH_USE_FALLBACK_* toggle is on. An explicit empty list means "there
    are none" and is respected as is.
    """

    def __init__(
        self,
        cache: PrivacyCache | None = None,
        *,
        catalog: Catalog | None = None,
        use_fallback_cities: bool = SEARCH_USE_FALLBACK_CITIES,
        use_fallback_product_types: bool = SEARCH_USE_FALLBACK_PRODUCT_TYPES,
    ) -> None:
        self.cache = cache
        self._catalog = catalog
        self.use_fallback_cities = use_fallback_cities
        self.use_fallback_product_types = use_fallback_product_types

    @property
    def catalog(self) -> Catalog:
        if self._catalog is None:
            self._catalog = load_catalog()
        return self._catalog

    def build(
        self,
        listings: Iterable[Mapping[str, Any]] | None,
        cities: Iterable[Mapping[str, Any] | CityRecord] | None = None,
        product_types: Iterable[Mapping[str, Any] | ProductTypeRecord | str] | None = None,
    ) -> list[IndexEntry]:
        if cities is None and self.use_fallback_cities:
            cities = self.catalog.cities
        if product_types is None and self.use_fallback_product_types:
            product_types = self.catalog.product_types
        return build_index(listings, cities, product_types, cache=self.cache)


__all__ = ["build_index", "EntityIndexer"]
