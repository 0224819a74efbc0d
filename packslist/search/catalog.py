# packslist/search/catalog.py
"""
Curated cities and product types, plus the boundary models used to read
raw records coming out of the document store / admin configuration.

Cities and product types normally arrive from the admin-managed config
collections. When a collection is not available (config not loaded yet, or
never configured) the built-in lists below are used instead, subject to the
SEARCH_USE_FALLBACK_* toggles. An optional YAML catalog can replace the
built-in lists without a code change.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from packslist.config import load_catalog_config

log = logging.getLogger(__name__)


class CityRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None
    state: str | None = None
    key: str | None = None
    lat: float | None = None
    lng: float | None = None
    coordinates: dict[str, float] | None = None
    is_active: bool = Field(default=True, alias="isActive")

    def slug(self) -> str:
        if self.key:
            return self.key
        return re.sub(r"[^a-z0-9]+", "-", (self.name or "").lower()).strip("-")

    def latlng(self) -> tuple[float | None, float | None]:
        if self.lat is not None and self.lng is not None:
            return self.lat, self.lng
        if self.coordinates:
            return self.coordinates.get("lat"), self.coordinates.get("lng")
        return None, None


class ProductTypeRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None
    key: str | None = None
    search_terms: list[str] = Field(default_factory=list, alias="searchTerms")
    is_active: bool = Field(default=True, alias="isActive")

    @field_validator("search_terms", mode="before")
    @classmethod
    def _terms_or_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def slug(self) -> str:
        if self.key:
            return self.key
        # "Indica Pack" -> "indica"
        return (self.name or "").lower().replace(" pack", "").strip().replace(" ", "-")


class CatalogCityRecord(CityRecord):
    """A curated YAML catalog entry: the name is mandatory."""

    name: str


class CatalogProductTypeRecord(ProductTypeRecord):
    name: str


class ListingRecord(BaseModel):
    """
    A listing ("pack") document as read from the store.

    Every field is optional here: completeness is an indexing rule, not a
    parse error. Unknown fields are kept so the privacy sanitizer can see
    (and drop) them.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | int | None = None
    public_id: str | None = Field(default=None, alias="publicId")
    title: str | None = None
    description: str | None = None
    price: float | None = None
    city: str | None = None
    # Firestore ids are strings, but hand-built fixtures often use ints.
    vendor_ref: str | int | None = Field(default=None, alias="vendorRef")
    vendor: dict[str, Any] | str | None = None
    product_type: str | None = Field(default=None, alias="productType")

    def vendor_reference(self) -> str | None:
        """Resolve the vendor to a single reference string, or None."""
        if self.vendor_ref not in (None, ""):
            return str(self.vendor_ref)
        if isinstance(self.vendor, str) and self.vendor.strip():
            return self.vendor.strip()
        if isinstance(self.vendor, dict):
            for k in ("publicId", "id", "uid"):
                v = self.vendor.get(k)
                if v:
                    return str(v)
        return None

    def is_indexable(self) -> bool:
        return bool(
            self.title
            and self.title.strip()
            and self.price is not None
            and self.city
            and self.vendor_reference()
        )


# ---------------------------------------------------------------------------
# Built-in fallbacks
# ---------------------------------------------------------------------------

MAJOR_CITIES: tuple[dict[str, Any], ...] = (
    # Massachusetts
    {"name": "Boston", "state": "MA", "key": "boston", "lat": 42.3601, "lng": -71.0589},
    {"name": "Cambridge", "state": "MA", "key": "cambridge", "lat": 42.3736, "lng": -71.1097},
    {"name": "Worcester", "state": "MA", "key": "worcester", "lat": 42.2626, "lng": -71.8023},
    {"name": "Springfield", "state": "MA", "key": "springfield", "lat": 42.1015, "lng": -72.5898},
    {"name": "Lowell", "state": "MA", "key": "lowell", "lat": 42.6334, "lng": -71.3162},
    {"name": "New Bedford", "state": "MA", "key": "new-bedford", "lat": 41.6362, "lng": -70.9342},
    # Rhode Island
    {"name": "Providence", "state": "RI", "key": "providence", "lat": 41.8240, "lng": -71.4128},
    {"name": "Newport", "state": "RI", "key": "newport", "lat": 41.4901, "lng": -71.3128},
    {"name": "Warwick", "state": "RI", "key": "warwick", "lat": 41.7001, "lng": -71.4162},
    {"name": "Woonsocket", "state": "RI", "key": "woonsocket", "lat": 42.0029, "lng": -71.5153},
    # Connecticut
    {"name": "Hartford", "state": "CT", "key": "hartford", "lat": 41.7658, "lng": -72.6734},
    {"name": "New Haven", "state": "CT", "key": "new-haven", "lat": 41.3083, "lng": -72.9279},
    {"name": "Bridgeport", "state": "CT", "key": "bridgeport", "lat": 41.1865, "lng": -73.2052},
    {"name": "Stamford", "state": "CT", "key": "stamford", "lat": 41.0534, "lng": -73.5387},
    # New York
    {"name": "New York City", "state": "NY", "key": "nyc", "lat": 40.7128, "lng": -74.0060},
    {"name": "Albany", "state": "NY", "key": "albany", "lat": 42.6526, "lng": -73.7562},
    {"name": "Buffalo", "state": "NY", "key": "buffalo", "lat": 42.8864, "lng": -78.8784},
    {"name": "Rochester", "state": "NY", "key": "rochester", "lat": 43.1566, "lng": -77.6088},
)

PRODUCT_TYPES: tuple[str, ...] = (
    "Indica Pack",
    "Sativa Pack",
    "Hybrid Pack",
    "Premium Pack",
    "Budget Pack",
)


@dataclass(frozen=True)
class Catalog:
    cities: tuple[CityRecord, ...]
    product_types: tuple[ProductTypeRecord, ...]

    def city(self, key: str) -> CityRecord | None:
        for c in self.cities:
            if c.slug() == key:
                return c
        return None

    def product_type(self, key: str) -> ProductTypeRecord | None:
        for p in self.product_types:
            if p.slug() == key:
                return p
        return None


def parse_cities(
    raw: Iterable[Mapping[str, Any] | CityRecord],
    *,
    strict: bool = False,
) -> list[CityRecord]:
    """
    Validate city records.

    Records that fail validation are skipped (logged at debug level) unless
    `strict` is set, in which case the ValidationError propagates.
    """
    model = CatalogCityRecord if strict else CityRecord
    out: list[CityRecord] = []
    for c in raw:
        if isinstance(c, CityRecord):
            out.append(c)
            continue
        try:
            out.append(model.model_validate(c))
        except ValidationError as err:
            if strict:
                raise
            log.debug("Skipping malformed city record: %s errors", err.error_count())
    return out


def parse_product_types(
    raw: Iterable[Mapping[str, Any] | ProductTypeRecord | str],
    *,
    strict: bool = False,
) -> list[ProductTypeRecord]:
    model = CatalogProductTypeRecord if strict else ProductTypeRecord
    out: list[ProductTypeRecord] = []
    for p in raw:
        if isinstance(p, ProductTypeRecord):
            out.append(p)
            continue
        if isinstance(p, str):
            out.append(ProductTypeRecord(name=p))
            continue
        try:
            out.append(model.model_validate(p))
        except ValidationError as err:
            if strict:
                raise
            log.debug("Skipping malformed product type record: %s errors", err.error_count())
    return out


def load_catalog(path: Path | None = None) -> Catalog:
    """
    Return the fallback catalog: YAML overrides where present, built-ins otherwise.

    A malformed YAML record raises pydantic.ValidationError; a missing file
    is not an error.
    """
    cfg = load_catalog_config(path)

    raw_cities = cfg.get("cities")
    raw_products = cfg.get("product_types")
    if raw_cities or raw_products:
        log.debug(
            "Loaded search catalog overrides: cities=%s product_types=%s",
            len(raw_cities or []),
            len(raw_products or []),
        )

    cities = parse_cities(raw_cities, strict=True) if raw_cities else parse_cities(MAJOR_CITIES)
    products = (
        parse_product_types(raw_products, strict=True)
        if raw_products
        else parse_product_types(PRODUCT_TYPES)
    )
    return Catalog(cities=tuple(cities), product_types=tuple(products))


__all__ = [
    "CityRecord",
    "ProductTypeRecord",
    "ListingRecord",
    "Catalog",
    "MAJOR_CITIES",
    "PRODUCT_TYPES",
    "parse_cities",
    "parse_product_types",
    "load_catalog",
]
