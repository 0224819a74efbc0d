from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class EntityKind(str, Enum):
    """Kinds of searchable entity. Values double as cache kinds and UI tags."""

    LISTING = "pack"
    CITY = "city"
    PRODUCT_TYPE = "product"


@dataclass(frozen=True)
class ListingPayload:
    listing_id: str | None
    public_id: str
    price: float
    city: str
    vendor_ref: str
    product_type: str | None = None
    cache_key: str | None = None


@dataclass(frozen=True)
class CityPayload:
    key: str
    name: str
    state: str
    lat: float | None = None
    lng: float | None = None


@dataclass(frozen=True)
class ProductTypePayload:
    key: str
    name: str
    search_terms: tuple[str, ...] = ()


Payload = Union[ListingPayload, CityPayload, ProductTypePayload]

_PAYLOAD_TYPES: dict[EntityKind, type] = {
    EntityKind.LISTING: ListingPayload,
    EntityKind.CITY: CityPayload,
    EntityKind.PRODUCT_TYPE: ProductTypePayload,
}


@dataclass(frozen=True)
class IndexEntry:
    """
    A normalized, searchable record.

    `searchable_text` is what the matcher sees; `display_text` is what the
    user sees. They differ for cities ("boston ma" vs "Boston, MA") and for
    product types with search-term aliases.
    """

    kind: EntityKind
    display_text: str
    searchable_text: str
    payload: Payload

    def __post_init__(self) -> None:
        if not self.display_text:
            raise ValueError("IndexEntry.display_text must be non-empty")
        if not self.searchable_text or self.searchable_text != self.searchable_text.lower():
            raise ValueError("IndexEntry.searchable_text must be non-empty and lower-case")
        expected = _PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.name} entry needs a {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    @property
    def dedup_key(self) -> tuple[EntityKind, str]:
        return (self.kind, self.display_text)


@dataclass(frozen=True)
class ScoredResult:
    """An IndexEntry scored for one specific query. Never persisted."""

    entry: IndexEntry
    score: float

    @property
    def kind(self) -> EntityKind:
        return self.entry.kind

    @property
    def display_text(self) -> str:
        return self.entry.display_text

    @property
    def payload(self) -> Payload:
        return self.entry.payload


@dataclass(frozen=True)
class DisplayRecord:
    icon: str
    title: str
    subtitle: str
    kind: EntityKind | None = None


__all__ = [
    "EntityKind",
    "ListingPayload",
    "CityPayload",
    "ProductTypePayload",
    "Payload",
    "IndexEntry",
    "ScoredResult",
    "DisplayRecord",
]
