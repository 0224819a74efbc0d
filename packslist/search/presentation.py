# packslist/search/presentation.py
from __future__ import annotations

import html
import re

from packslist.search.models import DisplayRecord, EntityKind, ListingPayload, ScoredResult

ICONS: dict[EntityKind, str] = {
    EntityKind.LISTING: "\U0001f4e6",  # package
    EntityKind.CITY: "\U0001f4cd",  # pin
    EntityKind.PRODUCT_TYPE: "\U0001f3f7\ufe0f",  # label
}
DEFAULT_ICON = "\U0001f50d"  # magnifier

KIND_LABELS: dict[EntityKind, str] = {
    EntityKind.LISTING: "Pack",
    EntityKind.CITY: "City",
    EntityKind.PRODUCT_TYPE: "Product type",
}

HIGHLIGHT_OPEN = "<strong>"
HIGHLIGHT_CLOSE = "</strong>"


def humanize_city(key: str) -> str:
    """'north-shore-ma' -> 'North Shore Ma'."""
    return " ".join(w[:1].upper() + w[1:] for w in key.replace("-", " ").split())


def icon_for(kind: EntityKind | str | None) -> str:
    try:
        return ICONS[EntityKind(kind)] if kind is not None else DEFAULT_ICON
    except ValueError:
        return DEFAULT_ICON


def subtitle_for(result: ScoredResult) -> str:
    label = KIND_LABELS.get(result.kind, "")
    payload = result.payload
    if isinstance(payload, ListingPayload) and payload.city:
        return f"{label} in {humanize_city(payload.city)}"
    return label


def highlight(text: str, query: str) -> str:
    """
    Escape `text` for HTML and wrap every case-insensitive occurrence of
    `query` in <strong> tags.

    Matching happens on the raw text and each segment is escaped on its own,
    so neither the text nor the query can inject markup, and the query is
    always taken literally.
    """
    if not query:
        return html.escape(text)

    pattern = re.compile(re.escape(query), re.IGNORECASE)
    parts: list[str] = []
    pos = 0
    for m in pattern.finditer(text):
        parts.append(html.escape(text[pos : m.start()]))
        parts.append(f"{HIGHLIGHT_OPEN}{html.escape(m.group(0))}{HIGHLIGHT_CLOSE}")
        pos = m.end()
    parts.append(html.escape(text[pos:]))
    return "".join(parts)


def present(result: ScoredResult, query: str) -> DisplayRecord:
    return DisplayRecord(
        icon=icon_for(result.kind),
        title=highlight(result.display_text, (query or "").strip()),
        subtitle=html.escape(subtitle_for(result)),
        kind=result.kind,
    )


def present_all(results: list[ScoredResult], query: str) -> list[DisplayRecord]:
    return [present(r, query) for r in results]


__all__ = [
    "ICONS",
    "DEFAULT_ICON",
    "KIND_LABELS",
    "humanize_city",
    "icon_for",
    "subtitle_for",
    "highlight",
    "present",
    "present_all",
]
