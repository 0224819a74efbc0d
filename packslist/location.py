# packslist/location.py
from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from packslist.config import LOCATION_DEFAULT_DELIVERY_RADIUS_MILES

log = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959.0


@dataclass(frozen=True)
class MetroArea:
    key: str
    name: str
    center: tuple[float, float]
    radius: float  # miles
    cities: tuple[str, ...]
    delivery_radius: float  # miles


METRO_AREAS: dict[str, MetroArea] = {
    m.key: m
    for m in (
        MetroArea(
            "boston",
            "Greater Boston",
            (42.3601, -71.0589),
            25,
            ("boston", "cambridge", "somerville", "brookline", "newton"),
            15,
        ),
        MetroArea(
            "providence",
            "Providence Metro",
            (41.8240, -71.4128),
            20,
            ("providence", "cranston", "warwick", "pawtucket"),
            12,
        ),
        MetroArea(
            "worcester",
            "Central Mass",
            (42.2626, -71.8023),
            20,
            ("worcester", "shrewsbury", "auburn"),
            15,
        ),
        MetroArea(
            "newport",
            "Newport County",
            (41.4901, -71.3128),
            15,
            ("newport", "middletown", "portsmouth"),
            10,
        ),
        MetroArea(
            "southcoast-ma",
            "South Coast",
            (41.6362, -70.9342),
            20,
            ("new-bedford", "fall-river", "dartmouth"),
            15,
        ),
        MetroArea(
            "north-shore-ma",
            "North Shore",
            (42.5584, -70.8648),
            20,
            ("salem", "lynn", "peabody", "beverly"),
            15,
        ),
        MetroArea(
            "woonsocket",
            "Northern RI",
            (42.0029, -71.5153),
            15,
            ("woonsocket", "cumberland"),
            12,
        ),
    )
}

DEFAULT_METRO = "providence"
DEFAULT_LOCATION: tuple[float, float] = METRO_AREAS[DEFAULT_METRO].center

CITY_COORDINATES: dict[str, tuple[float, float]] = {
    "providence": (41.8240, -71.4128),
    "boston": (42.3601, -71.0589),
    "cambridge": (42.3736, -71.1097),
    "worcester": (42.2626, -71.8023),
    "newport": (41.4901, -71.3128),
    "woonsocket": (42.0029, -71.5153),
    "southcoast-ma": (41.6362, -70.9342),
    "north-shore-ma": (42.5584, -70.8648),
}

LocationCallback = Callable[[tuple[float, float] | None, str | None], Any]


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle (haversine) distance in miles."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def detect_metro_area(lat: float, lng: float) -> str:
    """Key of the metro area whose centre is closest to (lat, lng)."""
    closest = DEFAULT_METRO
    best = math.inf
    for key, metro in METRO_AREAS.items():
        d = calculate_distance(lat, lng, metro.center[0], metro.center[1])
        if d < best:
            best = d
            closest = key
    return closest


def city_coordinates(city_key: str) -> tuple[float, float]:
    return CITY_COORDINATES.get(city_key, DEFAULT_LOCATION)


def _coords_of(item: Mapping[str, Any]) -> tuple[float, float] | None:
    lat, lng = item.get("lat"), item.get("lng")
    if lat is None or lng is None:
        return None
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None


class LocationManager:
    """
    Tracks the user's location / metro area and filters listings by proximity.

    There is no geolocation here: callers push a location in with
    `set_user_location` (or fall back to the default metro).
    """

    def __init__(self, delivery_radius: float = LOCATION_DEFAULT_DELIVERY_RADIUS_MILES) -> None:
        self.user_location: tuple[float, float] | None = None
        self.user_metro: str | None = None
        self.delivery_radius = delivery_radius
        self._callbacks: list[LocationCallback] = []

    def set_user_location(self, lat: float, lng: float) -> str:
        self.user_location = (float(lat), float(lng))
        self.user_metro = detect_metro_area(lat, lng)
        self._notify()
        return self.user_metro

    def set_default_location(self) -> None:
        self.user_location = DEFAULT_LOCATION
        self.user_metro = DEFAULT_METRO
        self._notify()

    # -- callbacks --------------------------------------------------------

    def on_location_change(self, callback: LocationCallback) -> None:
        self._callbacks.append(callback)

    def _notify(self) -> None:
        for cb in list(self._callbacks):
            try:
                cb(self.user_location, self.user_metro)
            except Exception:
                log.exception("Location callback %r failed", cb)

    # -- metro info -------------------------------------------------------

    def metro_info(self) -> MetroArea:
        if self.user_metro and self.user_metro in METRO_AREAS:
            return METRO_AREAS[self.user_metro]
        return METRO_AREAS[DEFAULT_METRO]

    def local_delivery_radius(self) -> float:
        if self.user_metro and self.user_metro in METRO_AREAS:
            return METRO_AREAS[self.user_metro].delivery_radius
        return self.delivery_radius

    def location_display_text(self) -> str:
        return self.metro_info().name

    def suggested_cities(self) -> list[dict[str, Any]]:
        """Cities of the user's metro, nearest first."""
        out = []
        for key in self.metro_info().cities:
            distance = 0.0
            if self.user_location is not None:
                lat, lng = city_coordinates(key)
                distance = calculate_distance(self.user_location[0], self.user_location[1], lat, lng)
            name = " ".join(w.capitalize() for w in key.replace("-", " ").split())
            out.append({"value": key, "name": name, "distance": distance})
        out.sort(key=lambda c: c["distance"])
        return out

    # -- filtering --------------------------------------------------------

    def filter_by_distance(
        self,
        listings: Iterable[Mapping[str, Any]],
        max_distance: float | None = None,
    ) -> list[dict[str, Any]]:
        """
        Listings within `max_distance` miles of the user, nearest first.

        Each returned item is a copy annotated with `distance` (1 decimal).
        Listings without coordinates are dropped. With no user location the
        input is returned unfiltered.
        """
        items = [dict(i) for i in listings]
        if self.user_location is None:
            return items

        radius = max_distance or self.local_delivery_radius()
        ulat, ulng = self.user_location
        out = []
        for item in items:
            coords = _coords_of(item)
            if coords is None:
                continue
            d = calculate_distance(ulat, ulng, coords[0], coords[1])
            if d <= radius:
                item["distance"] = round(d, 1)
                out.append(item)
        out.sort(key=lambda i: i["distance"])
        return out

    def filter_by_metro(self, listings: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        items = [dict(i) for i in listings]
        if not self.user_metro or self.user_metro not in METRO_AREAS:
            return items

        metro = METRO_AREAS[self.user_metro]
        out = []
        for item in items:
            if item.get("city") in metro.cities:
                out.append(item)
                continue
            coords = _coords_of(item)
            if coords is not None and (
                calculate_distance(metro.center[0], metro.center[1], coords[0], coords[1])
                <= metro.radius
            ):
                out.append(item)
        return out

    def get_local_listings(
        self,
        listings: Iterable[Mapping[str, Any]],
        *,
        use_distance: bool = True,
        use_metro: bool = True,
        max_distance: float | None = None,
        min_results: int = 3,
    ) -> list[dict[str, Any]]:
        """
        Progressive widening: distance, distance x1.5, metro, then everything.
        """
        items = [dict(i) for i in listings]
        filtered = items

        if use_distance and self.user_location is not None:
            filtered = self.filter_by_distance(items, max_distance)
            if len(filtered) < min_results:
                expanded = (max_distance or self.delivery_radius) * 1.5
                filtered = self.filter_by_distance(items, expanded)

        if len(filtered) < min_results and use_metro:
            filtered = self.filter_by_metro(items)

        if not filtered:
            filtered = items
        return filtered


__all__ = [
    "MetroArea",
    "METRO_AREAS",
    "DEFAULT_METRO",
    "DEFAULT_LOCATION",
    "calculate_distance",
    "detect_metro_area",
    "city_coordinates",
    "LocationManager",
]
