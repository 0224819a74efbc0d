from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name, str(default)).strip()
    try:
        return int(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be an integer; got {v!r}") from err


def _getenv_float(name: str, default: float) -> float:
    v = os.getenv(name, str(default)).strip()
    try:
        return float(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be a number; got {v!r}") from err


def _getenv_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    """
    Read a loosely-typed boolean from the environment.

    Treats "1", "true", "yes", "on" (case-insensitive) as True;
    "0", "false", "no", "off", "" as False. If unset, returns default.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off", ""}:
        return False
    # Fallback: any other non-empty value -> True
    return True


# Load .env from project root if present
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)

# -------------------------------
# Query engine
# -------------------------------
SEARCH_MIN_QUERY_LENGTH: int = _getenv_int("SEARCH_MIN_QUERY_LENGTH", 2)
SEARCH_DEFAULT_LIMIT: int = _getenv_int("SEARCH_DEFAULT_LIMIT", 4)
SEARCH_FUZZY_THRESHOLD: float = _getenv_float("SEARCH_FUZZY_THRESHOLD", 0.6)
SEARCH_DEBOUNCE_SECONDS: float = _getenv_float("SEARCH_DEBOUNCE_SECONDS", 0.3)

# Built-in city / product-type lists are used only when the caller supplies
# no dynamic configuration for that collection.
SEARCH_USE_FALLBACK_CITIES: bool = _getenv_bool("SEARCH_USE_FALLBACK_CITIES", True)
SEARCH_USE_FALLBACK_PRODUCT_TYPES: bool = _getenv_bool("SEARCH_USE_FALLBACK_PRODUCT_TYPES", True)
SEARCH_CATALOG_PATH: Path = Path(
    _getenv_str("SEARCH_CATALOG_PATH", (ROOT / "docs" / "search-catalog.yaml").as_posix())
)

# -------------------------------
# Privacy cache
# -------------------------------
PRIVACY_CACHE_LISTING_TTL_SECONDS: float = _getenv_float("PRIVACY_CACHE_LISTING_TTL_SECONDS", 600)
PRIVACY_CACHE_SEARCH_TTL_SECONDS: float = _getenv_float("PRIVACY_CACHE_SEARCH_TTL_SECONDS", 300)
PRIVACY_CACHE_CONFIG_TTL_SECONDS: float = _getenv_float("PRIVACY_CACHE_CONFIG_TTL_SECONDS", 1800)
PRIVACY_CACHE_SESSION_TTL_SECONDS: float = _getenv_float(
    "PRIVACY_CACHE_SESSION_TTL_SECONDS",
    1800,
)
PRIVACY_CACHE_MAX_ENTRIES_PER_KIND: int = _getenv_int("PRIVACY_CACHE_MAX_ENTRIES_PER_KIND", 100)
PRIVACY_CACHE_SWEEP_INTERVAL_SECONDS: float = _getenv_float(
    "PRIVACY_CACHE_SWEEP_INTERVAL_SECONDS",
    300,
)
# ~0.004 degrees of latitude is roughly a quarter mile, so the fuzzed point
# lands within about half a mile of the real one.
PRIVACY_FUZZ_RADIUS_DEGREES: float = _getenv_float("PRIVACY_FUZZ_RADIUS_DEGREES", 0.004)

# -------------------------------
# Location helpers
# -------------------------------
LOCATION_DEFAULT_DELIVERY_RADIUS_MILES: float = _getenv_float(
    "LOCATION_DEFAULT_DELIVERY_RADIUS_MILES",
    20,
)


@dataclass(frozen=True)
class SearchConfig:
    min_query_length: int
    default_limit: int
    fuzzy_threshold: float
    debounce_seconds: float
    use_fallback_cities: bool
    use_fallback_product_types: bool
    catalog_path: Path


@dataclass(frozen=True)
class CacheConfig:
    listing_ttl_seconds: float
    search_ttl_seconds: float
    config_ttl_seconds: float
    session_ttl_seconds: float
    max_entries_per_kind: int
    sweep_interval_seconds: float
    fuzz_radius_degrees: float


@dataclass(frozen=True)
class LocationConfig:
    default_delivery_radius_miles: float


@dataclass(frozen=True)
class AppConfig:
    search: SearchConfig
    cache: CacheConfig
    location: LocationConfig


def load_settings() -> AppConfig:
    search = SearchConfig(
        min_query_length=_getenv_int("SEARCH_MIN_QUERY_LENGTH", 2),
        default_limit=_getenv_int("SEARCH_DEFAULT_LIMIT", 4),
        fuzzy_threshold=_getenv_float("SEARCH_FUZZY_THRESHOLD", 0.6),
        debounce_seconds=_getenv_float("SEARCH_DEBOUNCE_SECONDS", 0.3),
        use_fallback_cities=_getenv_bool("SEARCH_USE_FALLBACK_CITIES", True),
        use_fallback_product_types=_getenv_bool("SEARCH_USE_FALLBACK_PRODUCT_TYPES", True),
        catalog_path=Path(
            _getenv_str("SEARCH_CATALOG_PATH", (ROOT / "docs" / "search-catalog.yaml").as_posix())
        ),
    )
    cache = CacheConfig(
        listing_ttl_seconds=_getenv_float("PRIVACY_CACHE_LISTING_TTL_SECONDS", 600),
        search_ttl_seconds=_getenv_float("PRIVACY_CACHE_SEARCH_TTL_SECONDS", 300),
        config_ttl_seconds=_getenv_float("PRIVACY_CACHE_CONFIG_TTL_SECONDS", 1800),
        session_ttl_seconds=_getenv_float("PRIVACY_CACHE_SESSION_TTL_SECONDS", 1800),
        max_entries_per_kind=_getenv_int("PRIVACY_CACHE_MAX_ENTRIES_PER_KIND", 100),
        sweep_interval_seconds=_getenv_float("PRIVACY_CACHE_SWEEP_INTERVAL_SECONDS", 300),
        fuzz_radius_degrees=_getenv_float("PRIVACY_FUZZ_RADIUS_DEGREES", 0.004),
    )
    location = LocationConfig(
        default_delivery_radius_miles=_getenv_float("LOCATION_DEFAULT_DELIVERY_RADIUS_MILES", 20),
    )
    return AppConfig(search=search, cache=cache, location=location)


def load_catalog_config(path: Path | None = None) -> dict[str, Any]:
    """
    Load the curated search catalog (cities + product types) from YAML.

    Returns an empty dict if the file does not exist. The expected shape is:

      cities:
        - {name: Boston, state: MA, key: boston, lat: 42.36, lng: -71.06}
      product_types:
        - {name: Indica Pack, key: indica, searchTerms: [indica]}

    Either section may be omitted; the caller then falls back to the
    built-in lists (subject to the SEARCH_USE_FALLBACK_* toggles).
    """
    path = path or SEARCH_CATALOG_PATH
    if not path.exists():
        return {}

    text = path.read_text(encoding="utf-8")
    cfg = yaml.safe_load(text)
    if not isinstance(cfg, dict):
        return {}
    return cfg or {}


app_config: AppConfig = load_settings()

__all__ = [
    "SearchConfig",
    "CacheConfig",
    "LocationConfig",
    "AppConfig",
    "load_settings",
    "load_catalog_config",
    "app_config",
    "SEARCH_MIN_QUERY_LENGTH",
    "SEARCH_DEFAULT_LIMIT",
    "SEARCH_FUZZY_THRESHOLD",
    "SEARCH_DEBOUNCE_SECONDS",
    "SEARCH_USE_FALLBACK_CITIES",
    "SEARCH_USE_FALLBACK_PRODUCT_TYPES",
    "SEARCH_CATALOG_PATH",
    "PRIVACY_CACHE_LISTING_TTL_SECONDS",
    "PRIVACY_CACHE_SEARCH_TTL_SECONDS",
    "PRIVACY_CACHE_CONFIG_TTL_SECONDS",
    "PRIVACY_CACHE_SESSION_TTL_SECONDS",
    "PRIVACY_CACHE_MAX_ENTRIES_PER_KIND",
    "PRIVACY_CACHE_SWEEP_INTERVAL_SECONDS",
    "PRIVACY_FUZZ_RADIUS_DEGREES",
    "LOCATION_DEFAULT_DELIVERY_RADIUS_MILES",
]
