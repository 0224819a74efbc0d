from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from packslist.search.cache import PrivacyCache
from packslist.search.engine import SearchEngine
from packslist.search.presentation import present


def _section(title: str) -> None:
    print(f"=== {title} ===")


def _load_data(path: Path) -> dict[str, Any]:
    """
    Read a JSON export of the document store.

    Shape: {"listings": [...], "cities": [...], "product_types": [...]}.
    `cities` / `product_types` may be omitted, in which case the fallback
    catalog applies.
    """
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, list):
        return {"listings": payload}
    if not isinstance(payload, dict):
        raise SystemExit(f"{path}: expected a JSON object or list")
    return payload


def _build_engine(args: argparse.Namespace) -> SearchEngine:
    data = _load_data(Path(args.data))
    engine = SearchEngine(PrivacyCache())
    engine.build_index(
        data.get("listings") or [],
        data.get("cities"),
        data.get("product_types"),
    )
    return engine


def _cmd_search(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    try:
        results = engine.rank(args.query, args.limit)
    finally:
        engine.close()

    if args.json:
        rows = []
        for r in results:
            rec = present(r, args.query)
            rows.append(
                {
                    "kind": r.kind.value,
                    "display": r.display_text,
                    "score": round(r.score, 4),
                    "icon": rec.icon,
                    "title": rec.title,
                    "subtitle": rec.subtitle,
                }
            )
        print(json.dumps(rows, indent=2, ensure_ascii=False))
        return 0

    _section(f"Results for {args.query!r}")
    if not results:
        print("  No results found")
        print()
        return 0

    header = f"{'score':>6}  {'kind':8} {'title':40} subtitle"
    print("  " + header)
    print("  " + "-" * len(header))
    for r in results:
        rec = present(r, args.query)
        print(f"  {r.score:6.3f}  {r.kind.value:8} {r.display_text:40} {rec.subtitle}")
    print()
    return 0


def _cmd_cache_stats(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    try:
        stats = engine.cache.stats() if engine.cache is not None else {}
    finally:
        engine.close()

    if args.json:
        print(json.dumps(stats, indent=2, sort_keys=True))
        return 0

    _section("Privacy cache")
    print(f"  Total entries : {stats.get('totalEntries', 0)}")
    print(f"  Max per kind  : {stats.get('maxEntriesPerKind', 0)}")
    by_kind = stats.get("byKind") or {}
    if not by_kind:
        print("  (cache is empty)")
        print()
        return 0

    print()
    header = f"{'kind':12} {'count':>8}"
    print("  " + header)
    print("  " + "-" * len(header))
    for kind, count in sorted(by_kind.items()):
        print(f"  {kind:12} {int(count):8d}")
    print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="packslist",
        description="PacksList search and cache tooling.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level for diagnostics (default: WARNING).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    search_parser = subparsers.add_parser(
        "search",
        help="Run a fuzzy search against a JSON export of listings.",
    )
    search_parser.add_argument("query", help="Search text (at least 2 characters).")
    search_parser.add_argument(
        "--data",
        required=True,
        help="Path to a JSON file with listings (and optionally cities / product_types).",
    )
    search_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of results (default: SEARCH_DEFAULT_LIMIT).",
    )
    search_parser.add_argument(
        "--json",
        action="store_true",
        help="Emit JSON instead of a human-readable table.",
    )
    search_parser.set_defaults(func=_cmd_search)

    cache_parser = subparsers.add_parser("cache", help="Privacy cache commands.")
    cache_subparsers = cache_parser.add_subparsers(dest="cache_command", required=True)
    stats_parser = cache_subparsers.add_parser(
        "stats",
        help="Index a JSON export and show what ended up in the privacy cache.",
    )
    stats_parser.add_argument("--data", required=True, help="Path to a JSON listings export.")
    stats_parser.add_argument("--json", action="store_true", help="Emit JSON.")
    stats_parser.set_defaults(func=_cmd_cache_stats)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
            format="%(levelname)s %(message)s",
        )

    func = getattr(args, "func", None)
    if func is None:
        parser.error("no command specified")
        return 1
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
