"""CLI for inspecting and invalidating persisted chapter caches."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from story_graph.adapters.observability import configure_runtime_logging
from story_graph.adapters.sqlite_key_value_store import SQLiteKeyValueStore
from story_graph.application.settings import EngineSettings
from story_graph.core.snapshot_store import (
    CHAPTER_CACHE_KEY_PREFIX,
    ChapterSnapshotStore,
    book_cache_prefix,
)


def build_arg_parser() -> argparse.ArgumentParser:
    """Define CLI flags for cache maintenance."""
    parser = argparse.ArgumentParser(description="Inspect or invalidate persisted chapter caches.")
    parser.add_argument(
        "--db-path",
        default="",
        help="SQLite path for persisted caches (default: STORY_GRAPH_DB_PATH).",
    )
    parser.add_argument(
        "--log-level", default="", help="Override STORY_GRAPH_LOG_LEVEL for this run."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List cached chapter keys.")
    list_parser.add_argument("--book-id", default="")

    invalidate_parser = subparsers.add_parser("invalidate", help="Drop every chapter of a book.")
    invalidate_parser.add_argument("--book-id", required=True)

    manifest_parser = subparsers.add_parser(
        "sync-manifest", help="Record a manifest fingerprint, invalidating on change."
    )
    manifest_parser.add_argument("--book-id", required=True)
    manifest_parser.add_argument("--fingerprint", required=True)

    subparsers.add_parser("purge", help="Delete expired entries.")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Run one cache maintenance command and print a JSON summary."""
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    configure_runtime_logging(level=str(parsed.log_level).strip() or None)
    settings = EngineSettings.from_env()
    db_path = Path(str(parsed.db_path).strip()) if str(parsed.db_path).strip() else settings.db_path
    kv_store = SQLiteKeyValueStore(db_path)
    store = ChapterSnapshotStore(
        max_size=settings.cache_max_size,
        kv_store=kv_store,
        ttl_seconds=settings.cache_ttl_seconds,
    )

    command = str(parsed.command)
    summary: dict[str, object]
    if command == "list":
        book_id = str(parsed.book_id).strip()
        prefix = book_cache_prefix(book_id) if book_id else CHAPTER_CACHE_KEY_PREFIX
        summary = {"keys": kv_store.keys(prefix)}
    elif command == "invalidate":
        summary = {"removed": store.invalidate_book(str(parsed.book_id).strip())}
    elif command == "sync-manifest":
        changed = store.sync_manifest(
            str(parsed.book_id).strip(), str(parsed.fingerprint).strip()
        )
        summary = {"invalidated": changed}
    else:
        summary = {"purged": kv_store.purge_expired()}
    print(json.dumps(summary, sort_keys=True))


if __name__ == "__main__":
    main()
