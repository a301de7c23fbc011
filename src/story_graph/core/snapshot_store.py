"""Bounded LRU cache of chapter snapshots with optional persistent backing."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from story_graph.core.graph_schema import (
    ChapterSnapshotCache,
    EventDelta,
    FlatChapterEvents,
    parse_chapter_cache,
)
from story_graph.core.state_reconstruction import (
    ReconstructedState,
    reconstruct_chapter_state,
)
from story_graph.domain.ports import KeyValueStore

logger = logging.getLogger(__name__)

CHAPTER_CACHE_KEY_PREFIX = "chapter_events_v1_"
MANIFEST_KEY_PREFIX = "chapter_manifest_v1_"
DEFAULT_MAX_SIZE = 50
DEFAULT_TTL_SECONDS = 24 * 60 * 60

_CacheEntry = ChapterSnapshotCache | FlatChapterEvents


def chapter_cache_key(book_id: str, chapter_idx: int) -> str:
    """Build the persistent key for one chapter cache."""
    return f"{CHAPTER_CACHE_KEY_PREFIX}{book_id}_{chapter_idx}"


def book_cache_prefix(book_id: str) -> str:
    return f"{CHAPTER_CACHE_KEY_PREFIX}{book_id}_"


@dataclass(frozen=True)
class SnapshotStoreStats:
    """Counters for cache sizing and hit-rate diagnostics."""

    entries: int
    max_size: int
    hits: int
    misses: int
    persisted_hits: int
    evictions: int


class ChapterSnapshotStore:
    """Per-(book, chapter) cache of base snapshots and ordered deltas."""

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        kv_store: KeyValueStore | None = None,
        ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1.")
        self._max_size = max_size
        self._kv_store = kv_store
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[tuple[str, int], _CacheEntry] = OrderedDict()
        self._fingerprints: dict[str, str] = {}
        self._hits = 0
        self._misses = 0
        self._persisted_hits = 0
        self._evictions = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, book_id: str, chapter_idx: int) -> ChapterSnapshotCache | None:
        """Return the diff cache for a chapter, loading it from persistence on a miss."""
        entry = self._lookup(book_id, chapter_idx)
        return entry if isinstance(entry, ChapterSnapshotCache) else None

    def get_flat_events(self, book_id: str, chapter_idx: int) -> FlatChapterEvents | None:
        """Return the flat event list for a chapter without a diff cache."""
        entry = self._lookup(book_id, chapter_idx)
        return entry if isinstance(entry, FlatChapterEvents) else None

    def put(self, cache: ChapterSnapshotCache) -> None:
        """Remember a diff cache and persist it when a store is configured."""
        self._store(cache.book_id, cache.chapter_idx, cache, kind="diff-cache")

    def put_flat_events(self, events: FlatChapterEvents) -> None:
        """Remember a flat event list and persist it when a store is configured."""
        self._store(events.book_id, events.chapter_idx, events, kind="flat-events")

    def events_up_to(self, book_id: str, chapter_idx: int, event_idx: int) -> list[EventDelta]:
        """Return cached deltas with `event_idx <= event_idx`, in ascending order."""
        cache = self.get(book_id, chapter_idx)
        if cache is None:
            return []
        return [delta for delta in cache.diffs if delta.event_idx <= event_idx]

    def materialize(self, book_id: str, chapter_idx: int, event_idx: int) -> ReconstructedState:
        """Return the full state at one event of a cached chapter."""
        return reconstruct_chapter_state(self, book_id, chapter_idx, event_idx)

    def max_event_idx(self, book_id: str, chapter_idx: int) -> int:
        entry = self._lookup(book_id, chapter_idx)
        return entry.max_event_idx if entry is not None else 0

    def remove(self, book_id: str, chapter_idx: int) -> None:
        self._entries.pop((book_id, chapter_idx), None)
        if self._kv_store is not None:
            self._kv_store.remove(chapter_cache_key(book_id, chapter_idx))

    def invalidate_book(self, book_id: str) -> int:
        """Drop every cached chapter of one book from memory and persistence."""
        stale_keys = [key for key in self._entries if key[0] == book_id]
        for key in stale_keys:
            del self._entries[key]
        removed = len(stale_keys)
        if self._kv_store is not None:
            persisted = self._kv_store.keys(book_cache_prefix(book_id))
            for key in persisted:
                self._kv_store.remove(key)
            removed = max(removed, len(persisted))
        logger.info("snapshot_store.invalidate_book book_id=%s removed=%s", book_id, removed)
        return removed

    def sync_manifest(self, book_id: str, fingerprint: str) -> bool:
        """Record the book manifest fingerprint; invalidate the book when it changed."""
        known = self._fingerprints.get(book_id)
        if known is None and self._kv_store is not None:
            stored = self._kv_store.get(f"{MANIFEST_KEY_PREFIX}{book_id}")
            if isinstance(stored, str):
                known = stored
        changed = known is not None and known != fingerprint
        if changed:
            logger.info(
                "snapshot_store.manifest_changed book_id=%s previous=%s current=%s",
                book_id,
                known,
                fingerprint,
            )
            self.invalidate_book(book_id)
        self._fingerprints[book_id] = fingerprint
        if self._kv_store is not None:
            self._kv_store.set(f"{MANIFEST_KEY_PREFIX}{book_id}", fingerprint)
        return changed

    def clear(self) -> None:
        """Drop in-memory entries and counters; persisted entries are kept."""
        self._entries.clear()
        self._fingerprints.clear()
        self._hits = 0
        self._misses = 0
        self._persisted_hits = 0
        self._evictions = 0

    def stats(self) -> SnapshotStoreStats:
        return SnapshotStoreStats(
            entries=len(self._entries),
            max_size=self._max_size,
            hits=self._hits,
            misses=self._misses,
            persisted_hits=self._persisted_hits,
            evictions=self._evictions,
        )

    def _lookup(self, book_id: str, chapter_idx: int) -> _CacheEntry | None:
        key = (book_id, chapter_idx)
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
            self._hits += 1
            return entry
        entry = self._load_persisted(book_id, chapter_idx)
        if entry is None:
            self._misses += 1
            return None
        self._persisted_hits += 1
        self._remember(key, entry)
        return entry

    def _store(
        self, book_id: str, chapter_idx: int, entry: _CacheEntry, *, kind: str
    ) -> None:
        self._remember((book_id, chapter_idx), entry)
        if self._kv_store is None:
            return
        self._kv_store.set(
            chapter_cache_key(book_id, chapter_idx),
            {
                "kind": kind,
                "timestamp": self._clock(),
                "payload": entry.model_dump(mode="json"),
            },
            ttl_seconds=self._ttl_seconds,
        )

    def _remember(self, key: tuple[str, int], entry: _CacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("snapshot_store.evict book_id=%s chapter_idx=%s", *evicted)

    def _load_persisted(self, book_id: str, chapter_idx: int) -> _CacheEntry | None:
        if self._kv_store is None:
            return None
        key = chapter_cache_key(book_id, chapter_idx)
        stored = self._kv_store.get(key)
        if stored is None:
            return None
        entry = self._entry_from_record(stored)
        if entry is None:
            logger.warning("snapshot_store.discard_persisted key=%s", key)
            self._kv_store.remove(key)
            return None
        if (entry.book_id, entry.chapter_idx) != (book_id, chapter_idx):
            logger.warning("snapshot_store.key_mismatch key=%s", key)
            self._kv_store.remove(key)
            return None
        return entry

    def _entry_from_record(self, stored: Any) -> _CacheEntry | None:
        if not isinstance(stored, dict):
            return None
        timestamp = stored.get("timestamp")
        if self._ttl_seconds is not None and isinstance(timestamp, (int, float)):
            if self._clock() - float(timestamp) > self._ttl_seconds:
                return None
        payload = stored.get("payload")
        if stored.get("kind") == "flat-events":
            try:
                return FlatChapterEvents.model_validate(payload)
            except ValidationError:
                return None
        return parse_chapter_cache(payload)
