"""Replay chapter deltas into the character/relation state visible at one event."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from story_graph.core.graph_schema import (
    ChapterSnapshotCache,
    CharacterState,
    FlatChapterEvent,
    RelationState,
    id_sort_key,
    pair_sort_key,
)

if TYPE_CHECKING:
    from story_graph.core.snapshot_store import ChapterSnapshotStore

logger = logging.getLogger(__name__)

StateSource = Literal["diff-cache", "flat-events", "macro-graph", "empty"]


@dataclass(frozen=True)
class ReconstructedState:
    """Materialized `{characters, relations}` at one event index."""

    characters: dict[str, CharacterState] = field(default_factory=dict)
    relations: list[RelationState] = field(default_factory=list)
    event_idx: int = 0
    event_meta: dict[str, Any] | None = None
    source: StateSource = "empty"

    @property
    def is_empty(self) -> bool:
        return not self.characters and not self.relations


@dataclass(frozen=True)
class EventWindow:
    """States before and at one event, used to name the nodes a step introduces."""

    previous: ReconstructedState
    current: ReconstructedState

    def new_character_ids(self) -> list[str]:
        return sorted(set(self.current.characters) - set(self.previous.characters))


def empty_state() -> ReconstructedState:
    return ReconstructedState()


def _merge_character(
    characters: dict[str, CharacterState], incoming: CharacterState, *, event_idx: int
) -> None:
    previous = characters.get(incoming.id)
    if previous is None:
        characters[incoming.id] = incoming
        return
    weight = incoming.weight
    appearance_count = incoming.appearance_count
    if weight < previous.weight or appearance_count < previous.appearance_count:
        logger.debug(
            "reconstruct.weight_regression character_id=%s event_idx=%s",
            incoming.id,
            event_idx,
        )
        weight = max(weight, previous.weight)
        appearance_count = max(appearance_count, previous.appearance_count)
    characters[incoming.id] = incoming.model_copy(
        update={"weight": weight, "appearance_count": appearance_count}
    )


def replay_chapter_cache(cache: ChapterSnapshotCache, target_event_idx: int) -> ReconstructedState:
    """Apply every delta up to the target on top of the base snapshot."""
    base = cache.base_snapshot
    if target_event_idx < 1:
        return empty_state()
    if target_event_idx < base.event_idx:
        logger.warning(
            "reconstruct.out_of_range book_id=%s chapter_idx=%s target=%s base_event_idx=%s",
            cache.book_id,
            cache.chapter_idx,
            target_event_idx,
            base.event_idx,
        )
        return empty_state()
    target = min(target_event_idx, cache.max_event_idx or base.event_idx)

    characters: dict[str, CharacterState] = {}
    relations: dict[tuple[str, str], RelationState] = {}
    for character in base.characters:
        _merge_character(characters, character, event_idx=base.event_idx)
    for relation in base.relations:
        relations[relation.pair] = relation
    event_meta = base.event_meta
    applied_idx = base.event_idx

    for delta in cache.diffs:
        if delta.event_idx > target:
            break
        for character in delta.characters:
            _merge_character(characters, character, event_idx=delta.event_idx)
        for relation in delta.relations:
            relations[relation.pair] = relation
        for character_id in delta.removed_character_ids:
            characters.pop(character_id, None)
        for pair in delta.removed_relation_pairs:
            relations.pop(pair, None)
        if delta.event_meta is not None:
            event_meta = delta.event_meta
        applied_idx = delta.event_idx

    return ReconstructedState(
        characters=dict(sorted(characters.items(), key=lambda item: id_sort_key(item[0]))),
        relations=[relations[pair] for pair in sorted(relations, key=pair_sort_key)],
        event_idx=max(applied_idx, target),
        event_meta=event_meta,
        source="diff-cache",
    )


def aggregate_flat_events(
    events: Iterable[FlatChapterEvent], target_event_idx: int
) -> ReconstructedState:
    """Aggregate an unordered flat event list up to the target, last writer wins."""
    if target_event_idx < 1:
        return empty_state()
    selected = sorted(
        (event for event in events if event.event_idx <= target_event_idx),
        key=lambda event: event.event_idx,
    )
    if not selected:
        return empty_state()

    characters: dict[str, CharacterState] = {}
    relations: dict[tuple[str, str], RelationState] = {}
    event_meta: dict[str, Any] | None = None
    for event in selected:
        for character in event.characters:
            _merge_character(characters, character, event_idx=event.event_idx)
        for relation in event.relations:
            relations[relation.pair] = relation
        if event.event_meta is not None:
            event_meta = event.event_meta

    return ReconstructedState(
        characters=dict(sorted(characters.items(), key=lambda item: id_sort_key(item[0]))),
        relations=[relations[pair] for pair in sorted(relations, key=pair_sort_key)],
        event_idx=selected[-1].event_idx,
        event_meta=event_meta,
        source="flat-events",
    )


def reconstruct_chapter_state(
    store: ChapterSnapshotStore,
    book_id: str,
    chapter_idx: int,
    target_event_idx: int,
) -> ReconstructedState:
    """Resolve the state at (book, chapter, event) from whichever cache form exists."""
    if target_event_idx < 1:
        return empty_state()
    cache = store.get(book_id, chapter_idx)
    if cache is not None:
        return replay_chapter_cache(cache, target_event_idx)
    flat = store.get_flat_events(book_id, chapter_idx)
    if flat is not None:
        target = target_event_idx
        if flat.max_event_idx:
            target = min(target, flat.max_event_idx)
        return aggregate_flat_events(flat.events, target)
    logger.debug(
        "reconstruct.cache_miss book_id=%s chapter_idx=%s target=%s",
        book_id,
        chapter_idx,
        target_event_idx,
    )
    return empty_state()


def event_window(
    store: ChapterSnapshotStore,
    book_id: str,
    chapter_idx: int,
    target_event_idx: int,
) -> EventWindow:
    """Reconstruct the target event and the one before it."""
    current = reconstruct_chapter_state(store, book_id, chapter_idx, target_event_idx)
    if current.is_empty or current.event_idx <= 1:
        return EventWindow(previous=empty_state(), current=current)
    cache = store.get(book_id, chapter_idx)
    if cache is not None and current.event_idx <= cache.base_snapshot.event_idx:
        return EventWindow(previous=empty_state(), current=current)
    previous = reconstruct_chapter_state(store, book_id, chapter_idx, current.event_idx - 1)
    return EventWindow(previous=previous, current=current)
