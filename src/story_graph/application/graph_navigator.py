"""Async chapter/event navigation: load, reconstruct, diff, and sync the scene."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, Literal

from story_graph.application.settings import EngineSettings
from story_graph.core.cancellation import CancellationToken, NavigationCoordinator
from story_graph.core.element_builder import build_graph_elements
from story_graph.core.graph_diff import diff_graph_elements
from story_graph.core.graph_schema import (
    FlatChapterEvent,
    FlatChapterEvents,
    parse_characters,
    parse_envelope,
    parse_relations,
)
from story_graph.core.node_placement import PlacementRegistry
from story_graph.core.scene_sync import SceneSynchronizer, SyncReport
from story_graph.core.search_filter import (
    MAX_SUGGESTIONS,
    SearchResult,
    SearchSuggestion,
    build_search_suggestions,
    filter_search_results,
)
from story_graph.core.selection import SelectionHighlighter, SelectionUpdate
from story_graph.core.snapshot_store import ChapterSnapshotStore
from story_graph.core.state_reconstruction import (
    EventWindow,
    ReconstructedState,
    empty_state,
    event_window,
)
from story_graph.domain.models import DiffResult, GraphElement, GraphNode
from story_graph.domain.ports import GraphFetcher, KeyValueStore

logger = logging.getLogger(__name__)

POSITIONS_KEY_PREFIX = "graph_positions_v1_"

NavigationStatus = Literal["applied", "cancelled", "empty", "error"]


def positions_key(book_id: str, chapter_idx: int) -> str:
    return f"{POSITIONS_KEY_PREFIX}{book_id}_{chapter_idx}"


@dataclass(frozen=True)
class NavigationResult:
    """Outcome of one (chapter, event) navigation; never raised, always returned."""

    status: NavigationStatus
    book_id: str
    chapter_idx: int
    event_idx: int = 0
    state: ReconstructedState = field(default_factory=empty_state)
    elements: list[GraphElement] = field(default_factory=list)
    diff: DiffResult = field(default_factory=DiffResult)
    sync_report: SyncReport | None = None
    new_node_ids: list[str] = field(default_factory=list)
    dropped_edge_ids: list[str] = field(default_factory=list)
    max_event_idx: int = 0
    error: str | None = None
    timing: dict[str, float] = field(default_factory=dict)

    @property
    def applied(self) -> bool:
        return self.status in {"applied", "empty"}


class GraphNavigator:
    """Last-issued-wins navigation over cached or fetched chapter graphs."""

    def __init__(
        self,
        store: ChapterSnapshotStore,
        synchronizer: SceneSynchronizer,
        *,
        fetcher: GraphFetcher | None = None,
        settings: EngineSettings | None = None,
        highlighter: SelectionHighlighter | None = None,
        position_store: KeyValueStore | None = None,
    ) -> None:
        self._store = store
        self._synchronizer = synchronizer
        self._fetcher = fetcher
        self._settings = settings or EngineSettings()
        self._highlighter = highlighter or SelectionHighlighter()
        self._position_store = position_store
        self._coordinator = NavigationCoordinator()
        self._chapter: tuple[str, int] | None = None
        self._current_characters: frozenset[str] = frozenset()

    @property
    def highlighter(self) -> SelectionHighlighter:
        return self._highlighter

    @property
    def current_chapter(self) -> tuple[str, int] | None:
        return self._chapter

    def begin(self, label: str = "") -> CancellationToken:
        """Issue a token for a new navigation, cancelling the one in flight."""
        return self._coordinator.begin(label)

    async def navigate(
        self,
        book_id: str,
        chapter_idx: int,
        event_idx: int,
        token: CancellationToken | None = None,
    ) -> NavigationResult:
        """Move the scene to (chapter, event); stale or failed loads never touch the scene."""
        active = token or self.begin(f"{book_id}:{chapter_idx}:{event_idx}")
        try:
            return await self._navigate(book_id, chapter_idx, event_idx, active)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "navigate.failed book_id=%s chapter_idx=%s event_idx=%s error=%s",
                book_id,
                chapter_idx,
                event_idx,
                exc,
            )
            return NavigationResult(
                status="error",
                book_id=book_id,
                chapter_idx=chapter_idx,
                event_idx=event_idx,
                error=str(exc),
            )

    async def _navigate(
        self, book_id: str, chapter_idx: int, event_idx: int, token: CancellationToken
    ) -> NavigationResult:
        timings: dict[str, float] = {}
        started = time.perf_counter()
        if chapter_idx < 1:
            return NavigationResult(status="empty", book_id=book_id, chapter_idx=chapter_idx)

        step_start = time.perf_counter()
        loaded = await self.ensure_chapter_loaded(book_id, chapter_idx, token)
        timings["load_seconds"] = time.perf_counter() - step_start
        if token.cancelled:
            return self._cancelled(book_id, chapter_idx, event_idx)

        step_start = time.perf_counter()
        window = event_window(self._store, book_id, chapter_idx, event_idx)
        state = window.current
        if not loaded and state.is_empty:
            macro = await self._load_macro_state(book_id, chapter_idx, token)
            if token.cancelled:
                return self._cancelled(book_id, chapter_idx, event_idx)
            if macro is not None:
                state = macro
                window = EventWindow(previous=empty_state(), current=macro)
        timings["reconstruct_seconds"] = time.perf_counter() - step_start

        built = build_graph_elements(state.characters, state.relations)
        if token.cancelled:
            return self._cancelled(book_id, chapter_idx, event_idx)

        step_start = time.perf_counter()
        self._enter_chapter(book_id, chapter_idx)
        diff = diff_graph_elements(self._synchronizer.current_elements(), built.elements)
        report = self._synchronizer.sync(diff)
        self._current_characters = frozenset(state.characters)
        refreshed: SearchResult | None = None
        if self._highlighter.search.query:
            refreshed = filter_search_results(
                self._highlighter.search.query,
                built.elements,
                restrict_to_ids=self._current_characters,
            )
        selection = self._highlighter.update_elements(built.elements, search=refreshed)
        self.apply_selection(selection)
        timings["sync_seconds"] = time.perf_counter() - step_start
        timings["total_seconds"] = time.perf_counter() - started

        built_node_ids = {
            element.id for element in built.elements if isinstance(element, GraphNode)
        }
        new_node_ids = [
            node_id for node_id in window.new_character_ids() if node_id in built_node_ids
        ]
        logger.info(
            "navigate.applied book_id=%s chapter_idx=%s event_idx=%s source=%s "
            "elements=%s added=%s removed=%s updated=%s",
            book_id,
            chapter_idx,
            state.event_idx,
            state.source,
            len(built.elements),
            len(diff.added),
            len(diff.removed),
            len(diff.updated),
        )
        return NavigationResult(
            status="empty" if state.is_empty else "applied",
            book_id=book_id,
            chapter_idx=chapter_idx,
            event_idx=state.event_idx,
            state=state,
            elements=built.elements,
            diff=diff,
            sync_report=report,
            new_node_ids=new_node_ids,
            dropped_edge_ids=built.dropped_edge_ids,
            max_event_idx=self._store.max_event_idx(book_id, chapter_idx),
            timing=timings,
        )

    async def ensure_chapter_loaded(
        self, book_id: str, chapter_idx: int, token: CancellationToken
    ) -> bool:
        """Make sure the store holds the chapter, probing the fine graph on a miss."""
        if self._store.get(book_id, chapter_idx) is not None:
            return True
        if self._store.get_flat_events(book_id, chapter_idx) is not None:
            return True
        if self._fetcher is None:
            return False
        events = await self._probe_fine_events(self._fetcher, book_id, chapter_idx, token)
        if events is None or token.cancelled:
            return False
        if not events:
            logger.info(
                "navigate.chapter_unavailable book_id=%s chapter_idx=%s", book_id, chapter_idx
            )
            return False
        self._store.put_flat_events(
            FlatChapterEvents(book_id=book_id, chapter_idx=chapter_idx, events=events)
        )
        return True

    async def _probe_fine_events(
        self,
        fetcher: GraphFetcher,
        book_id: str,
        chapter_idx: int,
        token: CancellationToken,
    ) -> list[FlatChapterEvent] | None:
        events: list[FlatChapterEvent] = []
        for event_idx in range(1, self._settings.max_probe_events + 1):
            raw = await self._safe_fetch(
                fetcher.fetch_fine_graph(
                    book_id=book_id, chapter_idx=chapter_idx, event_idx=event_idx
                ),
                label="fine",
            )
            if token.cancelled:
                logger.info(
                    "navigate.stale_probe book_id=%s chapter_idx=%s event_idx=%s",
                    book_id,
                    chapter_idx,
                    event_idx,
                )
                return None
            envelope = parse_envelope(raw)
            if envelope is None or envelope.result is None:
                break
            payload = envelope.result
            if not payload.characters and not payload.relations:
                break
            events.append(
                FlatChapterEvent(
                    event_idx=event_idx,
                    characters=parse_characters(payload.characters),
                    relations=parse_relations(payload.relations),
                    event_meta=payload.event,
                )
            )
        logger.info(
            "navigate.probe_complete book_id=%s chapter_idx=%s events=%s",
            book_id,
            chapter_idx,
            len(events),
        )
        return events

    async def _load_macro_state(
        self, book_id: str, chapter_idx: int, token: CancellationToken
    ) -> ReconstructedState | None:
        if self._fetcher is None:
            return None
        raw = await self._safe_fetch(
            self._fetcher.fetch_macro_graph(book_id=book_id, up_to_chapter=chapter_idx),
            label="macro",
        )
        if token.cancelled:
            return None
        envelope = parse_envelope(raw)
        if envelope is None or envelope.result is None:
            return None
        characters = parse_characters(envelope.result.characters)
        relations = parse_relations(envelope.result.relations)
        if not characters and not relations:
            return None
        return ReconstructedState(
            characters={character.id: character for character in characters},
            relations=relations,
            event_idx=0,
            event_meta=envelope.result.event,
            source="macro-graph",
        )

    async def _safe_fetch(
        self, request: Awaitable[dict[str, Any] | None], *, label: str
    ) -> dict[str, Any] | None:
        try:
            return await request
        except Exception as exc:  # noqa: BLE001
            logger.warning("navigate.fetch_failed kind=%s error=%s", label, exc)
            return None

    def _cancelled(self, book_id: str, chapter_idx: int, event_idx: int) -> NavigationResult:
        logger.info(
            "navigate.discarded_stale book_id=%s chapter_idx=%s event_idx=%s",
            book_id,
            chapter_idx,
            event_idx,
        )
        return NavigationResult(
            status="cancelled", book_id=book_id, chapter_idx=chapter_idx, event_idx=event_idx
        )

    def _enter_chapter(self, book_id: str, chapter_idx: int) -> None:
        target = (book_id, chapter_idx)
        if self._chapter == target:
            return
        if self._chapter is not None:
            self._save_positions(*self._chapter)
            self._synchronizer.reset()
        self._chapter = target
        self._restore_positions(book_id, chapter_idx)

    def _save_positions(self, book_id: str, chapter_idx: int) -> None:
        if self._position_store is None:
            return
        self._position_store.set(
            positions_key(book_id, chapter_idx),
            self._synchronizer.registry.snapshot(),
            ttl_seconds=self._settings.cache_ttl_seconds,
        )

    def _restore_positions(self, book_id: str, chapter_idx: int) -> None:
        if self._position_store is None:
            return
        stored = self._position_store.get(positions_key(book_id, chapter_idx))
        registry = PlacementRegistry.restore(stored)
        restored = self._synchronizer.restore_positions(registry.as_dict())
        if restored:
            logger.debug(
                "navigate.positions_restored book_id=%s chapter_idx=%s count=%s",
                book_id,
                chapter_idx,
                restored,
            )

    def save_positions(self) -> None:
        """Persist the current chapter's node positions, such as before shutdown."""
        if self._chapter is not None:
            self._save_positions(*self._chapter)

    def search(self, query: str) -> SelectionUpdate:
        """Filter the current scene, restricted to characters present at the active event."""
        result: SearchResult = filter_search_results(
            query, self._synchronizer.current_elements(), restrict_to_ids=self._current_characters
        )
        update = self._highlighter.set_search(result)
        self.apply_selection(update)
        return update

    def suggest(self, query: str, *, limit: int = MAX_SUGGESTIONS) -> list[SearchSuggestion]:
        """Autocomplete characters present at the active event."""
        return build_search_suggestions(
            query,
            self._synchronizer.current_elements(),
            restrict_to_ids=self._current_characters,
            limit=limit,
        )

    def apply_selection(self, update: SelectionUpdate) -> None:
        if update.mutations:
            self._synchronizer.apply_style_mutations(update.mutations)
