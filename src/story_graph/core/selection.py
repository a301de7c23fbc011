"""Selection state machine deciding which elements are highlighted or faded."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from story_graph.core.search_filter import SearchResult
from story_graph.domain.models import GraphEdge, GraphElement, GraphNode, StyleMutation

logger = logging.getLogger(__name__)

HIGHLIGHT_CLASS = "highlighted"
FADED_CLASS = "faded"
SEARCH_MATCH_CLASS = "search-match"
SELECTED_CLASS = "selected"


@dataclass(frozen=True)
class Idle:
    """No node or edge selected."""


@dataclass(frozen=True)
class NodeSelected:
    node_id: str


@dataclass(frozen=True)
class EdgeSelected:
    edge_id: str


SelectionState = Idle | NodeSelected | EdgeSelected


@dataclass(frozen=True)
class SelectionUpdate:
    """Resulting state plus one class mutation per element whose styling changes."""

    state: SelectionState
    mutations: list[StyleMutation] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.mutations)


class SelectionHighlighter:
    """Tap-driven selection over the current elements, aware of an active search."""

    def __init__(self, elements: Iterable[GraphElement] = ()) -> None:
        self._elements: dict[str, GraphElement] = {element.id: element for element in elements}
        self._state: SelectionState = Idle()
        self._search = SearchResult()
        self._classes: dict[str, frozenset[str]] = {}

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def search(self) -> SearchResult:
        return self._search

    def classes_for(self, element_id: str) -> frozenset[str]:
        return self._classes.get(element_id, frozenset())

    def tap_node(self, node_id: str) -> SelectionUpdate:
        element = self._elements.get(node_id)
        if not isinstance(element, GraphNode):
            return SelectionUpdate(state=self._state)
        if self._state == NodeSelected(node_id):
            return self._transition(Idle())
        return self._transition(NodeSelected(node_id))

    def tap_edge(self, edge_id: str) -> SelectionUpdate:
        element = self._elements.get(edge_id)
        if not isinstance(element, GraphEdge):
            return SelectionUpdate(state=self._state)
        if self._state == EdgeSelected(edge_id):
            return self._transition(Idle())
        return self._transition(EdgeSelected(edge_id))

    def tap_background(self) -> SelectionUpdate:
        if isinstance(self._state, Idle):
            return SelectionUpdate(state=self._state)
        return self._transition(Idle())

    def set_search(self, result: SearchResult) -> SelectionUpdate:
        """Apply a new search result, recomputing styling for the current selection."""
        self._search = result
        return self._transition(self._state)

    def update_elements(
        self, elements: Iterable[GraphElement], search: SearchResult | None = None
    ) -> SelectionUpdate:
        """Track a new element set; a selection whose element vanished falls back to Idle.

        Passing `search` swaps in a result recomputed for the new elements so the
        returned mutations cover both changes at once.
        """
        self._elements = {element.id: element for element in elements}
        if search is not None:
            self._search = search
        self._classes = {
            element_id: classes
            for element_id, classes in self._classes.items()
            if element_id in self._elements
        }
        state = self._state
        if isinstance(state, NodeSelected) and state.node_id not in self._elements:
            logger.debug("selection.dropped node_id=%s", state.node_id)
            state = Idle()
        elif isinstance(state, EdgeSelected) and state.edge_id not in self._elements:
            logger.debug("selection.dropped edge_id=%s", state.edge_id)
            state = Idle()
        return self._transition(state)

    def _transition(self, state: SelectionState) -> SelectionUpdate:
        target = self._target_classes(state)
        mutations: list[StyleMutation] = []
        for element_id in self._elements:
            before = self._classes.get(element_id, frozenset())
            after = target.get(element_id, frozenset())
            if before == after:
                continue
            mutations.append(
                StyleMutation(
                    element_id=element_id,
                    add_classes=tuple(sorted(after - before)),
                    remove_classes=tuple(sorted(before - after)),
                )
            )
        self._state = state
        self._classes = {element_id: classes for element_id, classes in target.items() if classes}
        return SelectionUpdate(state=state, mutations=mutations)

    def _target_classes(self, state: SelectionState) -> dict[str, frozenset[str]]:
        if isinstance(state, NodeSelected):
            highlighted = self._node_highlight(state.node_id)
            return self._highlight_or_fade(highlighted, selected=state.node_id)
        edge = self._elements.get(state.edge_id) if isinstance(state, EdgeSelected) else None
        if isinstance(edge, GraphEdge):
            highlighted = {edge.id, edge.source, edge.target}
            return self._highlight_or_fade(highlighted, selected=edge.id)
        return self._search_classes()

    def _node_highlight(self, node_id: str) -> set[str]:
        highlighted = {node_id}
        search_active = self._search.is_active
        for element in self._elements.values():
            if not isinstance(element, GraphEdge):
                continue
            if node_id not in (element.source, element.target):
                continue
            neighbor = element.target if element.source == node_id else element.source
            if search_active and not (
                self._search.contains(element.source) and self._search.contains(element.target)
            ):
                continue
            highlighted.update((element.id, neighbor))
        return highlighted

    def _highlight_or_fade(
        self, highlighted: set[str], *, selected: str
    ) -> dict[str, frozenset[str]]:
        classes: dict[str, frozenset[str]] = {}
        for element_id in self._elements:
            if element_id == selected:
                classes[element_id] = frozenset({HIGHLIGHT_CLASS, SELECTED_CLASS})
            elif element_id in highlighted:
                classes[element_id] = frozenset({HIGHLIGHT_CLASS})
            else:
                classes[element_id] = frozenset({FADED_CLASS})
        return classes

    def _search_classes(self) -> dict[str, frozenset[str]]:
        if not self._search.is_active:
            return {}
        classes: dict[str, frozenset[str]] = {}
        for element_id in self._elements:
            if element_id in self._search.matched_node_ids:
                classes[element_id] = frozenset({SEARCH_MATCH_CLASS})
            elif not self._search.contains(element_id):
                classes[element_id] = frozenset({FADED_CLASS})
        return classes

