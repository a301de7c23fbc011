"""Character search over graph elements with one-hop neighbor expansion."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from typing import Literal

from story_graph.core.graph_schema import id_sort_key
from story_graph.domain.models import GraphEdge, GraphElement, GraphNode

MIN_QUERY_LENGTH = 2
MAX_SUGGESTIONS = 8

MatchType = Literal["label", "names", "common_name"]


@dataclass(frozen=True)
class SearchResult:
    """Elements considered in-result for a query; empty means search is inactive."""

    query: str = ""
    result_ids: frozenset[str] = frozenset()
    matched_node_ids: frozenset[str] = frozenset()
    edge_ids: frozenset[str] = frozenset()

    @property
    def is_active(self) -> bool:
        return bool(self.result_ids)

    def contains(self, element_id: str) -> bool:
        return element_id in self.result_ids


@dataclass(frozen=True)
class SearchSuggestion:
    """Autocomplete entry for one matching character."""

    id: str
    label: str
    names: tuple[str, ...] = field(default_factory=tuple)
    match_type: MatchType = "label"


def normalize_query(query: str | None) -> str:
    return (query or "").strip().lower()


def match_type_for(node: GraphNode, needle: str) -> MatchType | None:
    """Return which field matched a lowercased query, checking label, aliases, then name."""
    if needle in node.label.lower():
        return "label"
    if any(needle in name.lower() for name in node.names):
        return "names"
    if node.common_name and needle in node.common_name.lower():
        return "common_name"
    return None


def filter_search_results(
    query: str | None,
    elements: Sequence[GraphElement],
    restrict_to_ids: Collection[str] | None = None,
) -> SearchResult:
    """Match nodes by text, then add every touching edge and its opposite endpoint."""
    needle = normalize_query(query)
    if len(needle) < MIN_QUERY_LENGTH:
        return SearchResult(query=needle)

    allowed = set(restrict_to_ids) if restrict_to_ids is not None else None
    matched: set[str] = set()
    for element in elements:
        if not isinstance(element, GraphNode):
            continue
        if allowed is not None and element.id not in allowed:
            continue
        if match_type_for(element, needle) is not None:
            matched.add(element.id)
    if not matched:
        return SearchResult(query=needle)

    node_ids = {element.id for element in elements if isinstance(element, GraphNode)}
    result_ids = set(matched)
    edge_ids: set[str] = set()
    for element in elements:
        if not isinstance(element, GraphEdge):
            continue
        if element.source not in matched and element.target not in matched:
            continue
        if element.source not in node_ids or element.target not in node_ids:
            continue
        edge_ids.add(element.id)
        result_ids.update((element.id, element.source, element.target))

    return SearchResult(
        query=needle,
        result_ids=frozenset(result_ids),
        matched_node_ids=frozenset(matched),
        edge_ids=frozenset(edge_ids),
    )


def build_search_suggestions(
    query: str | None,
    elements: Sequence[GraphElement],
    restrict_to_ids: Collection[str] | None = None,
    *,
    limit: int = MAX_SUGGESTIONS,
) -> list[SearchSuggestion]:
    needle = normalize_query(query)
    if len(needle) < MIN_QUERY_LENGTH:
        return []
    allowed = set(restrict_to_ids) if restrict_to_ids is not None else None
    seen: set[str] = set()
    suggestions: list[SearchSuggestion] = []
    nodes = sorted(
        (element for element in elements if isinstance(element, GraphNode)),
        key=lambda node: id_sort_key(node.id),
    )
    for node in nodes:
        if node.id in seen or (allowed is not None and node.id not in allowed):
            continue
        match_type = match_type_for(node, needle)
        if match_type is None:
            continue
        seen.add(node.id)
        suggestions.append(
            SearchSuggestion(
                id=node.id,
                label=node.label,
                names=_dedupe_aliases(node.names),
                match_type=match_type,
            )
        )
        if len(suggestions) >= limit:
            break
    return suggestions


def _dedupe_aliases(names: Sequence[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    aliases: list[str] = []
    for name in names:
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        aliases.append(name)
    return tuple(aliases)

