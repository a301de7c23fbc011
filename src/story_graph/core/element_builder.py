"""Map materialized character/relation state into renderer graph elements."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from story_graph.core.graph_schema import (
    CharacterState,
    RelationState,
    id_sort_key,
    pair_sort_key,
)
from story_graph.domain.models import GraphEdge, GraphElement, GraphNode

logger = logging.getLogger(__name__)

LABEL_MAX_CHARS = 14
DEFAULT_NODE_SIZE = 40
MIN_NODE_SIZE = 30
_ELLIPSIS = "…"


@dataclass(frozen=True)
class ElementBuildResult:
    """Built elements plus relations that could not be rendered."""

    elements: list[GraphElement] = field(default_factory=list)
    dropped_edge_ids: list[str] = field(default_factory=list)

    @property
    def nodes(self) -> list[GraphNode]:
        return [element for element in self.elements if isinstance(element, GraphNode)]

    @property
    def edges(self) -> list[GraphEdge]:
        return [element for element in self.elements if isinstance(element, GraphEdge)]


def truncate_label(label: str, max_chars: int = LABEL_MAX_CHARS) -> str:
    """Shorten long labels to `max_chars` characters including a trailing ellipsis."""
    text = label.strip()
    if len(text) <= max_chars:
        return text
    return text[: max(1, max_chars - 1)].rstrip() + _ELLIPSIS


def relation_color(positivity: float) -> str:
    """Map positivity in [-1, 1] onto a red-to-green HSL color."""
    clamped = max(-1.0, min(1.0, positivity))
    hue = round(120 * (clamped + 1) / 2)
    return f"hsl({hue}, 70%, 45%)"


def positivity_band(positivity: float) -> str:
    if positivity > 0.6:
        return "positive"
    if positivity > 0.3:
        return "friendly"
    if positivity > -0.3:
        return "neutral"
    if positivity > -0.6:
        return "unfriendly"
    return "negative"


def node_display_size(weight: float | None) -> int:
    """Node diameter in pixels from display weight."""
    if weight is None or weight <= 0:
        return DEFAULT_NODE_SIZE
    return max(round(10 * weight), MIN_NODE_SIZE)


def edge_width(weight: float) -> float:
    return round(min(8.0, 1.0 + max(0.0, weight) * 0.5), 2)


def _degree_weights(relations: Iterable[RelationState]) -> dict[str, float]:
    totals: dict[str, float] = {}
    for relation in relations:
        for endpoint in relation.pair:
            totals[endpoint] = totals.get(endpoint, 0.0) + relation.weight
    return totals


def _node_weight(character: CharacterState, degree_weight: float) -> float:
    if character.weight > 0:
        return round(character.weight, 4)
    return round(1.0 + 0.5 * degree_weight, 4)


def _searchable_names(canonical: str, character: CharacterState) -> tuple[str, ...]:
    names = [canonical]
    for candidate in (character.name, *character.names):
        if candidate and candidate not in names:
            names.append(candidate)
    return tuple(names)


def build_node(character: CharacterState, *, degree_weight: float = 0.0) -> GraphNode:
    """Build a node whose label may be truncated; `common_name` and `names` keep full text."""
    canonical = character.display_label()
    return GraphNode(
        id=character.id,
        label=truncate_label(canonical),
        weight=_node_weight(character, degree_weight),
        is_main=character.is_main,
        image=character.profile_image,
        names=_searchable_names(canonical, character),
        common_name=canonical,
        description=character.description,
    )


def build_edge(relation: RelationState) -> GraphEdge:
    return GraphEdge(
        id=relation.edge_id,
        source=relation.id1,
        target=relation.id2,
        label=relation.tags[0] if relation.tags else "",
        positivity=relation.positivity,
        weight=relation.weight,
        tags=tuple(relation.tags),
        count=relation.count,
    )


def build_graph_elements(
    characters: Mapping[str, CharacterState],
    relations: Iterable[RelationState],
) -> ElementBuildResult:
    """Build nodes sorted by id, then edges sorted by id; orphan relations are dropped."""
    renderable: dict[str, RelationState] = {}
    dropped: list[str] = []
    for relation in relations:
        if relation.id1 not in characters or relation.id2 not in characters:
            dropped.append(relation.edge_id)
            continue
        renderable[relation.edge_id] = relation

    degree = _degree_weights(renderable.values())
    nodes: list[GraphElement] = [
        build_node(characters[character_id], degree_weight=degree.get(character_id, 0.0))
        for character_id in sorted(characters, key=id_sort_key)
    ]
    edges: list[GraphElement] = [
        build_edge(relation)
        for relation in sorted(renderable.values(), key=lambda item: pair_sort_key(item.pair))
    ]
    if dropped:
        logger.warning(
            "elements.orphan_edges_dropped count=%s edge_ids=%s",
            len(dropped),
            ",".join(sorted(dropped)),
        )
    return ElementBuildResult(elements=nodes + edges, dropped_edge_ids=sorted(dropped))


def element_style(element: GraphElement) -> dict[str, object]:
    """Display attributes the renderer restyles in place on update."""
    if isinstance(element, GraphNode):
        return {
            "label": element.label,
            "size": node_display_size(element.weight),
            "main": element.is_main,
            "image": element.image or "",
        }
    return {
        "label": element.label,
        "width": edge_width(element.weight),
        "line-color": relation_color(element.positivity),
        "band": positivity_band(element.positivity),
    }
