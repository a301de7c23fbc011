"""Identity-based diff between two renderer element arrays."""

from __future__ import annotations

from collections.abc import Sequence

from story_graph.domain.models import DiffResult, GraphEdge, GraphElement, GraphNode

NodeSignature = tuple[str, str, float, bool, str | None, tuple[str, ...], str | None]
EdgeSignature = tuple[str, str, str, str, float, float, tuple[str, ...], int]


def render_signature(element: GraphElement) -> NodeSignature | EdgeSignature:
    """Fields that affect rendering; position is deliberately excluded."""
    if isinstance(element, GraphNode):
        return (
            element.kind,
            element.label,
            element.weight,
            element.is_main,
            element.image,
            element.names,
            element.common_name,
        )
    if isinstance(element, GraphEdge):
        return (
            element.kind,
            element.source,
            element.target,
            element.label,
            element.positivity,
            element.weight,
            element.tags,
            element.count,
        )
    raise TypeError(f"Unsupported graph element: {type(element).__name__}")


def _index(elements: Sequence[GraphElement]) -> dict[str, GraphElement]:
    index: dict[str, GraphElement] = {}
    for element in elements:
        index[element.id] = element
    return index


def diff_graph_elements(
    previous: Sequence[GraphElement], next_elements: Sequence[GraphElement]
) -> DiffResult:
    """Partition ids into added, removed, and render-changed elements."""
    previous_index = _index(previous)
    next_index = _index(next_elements)

    added: list[GraphElement] = []
    updated: list[GraphElement] = []
    for element_id, element in next_index.items():
        prior = previous_index.get(element_id)
        if prior is None:
            added.append(element)
        elif render_signature(prior) != render_signature(element):
            updated.append(element)
    removed = [
        element for element_id, element in previous_index.items() if element_id not in next_index
    ]
    return DiffResult(added=tuple(added), removed=tuple(removed), updated=tuple(updated))


def new_node_ids(diff: DiffResult) -> list[str]:
    """Ids of nodes a navigation step introduced, for ripple-style animators."""
    return diff.added_node_ids()
