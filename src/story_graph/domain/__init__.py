"""Domain models and ports for the incremental relationship graph."""

from story_graph.domain.models import (
    DiffResult,
    GraphEdge,
    GraphElement,
    GraphNode,
    LayoutConfig,
    Position,
    SceneBounds,
    StyleMutation,
)
from story_graph.domain.ports import GraphFetcher, KeyValueStore, SceneEventListener, SceneRenderer

__all__ = [
    "DiffResult",
    "GraphEdge",
    "GraphElement",
    "GraphFetcher",
    "GraphNode",
    "KeyValueStore",
    "LayoutConfig",
    "Position",
    "SceneBounds",
    "SceneEventListener",
    "SceneRenderer",
    "StyleMutation",
]
