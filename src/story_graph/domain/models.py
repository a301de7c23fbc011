"""Renderer-facing graph elements and scene value objects."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Literal


@dataclass(frozen=True)
class Position:
    """A 2-D coordinate in scene space, centered on the origin."""

    x: float
    y: float

    def distance_to(self, other: Position) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class SceneBounds:
    """Visible scene extent used for placement and bounds validation."""

    width: float = 800.0
    height: float = 600.0

    def contains(self, position: Position, *, padding: float) -> bool:
        return (
            abs(position.x) < self.width / 2 - padding
            and abs(position.y) < self.height / 2 - padding
        )

    def half_extent(self, *, padding: float) -> tuple[float, float]:
        return (
            max(0.0, self.width / 2 - padding),
            max(0.0, self.height / 2 - padding),
        )


@dataclass(frozen=True)
class GraphNode:
    """One character rendered as a node."""

    id: str
    label: str
    weight: float
    is_main: bool = False
    image: str | None = None
    names: tuple[str, ...] = ()
    common_name: str | None = None
    description: str = ""
    position: Position | None = None
    kind: Literal["node"] = field(default="node", init=False)

    def with_position(self, position: Position) -> GraphNode:
        return replace(self, position=position)


@dataclass(frozen=True)
class GraphEdge:
    """One undirected relation rendered as an edge between two nodes."""

    id: str
    source: str
    target: str
    label: str
    positivity: float
    weight: float
    tags: tuple[str, ...] = ()
    count: int = 1
    kind: Literal["edge"] = field(default="edge", init=False)


GraphElement = GraphNode | GraphEdge


@dataclass(frozen=True)
class DiffResult:
    """Identity-based comparison between two element sets."""

    added: tuple[GraphElement, ...] = ()
    removed: tuple[GraphElement, ...] = ()
    updated: tuple[GraphElement, ...] = ()

    @property
    def is_structural(self) -> bool:
        return bool(self.added or self.removed)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.updated)

    def added_node_ids(self) -> list[str]:
        return [element.id for element in self.added if element.kind == "node"]

    def removed_ids(self) -> list[str]:
        return [element.id for element in self.removed]


@dataclass(frozen=True)
class StyleMutation:
    """Class changes for one element, applied as a single renderer call."""

    element_id: str
    add_classes: tuple[str, ...] = ()
    remove_classes: tuple[str, ...] = ()


@dataclass(frozen=True)
class LayoutConfig:
    """Layout pass requested after a structural scene change."""

    name: Literal["preset", "cose"] = "preset"
    animate: bool = False
    fit: bool = False
    padding: float = 100.0
    randomize: bool = False
