"""Collision-avoiding spiral placement for newly added nodes."""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from story_graph.domain.models import GraphNode, Position, SceneBounds

logger = logging.getLogger(__name__)

NODE_SIZE = 40.0
MIN_SEPARATION = NODE_SIZE * 3.2
CONTAINER_PADDING = 80.0
INITIAL_RADIUS = 50.0
RADIUS_INCREMENT = 2.0
ANGLE_INCREMENT = 0.5
MAX_ATTEMPTS = 200
FALLBACK_RANGE = 100.0
BOUNDS_PADDING = 100.0
OVERLAP_PUSH = 20.0


@dataclass(frozen=True)
class PlacementReport:
    """Positioned copies of the new nodes and which ones used the jitter fallback."""

    nodes: list[GraphNode] = field(default_factory=list)
    fallback_node_ids: list[str] = field(default_factory=list)

    def positions(self) -> dict[str, Position]:
        return {node.id: node.position for node in self.nodes if node.position is not None}


def spiral_candidate(
    attempt: int, bounds: SceneBounds, *, padding: float = CONTAINER_PADDING
) -> Position:
    angle = (attempt * ANGLE_INCREMENT) % (2 * math.pi)
    max_radius = max(0.0, min(bounds.width, bounds.height) / 2 - padding)
    radius = min(INITIAL_RADIUS + attempt * RADIUS_INCREMENT, max_radius)
    return Position(x=radius * math.cos(angle), y=radius * math.sin(angle))


def _is_clear(candidate: Position, placed: Sequence[Position], min_separation: float) -> bool:
    return all(candidate.distance_to(position) > min_separation for position in placed)


def place_new_nodes(
    new_nodes: Sequence[GraphNode],
    existing_positions: Iterable[Position],
    bounds: SceneBounds,
    *,
    rng: random.Random | None = None,
    min_separation: float = MIN_SEPARATION,
    padding: float = CONTAINER_PADDING,
) -> PlacementReport:
    """Assign positions to new nodes in order, each avoiding every earlier position.

    Spiral candidates stay strictly inside `bounds` shrunk by `padding`; callers that
    later clamp to the same padding never move an accepted candidate.
    """
    generator = rng or random.Random()
    working = list(existing_positions)
    placed: list[GraphNode] = []
    fallback_ids: list[str] = []

    for node in new_nodes:
        chosen: Position | None = None
        for attempt in range(MAX_ATTEMPTS):
            candidate = spiral_candidate(attempt, bounds, padding=padding)
            if bounds.contains(candidate, padding=padding) and _is_clear(
                candidate, working, min_separation
            ):
                chosen = candidate
                break
        if chosen is None:
            chosen = Position(
                x=(generator.random() - 0.5) * FALLBACK_RANGE,
                y=(generator.random() - 0.5) * FALLBACK_RANGE,
            )
            fallback_ids.append(node.id)
        working.append(chosen)
        placed.append(node.with_position(chosen))

    if fallback_ids:
        logger.info(
            "placement.fallback count=%s node_ids=%s", len(fallback_ids), ",".join(fallback_ids)
        )
    return PlacementReport(nodes=placed, fallback_node_ids=fallback_ids)


class PlacementRegistry:
    """Positions committed in the live scene, keyed by node id."""

    def __init__(self, positions: Mapping[str, Position] | None = None) -> None:
        self._positions: dict[str, Position] = dict(positions or {})

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def get(self, node_id: str) -> Position | None:
        return self._positions.get(node_id)

    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def as_dict(self) -> dict[str, Position]:
        return dict(self._positions)

    def commit(self, node_id: str, position: Position) -> Position:
        """Record a first placement; an already placed node keeps its position."""
        existing = self._positions.get(node_id)
        if existing is not None:
            return existing
        self._positions[node_id] = position
        return position

    def move(self, node_id: str, position: Position) -> None:
        """Explicit relocation, such as a user drag or a bounds correction."""
        self._positions[node_id] = position

    def forget(self, node_id: str) -> None:
        self._positions.pop(node_id, None)

    def clear(self) -> None:
        self._positions.clear()

    def snapshot(self) -> dict[str, dict[str, float]]:
        return {
            node_id: {"x": position.x, "y": position.y}
            for node_id, position in sorted(self._positions.items())
        }

    @classmethod
    def restore(cls, payload: object) -> PlacementRegistry:
        """Rebuild from `snapshot()` output, ignoring malformed entries."""
        registry = cls()
        if not isinstance(payload, dict):
            return registry
        for node_id, raw in payload.items():
            if not isinstance(raw, dict):
                continue
            x = raw.get("x")
            y = raw.get("y")
            if isinstance(x, (int, float)) and isinstance(y, (int, float)):
                registry.move(str(node_id), Position(x=float(x), y=float(y)))
        return registry


def resolve_overlaps(
    positions: Mapping[str, Position], *, node_size: float = NODE_SIZE
) -> dict[str, Position]:
    """Push apart every pair closer than one node diameter; returns moved positions."""
    working = dict(positions)
    moved: dict[str, Position] = {}
    node_ids = sorted(working)
    for index, first_id in enumerate(node_ids):
        for second_id in node_ids[index + 1 :]:
            first = working[first_id]
            second = working[second_id]
            distance = first.distance_to(second)
            if distance >= node_size:
                continue
            angle = math.atan2(second.y - first.y, second.x - first.x)
            push = (node_size - distance + OVERLAP_PUSH) * 0.5
            dx = math.cos(angle) * push
            dy = math.sin(angle) * push
            working[first_id] = Position(x=first.x - dx, y=first.y - dy)
            working[second_id] = Position(x=second.x + dx, y=second.y + dy)
            moved[first_id] = working[first_id]
            moved[second_id] = working[second_id]
    return moved


def clamp_to_bounds(
    positions: Mapping[str, Position], bounds: SceneBounds, *, padding: float = BOUNDS_PADDING
) -> dict[str, Position]:
    """Clamp positions into the padded scene; returns only the adjusted ones."""
    max_x, max_y = bounds.half_extent(padding=padding)
    adjusted: dict[str, Position] = {}
    for node_id, position in positions.items():
        x = max(-max_x, min(max_x, position.x))
        y = max(-max_y, min(max_y, position.y))
        if x != position.x or y != position.y:
            adjusted[node_id] = Position(x=x, y=y)
    return adjusted
