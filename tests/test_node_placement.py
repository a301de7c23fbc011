from __future__ import annotations

import logging
import random

import pytest

from story_graph.core.node_placement import (
    MIN_SEPARATION,
    PlacementRegistry,
    clamp_to_bounds,
    place_new_nodes,
    resolve_overlaps,
    spiral_candidate,
)
from story_graph.domain.models import GraphNode, Position, SceneBounds


def _nodes(*node_ids: str) -> list[GraphNode]:
    return [GraphNode(id=node_id, label=node_id, weight=1.0) for node_id in node_ids]


def test_first_node_lands_on_the_first_spiral_point() -> None:
    report = place_new_nodes(_nodes("a"), [], SceneBounds())
    assert report.positions() == {"a": Position(x=50.0, y=0.0)}
    assert report.fallback_node_ids == []
    assert spiral_candidate(0, SceneBounds()) == Position(x=50.0, y=0.0)


def test_placed_nodes_keep_minimum_separation() -> None:
    rng = random.Random(7)
    bounds = SceneBounds()
    for _ in range(50):
        existing = [
            Position(x=rng.uniform(-280, 280), y=rng.uniform(-180, 180))
            for _ in range(rng.randint(0, 3))
        ]
        count = rng.randint(1, 6)
        new_nodes = _nodes(*(f"n{index}" for index in range(count)))

        report = place_new_nodes(new_nodes, existing, bounds, rng=rng)

        assert [node.id for node in report.nodes] == [node.id for node in new_nodes]
        earlier = list(existing)
        for node in report.nodes:
            assert node.position is not None
            if node.id not in report.fallback_node_ids:
                assert bounds.contains(node.position, padding=80.0)
                assert all(node.position.distance_to(other) > MIN_SEPARATION for other in earlier)
            earlier.append(node.position)


def test_exhausted_attempts_take_the_jitter_fallback(caplog: pytest.LogCaptureFixture) -> None:
    cramped = SceneBounds(width=200.0, height=200.0)
    with caplog.at_level(logging.INFO, logger="story_graph.core.node_placement"):
        report = place_new_nodes(_nodes("a", "b", "c"), [], cramped, rng=random.Random(3))

    assert report.fallback_node_ids == ["b", "c"]
    for node_id in report.fallback_node_ids:
        position = report.positions()[node_id]
        assert abs(position.x) <= 50.0
        assert abs(position.y) <= 50.0
    assert "placement.fallback count=2" in caplog.text


def test_placement_does_not_mutate_input_nodes() -> None:
    nodes = _nodes("a")
    place_new_nodes(nodes, [], SceneBounds())
    assert nodes[0].position is None


def test_registry_commit_never_moves_existing_position() -> None:
    registry = PlacementRegistry()
    first = registry.commit("a", Position(1.0, 2.0))
    second = registry.commit("a", Position(99.0, 99.0))
    assert first == second == Position(1.0, 2.0)

    registry.move("a", Position(5.0, 5.0))
    assert registry.get("a") == Position(5.0, 5.0)
    registry.forget("a")
    assert "a" not in registry


def test_registry_snapshot_restore_ignores_malformed_entries() -> None:
    registry = PlacementRegistry({"a": Position(1.5, -2.0), "b": Position(0.0, 3.0)})
    payload = registry.snapshot()
    payload["c"] = {"x": "left", "y": 1}
    payload["d"] = [1, 2]  # type: ignore[assignment]

    restored = PlacementRegistry.restore(payload)

    assert restored.as_dict() == {"a": Position(1.5, -2.0), "b": Position(0.0, 3.0)}
    assert len(PlacementRegistry.restore("garbage")) == 0


def test_resolve_overlaps_pushes_close_pairs_apart() -> None:
    moved = resolve_overlaps({"a": Position(0.0, 0.0), "b": Position(10.0, 0.0)})
    assert moved["a"].x == pytest.approx(-25.0)
    assert moved["b"].x == pytest.approx(35.0)
    assert moved["a"].distance_to(moved["b"]) >= 40.0

    assert resolve_overlaps({"a": Position(0.0, 0.0), "b": Position(100.0, 0.0)}) == {}


def test_clamp_to_bounds_returns_only_adjusted_positions() -> None:
    adjusted = clamp_to_bounds(
        {"out": Position(350.0, -250.0), "in": Position(10.0, 10.0)}, SceneBounds()
    )
    assert adjusted == {"out": Position(300.0, -200.0)}
