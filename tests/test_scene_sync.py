from __future__ import annotations

import itertools
import random
from collections.abc import Callable, Sequence

import pytest

from story_graph.adapters.headless_renderer import HeadlessSceneRenderer
from story_graph.core.graph_diff import diff_graph_elements
from story_graph.core.node_placement import MIN_SEPARATION, place_new_nodes
from story_graph.core.scene_sync import SceneSynchronizer
from story_graph.domain.models import (
    GraphEdge,
    GraphElement,
    GraphNode,
    LayoutConfig,
    Position,
    SceneBounds,
    StyleMutation,
)

_TRACKED = {"batch", "remove_elements_by_id", "add_elements", "set_style", "run_layout"}


class FlakyRenderer(HeadlessSceneRenderer):
    """Headless renderer that raises a configured number of times per method."""

    def __init__(self, failures: dict[str, int] | None = None) -> None:
        super().__init__()
        self.failures = dict(failures or {})

    def _maybe_fail(self, method: str) -> None:
        remaining = self.failures.get(method, 0)
        if remaining > 0:
            self.failures[method] = remaining - 1
            raise RuntimeError(f"{method} failed")

    def add_elements(self, elements: Sequence[GraphElement]) -> None:
        self._maybe_fail("add_elements")
        super().add_elements(elements)

    def remove_elements_by_id(self, element_ids: Sequence[str]) -> None:
        self._maybe_fail("remove_elements_by_id")
        super().remove_elements_by_id(element_ids)

    def batch(self, operations: Callable[[], None]) -> None:
        self._maybe_fail("batch")
        super().batch(operations)


class RecordingListener:
    def __init__(self) -> None:
        self.added: list[list[str]] = []
        self.layouts = 0

    def on_nodes_added(self, node_ids: Sequence[str]) -> None:
        self.added.append(list(node_ids))

    def on_layout_complete(self) -> None:
        self.layouts += 1


class ExplodingListener:
    def on_nodes_added(self, node_ids: Sequence[str]) -> None:
        raise RuntimeError("animator crashed")

    def on_layout_complete(self) -> None:
        raise RuntimeError("animator crashed")


def _node(node_id: str, *, label: str = "") -> GraphNode:
    return GraphNode(id=node_id, label=label or node_id, weight=1.0)


def _edge(source: str, target: str) -> GraphEdge:
    return GraphEdge(
        id=f"{source}-{target}",
        source=source,
        target=target,
        label="",
        positivity=0.0,
        weight=1.0,
    )


def _synchronizer(
    renderer: HeadlessSceneRenderer, **kwargs: object
) -> SceneSynchronizer:
    return SceneSynchronizer(renderer, rng=random.Random(1), **kwargs)  # type: ignore[arg-type]


def _methods(renderer: HeadlessSceneRenderer, start: int = 0) -> list[str]:
    return [call.method for call in renderer.calls[start:] if call.method in _TRACKED]


def test_initial_sync_adds_positioned_nodes_in_one_batch() -> None:
    renderer = HeadlessSceneRenderer()
    synchronizer = _synchronizer(renderer)
    elements: list[GraphElement] = [_node("1"), _node("2"), _edge("1", "2")]

    report = synchronizer.sync(diff_graph_elements([], elements))

    assert report.ok
    assert report.added_ids == ["1", "2", "1-2"]
    assert report.added_node_ids == ["1", "2"]
    assert report.layout_ran
    assert _methods(renderer) == ["batch", "add_elements", "run_layout"]
    assert renderer.get_position("1") == Position(x=50.0, y=0.0)
    assert renderer.get_position("2") is not None
    assert renderer.layouts == [LayoutConfig()]


def test_no_op_diff_after_sync_makes_no_renderer_calls() -> None:
    renderer = HeadlessSceneRenderer()
    synchronizer = _synchronizer(renderer)
    elements: list[GraphElement] = [_node("1"), _node("2"), _edge("1", "2")]
    synchronizer.sync(diff_graph_elements([], elements))
    calls_after_first = renderer.mutation_count()
    repaints_after_first = renderer.repaints

    report = synchronizer.sync(diff_graph_elements(elements, elements))

    assert renderer.mutation_count() == calls_after_first
    assert renderer.repaints == repaints_after_first
    assert not report.layout_ran
    assert report.added_ids == []


def test_remove_add_restyle_share_one_batch_in_order() -> None:
    renderer = HeadlessSceneRenderer()
    synchronizer = _synchronizer(renderer)
    before: list[GraphElement] = [_node("A"), _node("B"), _edge("A", "B")]
    synchronizer.sync(diff_graph_elements([], before))
    start = len(renderer.calls)
    repaints = renderer.repaints

    after: list[GraphElement] = [_node("A", label="Anna"), _node("C")]
    report = synchronizer.sync(diff_graph_elements(before, after))

    assert _methods(renderer, start) == [
        "batch",
        "remove_elements_by_id",
        "add_elements",
        "set_style",
        "run_layout",
    ]
    assert report.removed_ids == ["A-B", "B"]
    assert report.added_ids == ["C"]
    assert report.restyled_ids == ["A"]
    assert renderer.element_ids() == {"A", "C"}
    assert "B" not in synchronizer.registry
    assert renderer.repaints == repaints + 2


def test_update_only_diff_restyles_without_layout() -> None:
    renderer = HeadlessSceneRenderer()
    listener = RecordingListener()
    synchronizer = _synchronizer(renderer, listeners=[listener])
    before: list[GraphElement] = [_node("1"), _node("2"), _edge("1", "2")]
    synchronizer.sync(diff_graph_elements([], before))
    start = len(renderer.calls)

    after: list[GraphElement] = [_node("1", label="Anna"), _node("2"), _edge("1", "2")]
    report = synchronizer.sync(diff_graph_elements(before, after))

    assert _methods(renderer, start) == ["batch", "set_style"]
    assert not report.layout_ran
    assert not report.structural
    assert listener.layouts == 1
    assert listener.added == [["1", "2"]]
    rendered = renderer.rendered("1")
    assert rendered is not None
    assert rendered.style == {"label": "Anna"}


def test_failed_add_phase_is_retried_on_next_sync() -> None:
    renderer = FlakyRenderer({"add_elements": 1})
    synchronizer = _synchronizer(renderer)
    elements: list[GraphElement] = [_node("1"), _node("2"), _edge("1", "2")]

    first = synchronizer.sync(diff_graph_elements([], elements))

    assert [issue.phase for issue in first.issues] == ["add"]
    assert first.pending_ids == ["1", "1-2", "2"]
    assert not first.layout_ran
    assert renderer.element_ids() == set()

    second = synchronizer.sync(diff_graph_elements(elements, elements))

    assert second.ok
    assert second.added_ids == ["1", "2", "1-2"]
    assert second.pending_ids == []
    assert second.layout_ran
    assert renderer.element_ids() == {"1", "2", "1-2"}


def test_failed_remove_phase_does_not_block_additions() -> None:
    renderer = FlakyRenderer()
    synchronizer = _synchronizer(renderer)
    before: list[GraphElement] = [_node("1"), _node("2")]
    synchronizer.sync(diff_graph_elements([], before))
    renderer.failures["remove_elements_by_id"] = 1

    after: list[GraphElement] = [_node("1"), _node("3")]
    report = synchronizer.sync(diff_graph_elements(before, after))

    assert [issue.phase for issue in report.issues] == ["remove"]
    assert report.added_ids == ["3"]
    assert report.pending_ids == ["2"]
    assert renderer.element_ids() == {"1", "2", "3"}

    retry = synchronizer.sync(diff_graph_elements(after, after))
    assert retry.removed_ids == ["2"]
    assert renderer.element_ids() == {"1", "3"}


def test_failed_batch_marks_everything_pending() -> None:
    renderer = FlakyRenderer({"batch": 1})
    synchronizer = _synchronizer(renderer)
    elements: list[GraphElement] = [_node("1")]

    report = synchronizer.sync(diff_graph_elements([], elements))

    assert [issue.phase for issue in report.issues] == ["batch"]
    assert report.pending_ids == ["1"]
    assert synchronizer.sync(diff_graph_elements(elements, elements)).added_ids == ["1"]


def test_listener_failures_are_recorded_not_raised() -> None:
    renderer = HeadlessSceneRenderer()
    recorder = RecordingListener()
    synchronizer = _synchronizer(renderer, listeners=[ExplodingListener(), recorder])

    report = synchronizer.sync(diff_graph_elements([], [_node("1")]))

    assert [issue.phase for issue in report.issues] == ["listener", "listener"]
    assert recorder.added == [["1"]]
    assert recorder.layouts == 1


def test_preset_layout_clamps_out_of_bounds_positions() -> None:
    renderer = HeadlessSceneRenderer()
    synchronizer = _synchronizer(renderer)
    assert synchronizer.restore_positions({"1": Position(500.0, -10.0)}) == 1

    synchronizer.sync(diff_graph_elements([], [_node("1")]))

    assert synchronizer.registry.get("1") == Position(300.0, -10.0)
    assert renderer.get_position("1") == Position(300.0, -10.0)


def test_cose_layout_reads_positions_back() -> None:
    class ShiftingRenderer(HeadlessSceneRenderer):
        def run_layout(self, config: LayoutConfig) -> None:
            super().run_layout(config)
            for element_id in self.element_ids():
                rendered = self.rendered(element_id)
                if rendered is not None and rendered.position is not None:
                    rendered.position = Position(rendered.position.x + 1, rendered.position.y)

    renderer = ShiftingRenderer()
    synchronizer = _synchronizer(renderer, layout=LayoutConfig(name="cose"))

    synchronizer.sync(diff_graph_elements([], [_node("1")]))

    assert renderer.layouts[0].name == "cose"
    assert synchronizer.registry.get("1") == Position(51.0, 0.0)


def test_reset_clears_scene_and_positions() -> None:
    renderer = HeadlessSceneRenderer()
    synchronizer = _synchronizer(renderer)
    synchronizer.sync(diff_graph_elements([], [_node("1"), _node("2"), _edge("1", "2")]))

    report = synchronizer.reset()

    assert sorted(report.removed_ids) == ["1", "1-2", "2"]
    assert renderer.element_ids() == set()
    assert synchronizer.current_elements() == []
    assert len(synchronizer.registry) == 0


def test_node_drag_resolves_overlaps() -> None:
    renderer = HeadlessSceneRenderer()
    synchronizer = _synchronizer(renderer)
    synchronizer.sync(diff_graph_elements([], [_node("1"), _node("2")]))
    anchor = synchronizer.registry.get("1")
    assert anchor is not None

    moved = synchronizer.handle_node_drag("2", Position(anchor.x + 5, anchor.y))

    assert set(moved) == {"1", "2"}
    first = renderer.get_position("1")
    second = renderer.get_position("2")
    assert first is not None and second is not None
    assert first.distance_to(second) >= 40.0
    assert synchronizer.handle_node_drag("missing", Position(0.0, 0.0)) == {}


def test_style_mutations_skip_unknown_elements() -> None:
    renderer = HeadlessSceneRenderer()
    synchronizer = _synchronizer(renderer)
    synchronizer.sync(diff_graph_elements([], [_node("1")]))
    start = len(renderer.calls)

    issues = synchronizer.apply_style_mutations(
        [
            StyleMutation(element_id="1", add_classes=("highlighted",)),
            StyleMutation(element_id="ghost", add_classes=("faded",)),
        ]
    )

    assert issues == []
    assert [call.method for call in renderer.calls[start:]] == ["batch", "update_classes"]
    assert renderer.classes_of("1") == {"highlighted"}


@pytest.mark.parametrize(
    "bounds",
    [
        SceneBounds(width=1200.0, height=700.0),
        SceneBounds(width=600.0, height=600.0),
        SceneBounds(width=1000.0, height=1000.0),
    ],
)
def test_preset_bounds_pass_keeps_placed_positions(bounds: SceneBounds) -> None:
    nodes = [_node(str(index)) for index in range(1, 31)]
    expected = place_new_nodes(
        nodes, [], bounds, rng=random.Random(7), padding=LayoutConfig().padding
    )
    renderer = HeadlessSceneRenderer()
    synchronizer = SceneSynchronizer(renderer, bounds=bounds, rng=random.Random(7))

    report = synchronizer.sync(diff_graph_elements([], nodes))

    assert report.layout_ran is True
    assert report.fallback_node_ids == expected.fallback_node_ids
    assert synchronizer.registry.as_dict() == expected.positions()
    for node_id, position in expected.positions().items():
        assert renderer.get_position(node_id) == position
    spiral = [
        position
        for node_id, position in expected.positions().items()
        if node_id not in expected.fallback_node_ids
    ]
    for first, second in itertools.combinations(spiral, 2):
        assert first.distance_to(second) > MIN_SEPARATION
