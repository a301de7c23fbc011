from __future__ import annotations

from story_graph.core.search_filter import filter_search_results
from story_graph.core.selection import (
    EdgeSelected,
    Idle,
    NodeSelected,
    SelectionHighlighter,
)
from story_graph.domain.models import GraphEdge, GraphElement, GraphNode, StyleMutation


def _elements() -> list[GraphElement]:
    return [
        GraphNode(id="1", label="Anna", weight=1.0),
        GraphNode(id="2", label="Ben", weight=1.0),
        GraphNode(id="3", label="Cara", weight=1.0),
        GraphEdge(id="1-2", source="1", target="2", label="", positivity=0.0, weight=1.0),
        GraphEdge(id="2-3", source="2", target="3", label="", positivity=0.0, weight=1.0),
    ]


def _replay(mutations: list[StyleMutation], classes: dict[str, set[str]]) -> None:
    for mutation in mutations:
        current = classes.setdefault(mutation.element_id, set())
        current.difference_update(mutation.remove_classes)
        current.update(mutation.add_classes)


def test_node_selection_highlights_neighbors_and_fades_the_rest() -> None:
    highlighter = SelectionHighlighter(_elements())

    update = highlighter.tap_node("1")

    assert update.state == NodeSelected("1")
    assert highlighter.classes_for("1") == frozenset({"highlighted", "selected"})
    assert highlighter.classes_for("2") == frozenset({"highlighted"})
    assert highlighter.classes_for("1-2") == frozenset({"highlighted"})
    assert highlighter.classes_for("3") == frozenset({"faded"})
    assert highlighter.classes_for("2-3") == frozenset({"faded"})
    assert len(update.mutations) == 5


def test_switching_nodes_never_leaves_both_highlighted() -> None:
    highlighter = SelectionHighlighter(_elements())
    classes: dict[str, set[str]] = {}
    _replay(highlighter.tap_node("1").mutations, classes)

    update = highlighter.tap_node("3")

    assert update.state == NodeSelected("3")
    mutated_ids = [mutation.element_id for mutation in update.mutations]
    assert len(mutated_ids) == len(set(mutated_ids))
    _replay(update.mutations, classes)
    assert "selected" not in classes["1"]
    assert "highlighted" not in classes["1"]
    assert classes["1"] == {"faded"}
    assert classes["3"] == {"highlighted", "selected"}
    for mutation in update.mutations:
        if mutation.element_id == "1":
            assert "highlighted" in mutation.remove_classes
            assert "highlighted" not in mutation.add_classes


def test_tapping_the_selected_node_again_returns_to_idle() -> None:
    highlighter = SelectionHighlighter(_elements())
    highlighter.tap_node("2")

    update = highlighter.tap_node("2")

    assert update.state == Idle()
    assert all(not mutation.add_classes for mutation in update.mutations)
    assert all(highlighter.classes_for(element.id) == frozenset() for element in _elements())


def test_edge_selection_highlights_its_endpoints() -> None:
    highlighter = SelectionHighlighter(_elements())
    update = highlighter.tap_edge("2-3")
    assert update.state == EdgeSelected("2-3")
    assert highlighter.classes_for("2-3") == frozenset({"highlighted", "selected"})
    assert highlighter.classes_for("2") == frozenset({"highlighted"})
    assert highlighter.classes_for("3") == frozenset({"highlighted"})
    assert highlighter.classes_for("1") == frozenset({"faded"})
    assert highlighter.tap_edge("2-3").state == Idle()


def test_background_tap_in_idle_is_a_no_op() -> None:
    highlighter = SelectionHighlighter(_elements())
    update = highlighter.tap_background()
    assert update.state == Idle()
    assert not update.changed


def test_unknown_ids_do_not_change_state() -> None:
    highlighter = SelectionHighlighter(_elements())
    highlighter.tap_node("1")
    assert highlighter.tap_node("99").state == NodeSelected("1")
    assert highlighter.tap_edge("1").state == NodeSelected("1")
    assert not highlighter.tap_edge("missing").changed


def test_active_search_restricts_node_highlight() -> None:
    elements = _elements()
    highlighter = SelectionHighlighter(elements)
    search = highlighter.set_search(filter_search_results("anna", elements))
    assert highlighter.classes_for("1") == frozenset({"search-match"})
    assert highlighter.classes_for("2") == frozenset()
    assert highlighter.classes_for("3") == frozenset({"faded"})
    assert search.state == Idle()

    highlighter.tap_node("2")

    assert highlighter.classes_for("1-2") == frozenset({"highlighted"})
    assert highlighter.classes_for("2-3") == frozenset({"faded"})
    assert highlighter.classes_for("3") == frozenset({"faded"})


def test_selection_falls_back_to_idle_when_element_disappears() -> None:
    highlighter = SelectionHighlighter(_elements())
    highlighter.tap_node("3")

    update = highlighter.update_elements(_elements()[:2])

    assert update.state == Idle()
    assert highlighter.classes_for("3") == frozenset()
    assert highlighter.classes_for("1") == frozenset()
