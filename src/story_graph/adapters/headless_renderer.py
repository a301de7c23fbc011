"""In-memory scene renderer that records every mutation it receives."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from story_graph.domain.models import GraphElement, GraphNode, LayoutConfig, Position


@dataclass(frozen=True)
class RendererCall:
    """One mutation call, in the order the renderer received it."""

    method: str
    args: tuple[object, ...] = ()


@dataclass
class RenderedElement:
    element: GraphElement
    style: dict[str, object] = field(default_factory=dict)
    classes: set[str] = field(default_factory=set)
    position: Position | None = None


class HeadlessSceneRenderer:
    """Renderer without a canvas, used by the CLI replay and by tests."""

    def __init__(self) -> None:
        self._elements: dict[str, RenderedElement] = {}
        self.calls: list[RendererCall] = []
        self.layouts: list[LayoutConfig] = []
        self._batch_depth = 0
        self.repaints = 0

    def add_elements(self, elements: Sequence[GraphElement]) -> None:
        self.calls.append(RendererCall("add_elements", tuple(element.id for element in elements)))
        for element in elements:
            position = element.position if isinstance(element, GraphNode) else None
            self._elements[element.id] = RenderedElement(element=element, position=position)
        self._repaint()

    def remove_elements_by_id(self, element_ids: Sequence[str]) -> None:
        self.calls.append(RendererCall("remove_elements_by_id", tuple(element_ids)))
        for element_id in element_ids:
            self._elements.pop(element_id, None)
        self._repaint()

    def set_style(self, element_id: str, attrs: Mapping[str, object]) -> None:
        self.calls.append(RendererCall("set_style", (element_id, dict(attrs))))
        rendered = self._elements.get(element_id)
        if rendered is not None:
            rendered.style.update(attrs)
        self._repaint()

    def update_classes(
        self,
        element_id: str,
        *,
        add: Sequence[str] = (),
        remove: Sequence[str] = (),
    ) -> None:
        self.calls.append(RendererCall("update_classes", (element_id, tuple(add), tuple(remove))))
        rendered = self._elements.get(element_id)
        if rendered is not None:
            rendered.classes.difference_update(remove)
            rendered.classes.update(add)
        self._repaint()

    def get_position(self, element_id: str) -> Position | None:
        rendered = self._elements.get(element_id)
        return rendered.position if rendered is not None else None

    def set_position(self, element_id: str, position: Position) -> None:
        self.calls.append(RendererCall("set_position", (element_id, position)))
        rendered = self._elements.get(element_id)
        if rendered is not None:
            rendered.position = position
        self._repaint()

    def run_layout(self, config: LayoutConfig) -> None:
        self.calls.append(RendererCall("run_layout", (config.name,)))
        self.layouts.append(config)
        self._repaint()

    def batch(self, operations: Callable[[], None]) -> None:
        self.calls.append(RendererCall("batch"))
        self._batch_depth += 1
        try:
            operations()
        finally:
            self._batch_depth -= 1
        self._repaint()

    def element_ids(self) -> set[str]:
        return set(self._elements)

    def elements(self) -> list[GraphElement]:
        return [rendered.element for rendered in self._elements.values()]

    def rendered(self, element_id: str) -> RenderedElement | None:
        return self._elements.get(element_id)

    def classes_of(self, element_id: str) -> set[str]:
        rendered = self._elements.get(element_id)
        return set(rendered.classes) if rendered is not None else set()

    def mutation_count(self) -> int:
        return len(self.calls)

    def _repaint(self) -> None:
        if self._batch_depth == 0:
            self.repaints += 1
