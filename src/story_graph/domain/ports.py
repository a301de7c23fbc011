"""Ports for the renderer, persistent cache, fetch transport, and scene listeners."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from story_graph.domain.models import GraphElement, LayoutConfig, Position


class SceneRenderer(Protocol):
    """Stateful node/edge canvas driven only through these calls."""

    def add_elements(self, elements: Sequence[GraphElement]) -> None:
        ...

    def remove_elements_by_id(self, element_ids: Sequence[str]) -> None:
        ...

    def set_style(self, element_id: str, attrs: Mapping[str, object]) -> None:
        ...

    def update_classes(
        self,
        element_id: str,
        *,
        add: Sequence[str] = (),
        remove: Sequence[str] = (),
    ) -> None:
        ...

    def get_position(self, element_id: str) -> Position | None:
        ...

    def set_position(self, element_id: str, position: Position) -> None:
        ...

    def run_layout(self, config: LayoutConfig) -> None:
        ...

    def batch(self, operations: Callable[[], None]) -> None:
        ...

    def element_ids(self) -> set[str]:
        ...


class KeyValueStore(Protocol):
    """Persistent JSON store keyed by string with optional expiry."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> list[str]:
        ...


class GraphFetcher(Protocol):
    """Async transport returning raw `{isSuccess, result}` envelopes or None."""

    async def fetch_fine_graph(
        self, *, book_id: str, chapter_idx: int, event_idx: int
    ) -> dict[str, Any] | None:
        ...

    async def fetch_macro_graph(
        self, *, book_id: str, up_to_chapter: int
    ) -> dict[str, Any] | None:
        ...


class SceneEventListener(Protocol):
    """Receives scene notifications without the engine depending on the consumer."""

    def on_nodes_added(self, node_ids: Sequence[str]) -> None:
        ...

    def on_layout_complete(self) -> None:
        ...
