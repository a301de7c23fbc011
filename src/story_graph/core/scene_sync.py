"""Apply element diffs to the external renderer without redrawing the scene."""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

from story_graph.core.element_builder import element_style
from story_graph.core.node_placement import (
    PlacementRegistry,
    clamp_to_bounds,
    place_new_nodes,
    resolve_overlaps,
)
from story_graph.domain.models import (
    DiffResult,
    GraphElement,
    GraphNode,
    LayoutConfig,
    Position,
    SceneBounds,
    StyleMutation,
)
from story_graph.domain.ports import SceneEventListener, SceneRenderer

logger = logging.getLogger(__name__)

SyncPhase = Literal["batch", "remove", "add", "update", "layout", "style", "listener"]


@dataclass(frozen=True)
class SyncIssue:
    """One renderer or listener failure recorded during a sync."""

    phase: SyncPhase
    element_ids: tuple[str, ...]
    message: str


@dataclass(frozen=True)
class SyncReport:
    """What one sync actually applied to the renderer."""

    removed_ids: list[str] = field(default_factory=list)
    added_ids: list[str] = field(default_factory=list)
    added_node_ids: list[str] = field(default_factory=list)
    restyled_ids: list[str] = field(default_factory=list)
    layout_ran: bool = False
    pending_ids: list[str] = field(default_factory=list)
    fallback_node_ids: list[str] = field(default_factory=list)
    issues: list[SyncIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def structural(self) -> bool:
        return bool(self.removed_ids or self.added_ids)


@dataclass
class _SyncPlan:
    removal_ids: list[str]
    additions: list[GraphElement]
    restyles: dict[str, dict[str, object]]

    @property
    def is_empty(self) -> bool:
        return not (self.removal_ids or self.additions or self.restyles)


class SceneSynchronizer:
    """Drive the renderer from diffs, keeping placement and pending work across calls."""

    def __init__(
        self,
        renderer: SceneRenderer,
        *,
        registry: PlacementRegistry | None = None,
        bounds: SceneBounds | None = None,
        layout: LayoutConfig | None = None,
        listeners: Iterable[SceneEventListener] = (),
        rng: random.Random | None = None,
    ) -> None:
        self._renderer = renderer
        self._registry = registry if registry is not None else PlacementRegistry()
        self._bounds = bounds or SceneBounds()
        self._layout = layout or LayoutConfig()
        self._listeners = list(listeners)
        self._rng = rng or random.Random()
        self._elements: dict[str, GraphElement] = {}
        self._applied_styles: dict[str, dict[str, object]] = {}
        self._pending_removals: set[str] = set()
        self._pending_additions: dict[str, GraphElement] = {}
        self._pending_updates: dict[str, GraphElement] = {}

    @property
    def registry(self) -> PlacementRegistry:
        return self._registry

    @property
    def bounds(self) -> SceneBounds:
        return self._bounds

    @property
    def layout(self) -> LayoutConfig:
        return self._layout

    def add_listener(self, listener: SceneEventListener) -> None:
        self._listeners.append(listener)

    def current_elements(self) -> list[GraphElement]:
        """Elements the scene is meant to hold after the last sync."""
        return list(self._elements.values())

    def pending_ids(self) -> list[str]:
        return sorted(
            self._pending_removals | set(self._pending_additions) | set(self._pending_updates)
        )

    def sync(self, diff: DiffResult) -> SyncReport:
        """Apply removals, additions, and restyles in one batch; never raises."""
        self._track_intended(diff)
        if diff.is_empty and not self.pending_ids():
            return SyncReport()

        live = self._live_ids()
        plan = self._plan(diff, live)
        if plan.is_empty:
            logger.debug("scene_sync.noop")
            return SyncReport(pending_ids=self.pending_ids())

        issues: list[SyncIssue] = []
        removed: list[str] = []
        added: list[str] = []
        restyled: list[str] = []
        fallback_ids = self._place(plan.additions)
        payloads = [self._positioned(element) for element in plan.additions]

        def operations() -> None:
            removed.extend(self._remove_phase(plan.removal_ids, issues))
            added.extend(self._add_phase(payloads, issues))
            restyled.extend(self._update_phase(plan.restyles, issues))

        try:
            self._renderer.batch(operations)
        except Exception as exc:  # noqa: BLE001
            logger.warning("scene_sync.batch_failed error=%s", exc)
            issues.append(SyncIssue(phase="batch", element_ids=(), message=str(exc)))
            self._mark_unapplied(plan, removed, added, restyled)

        layout_ran = False
        if removed or added:
            layout_ran = self._layout_phase(issues)

        applied_additions = set(added)
        added_nodes = [
            element.id
            for element in payloads
            if isinstance(element, GraphNode) and element.id in applied_additions
        ]
        if added_nodes:
            self._notify("on_nodes_added", issues, added_nodes)
        if layout_ran:
            self._notify("on_layout_complete", issues)

        report = SyncReport(
            removed_ids=removed,
            added_ids=added,
            added_node_ids=added_nodes,
            restyled_ids=restyled,
            layout_ran=layout_ran,
            pending_ids=self.pending_ids(),
            fallback_node_ids=fallback_ids,
            issues=issues,
        )
        logger.info(
            "scene_sync.applied removed=%s added=%s restyled=%s layout=%s pending=%s",
            len(removed),
            len(added),
            len(restyled),
            layout_ran,
            len(report.pending_ids),
        )
        return report

    def reset(self) -> SyncReport:
        """Remove every element from the scene, as on a chapter switch."""
        self._pending_additions.clear()
        self._pending_updates.clear()
        removal = DiffResult(removed=tuple(self._elements.values()))
        report = self.sync(removal)
        if not report.pending_ids:
            self._registry.clear()
        return report

    def restore_positions(self, positions: Mapping[str, Position]) -> int:
        """Seed last-known positions for nodes not yet placed in this scene."""
        restored = 0
        for node_id, position in positions.items():
            if node_id in self._registry:
                continue
            self._registry.commit(node_id, position)
            restored += 1
        return restored

    def handle_node_drag(self, node_id: str, position: Position) -> dict[str, Position]:
        """Commit a user drag and push apart any nodes it now overlaps."""
        if node_id not in self._elements:
            return {}
        self._registry.move(node_id, position)
        node_positions = {
            element_id: placed
            for element_id in self._elements
            if (placed := self._registry.get(element_id)) is not None
        }
        moved = resolve_overlaps(node_positions)
        for moved_id, moved_position in moved.items():
            self._registry.move(moved_id, moved_position)

        def operations() -> None:
            for moved_id, moved_position in sorted(moved.items()):
                self._renderer.set_position(moved_id, moved_position)

        if moved:
            try:
                self._renderer.batch(operations)
            except Exception as exc:  # noqa: BLE001
                logger.warning("scene_sync.drag_failed node_id=%s error=%s", node_id, exc)
        return moved

    def apply_style_mutations(self, mutations: Sequence[StyleMutation]) -> list[SyncIssue]:
        """Apply highlight/fade class changes in one batch."""
        issues: list[SyncIssue] = []
        targets = [mutation for mutation in mutations if mutation.element_id in self._elements]
        if not targets:
            return issues

        def operations() -> None:
            for mutation in targets:
                self._renderer.update_classes(
                    mutation.element_id,
                    add=mutation.add_classes,
                    remove=mutation.remove_classes,
                )

        try:
            self._renderer.batch(operations)
        except Exception as exc:  # noqa: BLE001
            logger.warning("scene_sync.style_failed count=%s error=%s", len(targets), exc)
            issues.append(
                SyncIssue(
                    phase="style",
                    element_ids=tuple(mutation.element_id for mutation in targets),
                    message=str(exc),
                )
            )
        return issues

    def _track_intended(self, diff: DiffResult) -> None:
        for element in diff.removed:
            self._elements.pop(element.id, None)
        for element in diff.added:
            self._elements[element.id] = element
        for element in diff.updated:
            self._elements[element.id] = element

    def _live_ids(self) -> set[str]:
        try:
            return set(self._renderer.element_ids())
        except Exception as exc:  # noqa: BLE001
            logger.warning("scene_sync.query_failed error=%s", exc)
            return set(self._applied_styles)

    def _plan(self, diff: DiffResult, live: set[str]) -> _SyncPlan:
        removed_now = {element.id for element in diff.removed}
        removal_ids = sorted((self._pending_removals | removed_now) & live)
        self._pending_removals &= live

        candidates: dict[str, GraphElement] = dict(self._pending_additions)
        for element in diff.added:
            candidates[element.id] = element
        for element in diff.updated:
            if element.id in candidates:
                candidates[element.id] = element
        for element_id in removed_now:
            candidates.pop(element_id, None)
        staying = live - set(removal_ids)
        self._pending_additions = {
            element_id: element
            for element_id, element in candidates.items()
            if element_id not in staying
        }
        additions = sorted(
            self._pending_additions.values(),
            key=lambda element: 0 if isinstance(element, GraphNode) else 1,
        )

        updates: dict[str, GraphElement] = dict(self._pending_updates)
        for element in diff.updated:
            updates[element.id] = element
        restyles: dict[str, dict[str, object]] = {}
        for element_id, element in updates.items():
            if element_id not in staying or element_id in removed_now:
                continue
            style = element_style(element)
            applied = self._applied_styles.get(element_id, {})
            changed = {key: value for key, value in style.items() if applied.get(key) != value}
            if changed:
                restyles[element_id] = changed
        self._pending_updates = {element_id: updates[element_id] for element_id in restyles}
        return _SyncPlan(removal_ids=removal_ids, additions=additions, restyles=restyles)

    def _place(self, additions: Sequence[GraphElement]) -> list[str]:
        unplaced = [
            element
            for element in additions
            if isinstance(element, GraphNode) and element.id not in self._registry
        ]
        if not unplaced:
            return []
        report = place_new_nodes(
            unplaced,
            self._registry.positions(),
            self._bounds,
            rng=self._rng,
            padding=self._layout.padding,
        )
        for node in report.nodes:
            if node.position is not None:
                self._registry.commit(node.id, node.position)
        return report.fallback_node_ids

    def _positioned(self, element: GraphElement) -> GraphElement:
        if isinstance(element, GraphNode):
            position = self._registry.get(element.id)
            if position is not None:
                return element.with_position(position)
        return element

    def _remove_phase(self, removal_ids: list[str], issues: list[SyncIssue]) -> list[str]:
        if not removal_ids:
            return []
        try:
            self._renderer.remove_elements_by_id(removal_ids)
        except Exception as exc:  # noqa: BLE001
            logger.warning("scene_sync.remove_failed count=%s error=%s", len(removal_ids), exc)
            issues.append(
                SyncIssue(phase="remove", element_ids=tuple(removal_ids), message=str(exc))
            )
            self._pending_removals.update(removal_ids)
            return []
        for element_id in removal_ids:
            self._pending_removals.discard(element_id)
            self._applied_styles.pop(element_id, None)
            if element_id not in self._elements:
                self._registry.forget(element_id)
        return list(removal_ids)

    def _add_phase(self, payloads: list[GraphElement], issues: list[SyncIssue]) -> list[str]:
        if not payloads:
            return []
        element_ids = [element.id for element in payloads]
        try:
            self._renderer.add_elements(payloads)
        except Exception as exc:  # noqa: BLE001
            logger.warning("scene_sync.add_failed count=%s error=%s", len(payloads), exc)
            issues.append(SyncIssue(phase="add", element_ids=tuple(element_ids), message=str(exc)))
            return []
        for element in payloads:
            self._pending_additions.pop(element.id, None)
            self._applied_styles[element.id] = element_style(element)
        return element_ids

    def _update_phase(
        self, restyles: Mapping[str, dict[str, object]], issues: list[SyncIssue]
    ) -> list[str]:
        applied: list[str] = []
        if not restyles:
            return applied
        try:
            for element_id, attrs in restyles.items():
                self._renderer.set_style(element_id, attrs)
                self._applied_styles.setdefault(element_id, {}).update(attrs)
                self._pending_updates.pop(element_id, None)
                applied.append(element_id)
        except Exception as exc:  # noqa: BLE001
            failed = tuple(element_id for element_id in restyles if element_id not in applied)
            logger.warning("scene_sync.update_failed count=%s error=%s", len(failed), exc)
            issues.append(SyncIssue(phase="update", element_ids=failed, message=str(exc)))
        return applied

    def _mark_unapplied(
        self, plan: _SyncPlan, removed: list[str], added: list[str], restyled: list[str]
    ) -> None:
        self._pending_removals.update(set(plan.removal_ids) - set(removed))
        for element in plan.additions:
            if element.id not in added:
                self._pending_additions[element.id] = element
        for element_id in plan.restyles:
            if element_id not in restyled and element_id in self._elements:
                self._pending_updates[element_id] = self._elements[element_id]

    def _layout_phase(self, issues: list[SyncIssue]) -> bool:
        try:
            if self._layout.name == "preset":
                self._validate_bounds()
                self._renderer.run_layout(self._layout)
            else:
                self._renderer.run_layout(self._layout)
                self._read_back_positions()
        except Exception as exc:  # noqa: BLE001
            logger.warning("scene_sync.layout_failed layout=%s error=%s", self._layout.name, exc)
            issues.append(SyncIssue(phase="layout", element_ids=(), message=str(exc)))
            return False
        return True

    def _validate_bounds(self) -> None:
        node_positions = {
            element_id: position
            for element_id, element in self._elements.items()
            if isinstance(element, GraphNode)
            and (position := self._registry.get(element_id)) is not None
        }
        adjusted = clamp_to_bounds(node_positions, self._bounds, padding=self._layout.padding)
        for node_id, position in sorted(adjusted.items()):
            self._registry.move(node_id, position)
            self._renderer.set_position(node_id, position)
        if adjusted:
            logger.debug("scene_sync.bounds_adjusted count=%s", len(adjusted))

    def _read_back_positions(self) -> None:
        for element_id, element in self._elements.items():
            if not isinstance(element, GraphNode):
                continue
            position = self._renderer.get_position(element_id)
            if position is not None:
                self._registry.move(element_id, position)

    def _notify(
        self,
        hook: Literal["on_nodes_added", "on_layout_complete"],
        issues: list[SyncIssue],
        *args: object,
    ) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, hook)(*args)
            except Exception as exc:  # noqa: BLE001
                logger.warning("scene_sync.listener_failed hook=%s error=%s", hook, exc)
                issues.append(SyncIssue(phase="listener", element_ids=(), message=str(exc)))

