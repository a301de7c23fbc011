"""Deterministic SVG snapshot of the headless scene."""

from __future__ import annotations

from html import escape

from story_graph.adapters.headless_renderer import HeadlessSceneRenderer
from story_graph.core.element_builder import node_display_size, relation_color
from story_graph.domain.models import GraphEdge, GraphNode, SceneBounds

_FADED_OPACITY = "0.25"


def _opacity(classes: set[str]) -> str:
    return _FADED_OPACITY if "faded" in classes else "1"


def export_scene_svg(renderer: HeadlessSceneRenderer, bounds: SceneBounds | None = None) -> str:
    """Export the rendered scene to SVG text, translating origin-centered positions."""
    frame = bounds or SceneBounds()
    width = int(frame.width)
    height = int(frame.height)
    center_x = width / 2
    center_y = height / 2

    node_coords: dict[str, tuple[float, float]] = {}
    circles: list[str] = []
    labels: list[str] = []
    nodes = sorted(
        (element for element in renderer.elements() if isinstance(element, GraphNode)),
        key=lambda node: node.id,
    )
    for node in nodes:
        position = renderer.get_position(node.id)
        x = round(center_x + (position.x if position else 0.0), 2)
        y = round(center_y + (position.y if position else 0.0), 2)
        node_coords[node.id] = (x, y)
        classes = renderer.classes_of(node.id)
        rendered = renderer.rendered(node.id)
        styled_size = rendered.style.get("size") if rendered is not None else None
        size = (
            styled_size
            if isinstance(styled_size, (int, float))
            else node_display_size(node.weight)
        )
        radius = size / 2
        stroke = "#D9A21B" if "highlighted" in classes else "#173629"
        fill = "#6B2E5E" if node.is_main else "#2E5E4E"
        circles.append(
            f'<circle cx="{x}" cy="{y}" r="{radius}" fill="{fill}" stroke="{stroke}" '
            f'stroke-width="2" opacity="{_opacity(classes)}" />'
        )
        labels.append(
            f'<text x="{x}" y="{round(y + radius + 14, 2)}" text-anchor="middle" fill="#10231C" '
            f'font-size="12" opacity="{_opacity(classes)}">{escape(node.label)}</text>'
        )

    lines: list[str] = []
    edges = sorted(
        (element for element in renderer.elements() if isinstance(element, GraphEdge)),
        key=lambda edge: edge.id,
    )
    for edge in edges:
        source = node_coords.get(edge.source)
        target = node_coords.get(edge.target)
        if source is None or target is None:
            continue
        classes = renderer.classes_of(edge.id)
        lines.append(
            f'<line x1="{source[0]}" y1="{source[1]}" x2="{target[0]}" y2="{target[1]}" '
            f'stroke="{relation_color(edge.positivity)}" stroke-width="1.5" '
            f'opacity="{_opacity(classes)}" />'
        )

    body = "\n".join(lines + circles + labels)
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" '
        f'viewBox="0 0 {width} {height}"><rect width="100%" height="100%" fill="#EEF5F2" />'
        f"{body}</svg>"
    )
