"""CLI for stepping a cached chapter through the scene engine, one event at a time."""

from __future__ import annotations

import argparse
import asyncio
import json
import random
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from story_graph.adapters.headless_renderer import HeadlessSceneRenderer
from story_graph.adapters.observability import configure_runtime_logging
from story_graph.adapters.svg_export import export_scene_svg
from story_graph.application.graph_navigator import GraphNavigator, NavigationResult
from story_graph.application.settings import EngineSettings
from story_graph.core.graph_schema import (
    ChapterSnapshotCache,
    FlatChapterEvents,
    parse_chapter_cache,
)
from story_graph.core.scene_sync import SceneSynchronizer
from story_graph.core.snapshot_store import ChapterSnapshotStore


def build_arg_parser() -> argparse.ArgumentParser:
    """Define CLI flags for chapter replay."""
    parser = argparse.ArgumentParser(
        description="Replay a chapter cache event by event and report scene changes."
    )
    parser.add_argument("--cache", required=True, help="Chapter cache JSON file.")
    parser.add_argument("--start-event", type=int, default=1)
    parser.add_argument("--event", type=int, default=0, help="Last event (default: chapter end).")
    parser.add_argument("--search", default="", help="Search query applied after the last step.")
    parser.add_argument("--select", default="", help="Node id tapped after the last step.")
    parser.add_argument("--svg", default="", help="Write the final scene as SVG to this path.")
    parser.add_argument("--seed", type=int, default=7, help="Seed for fallback placement jitter.")
    parser.add_argument(
        "--log-level", default="", help="Override STORY_GRAPH_LOG_LEVEL for this run."
    )
    return parser


def _load_cache(path: Path) -> ChapterSnapshotCache | FlatChapterEvents:
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SystemExit(f"Cannot read chapter cache {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise SystemExit(f"Chapter cache {path} must be a JSON object.")
    if "baseSnapshot" in raw or "base_snapshot" in raw:
        cache = parse_chapter_cache(raw)
        if cache is None:
            raise SystemExit(f"Chapter cache {path} is invalid.")
        return cache
    try:
        return FlatChapterEvents.model_validate(raw)
    except ValidationError as exc:
        raise SystemExit(f"Chapter cache {path} is invalid: {exc}") from exc


def _step_line(result: NavigationResult) -> str:
    report = result.sync_report
    return json.dumps(
        {
            "event_idx": result.event_idx,
            "status": result.status,
            "added": [element.id for element in result.diff.added],
            "removed": [element.id for element in result.diff.removed],
            "updated": [element.id for element in result.diff.updated],
            "new_node_ids": result.new_node_ids,
            "layout_ran": bool(report and report.layout_ran),
            "dropped_edge_ids": result.dropped_edge_ids,
        },
        sort_keys=True,
    )


async def _replay(
    *,
    entry: ChapterSnapshotCache | FlatChapterEvents,
    settings: EngineSettings,
    renderer: HeadlessSceneRenderer,
    start_event: int,
    last_event: int,
    search: str,
    select: str,
    seed: int,
) -> list[str]:
    store = ChapterSnapshotStore(max_size=settings.cache_max_size)
    if isinstance(entry, ChapterSnapshotCache):
        store.put(entry)
    else:
        store.put_flat_events(entry)
    synchronizer = SceneSynchronizer(
        renderer,
        bounds=settings.bounds,
        layout=settings.layout,
        rng=random.Random(seed),
    )
    navigator = GraphNavigator(store, synchronizer, settings=settings)
    end = last_event or entry.max_event_idx
    lines: list[str] = []
    for event_idx in range(max(1, start_event), end + 1):
        result = await navigator.navigate(entry.book_id, entry.chapter_idx, event_idx)
        lines.append(_step_line(result))
    if search:
        navigator.search(search)
    if select:
        navigator.apply_selection(navigator.highlighter.tap_node(select))
    return lines


def main(argv: list[str] | None = None) -> None:
    """Replay the chapter, print one JSON line per event, and optionally export SVG."""
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    configure_runtime_logging(level=str(parsed.log_level).strip() or None)
    settings = EngineSettings.from_env()
    entry = _load_cache(Path(str(parsed.cache)))
    renderer = HeadlessSceneRenderer()
    lines = asyncio.run(
        _replay(
            entry=entry,
            settings=settings,
            renderer=renderer,
            start_event=int(parsed.start_event),
            last_event=int(parsed.event),
            search=str(parsed.search).strip(),
            select=str(parsed.select).strip(),
            seed=int(parsed.seed),
        )
    )
    for line in lines:
        print(line)
    svg_path = str(parsed.svg).strip()
    if svg_path:
        output = Path(svg_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(export_scene_svg(renderer, settings.bounds), encoding="utf-8")


if __name__ == "__main__":
    main()
