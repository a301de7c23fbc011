"""Environment-driven engine configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from story_graph.domain.models import LayoutConfig, SceneBounds

_LAYOUT_NAMES = {"preset", "cose"}


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


@dataclass(frozen=True)
class EngineSettings:
    """Cache, probing, scene, and endpoint settings for one engine instance."""

    cache_max_size: int = 50
    cache_ttl_seconds: int = 24 * 60 * 60
    max_probe_events: int = 100
    scene_width: int = 800
    scene_height: int = 600
    layout_name: str = "preset"
    api_base_url: str = "http://127.0.0.1:8000"
    db_path: Path = Path("work/local/story_graph.db")

    @classmethod
    def from_env(cls) -> EngineSettings:
        layout_name = os.environ.get("STORY_GRAPH_LAYOUT", "preset").strip().lower()
        if layout_name not in _LAYOUT_NAMES:
            layout_name = "preset"
        db_path = os.environ.get("STORY_GRAPH_DB_PATH", "").strip()
        return cls(
            cache_max_size=_int_env("STORY_GRAPH_CACHE_MAX_SIZE", 50, minimum=1, maximum=10_000),
            cache_ttl_seconds=_int_env(
                "STORY_GRAPH_CACHE_TTL_SECONDS", 24 * 60 * 60, minimum=60, maximum=30 * 24 * 60 * 60
            ),
            max_probe_events=_int_env("STORY_GRAPH_MAX_PROBE_EVENTS", 100, minimum=1, maximum=1000),
            scene_width=_int_env("STORY_GRAPH_SCENE_WIDTH", 800, minimum=200, maximum=10_000),
            scene_height=_int_env("STORY_GRAPH_SCENE_HEIGHT", 600, minimum=200, maximum=10_000),
            layout_name=layout_name,
            api_base_url=(
                os.environ.get("STORY_GRAPH_API_BASE_URL", "").strip().rstrip("/")
                or "http://127.0.0.1:8000"
            ),
            db_path=Path(db_path) if db_path else Path("work/local/story_graph.db"),
        )

    @property
    def bounds(self) -> SceneBounds:
        return SceneBounds(width=float(self.scene_width), height=float(self.scene_height))

    @property
    def layout(self) -> LayoutConfig:
        if self.layout_name == "cose":
            return LayoutConfig(name="cose", animate=False, fit=False, randomize=False)
        return LayoutConfig(name="preset")
