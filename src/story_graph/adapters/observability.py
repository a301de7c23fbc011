"""Runtime logging configuration with bounded retention."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

_CONFIGURED = False
_DEFAULT_LOG_PATH = Path("work/logs/story_graph.log")


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _level(name: str, default: int) -> int:
    value = getattr(logging, name.strip().upper(), None)
    return value if isinstance(value, int) else default


@dataclass(frozen=True)
class LoggingConfig:
    """Where CLI runs log; stderr always, plus a rotating file when `log_path` is set."""

    level: int = logging.INFO
    log_path: Path | None = _DEFAULT_LOG_PATH
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 10
    http_level: int = logging.WARNING

    @classmethod
    def from_env(cls) -> LoggingConfig:
        raw_path = os.environ.get("STORY_GRAPH_LOG_PATH")
        if raw_path is None:
            log_path: Path | None = _DEFAULT_LOG_PATH
        else:
            # an explicitly empty path disables the file handler
            log_path = Path(raw_path.strip()) if raw_path.strip() else None
        return cls(
            level=_level(os.environ.get("STORY_GRAPH_LOG_LEVEL", "INFO"), logging.INFO),
            log_path=log_path,
            max_bytes=_int_env(
                "STORY_GRAPH_LOG_MAX_BYTES",
                5 * 1024 * 1024,
                minimum=64 * 1024,
                maximum=100 * 1024 * 1024,
            ),
            backup_count=_int_env("STORY_GRAPH_LOG_BACKUP_COUNT", 10, minimum=1, maximum=120),
            http_level=_level(
                os.environ.get("STORY_GRAPH_HTTP_LOG_LEVEL", "WARNING"), logging.WARNING
            ),
        )

    def with_level(self, name: str | None) -> LoggingConfig:
        if not name:
            return self
        return replace(self, level=_level(name, self.level))


def configure_runtime_logging(
    config: LoggingConfig | None = None, *, level: str | None = None
) -> LoggingConfig:
    """Configure stderr + rotating file logs once per process; returns the config in effect."""
    global _CONFIGURED
    effective = (config or LoggingConfig.from_env()).with_level(level)
    if _CONFIGURED:
        return effective

    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    # stderr keeps stdout free for the CLI's JSON lines
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if effective.log_path is not None:
        effective.log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                filename=effective.log_path,
                maxBytes=effective.max_bytes,
                backupCount=effective.backup_count,
                encoding="utf-8",
            )
        )

    root = logging.getLogger()
    root.setLevel(effective.level)
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    logging.getLogger("httpx").setLevel(effective.http_level)

    _CONFIGURED = True
    return effective
