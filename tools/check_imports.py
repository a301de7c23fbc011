"""Validate Python layer import boundaries for story_graph."""

from __future__ import annotations

import ast
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_SOURCE_ROOT = PROJECT_ROOT / "src" / "story_graph"
PACKAGE_NAME = "story_graph"
KNOWN_LAYERS = {
    "adapters",
    "application",
    "cli",
    "core",
    "domain",
}
RULES: dict[str, set[str]] = {
    "domain": {"adapters", "application", "cli", "core"},
    "core": {"adapters", "application", "cli"},
    "application": {"adapters", "cli"},
}


def _layer_for_path(path: Path, source_root: Path) -> str | None:
    try:
        relative = path.relative_to(source_root)
    except ValueError:
        return None
    if len(relative.parts) < 2:
        return None
    return relative.parts[0]


def _layer_from_absolute_module(module_name: str) -> str | None:
    if not module_name.startswith(f"{PACKAGE_NAME}."):
        return None
    candidate = module_name.split(".")[1]
    return candidate if candidate in KNOWN_LAYERS else None


def _resolve_relative_base(path: Path, source_root: Path, level: int) -> list[str]:
    relative = path.relative_to(source_root)
    package_parts = [PACKAGE_NAME, *relative.with_suffix("").parts][:-1]
    if level <= 0:
        return package_parts
    if level > len(package_parts):
        return []
    return package_parts[: len(package_parts) - level + 1]


def _layers_for_module(module_name: str, names: list[ast.alias]) -> set[str]:
    direct_layer = _layer_from_absolute_module(module_name)
    if direct_layer is not None:
        return {direct_layer}
    if module_name == PACKAGE_NAME:
        return {alias.name for alias in names if alias.name in KNOWN_LAYERS}
    return set()


def _imported_layers_from_node(
    node: ast.Import | ast.ImportFrom,
    path: Path,
    source_root: Path,
) -> set[str]:
    if isinstance(node, ast.Import):
        layers: set[str] = set()
        for alias in node.names:
            layer = _layer_from_absolute_module(alias.name)
            if layer is not None:
                layers.add(layer)
        return layers

    if node.level == 0:
        if node.module is None:
            return set()
        return _layers_for_module(node.module, node.names)

    base_parts = _resolve_relative_base(path, source_root, node.level)
    if not base_parts:
        return set()
    absolute_parts = [*base_parts, *node.module.split(".")] if node.module else base_parts
    return _layers_for_module(".".join(absolute_parts), node.names)


def check_file(path: Path, source_root: Path = DEFAULT_SOURCE_ROOT) -> list[str]:
    layer = _layer_for_path(path, source_root)
    if layer is None:
        return []
    banned_layers = RULES.get(layer, set())
    if not banned_layers:
        return []

    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    violations: list[str] = []
    for node in ast.walk(tree):
        if not isinstance(node, (ast.Import, ast.ImportFrom)):
            continue
        for imported_layer in sorted(_imported_layers_from_node(node, path, source_root)):
            if imported_layer in banned_layers:
                violations.append(
                    f"{path}: {layer} must not import {PACKAGE_NAME}.{imported_layer}"
                )
    return violations


def check_import_boundaries(source_root: Path = DEFAULT_SOURCE_ROOT) -> list[str]:
    violations: list[str] = []
    for path in sorted(source_root.rglob("*.py")):
        violations.extend(check_file(path, source_root))
    return violations


def main() -> None:
    violations = check_import_boundaries()
    if violations:
        raise SystemExit("\n".join(violations))
    print("import boundary checks passed")


if __name__ == "__main__":
    main()
