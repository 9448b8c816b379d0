from __future__ import annotations

import re
from typing import Any

_INDEX_PATTERN = re.compile(r"^\d+$")


def flatten_json(document: Any) -> dict[str, Any]:
    """Flatten nested dicts/lists into ``{"a.b.0": value}`` pairs.

    Empty keys are skipped. Scalars (including ``None``) become leaves.
    """

    flattened: dict[str, Any] = {}

    def _walk(node: Any, path: list[str]) -> None:
        if isinstance(node, list):
            for index, item in enumerate(node):
                _walk(item, [*path, str(index)])
            return

        if not isinstance(node, dict):
            if path:
                flattened[".".join(path)] = node
            return

        for key, value in node.items():
            if key == "":
                continue
            _walk(value, [*path, str(key)])

    _walk(document, [])
    return flattened


def _container_for(next_key: str) -> list[Any] | dict[str, Any]:
    return [] if _INDEX_PATTERN.match(next_key) else {}


def _get_child(level: Any, key: str) -> Any:
    if isinstance(level, dict):
        return level.get(key)
    index = int(key)
    return level[index] if index < len(level) else None


def _set_child(level: Any, key: str, value: Any) -> None:
    if isinstance(level, dict):
        level[key] = value
        return
    index = int(key)
    while len(level) <= index:
        level.append(None)
    level[index] = value


def _accepts_key(level: Any, key: str) -> bool:
    if isinstance(level, dict):
        return True
    return isinstance(level, list) and bool(_INDEX_PATTERN.match(key))


def unflatten_json(flattened: dict[str, Any]) -> dict[str, Any]:
    """Rebuild the nested document for a flat ``{"a.b.0": value}`` mapping.

    Keys with empty segments and falsy leaf values are dropped. A numeric
    next segment creates a list.
    """

    result: dict[str, Any] = {}

    for flat_key, value in flattened.items():
        segments = flat_key.split(".")
        if any(segment == "" for segment in segments):
            continue
        if not value:
            continue

        level: Any = result
        for position, segment in enumerate(segments):
            if not _accepts_key(level, segment):
                break

            if position == len(segments) - 1:
                _set_child(level, segment, value)
                break

            child = _get_child(level, segment)
            if child is None:
                child = _container_for(segments[position + 1])
                _set_child(level, segment, child)
            elif not isinstance(child, (dict, list)):
                # A leaf already occupies this path.
                break
            level = child

    return result
