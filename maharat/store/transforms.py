from __future__ import annotations

import copy
from typing import Any, Callable


class _ServerTimestamp:
    def __repr__(self) -> str:
        return 'SERVER_TIMESTAMP'


SERVER_TIMESTAMP = _ServerTimestamp()


class ArrayUnion:
    """Field transform that appends values missing from the stored array."""

    def __init__(self, values: list[Any]) -> None:
        self.values = list(values)

    def apply(self, current: Any) -> list[Any]:
        merged = list(current) if isinstance(current, list) else []
        for value in self.values:
            if value not in merged:
                merged.append(value)
        return merged

    def __repr__(self) -> str:
        return f'ArrayUnion({self.values!r})'


def split_path(field_path: str) -> list[str]:
    parts = (field_path or '').split('.')
    if not parts or any(not part for part in parts):
        raise ValueError(f'Invalid field path: {field_path!r}')
    return parts


def get_path(data: dict[str, Any], field_path: str) -> Any:
    node: Any = data
    for part in split_path(field_path):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _resolve(value: Any, current: Any, now: Callable[[], str]) -> Any:
    if value is SERVER_TIMESTAMP:
        return now()
    if isinstance(value, ArrayUnion):
        return value.apply(current)
    if isinstance(value, dict):
        base = current if isinstance(current, dict) else {}
        return {key: _resolve(item, base.get(key), now) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve(item, None, now) for item in value]
    return copy.deepcopy(value)


def set_path(data: dict[str, Any], field_path: str, value: Any, now: Callable[[], str]) -> None:
    parts = split_path(field_path)
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    leaf = parts[-1]
    node[leaf] = _resolve(value, node.get(leaf), now)


def resolve_document(data: dict[str, Any], now: Callable[[], str]) -> dict[str, Any]:
    return {key: _resolve(value, None, now) for key, value in data.items()}


def merge_document(current: dict[str, Any], data: dict[str, Any], now: Callable[[], str]) -> dict[str, Any]:
    merged = copy.deepcopy(current)
    for key, value in data.items():
        existing = merged.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            merged[key] = merge_document(existing, value, now)
        else:
            merged[key] = _resolve(value, existing, now)
    return merged
