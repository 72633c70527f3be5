"""Recursive display tree model: leaves are surfaces, groups are ordered splits.

Remote documents are union-typed (a leaf object or an array of documents) with
no tag field. The shape is sniffed exactly once here, at parse time, and the
result is an explicit ``Leaf``/``Group`` variant that the renderer never has to
re-inspect.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Iterator, List, Tuple, Union

from kiosk_core.errors import MalformedConfig


@dataclass(frozen=True)
class Leaf:
    """One rendered URL with its own reload cadence and startup script."""

    url: str
    reload_ms: int
    on_load: str = ""

    @property
    def reloads(self) -> bool:
        # A zero interval disables the timer rather than reloading continuously.
        return self.reload_ms > 0


@dataclass(frozen=True)
class Group:
    """Ordered children rendered side by side."""

    children: Tuple["DisplayNode", ...] = ()


DisplayNode = Union[Leaf, Group]


def _parse_reload(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedConfig(f"{path}.reload must be a number")
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise MalformedConfig(f"{path}.reload must be a whole number of milliseconds")
        value = int(value)
    if value < 0:
        raise MalformedConfig(f"{path}.reload must not be negative")
    return value


def _parse_node(raw: Any, path: str) -> DisplayNode:
    if isinstance(raw, list):
        return Group(tuple(_parse_node(child, f"{path}[{index}]") for index, child in enumerate(raw)))
    if not isinstance(raw, dict):
        raise MalformedConfig(f"{path} must be an object or an array")
    url = raw.get("url")
    if not isinstance(url, str):
        raise MalformedConfig(f"{path}.url must be a string")
    on_load = raw.get("onLoad")
    if not isinstance(on_load, str):
        raise MalformedConfig(f"{path}.onLoad must be a string")
    return Leaf(url=url, reload_ms=_parse_reload(raw.get("reload"), path), on_load=on_load)


def tree_from_document(document: Any) -> DisplayNode:
    """Build a tree from an already-decoded JSON value."""
    return _parse_node(document, "config")


def parse_tree(text: Union[str, bytes]) -> DisplayNode:
    """Decode JSON text into a display tree, raising ``MalformedConfig``."""
    try:
        document = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedConfig(f"Invalid config format: {exc}") from exc
    return tree_from_document(document)


def tree_to_document(node: DisplayNode) -> Any:
    if isinstance(node, Group):
        return [tree_to_document(child) for child in node.children]
    return {"url": node.url, "reload": node.reload_ms, "onLoad": node.on_load}


def serialize_tree(node: DisplayNode) -> str:
    return json.dumps(tree_to_document(node), ensure_ascii=False)


def iter_leaves(node: DisplayNode) -> Iterator[Leaf]:
    """Yield every leaf in document order, regardless of nesting depth."""
    stack: List[DisplayNode] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, Leaf):
            yield current
            continue
        stack.extend(reversed(current.children))


def leaf_count(node: DisplayNode) -> int:
    return sum(1 for _ in iter_leaves(node))


__all__ = [
    "Leaf",
    "Group",
    "DisplayNode",
    "parse_tree",
    "tree_from_document",
    "tree_to_document",
    "serialize_tree",
    "iter_leaves",
    "leaf_count",
]
