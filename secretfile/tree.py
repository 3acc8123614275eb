"""The in-memory document tree: ordered branches of key/value items."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

__all__ = [
    "DEFAULT_UNENCRYPTED_SUFFIX",
    "SopsError",
    "MacMismatchError",
    "MetadataNotFoundError",
    "Comment",
    "TreeItem",
    "TreeBranch",
    "to_bytes",
    "emit_as_map",
]

log = logging.getLogger(__name__)

# Values under a key ending with this suffix are left unencrypted by default.
DEFAULT_UNENCRYPTED_SUFFIX = "_unencrypted"


class SopsError(Exception):
    """Base class for errors about encrypted documents."""


class MacMismatchError(SopsError):
    """The computed MAC does not match the one stored in the document."""

    def __init__(self, message: str = "MAC mismatch") -> None:
        super().__init__(message)


class MetadataNotFoundError(SopsError):
    """The input document carries no encryption metadata."""

    def __init__(self, message: str = "sops metadata not found") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class Comment:
    """A comment kept in the tree, for formats that support comments."""

    value: str


@dataclass
class TreeItem:
    """One key/value entry of a branch. Comments sit in the key."""

    key: Any
    value: Any = None


def _is_index(component: Any) -> bool:
    return isinstance(component, int) and not isinstance(component, bool)


def _same_key(key: Any, component: Any) -> bool:
    return type(key) is type(component) and key == component


class TreeBranch(list):
    """An ordered list of :class:`TreeItem` objects."""

    def __repr__(self) -> str:
        return f"TreeBranch({list.__repr__(self)})"

    def set(self, path: Sequence[Any], value: Any) -> TreeBranch:
        """Set ``value`` at ``path``, creating missing branches and lists."""
        return _set(self, list(path), value)

    def truncate(self, path: Iterable[Any]) -> Any:
        """Return the part of the tree found at ``path``."""
        path = list(path)
        log.info("Truncating tree (path=%r)", path)
        current: Any = self
        for component in path:
            if isinstance(component, str):
                if not isinstance(current, TreeBranch):
                    raise TypeError(
                        f"component ['{component}'] is a key, but tree part is not a branch"
                    )
                for item in current:
                    if _same_key(item.key, component):
                        current = item.value
                        break
                else:
                    raise KeyError(f"component ['{component}'] not found")
            elif _is_index(component):
                if not isinstance(current, (list, tuple)):
                    raise TypeError(
                        f"component [{component}] is integer, but tree part is not a slice"
                    )
                if component < 0 or len(current) <= component:
                    raise IndexError(f"component [{component}] accesses out of bounds")
                current = current[component]
        return current


def _value_from_path_and_leaf(path: list[Any], leaf: Any) -> Any:
    component, rest = path[0], path[1:]
    inner = _value_from_path_and_leaf(rest, leaf) if rest else leaf
    if _is_index(component):
        return [inner]
    return TreeBranch([TreeItem(component, inner)])


def _set(branch: Any, path: list[Any], value: Any) -> Any:
    component, rest = path[0], path[1:]
    if isinstance(branch, TreeBranch):
        for item in branch:
            if _same_key(item.key, component):
                item.value = _set(item.value, rest, value) if rest else value
                return branch
        created = _value_from_path_and_leaf(path, value)
        if isinstance(created, TreeBranch) and created:
            branch.append(created[0])
        return branch
    if isinstance(branch, list):
        if not _is_index(component):
            raise TypeError(f"list position must be an integer, got {component!r}")
        if component < 0:
            raise IndexError(f"list position {component} out of range")
        if not rest:
            if component >= len(branch):
                branch.append(value)
            else:
                branch[component] = value
            return branch
        if component >= len(branch):
            branch.append(_value_from_path_and_leaf(rest, value))
        branch[component] = _set(branch[component], rest, value)
        return branch
    return _value_from_path_and_leaf(path, value)


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return format(Decimal(repr(value)).normalize(), "f")


def to_bytes(value: Any) -> bytes:
    """Convert a leaf value to the bytes used for MAC computation."""
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, bool):
        return b"True" if value else b"False"
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, float):
        return _format_float(value).encode("ascii")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, Comment):
        return to_bytes(value.value)
    raise TypeError(f"Could not convert unknown type {type(value).__name__} to bytes")


def emit_as_map(branches: Iterable[TreeBranch]) -> dict[str, Any]:
    """Merge the branches into one plain dict, dropping comments."""
    data: dict[str, Any] = {}
    for branch in branches:
        for item in branch:
            if isinstance(item.key, Comment):
                continue
            if not isinstance(item.key, str):
                raise TypeError(f"tree contains a non-string key: {item.key!r}")
            value = item.value
            if isinstance(value, TreeBranch):
                value = emit_as_map([value])
            data[item.key] = value
    return data