"""Flattening of nested mappings into single-level mappings and back.

Nested keys are joined with separators that record whether each level
was a mapping or a list, so that :func:`unflatten` can rebuild the
original structure.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

__all__ = [
    "MAP_SEPARATOR",
    "LIST_SEPARATOR",
    "MapToken",
    "ListToken",
    "flatten",
    "unflatten",
    "tokenize",
]

MAP_SEPARATOR = "__map_"
LIST_SEPARATOR = "__list_"

_SEPARATORS = re.compile(f"({re.escape(MAP_SEPARATOR)}|{re.escape(LIST_SEPARATOR)})")
_POSITION = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class MapToken:
    """A path step into a mapping."""

    key: str


@dataclass(frozen=True)
class ListToken:
    """A path step into a list."""

    position: int


Token = Union[MapToken, ListToken]


def _flatten_value(value: Any) -> dict[str, Any] | None:
    """Flatten a dict or list; return None for anything else."""
    if isinstance(value, dict):
        children = ((MAP_SEPARATOR + str(key), child) for key, child in value.items())
    elif isinstance(value, list):
        children = ((f"{LIST_SEPARATOR}{index}", child) for index, child in enumerate(value))
    else:
        return None
    flat: dict[str, Any] = {}
    for prefix, child in children:
        nested = _flatten_value(child)
        if nested is None:
            flat[prefix] = child
        else:
            flat.update((prefix + key, leaf) for key, leaf in nested.items())
    return flat


def flatten(mapping: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten a mapping with nested mappings and lists into a flat dict."""
    result: dict[str, Any] = {}
    for key, value in mapping.items():
        nested = _flatten_value(value)
        if nested is None:
            result[key] = value
        else:
            result.update((key + flat_key, leaf) for flat_key, leaf in nested.items())
    return result


def _position(text: str) -> int:
    # Malformed positions read as 0.
    return int(text) if _POSITION.fullmatch(text) else 0


def tokenize(path: str) -> list[Token]:
    """Split a flattened key into the path steps it encodes."""
    pieces = _SEPARATORS.split(path)
    tokens: list[Token] = [MapToken(pieces[0])]
    for separator, text in zip(pieces[1::2], pieces[2::2]):
        if separator == MAP_SEPARATOR:
            tokens.append(MapToken(text))
        else:
            tokens.append(ListToken(_position(text)))
    return tokens


def _descend(node: Any, token: Token, next_token: Token | None, value: Any) -> Any:
    """Process ``token`` under ``node`` and return the node for ``next_token``."""
    if isinstance(token, MapToken):
        slot: Any = token.key
        existing = node.get(slot)
    else:
        slot = token.position
        existing = node[slot]

    if next_token is None:
        node[slot] = value
        return None

    if isinstance(next_token, MapToken):
        if existing is None:
            existing = node[slot] = {}
        if not isinstance(existing, dict):
            raise ValueError(f"conflicting flattened keys at {slot!r}")
        return existing

    needed = next_token.position + 1
    if existing is None:
        existing = node[slot] = [None] * max(needed, 0)
    if not isinstance(existing, list):
        raise ValueError(f"conflicting flattened keys at {slot!r}")
    if len(existing) < needed:
        existing.extend([None] * (needed - len(existing)))
    return existing


def unflatten(mapping: Mapping[str, Any]) -> dict[str, Any]:
    """Rebuild the nested structure of a mapping produced by :func:`flatten`."""
    result: dict[str, Any] = {}
    for path, value in mapping.items():
        tokens = tokenize(path)
        node: Any = result
        for token, next_token in zip(tokens, [*tokens[1:], None]):
            node = _descend(node, token, next_token, value)
    return result