"""Reading and writing of JSON documents, and of binary data kept in a
JSON envelope."""

from __future__ import annotations

import base64
import json
from collections.abc import Sequence
from decimal import Decimal
from typing import Any, Union

from secretfile.crypt import Tree
from secretfile.examples import example_complex_tree
from secretfile.metadata import (
    StoredMetadata,
    metadata_from_dict,
    metadata_from_internal,
    metadata_to_dict,
    metadata_to_internal,
)
from secretfile.tree import Comment, MetadataNotFoundError, SopsError, TreeBranch, TreeItem

__all__ = ["JsonStore", "BinaryStore"]

_OLD_VERSION_MESSAGE = (
    "SOPS versions higher than 2.0.10 can not automatically decrypt JSON files "
    "created with SOPS 1.x. In order to be able to decrypt this file, you can either edit it "
    "manually and make sure the JSON value under `sops -> version` is a string and not a "
    "number, or you can rotate the file's key with any version of SOPS between 2.0 and 2.0.10 "
    "using `sops -r your_file.json`"
)

_Input = Union[bytes, bytearray, str]


def _branch_from_pairs(pairs: list[tuple[str, Any]]) -> TreeBranch:
    return TreeBranch(TreeItem(key, value) for key, value in pairs)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid character {name!r} looking for beginning of value")


_DECODER = json.JSONDecoder(
    object_pairs_hook=_branch_from_pairs,
    parse_int=float,
    parse_constant=_reject_constant,
)


def _parse(data: _Input) -> TreeBranch:
    """Parse a JSON object into a branch, keeping key order and duplicates."""
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    text = text.lstrip(" \t\r\n")
    if not text:
        raise SopsError("unexpected end of JSON input")
    try:
        value, _ = _DECODER.raw_decode(text)
    except ValueError as err:
        raise SopsError(str(err)) from err
    if not isinstance(value, TreeBranch):
        raise SopsError(f"Expected JSON object, got {type(value).__name__} instead")
    return value


def _marshal_string(text: str) -> str:
    text = text.encode("utf-8", "surrogatepass").decode("utf-8", "replace")
    out = json.dumps(text, ensure_ascii=False)
    for char, escape in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        out = out.replace(char, escape)
    return out


def _format_float(value: float) -> str:
    if value != value or value in (float("inf"), float("-inf")):
        raise ValueError(f"json: unsupported value: {value!r}")
    magnitude = abs(value)
    if magnitude != 0 and (magnitude < 1e-6 or magnitude >= 1e21):
        mantissa, exponent = repr(value).split("e")
        sign, digits = exponent[0], exponent[1:]
        if sign == "-":
            digits = digits.lstrip("0") or "0"
        return f"{mantissa}e{sign}{digits}"
    return format(Decimal(repr(value)).normalize(), "f")


def _encode_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, str):
        return _marshal_string(value)
    if isinstance(value, (bytes, bytearray)):
        return _marshal_string(base64.b64encode(bytes(value)).decode("ascii"))
    raise TypeError(f"json: unsupported type: {type(value).__name__}")


def _encode_block(open_: str, close: str, entries: list[str], depth: int) -> str:
    if not entries:
        return open_ + close
    inner = "\t" * (depth + 1)
    body = ",\n".join(inner + entry for entry in entries)
    return f"{open_}\n{body}\n{chr(9) * depth}{close}"


def _encode(value: Any, depth: int) -> str:
    """Encode a tree value as tab-indented JSON."""
    if isinstance(value, TreeBranch):
        entries = []
        for item in value:
            if isinstance(item.key, Comment):
                continue
            if not isinstance(item.key, str):
                raise TypeError(f"Error encoding key {item.key!r}: keys must be strings")
            entries.append(f"{_marshal_string(item.key)}: {_encode(item.value, depth + 1)}")
        return _encode_block("{", "}", entries, depth)
    if isinstance(value, (list, tuple)):
        entries = [_encode(item, depth + 1) for item in value if not isinstance(item, Comment)]
        return _encode_block("[", "]", entries, depth)
    if isinstance(value, StoredMetadata):
        return _encode(metadata_to_dict(value), depth)
    if isinstance(value, Comment):
        return _encode({"Value": value.value}, depth)
    if isinstance(value, dict):
        entries = [
            f"{_marshal_string(str(key))}: {_encode(child, depth + 1)}"
            for key, child in value.items()
        ]
        return _encode_block("{", "}", entries, depth)
    return _encode_scalar(value)


def _to_plain(value: Any) -> Any:
    if isinstance(value, TreeBranch):
        return {
            item.key: _to_plain(item.value)
            for item in value
            if isinstance(item.key, str)
        }
    if isinstance(value, list):
        return [_to_plain(item) for item in value]
    return value


class JsonStore:
    """Loads and emits JSON documents, keeping key order."""

    def tree_branch_from_json(self, data: _Input) -> TreeBranch:
        """Parse a JSON object into a branch; anything else is an error."""
        return _parse(data)

    def json_from_tree_branch(self, branch: TreeBranch) -> bytes:
        """Encode a branch as tab-indented JSON."""
        return _encode(branch, 0).encode("utf-8")

    def load_encrypted_file(self, data: _Input) -> Tree:
        """Load an encrypted document and split off its ``sops`` metadata."""
        try:
            branch = _parse(data)
        except SopsError as err:
            raise SopsError(f"Error unmarshalling input json: {err}") from err
        sops_values = [item.value for item in branch if item.key == "sops"]
        if not sops_values or sops_values[-1] is None:
            raise MetadataNotFoundError()
        raw = _to_plain(sops_values[-1])
        if not isinstance(raw, dict):
            raise SopsError(
                "Error unmarshalling input json: metadata must be an object, "
                f"got {type(raw).__name__}"
            )
        version = raw.get("version")
        if isinstance(version, (int, float)) and not isinstance(version, bool):
            raise SopsError(_OLD_VERSION_MESSAGE)
        try:
            stored = metadata_from_dict(raw)
        except TypeError as err:
            raise SopsError(f"Error unmarshalling input json: {err}") from err
        metadata = metadata_to_internal(stored)
        data_branch = TreeBranch(item for item in branch if item.key != "sops")
        return Tree(branches=[data_branch], metadata=metadata)

    def load_plain_file(self, data: _Input) -> list[TreeBranch]:
        """Load a plaintext document into a single branch."""
        try:
            return [_parse(data)]
        except SopsError as err:
            raise SopsError(f"Could not unmarshal input data: {err}") from err

    def emit_encrypted_file(self, tree: Tree) -> bytes:
        """Emit the first branch with the metadata appended under ``sops``."""
        if not tree.branches:
            raise SopsError("Error marshaling to json: no branch to emit")
        branch = TreeBranch(tree.branches[0])
        branch.append(TreeItem("sops", metadata_from_internal(tree.metadata)))
        try:
            return self.json_from_tree_branch(branch)
        except (TypeError, ValueError) as err:
            raise SopsError(f"Error marshaling to json: {err}") from err

    def emit_plain_file(self, branches: Sequence[TreeBranch]) -> bytes:
        """Emit the first branch as a plaintext document."""
        if not branches:
            raise SopsError("Error marshaling to json: no branch to emit")
        try:
            return self.json_from_tree_branch(branches[0])
        except (TypeError, ValueError) as err:
            raise SopsError(f"Error marshaling to json: {err}") from err

    def emit_value(self, value: Any) -> bytes:
        """Emit a single value as indented JSON."""
        return _encode(value, 0).encode("utf-8")

    def emit_example(self) -> bytes:
        """Emit the complex example document."""
        return self.emit_plain_file(example_complex_tree().branches)


class BinaryStore:
    """Keeps arbitrary data as a single ``data`` value in a JSON envelope."""

    def __init__(self) -> None:
        self._store = JsonStore()

    def load_encrypted_file(self, data: _Input) -> Tree:
        """Load the encrypted JSON envelope."""
        return self._store.load_encrypted_file(data)

    def load_plain_file(self, data: _Input) -> list[TreeBranch]:
        """Wrap the raw data in a branch with a single ``data`` item."""
        text = (
            bytes(data).decode("utf-8", "surrogateescape")
            if isinstance(data, (bytes, bytearray))
            else data
        )
        return [TreeBranch([TreeItem("data", text)])]

    def emit_encrypted_file(self, tree: Tree) -> bytes:
        """Emit the encrypted JSON envelope."""
        return self._store.emit_encrypted_file(tree)

    def emit_plain_file(self, branches: Sequence[TreeBranch]) -> bytes:
        """Return the raw data held under ``data``."""
        if branches:
            for item in branches[0]:
                if item.key == "data":
                    return str(item.value).encode("utf-8", "surrogateescape")
        raise SopsError("No binary data found in tree")

    def emit_value(self, value: Any) -> bytes:
        """Always fails: binary data has no structure to pick a value from."""
        raise SopsError(
            "Binary files are not structured and extracting a single value is not possible"
        )

    def emit_example(self) -> bytes:
        """Return the example binary content."""
        return b"Welcome to SOPS! Edit this file as you please!"