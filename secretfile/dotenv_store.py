"""Reading and writing of dotenv documents."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from secretfile.crypt import Tree
from secretfile.examples import example_flat_tree
from secretfile.flatten import flatten, unflatten
from secretfile.metadata import (
    StoredMetadata,
    metadata_from_dict,
    metadata_from_internal,
    metadata_to_dict,
    metadata_to_internal,
)
from secretfile.tree import Comment, TreeBranch, TreeItem

__all__ = ["SOPS_PREFIX", "DotenvStore"]

# Prefix of every metadata entry's key.
SOPS_PREFIX = "sops_"


def _metadata_to_flat(stored: StoredMetadata) -> dict[str, Any]:
    flat = flatten(metadata_to_dict(stored))
    return {
        key: value.replace("\n", "\\n") if isinstance(value, str) else value
        for key, value in flat.items()
    }


def _flat_to_metadata(flat: dict[str, Any]) -> StoredMetadata:
    restored = {
        key: value.replace("\\n", "\n") if isinstance(value, str) else value
        for key, value in flat.items()
    }
    return metadata_from_dict(unflatten(restored))


class DotenvStore:
    """Loads and emits ``KEY=value`` files; comment lines start with ``#``."""

    def load_encrypted_file(self, data: bytes) -> Tree:
        """Load an encrypted file, splitting off the ``sops_`` metadata entries."""
        branch = self.load_plain_file(data)[0]
        result = TreeBranch()
        metadata_entries: dict[str, Any] = {}
        for item in branch:
            if isinstance(item.key, str) and item.key.startswith(SOPS_PREFIX):
                metadata_entries[item.key[len(SOPS_PREFIX):]] = item.value
            else:
                result.append(item)
        metadata = metadata_to_internal(_flat_to_metadata(metadata_entries))
        return Tree(branches=[result], metadata=metadata)

    def load_plain_file(self, data: bytes) -> list[TreeBranch]:
        """Parse a plaintext file into a single branch."""
        branch = TreeBranch()
        for raw in data.split(b"\n"):
            if not raw:
                continue
            line = raw.decode("utf-8")
            if line.startswith("#"):
                branch.append(TreeItem(Comment(line[1:]), None))
                continue
            key, sep, value = line.partition("=")
            if not sep:
                raise ValueError(f"invalid dotenv input line: {line}")
            branch.append(TreeItem(key, value.replace("\\n", "\n")))
        return [branch]

    def emit_encrypted_file(self, tree: Tree) -> bytes:
        """Emit the tree's first branch followed by its metadata entries."""
        flat = _metadata_to_flat(metadata_from_internal(tree.metadata))
        first = tree.branches[0] if tree.branches else TreeBranch()
        branch = TreeBranch(first)
        branch.extend(
            TreeItem(SOPS_PREFIX + key, flat[key])
            for key in sorted(flat)
            if flat[key] is not None
        )
        return self.emit_plain_file([branch, *tree.branches[1:]])

    def emit_plain_file(self, branches: Sequence[TreeBranch]) -> bytes:
        """Emit the first branch as dotenv lines."""
        if not branches:
            raise ValueError("no branch to emit")
        lines = []
        for item in branches[0]:
            if isinstance(item.value, (list, TreeBranch)):
                raise TypeError(f"cannot use complex value in dotenv file: {item.value!r}")
            if isinstance(item.key, Comment):
                lines.append(f"#{item.key.value}\n")
                continue
            if not isinstance(item.value, str):
                raise TypeError(
                    f"dotenv values must be strings, got {type(item.value).__name__}"
                )
            lines.append(f"{item.key}={item.value.replace(chr(10), chr(92) + 'n')}\n")
        return "".join(lines).encode("utf-8")

    def emit_value(self, value: Any) -> bytes:
        """Emit a single string value."""
        if isinstance(value, str):
            return value.encode("utf-8")
        raise TypeError(
            f"the dotenv store only supports emitting strings, got {type(value).__name__}"
        )

    def emit_example(self) -> bytes:
        """Emit the flat example document."""
        return self.emit_plain_file(example_flat_tree().branches)