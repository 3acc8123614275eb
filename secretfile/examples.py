"""Example documents, used to seed new files in each format."""

from __future__ import annotations

from secretfile.crypt import Tree
from secretfile.tree import Comment, TreeBranch, TreeItem

__all__ = ["example_complex_tree", "example_simple_tree", "example_flat_tree"]

_WELCOME = "Welcome to SOPS! Edit this file as you please!"


def example_complex_tree() -> Tree:
    """Return a fresh example tree with lists, numbers and booleans."""
    return Tree(
        branches=[
            TreeBranch(
                [
                    TreeItem("hello", _WELCOME),
                    TreeItem("example_key", "example_value"),
                    TreeItem(Comment(" Example comment"), None),
                    TreeItem("example_array", ["example_value1", "example_value2"]),
                    TreeItem("example_number", 1234.56789),
                    TreeItem("example_booleans", [True, False]),
                ]
            )
        ]
    )


def example_simple_tree() -> Tree:
    """Return a fresh example tree with one nested branch of strings."""
    return Tree(
        branches=[
            TreeBranch(
                [
                    TreeItem(
                        "Welcome!",
                        TreeBranch(
                            [
                                TreeItem(Comment(" This is an example file."), None),
                                TreeItem("hello", _WELCOME),
                                TreeItem("example_key", "example_value"),
                            ]
                        ),
                    )
                ]
            )
        ]
    )


def example_flat_tree() -> Tree:
    """Return a fresh example tree with no nesting and only strings."""
    return Tree(
        branches=[
            TreeBranch(
                [
                    TreeItem(Comment(" This is an example file."), None),
                    TreeItem("hello", _WELCOME),
                    TreeItem("example_key", "example_value"),
                    TreeItem("example_multiline", "foo\nbar\nbaz"),
                ]
            )
        ]
    )