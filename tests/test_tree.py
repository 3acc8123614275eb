import pytest

from secretfile.tree import (
    Comment,
    MacMismatchError,
    MetadataNotFoundError,
    SopsError,
    TreeBranch,
    TreeItem,
    emit_as_map,
    to_bytes,
)


def test_truncate_tree():
    tree = TreeBranch(
        [
            TreeItem("foo", 2),
            TreeItem("bar", TreeBranch([TreeItem("foobar", [1, 2, 3, 4])])),
        ]
    )
    assert tree.truncate(["bar", "foobar", 2]) == 3


def test_truncate_missing_key():
    tree = TreeBranch([TreeItem("foo", 2)])
    with pytest.raises(KeyError):
        tree.truncate(["bar"])


def test_truncate_out_of_bounds():
    tree = TreeBranch([TreeItem("foo", [1])])
    with pytest.raises(IndexError):
        tree.truncate(["foo", 1])


def test_truncate_index_on_non_list():
    tree = TreeBranch([TreeItem("foo", "bar")])
    with pytest.raises(TypeError):
        tree.truncate(["foo", 0])


def test_set_new_key():
    branch = TreeBranch(
        [
            TreeItem(
                "foo",
                TreeBranch([TreeItem("bar", TreeBranch([TreeItem("baz", "foobar")]))]),
            )
        ]
    )
    result = branch.set(["foo", "bar", "foo"], "hello")
    assert result[0].value[0].value[1].value == "hello"


def test_set_new_branch():
    branch = TreeBranch([TreeItem("key", "value")])
    result = branch.set(["foo", "bar", "baz"], "hello")
    assert result == TreeBranch(
        [
            TreeItem("key", "value"),
            TreeItem(
                "foo",
                TreeBranch([TreeItem("bar", TreeBranch([TreeItem("baz", "hello")]))]),
            ),
        ]
    )


def test_set_array_deep_new():
    branch = TreeBranch([TreeItem("foo", ["one", "two"])])
    result = branch.set(["foo", 2, "bar"], "hello")
    assert result[0].value[2][0].value == "hello"


def test_set_new_key_deep():
    branch = TreeBranch([TreeItem("foo", "bar")])
    result = branch.set(["foo", "bar", "baz"], "hello")
    assert result[0].value[0].value[0].value == "hello"


def test_set_new_key_on_empty_branch():
    result = TreeBranch().set(["foo", "bar", "baz"], "hello")
    assert result[0].value[0].value[0].value == "hello"


def test_set_array():
    branch = TreeBranch([TreeItem("foo", ["one", "two", "three"])])
    result = branch.set(["foo", 0], "uno")
    assert result[0].value[0] == "uno"


def test_set_array_new():
    result = TreeBranch().set(["foo", 0, 0], "uno")
    assert result[0].value[0][0] == "uno"


def test_set_existing():
    branch = TreeBranch([TreeItem("foo", "foobar")])
    result = branch.set(["foo"], "bar")
    assert result[0].value == "bar"


def test_set_array_leaf_new_item():
    branch = TreeBranch([TreeItem("array", [])])
    result = branch.set(["array", 2], "hello")
    assert result == TreeBranch([TreeItem("array", ["hello"])])


def test_set_array_non_leaf():
    branch = TreeBranch([TreeItem("array", [1])])
    result = branch.set(["array", 0, "hello"], "hello")
    assert result == TreeBranch(
        [TreeItem("array", [TreeBranch([TreeItem("hello", "hello")])])]
    )


def test_set_integer_on_branch_leaves_it_unchanged():
    branch = TreeBranch([TreeItem("foo", "bar")])
    result = branch.set([0], "x")
    assert result == TreeBranch([TreeItem("foo", "bar")])


def test_set_does_not_match_comment_key():
    branch = TreeBranch([TreeItem(Comment("foo"), None)])
    result = branch.set(["foo"], "bar")
    assert result == TreeBranch([TreeItem(Comment("foo"), None), TreeItem("foo", "bar")])


def test_emit_as_map():
    branches = [
        TreeBranch([TreeItem("foobar", "barfoo"), TreeItem("number", 42)]),
        TreeBranch(
            [
                TreeItem(
                    "foo",
                    TreeBranch(
                        [TreeItem("bar", TreeBranch([TreeItem("baz", "foobar")]))]
                    ),
                )
            ]
        ),
    ]
    assert emit_as_map(branches) == {
        "foobar": "barfoo",
        "number": 42,
        "foo": {"bar": {"baz": "foobar"}},
    }


def test_emit_as_map_skips_comments():
    branches = [TreeBranch([TreeItem(Comment("note"), None), TreeItem("a", "b")])]
    assert emit_as_map(branches) == {"a": "b"}


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("hello", b"hello"),
        (5, b"5"),
        (-12, b"-12"),
        (True, b"True"),
        (False, b"False"),
        (2.12, b"2.12"),
        (1.0, b"1"),
        (1234.56789, b"1234.56789"),
        (1e16, b"10000000000000000"),
        (1e-05, b"0.00001"),
        (b"raw", b"raw"),
        (Comment("note"), b"note"),
    ],
)
def test_to_bytes(value, expected):
    assert to_bytes(value) == expected


def test_to_bytes_unknown_type():
    with pytest.raises(TypeError):
        to_bytes(None)


def test_error_messages():
    assert str(MacMismatchError()) == "MAC mismatch"
    assert str(MetadataNotFoundError()) == "sops metadata not found"
    with pytest.raises(SopsError):
        raise MetadataNotFoundError()