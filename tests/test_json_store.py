from datetime import datetime, timezone

import pytest

from secretfile.crypt import Metadata, Tree
from secretfile.json_store import BinaryStore, JsonStore
from secretfile.metadata import AgeKey
from secretfile.tree import Comment, MetadataNotFoundError, SopsError, TreeBranch, TreeItem


def branch(*pairs):
    return TreeBranch(TreeItem(key, value) for key, value in pairs)


GLOSSARY = """
{
   "glossary":{
      "title":"example glossary",
      "GlossDiv":{
         "title":"S",
         "GlossList":{
            "GlossEntry":{
               "ID":"SGML",
               "SortAs":"SGML",
               "GlossTerm":"Standard Generalized Markup Language",
               "Acronym":"SGML",
               "Abbrev":"ISO 8879:1986",
               "GlossDef":{
                  "para":"A meta-markup language, used to create markup languages such as DocBook.",
                  "GlossSeeAlso":[
                     "GML",
                     "XML"
                  ]
               },
               "GlossSee":"markup"
            }
         }
      }
   }
}"""


def test_decode_json():
    expected = branch(
        (
            "glossary",
            branch(
                ("title", "example glossary"),
                (
                    "GlossDiv",
                    branch(
                        ("title", "S"),
                        (
                            "GlossList",
                            branch(
                                (
                                    "GlossEntry",
                                    branch(
                                        ("ID", "SGML"),
                                        ("SortAs", "SGML"),
                                        ("GlossTerm", "Standard Generalized Markup Language"),
                                        ("Acronym", "SGML"),
                                        ("Abbrev", "ISO 8879:1986"),
                                        (
                                            "GlossDef",
                                            branch(
                                                (
                                                    "para",
                                                    "A meta-markup language, used to create "
                                                    "markup languages such as DocBook.",
                                                ),
                                                ("GlossSeeAlso", ["GML", "XML"]),
                                            ),
                                        ),
                                        ("GlossSee", "markup"),
                                    ),
                                )
                            ),
                        ),
                    ),
                ),
            ),
        )
    )
    assert JsonStore().tree_branch_from_json(GLOSSARY.encode()) == expected


def test_decode_simple_json_object():
    result = JsonStore().tree_branch_from_json(b'{"foo": "bar", "baz": 2}')
    assert result == branch(("foo", "bar"), ("baz", 2.0))
    assert isinstance(result[1].value, float)


def test_decode_number():
    with pytest.raises(SopsError):
        JsonStore().tree_branch_from_json(b"42")


def test_decode_nested_json_object():
    result = JsonStore().tree_branch_from_json(b'{"foo": {"foo": "bar"}}')
    assert result == branch(("foo", branch(("foo", "bar"))))


def test_decode_json_with_array():
    result = JsonStore().tree_branch_from_json(b'{"foo": {"foo": [1, 2, 3]}, "bar": "baz"}')
    assert result == branch(("foo", branch(("foo", [1.0, 2.0, 3.0]))), ("bar", "baz"))


def test_decode_json_array_of_objects():
    result = JsonStore().tree_branch_from_json(b'{"foo": [{"bar": "foo"}, {"foo": "bar"}]}')
    assert result == branch(("foo", [branch(("bar", "foo")), branch(("foo", "bar"))]))


def test_decode_json_array_of_arrays():
    result = JsonStore().tree_branch_from_json(b'{"foo": [[["foo", {"bar": "foo"}]]]}')
    assert result == branch(("foo", [[["foo", branch(("bar", "foo"))]]]))


def test_encode_simple_json():
    original = branch(("foo", "bar"), ("foo", 3.0), ("bar", False))
    store = JsonStore()
    out = store.json_from_tree_branch(original)
    assert store.tree_branch_from_json(out) == original


def test_encode_json_with_escaping():
    original = branch(("foo\\bar", "value"), ('a_key_with"quotes"', 4.0), ("baz\\\\foo", 2.0))
    store = JsonStore()
    out = store.json_from_tree_branch(original)
    assert store.tree_branch_from_json(out) == original


def test_encode_json_array_of_objects():
    tree = Tree(branches=[branch(("foo", [branch(("foo", 3), ("bar", False)), 2]))])
    expected = '{\n\t"foo": [\n\t\t{\n\t\t\t"foo": 3,\n\t\t\t"bar": false\n\t\t},\n\t\t2\n\t]\n}'
    assert JsonStore().emit_plain_file(tree.branches).decode() == expected


def test_encode_skips_comments():
    original = branch((Comment("note"), None), ("a", ["x", Comment("c"), "y"]))
    out = JsonStore().emit_plain_file([original])
    assert JsonStore().tree_branch_from_json(out) == branch(("a", ["x", "y"]))


def test_unmarshal_metadata_from_non_sops_file():
    with pytest.raises(MetadataNotFoundError):
        JsonStore().load_encrypted_file(b'{"hello": 2}')


def test_load_encrypted_file_rejects_numeric_version():
    with pytest.raises(SopsError) as info:
        JsonStore().load_encrypted_file(b'{"sops": {"version": 1.0}}')
    assert "SOPS 1.x" in str(info.value)


def test_load_encrypted_file_rejects_invalid_json():
    with pytest.raises(SopsError) as info:
        JsonStore().load_encrypted_file(b'{"sops": ')
    assert str(info.value).startswith("Error unmarshalling input json")


def test_encrypted_round_trip():
    metadata = Metadata(
        last_modified=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        unencrypted_suffix="_unencrypted",
        message_authentication_code="mac",
        version="3.8.0",
        key_groups=[[AgeKey(recipient="age1placeholder", encrypted_data_key="placeholder")]],
    )
    tree = Tree(branches=[branch(("foo", "bar"))], metadata=metadata)
    store = JsonStore()
    out = store.emit_encrypted_file(tree)
    assert len(tree.branches[0]) == 1
    loaded = store.load_encrypted_file(out)
    assert loaded.branches == [branch(("foo", "bar"))]
    assert loaded.metadata.key_groups == metadata.key_groups
    assert loaded.metadata.last_modified == metadata.last_modified
    assert loaded.metadata.version == "3.8.0"
    assert loaded.metadata.message_authentication_code == "mac"


def test_load_json_formatted_binary_file():
    branches = BinaryStore().load_plain_file(b'{"hello": 2}')
    assert branches[0][0].key == "data"
    assert branches[0][0].value == '{"hello": 2}'


def test_binary_round_trip_keeps_bytes():
    data = b"\x00\xff binary \xfe"
    store = BinaryStore()
    assert store.emit_plain_file(store.load_plain_file(data)) == data


def test_binary_emit_without_data_fails():
    with pytest.raises(SopsError):
        BinaryStore().emit_plain_file([branch(("other", "x"))])


def test_binary_emit_value_fails():
    with pytest.raises(SopsError):
        BinaryStore().emit_value("x")


def test_binary_example():
    assert BinaryStore().emit_example() == b"Welcome to SOPS! Edit this file as you please!"


def test_emit_value_string():
    assert JsonStore().emit_value("hello") == b'"hello"'


def test_emit_value_numbers():
    store = JsonStore()
    assert store.emit_value(3.0) == b"3"
    assert store.emit_value(1e-07) == b"1e-7"
    assert store.emit_value(1234.56789) == b"1234.56789"


def test_emit_value_escapes_html():
    assert JsonStore().emit_value("<a&b>") == b'"\\u003ca\\u0026b\\u003e"'


def test_emit_value_rejects_nan():
    with pytest.raises(ValueError):
        JsonStore().emit_value(float("nan"))


def test_emit_example_parses_back():
    store = JsonStore()
    parsed = store.tree_branch_from_json(store.emit_example())
    assert [item.key for item in parsed] == [
        "hello",
        "example_key",
        "example_array",
        "example_number",
        "example_booleans",
    ]
    assert parsed[4].value == [True, False]