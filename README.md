# secretfile

`secretfile` keeps structured documents such as JSON or dotenv files with
their values encrypted one by one. Keys and layout stay readable. Each leaf
value is encrypted with a data key through a cipher that you supply. Walking
the tree also produces a message authentication code (MAC) that covers the
values and their order.

## Modules

- `secretfile.tree` holds the ordered document model.
  - A `TreeBranch` is a list of `TreeItem(key, value)` entries.
  - A `Comment` can stand in place of a key, or as an item in a list.
  - `TreeBranch.set(path, value)` writes a value at a path of keys and list
    positions. It creates any branches and lists that are missing.
  - `TreeBranch.truncate(path)` returns the part of the tree found at a path.
    A missing key raises `KeyError`. A position past the end of a list raises
    `IndexError`.
  - `to_bytes(value)` converts a leaf value to the bytes that go into the MAC.
    Booleans become `True` or `False`, and floats are written without an
    exponent.
  - `emit_as_map(branches)` merges branches into one plain `dict` and drops
    comments.
  - Errors: `SopsError`, `MetadataNotFoundError` and `MacMismatchError`.
- `secretfile.crypt` defines `Tree`, `Metadata` and the abstract `Cipher`.
  - `Tree.encrypt(key, cipher)` and `Tree.decrypt(key, cipher)` change the
    tree in place. Each returns the MAC of the plaintext as upper-case hex
    SHA-512.
  - The cipher receives the key path joined with `:` plus a trailing `:` as
    additional data.
  - `Metadata` selects which values stay in clear text. It takes one of four
    rules: `unencrypted_suffix`, `encrypted_suffix`, `unencrypted_regex` or
    `encrypted_regex`. The regexes are searched, not anchored.
  - Comments are encrypted but are not part of the MAC. A comment that fails
    to decrypt is left as it is.
  - `Metadata.master_key_count()` counts the keys in all key groups.
- `secretfile.flatten` converts between nested and flat mappings.
  - `flatten` turns a nested mapping into a flat one. It joins keys with
    `__map_` for mappings and `__list_` for list positions.
  - `unflatten` rebuilds the nested mapping.
  - `tokenize` splits a flat key into `MapToken` and `ListToken` steps.
- `secretfile.metadata` handles the stored form of the metadata.
  - `StoredMetadata` holds the metadata together with the key records
    `PgpKey`, `KmsKey`, `GcpKmsKey`, `AzureKeyVaultKey`, `VaultKey` and
    `AgeKey`.
  - `metadata_from_internal` and `metadata_to_internal` convert to and from
    `Metadata`.
  - `metadata_to_internal` checks the stored form:
    - RFC 3339 timestamps must parse.
    - At least one key must be present.
    - At most one clear-text rule may be set. When none is set, the
      `_unencrypted` suffix is used.
  - `metadata_to_dict` and `metadata_from_dict` convert to and from plain
    data, using the field names that files use (`mac`, `lastmodified`, `kms`,
    `pgp`, `age` and so on).
- `secretfile.json_store`:
  - `JsonStore` reads and writes JSON objects.
    - It keeps key order and duplicate keys.
    - It reads integers as floats.
    - It writes JSON indented with tabs.
    - Encrypted files carry their metadata under a top-level `sops` key.
  - `BinaryStore` wraps arbitrary content as a single `data` value in that
    JSON envelope.
- `secretfile.dotenv_store`: `DotenvStore` reads and writes `KEY=value` lines.
  - Lines that start with `#` are comments.
  - Newlines inside values are escaped as `\n`.
  - Metadata is written as flattened entries prefixed with `sops_`, in sorted
    order.
- `secretfile.examples` provides `example_complex_tree`, `example_simple_tree`
  and `example_flat_tree`. The stores' `emit_example` methods use them.

## Installing

```
pip install .
```

To install with the test requirements:

```
pip install .[test]
```

## Encrypting a document

```python
from secretfile.crypt import Cipher, Metadata, Tree
from secretfile.json_store import JsonStore
from secretfile.tree import to_bytes


class ReverseCipher(Cipher):
    """A toy cipher for demonstration only."""

    def encrypt(self, plaintext, key, additional_data):
        return to_bytes(plaintext).decode()[::-1]

    def decrypt(self, ciphertext, key, additional_data):
        return ciphertext[::-1]


data_key = b"placeholder"
store = JsonStore()
branches = store.load_plain_file(b'{"user": "alice", "note_unencrypted": "kept"}')
tree = Tree(branches=branches, metadata=Metadata(unencrypted_suffix="_unencrypted"))

mac = tree.encrypt(data_key, ReverseCipher())
print(store.emit_plain_file(tree.branches).decode())
# {
# 	"user": "ecila",
# 	"note_unencrypted": "kept"
# }

assert tree.decrypt(data_key, ReverseCipher()) == mac
```

## Flattening

```python
from secretfile.flatten import flatten, unflatten

flat = flatten({"a": {"b": 1}, "c": [2]})
# {"a__map_b": 1, "c__list_0": 2}
assert unflatten(flat) == {"a": {"b": 1}, "c": [2]}
```

## What the package does not do

- It ships no cipher. `Cipher` is an interface that you implement.
- It does not generate data keys.
- It does not split data keys across key groups and does not recover them.
  `Metadata.key_groups`, `Metadata.shamir_threshold` and `Metadata.data_key`
  are stored and converted, but nothing acts on them.
- The key records in `secretfile.metadata` are plain data. Nothing contacts
  PGP, age, or any cloud or Vault key service.
- The MAC is returned to you. Checking it against
  `Metadata.message_authentication_code` is up to the caller.
- There is no command-line program. The only stores are the JSON, binary and
  dotenv stores.

## Running the tests

```
pytest
```