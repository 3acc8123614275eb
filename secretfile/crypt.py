"""Encryption and decryption of whole document trees."""

from __future__ import annotations

import hashlib
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from secretfile.tree import Comment, SopsError, TreeBranch, TreeItem, to_bytes

__all__ = ["Cipher", "Metadata", "Tree"]

log = logging.getLogger(__name__)

_Leaf = Callable[[Any, list[str]], Any]


class Cipher(ABC):
    """Encrypts and decrypts single values with a data key.

    A cipher must be able to decrypt every value it encrypts.
    """

    @abstractmethod
    def encrypt(self, plaintext: Any, key: bytes, additional_data: str) -> str:
        """Encrypt ``plaintext`` with ``key``, authenticating ``additional_data``."""

    @abstractmethod
    def decrypt(self, ciphertext: str, key: bytes, additional_data: str) -> Any:
        """Decrypt ``ciphertext`` with ``key``, authenticating ``additional_data``."""


@dataclass
class Metadata:
    """Encryption and integrity information about a document."""

    last_modified: datetime | None = None
    unencrypted_suffix: str = ""
    encrypted_suffix: str = ""
    unencrypted_regex: str = ""
    encrypted_regex: str = ""
    message_authentication_code: str = ""
    version: str = ""
    key_groups: list[list[Any]] = field(default_factory=list)
    # Number of key groups needed to recover the data key.
    shamir_threshold: int = 0
    # The decrypted data key, once known.
    data_key: bytes | None = None

    def master_key_count(self) -> int:
        """Return the number of master keys across all key groups."""
        return sum(len(group) for group in self.key_groups)

    def _encryption_rule(self) -> Callable[[list[str]], bool]:
        unencrypted_re = _compile(self.unencrypted_regex)
        encrypted_re = _compile(self.encrypted_regex)

        def should_encrypt(path: list[str]) -> bool:
            encrypted = True
            if self.unencrypted_suffix and any(
                p.endswith(self.unencrypted_suffix) for p in path
            ):
                encrypted = False
            if self.encrypted_suffix:
                encrypted = any(p.endswith(self.encrypted_suffix) for p in path)
            if self.unencrypted_regex and any(_matches(unencrypted_re, p) for p in path):
                encrypted = False
            if self.encrypted_regex:
                encrypted = any(_matches(encrypted_re, p) for p in path)
            return encrypted

        return should_encrypt


def _compile(pattern: str) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error:
        # An invalid expression simply never matches.
        return None


def _matches(pattern: re.Pattern[str] | None, text: str) -> bool:
    return pattern is not None and pattern.search(text) is not None


def _walk_value(value: Any, path: list[str], on_leaf: _Leaf) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return on_leaf(bytes(value).decode("utf-8", errors="replace"), path)
    if isinstance(value, (str, bool, int, float, Comment)):
        return on_leaf(value, path)
    if isinstance(value, TreeBranch):
        return _walk_branch(value, path, on_leaf)
    if isinstance(value, list):
        for index, item in enumerate(value):
            value[index] = _walk_value(item, path, on_leaf)
        return value
    if value is None:
        # Nothing to encrypt or decrypt in an empty value.
        return None
    raise SopsError(f"Cannot walk value, unknown type: {type(value).__name__}")


def _walk_branch(branch: TreeBranch, path: list[str], on_leaf: _Leaf) -> TreeBranch:
    for item in branch:
        if isinstance(item.key, Comment):
            result = _walk_value(item.key, path, on_leaf)
            if isinstance(result, Comment):
                item.key = result
            elif isinstance(result, str):
                item.key = Comment(result)
            else:
                raise SopsError(
                    "walking a Comment should give either Comment or string, "
                    f"got {type(result).__name__}"
                )
            continue
        if not isinstance(item.key, str):
            raise SopsError(
                f"Tree contains a non-string key (type {type(item.key).__name__}): "
                f"{item.key!r}. Only string keys are supported"
            )
        item.value = _walk_value(item.value, [*path, item.key], on_leaf)
    return branch


def _path_string(path: Sequence[str]) -> str:
    return ":".join(path) + ":"


@dataclass
class Tree:
    """A document: its data branches plus its metadata."""

    branches: list[TreeBranch] = field(default_factory=list)
    metadata: Metadata = field(default_factory=Metadata)
    # Path of the file the tree was read from.
    file_path: str = ""

    def _walk(self, on_leaf: _Leaf) -> None:
        for branch in self.branches:
            try:
                _walk_branch(branch, [], on_leaf)
            except SopsError as err:
                raise SopsError(f"Error walking tree: {err}") from err

    def encrypt(self, key: bytes, cipher: Cipher) -> str:
        """Encrypt the selected values in place and return the MAC of the plaintext."""
        log.info("Encrypting tree (file=%s)", self.file_path)
        digest = hashlib.sha512()
        should_encrypt = self.metadata._encryption_rule()

        def on_leaf(value: Any, path: list[str]) -> Any:
            if not isinstance(value, Comment):
                try:
                    digest.update(to_bytes(value))
                except TypeError as err:
                    raise SopsError(f"Could not convert {value!r} to bytes: {err}") from err
            if not should_encrypt(path):
                return value
            try:
                return cipher.encrypt(value, key, _path_string(path))
            except Exception as err:
                raise SopsError(f"Could not encrypt value: {err}") from err

        self._walk(on_leaf)
        return digest.hexdigest().upper()

    def decrypt(self, key: bytes, cipher: Cipher) -> str:
        """Decrypt the selected values in place and return the MAC of the plaintext."""
        log.debug("Decrypting tree (file=%s)", self.file_path)
        digest = hashlib.sha512()
        should_encrypt = self.metadata._encryption_rule()

        def on_leaf(value: Any, path: list[str]) -> Any:
            result = value
            if should_encrypt(path):
                additional_data = _path_string(path)
                if isinstance(value, Comment):
                    try:
                        result = cipher.decrypt(value.value, key, additional_data)
                    except Exception:
                        # Comments written by older versions were never encrypted.
                        log.warning(
                            "Found possibly unencrypted comment in file (comment=%r). "
                            "This is to be expected if the file being decrypted was "
                            "created with an older version of SOPS.",
                            value.value,
                        )
                        result = value
                else:
                    if not isinstance(value, str):
                        raise SopsError(
                            f"Could not decrypt value: expected a string, "
                            f"got {type(value).__name__}"
                        )
                    try:
                        result = cipher.decrypt(value, key, additional_data)
                    except Exception as err:
                        raise SopsError(f"Could not decrypt value: {err}") from err
            if not isinstance(result, Comment):
                try:
                    digest.update(to_bytes(result))
                except TypeError as err:
                    raise SopsError(f"Could not convert {value!r} to bytes: {err}") from err
            return result

        self._walk(on_leaf)
        return digest.hexdigest().upper()


# Re-exported for callers that build trees alongside this module.
_ = TreeItem