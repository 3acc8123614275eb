"""The stored form of document metadata and its conversion to and from
the in-memory :class:`~secretfile.crypt.Metadata`.

The stored form stays stable across versions so that files written by
older versions can still be read.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Union

from secretfile.crypt import Metadata
from secretfile.tree import DEFAULT_UNENCRYPTED_SUFFIX, SopsError

__all__ = [
    "PgpKey",
    "KmsKey",
    "GcpKmsKey",
    "AzureKeyVaultKey",
    "VaultKey",
    "AgeKey",
    "StoredMetadata",
    "metadata_from_internal",
    "metadata_to_internal",
    "metadata_to_dict",
    "metadata_from_dict",
]


@dataclass
class PgpKey:
    """A data key encrypted with a PGP key."""

    fingerprint: str = ""
    encrypted_data_key: str = ""
    created_at: str = ""


@dataclass
class KmsKey:
    """A data key encrypted with an AWS KMS key."""

    arn: str = ""
    role: str = ""
    context: dict[str, str | None] | None = None
    created_at: str = ""
    encrypted_data_key: str = ""
    aws_profile: str = ""


@dataclass
class GcpKmsKey:
    """A data key encrypted with a GCP KMS key."""

    resource_id: str = ""
    created_at: str = ""
    encrypted_data_key: str = ""


@dataclass
class AzureKeyVaultKey:
    """A data key encrypted with an Azure Key Vault key."""

    vault_url: str = ""
    name: str = ""
    version: str = ""
    created_at: str = ""
    encrypted_data_key: str = ""


@dataclass
class VaultKey:
    """A data key encrypted with a HashiCorp Vault transit key."""

    vault_address: str = ""
    engine_path: str = ""
    key_name: str = ""
    created_at: str = ""
    encrypted_data_key: str = ""


@dataclass
class AgeKey:
    """A data key encrypted to an age recipient."""

    recipient: str = ""
    encrypted_data_key: str = ""


MasterKey = Union[PgpKey, KmsKey, GcpKmsKey, AzureKeyVaultKey, VaultKey, AgeKey]


@dataclass
class StoredMetadata:
    """Metadata as it is written into encrypted files."""

    shamir_threshold: int = 0
    key_groups: list[list[MasterKey]] = field(default_factory=list)
    kms_keys: list[KmsKey] = field(default_factory=list)
    gcp_kms_keys: list[GcpKmsKey] = field(default_factory=list)
    azure_kv_keys: list[AzureKeyVaultKey] = field(default_factory=list)
    vault_keys: list[VaultKey] = field(default_factory=list)
    age_keys: list[AgeKey] = field(default_factory=list)
    last_modified: str = ""
    message_authentication_code: str = ""
    pgp_keys: list[PgpKey] = field(default_factory=list)
    unencrypted_suffix: str = ""
    encrypted_suffix: str = ""
    unencrypted_regex: str = ""
    encrypted_regex: str = ""
    version: str = ""


# Stored field name, attribute name, and whether an empty value is omitted.
_KEY_FIELDS: dict[type, tuple[tuple[str, str, bool], ...]] = {
    PgpKey: (
        ("created_at", "created_at", False),
        ("enc", "encrypted_data_key", False),
        ("fp", "fingerprint", False),
    ),
    KmsKey: (
        ("arn", "arn", False),
        ("role", "role", True),
        ("context", "context", True),
        ("created_at", "created_at", False),
        ("enc", "encrypted_data_key", False),
        ("aws_profile", "aws_profile", False),
    ),
    GcpKmsKey: (
        ("resource_id", "resource_id", False),
        ("created_at", "created_at", False),
        ("enc", "encrypted_data_key", False),
    ),
    VaultKey: (
        ("vault_address", "vault_address", False),
        ("engine_path", "engine_path", False),
        ("key_name", "key_name", False),
        ("created_at", "created_at", False),
        ("enc", "encrypted_data_key", False),
    ),
    AzureKeyVaultKey: (
        ("vault_url", "vault_url", False),
        ("name", "name", False),
        ("version", "version", False),
        ("created_at", "created_at", False),
        ("enc", "encrypted_data_key", False),
    ),
    AgeKey: (
        ("recipient", "recipient", False),
        ("enc", "encrypted_data_key", False),
    ),
}

# Key kinds in the order in which they join an in-memory key group.
_KINDS: tuple[tuple[str, type, str], ...] = (
    ("kms", KmsKey, "kms_keys"),
    ("gcp_kms", GcpKmsKey, "gcp_kms_keys"),
    ("azure_kv", AzureKeyVaultKey, "azure_kv_keys"),
    ("hc_vault", VaultKey, "vault_keys"),
    ("pgp", PgpKey, "pgp_keys"),
    ("age", AgeKey, "age_keys"),
)
_KIND_RANK = {cls: rank for rank, (_, cls, _) in enumerate(_KINDS)}

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(\.\d+)?(Z|[+-]\d{2}:\d{2})"
)
_ZERO_TIME = "0001-01-01T00:00:00Z"


def _parse_rfc3339(text: str) -> datetime:
    match = _RFC3339.fullmatch(text)
    if match is None:
        raise ValueError(f"parsing time {text!r} as RFC3339: invalid format")
    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    fraction, zone = match.group(7), match.group(8)
    micro = int((fraction[1:] + "000000")[:6]) if fraction else 0
    if zone == "Z":
        tz = timezone.utc
    else:
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        if hours > 23 or minutes > 59:
            raise ValueError(f"parsing time {text!r} as RFC3339: time zone offset out of range")
        offset = timedelta(hours=hours, minutes=minutes)
        tz = timezone(offset if zone[0] == "+" else -offset)
    try:
        return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)
    except ValueError as err:
        raise ValueError(f"parsing time {text!r} as RFC3339: {err}") from err


def _format_rfc3339(moment: datetime | None) -> str:
    if moment is None:
        return _ZERO_TIME
    offset = moment.utcoffset() or timedelta(0)
    stamp = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    total_minutes = int(offset.total_seconds()) // 60
    if total_minutes == 0:
        return stamp + "Z"
    sign = "+" if total_minutes > 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{stamp}{sign}{hours:02d}:{minutes:02d}"


def _kind_of(key: Any) -> tuple[str, type, str] | None:
    for kind in _KINDS:
        if isinstance(key, kind[1]):
            return kind
    return None


def _key_to_dict(key: MasterKey) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for stored_name, attr, omit_empty in _KEY_FIELDS[type(key)]:
        value = getattr(key, attr)
        if omit_empty and not value:
            continue
        out[stored_name] = dict(value) if isinstance(value, dict) else value
    return out


def _check_context(value: Any) -> dict[str, str | None]:
    if not isinstance(value, Mapping) or not all(
        isinstance(k, str) and (v is None or isinstance(v, str)) for k, v in value.items()
    ):
        raise TypeError("metadata field 'context': expected a mapping of strings")
    return dict(value)


def _key_from_dict(cls: type, data: Any) -> MasterKey:
    if not isinstance(data, Mapping):
        raise TypeError(f"expected a mapping for a key entry, got {type(data).__name__}")
    values: dict[str, Any] = {}
    for stored_name, attr, _ in _KEY_FIELDS[cls]:
        value = data.get(stored_name)
        if value is None:
            continue
        if attr == "context":
            values[attr] = _check_context(value)
        elif isinstance(value, str):
            values[attr] = value
        else:
            raise TypeError(
                f"metadata field {stored_name!r}: expected a string, got {type(value).__name__}"
            )
    return cls(**values)


def _keys_to_list(keys: list[Any]) -> list[dict[str, Any]] | None:
    return [_key_to_dict(key) for key in keys] if keys else None


def _group_to_dict(group: list[MasterKey]) -> dict[str, Any]:
    by_kind: dict[str, list[Any]] = {name: [] for name, _, _ in _KINDS}
    for key in group:
        kind = _kind_of(key)
        if kind is None:
            raise TypeError(f"unsupported master key type: {type(key).__name__}")
        by_kind[kind[0]].append(key)
    out: dict[str, Any] = {}
    for name in ("pgp", "kms", "gcp_kms", "azure_kv"):
        if by_kind[name]:
            out[name] = _keys_to_list(by_kind[name])
    out["hc_vault"] = _keys_to_list(by_kind["hc_vault"])
    out["age"] = _keys_to_list(by_kind["age"])
    return out


def metadata_to_dict(stored: StoredMetadata) -> dict[str, Any]:
    """Return the stored metadata as plain data, in the order files use."""
    out: dict[str, Any] = {}
    if stored.shamir_threshold:
        out["shamir_threshold"] = stored.shamir_threshold
    if stored.key_groups:
        out["key_groups"] = [_group_to_dict(group) for group in stored.key_groups]
    out["kms"] = _keys_to_list(stored.kms_keys)
    out["gcp_kms"] = _keys_to_list(stored.gcp_kms_keys)
    out["azure_kv"] = _keys_to_list(stored.azure_kv_keys)
    out["hc_vault"] = _keys_to_list(stored.vault_keys)
    out["age"] = _keys_to_list(stored.age_keys)
    out["lastmodified"] = stored.last_modified
    out["mac"] = stored.message_authentication_code
    out["pgp"] = _keys_to_list(stored.pgp_keys)
    for name, value in (
        ("unencrypted_suffix", stored.unencrypted_suffix),
        ("encrypted_suffix", stored.encrypted_suffix),
        ("unencrypted_regex", stored.unencrypted_regex),
        ("encrypted_regex", stored.encrypted_regex),
    ):
        if value:
            out[name] = value
    out["version"] = stored.version
    return out


def _str_field(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"metadata field {name!r}: expected a string, got {type(value).__name__}")
    return value


def _int_field(data: Mapping[str, Any], name: str) -> int:
    value = data.get(name)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"metadata field {name!r}: expected a number, got {type(value).__name__}")
    if isinstance(value, float) and not value.is_integer():
        raise TypeError(f"metadata field {name!r}: expected an integer, got {value!r}")
    return int(value)


def _list_field(data: Mapping[str, Any], name: str) -> list[Any]:
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"metadata field {name!r}: expected a list, got {type(value).__name__}")
    return value


def _keys_from(data: Mapping[str, Any], name: str, cls: type) -> list[Any]:
    return [_key_from_dict(cls, entry) for entry in _list_field(data, name)]


def _group_from_dict(data: Any) -> list[MasterKey]:
    if not isinstance(data, Mapping):
        raise TypeError(f"expected a mapping for a key group, got {type(data).__name__}")
    group: list[MasterKey] = []
    for name, cls, _ in _KINDS:
        group.extend(_keys_from(data, name, cls))
    return group


def metadata_from_dict(data: Mapping[str, Any]) -> StoredMetadata:
    """Read stored metadata from plain data; missing fields take empty values."""
    if not isinstance(data, Mapping):
        raise TypeError(f"expected a mapping for metadata, got {type(data).__name__}")
    keys = {attr: _keys_from(data, name, cls) for name, cls, attr in _KINDS}
    return StoredMetadata(
        shamir_threshold=_int_field(data, "shamir_threshold"),
        key_groups=[_group_from_dict(group) for group in _list_field(data, "key_groups")],
        last_modified=_str_field(data, "lastmodified"),
        message_authentication_code=_str_field(data, "mac"),
        unencrypted_suffix=_str_field(data, "unencrypted_suffix"),
        encrypted_suffix=_str_field(data, "encrypted_suffix"),
        unencrypted_regex=_str_field(data, "unencrypted_regex"),
        encrypted_regex=_str_field(data, "encrypted_regex"),
        version=_str_field(data, "version"),
        **keys,
    )


def metadata_from_internal(metadata: Metadata) -> StoredMetadata:
    """Convert in-memory metadata to the form written into files."""
    keys: dict[str, Any] = {}
    key_groups: list[list[MasterKey]] = []
    if len(metadata.key_groups) == 1:
        group = metadata.key_groups[0]
        for _, cls, attr in _KINDS:
            keys[attr] = [dataclasses.replace(key) for key in group if isinstance(key, cls)]
    else:
        key_groups = [
            [dataclasses.replace(key) for key in group if _kind_of(key) is not None]
            for group in metadata.key_groups
        ]
    return StoredMetadata(
        shamir_threshold=metadata.shamir_threshold,
        key_groups=key_groups,
        last_modified=_format_rfc3339(metadata.last_modified),
        message_authentication_code=metadata.message_authentication_code,
        unencrypted_suffix=metadata.unencrypted_suffix,
        encrypted_suffix=metadata.encrypted_suffix,
        unencrypted_regex=metadata.unencrypted_regex,
        encrypted_regex=metadata.encrypted_regex,
        version=metadata.version,
        **keys,
    )


def _internal_group(keys: list[MasterKey]) -> list[MasterKey]:
    group: list[MasterKey] = []
    for key in sorted(keys, key=lambda k: _KIND_RANK.get(type(k), len(_KINDS))):
        if _kind_of(key) is None:
            raise TypeError(f"unsupported master key type: {type(key).__name__}")
        if not isinstance(key, AgeKey):
            _parse_rfc3339(key.created_at)
        group.append(dataclasses.replace(key))
    return group


def _internal_key_groups(stored: StoredMetadata) -> list[list[MasterKey]]:
    top_level = [key for _, _, attr in _KINDS for key in getattr(stored, attr)]
    if top_level:
        return [_internal_group(top_level)]
    if stored.key_groups:
        return [_internal_group(list(group)) for group in stored.key_groups]
    raise SopsError("No keys found in file")


def metadata_to_internal(stored: StoredMetadata) -> Metadata:
    """Convert stored metadata to the in-memory form, checking it as it goes."""
    last_modified = _parse_rfc3339(stored.last_modified)
    groups = _internal_key_groups(stored)

    rules = [
        stored.unencrypted_suffix,
        stored.encrypted_suffix,
        stored.unencrypted_regex,
        stored.encrypted_regex,
    ]
    rule_count = sum(1 for rule in rules if rule)
    if rule_count > 1:
        raise SopsError(
            "Cannot use more than one of encrypted_suffix, unencrypted_suffix, "
            "encrypted_regex or unencrypted_regex in the same file"
        )
    unencrypted_suffix = stored.unencrypted_suffix
    if rule_count == 0:
        unencrypted_suffix = DEFAULT_UNENCRYPTED_SUFFIX

    return Metadata(
        last_modified=last_modified,
        unencrypted_suffix=unencrypted_suffix,
        encrypted_suffix=stored.encrypted_suffix,
        unencrypted_regex=stored.unencrypted_regex,
        encrypted_regex=stored.encrypted_regex,
        message_authentication_code=stored.message_authentication_code,
        version=stored.version,
        key_groups=groups,
        shamir_threshold=stored.shamir_threshold,
    )