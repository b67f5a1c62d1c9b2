"""Canonical JSON and SHA-256 helpers shared by write and verify paths."""

import hashlib
import json
from typing import Any, Optional, Union

HASH_PREFIX = "sha256:"


def canonicalize(value: Any) -> str:
    """Canonicalize a JSON-compatible value for consistent hashing.

    Keys are sorted at every depth and separators are compact, so two values
    that are equal as JSON always serialize to the same string no matter what
    order their keys were inserted in.
    """
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=str,
    )


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute bare hex SHA-256 of bytes or UTF-8 text."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def content_hash(data: Union[bytes, str]) -> str:
    """Compute prefixed content hash (``sha256:<hex>``)."""
    return f"{HASH_PREFIX}{sha256_hex(data)}"


def hash_canonical(value: Any) -> str:
    """Prefixed hash of the canonical serialization of ``value``."""
    return content_hash(canonicalize(value))


def strip_prefix(value: Optional[str]) -> Optional[str]:
    """Return bare hex from a possibly prefixed hash."""
    if not value:
        return None
    head, sep, tail = value.partition(":")
    if sep and head.lower() == "sha256":
        return tail
    return value


def normalize_hash(value: Optional[str]) -> Optional[str]:
    """Return ``sha256:<hex>`` for a bare or prefixed hash."""
    bare = strip_prefix(value)
    if not bare:
        return None
    return f"{HASH_PREFIX}{bare.lower()}"
