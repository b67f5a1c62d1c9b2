"""Proofs table schema versions.

The deployed ``proofs`` table may be any generation of the schema. The version
is resolved once per engine by inspecting the table's columns and is then
mapped to a fixed column set, so inserts never sniff columns per call.
"""

import logging
import weakref
from enum import Enum
from typing import FrozenSet, Optional

from sqlalchemy import JSON, BigInteger, Integer, String, column, inspect, table
from sqlalchemy.exc import NoSuchTableError

logger = logging.getLogger(__name__)

PROOFS_TABLE = "proofs"

_BASE = frozenset({"id", "subject_id", "path", "ts"})
_LEGACY = frozenset({"type", "sha256", "payload"})
_NORMALIZED = frozenset({"kind", "hash", "meta"})
_SCOPING = frozenset({"workspace_id", "created_by", "storage_key", "storage_provider"})


class ProofSchemaVersion(int, Enum):
    """Known generations of the proofs table, oldest first."""

    V1_LEGACY = 1  # type/sha256/payload
    V2_NORMALIZED = 2  # kind/hash/meta
    V3_DUAL = 3  # both column families
    V4_CURRENT = 4  # both families + workspace scoping and storage client columns

    @property
    def columns(self) -> FrozenSet[str]:
        return SCHEMA_COLUMNS[self]

    @property
    def has_legacy(self) -> bool:
        return "type" in self.columns

    @property
    def has_normalized(self) -> bool:
        return "kind" in self.columns

    @property
    def has_scoping(self) -> bool:
        return "storage_key" in self.columns


SCHEMA_COLUMNS = {
    ProofSchemaVersion.V1_LEGACY: _BASE | _LEGACY,
    ProofSchemaVersion.V2_NORMALIZED: _BASE | _NORMALIZED,
    ProofSchemaVersion.V3_DUAL: _BASE | _LEGACY | _NORMALIZED,
    ProofSchemaVersion.V4_CURRENT: _BASE | _LEGACY | _NORMALIZED | _SCOPING,
}


_COLUMN_TYPES = {
    "id": Integer,
    "ts": BigInteger,
    "meta": JSON,
}


def proofs_table(version: ProofSchemaVersion):
    """Lightweight table construct restricted to the version's columns."""
    return table(
        PROOFS_TABLE,
        *[column(name, _COLUMN_TYPES.get(name, String)) for name in sorted(version.columns)],
    )


def version_for_columns(present: FrozenSet[str]) -> Optional[ProofSchemaVersion]:
    """Richest schema version whose column set is fully present."""
    for version in sorted(ProofSchemaVersion, reverse=True):
        if version.columns <= present:
            return version
    return None


def resolve_schema_version(bind) -> Optional[ProofSchemaVersion]:
    """Inspect the database and return the proofs schema version, if any."""
    try:
        present = frozenset(col["name"] for col in inspect(bind).get_columns(PROOFS_TABLE))
    except NoSuchTableError:
        return None
    version = version_for_columns(present)
    if version is None:
        logger.error(f"proofs table has no known column set: {sorted(present)}")
    return version


_resolved: "weakref.WeakKeyDictionary" = weakref.WeakKeyDictionary()


def get_schema_version(bind) -> Optional[ProofSchemaVersion]:
    """Resolve the schema version once per engine and cache it."""
    engine = getattr(bind, "engine", bind)
    if engine not in _resolved:
        version = resolve_schema_version(engine)
        if version is None:
            return None
        _resolved[engine] = version
        logger.info(f"Resolved proofs schema version: {version.name}")
    return _resolved[engine]


def reset_schema_cache() -> None:
    """Forget resolved versions (used after migrations)."""
    _resolved.clear()
