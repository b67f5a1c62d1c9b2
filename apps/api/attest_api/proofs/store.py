"""Proof store: persists proof records against the deployed schema version."""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import delete, insert, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from attest_api.errors import DuplicateProofError, RecordingError, SchemaUnavailableError
from attest_api.events.bus import PROOF_ADDED, EventBus
from attest_api.proofs.hashing import canonicalize, normalize_hash, sha256_hex, strip_prefix
from attest_api.proofs.kinds import ActionKind, kind_from_legacy_type
from attest_api.proofs.packet import ProofPacket
from attest_api.proofs.schema import ProofSchemaVersion, get_schema_version, proofs_table
from attest_api.utils.metrics import proofs_recorded

logger = logging.getLogger(__name__)

GLOBAL_WORKSPACE = "_global"
_UNSAFE_KIND_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class ProofRecord:
    """Proof row normalized across schema versions."""

    id: int
    subject_id: str
    kind: Optional[str]
    content_hash: Optional[str]
    locator: str
    ts: int
    meta: Dict[str, Any] = field(default_factory=dict)
    workspace_id: Optional[str] = None
    created_by: Optional[str] = None
    storage_key: Optional[str] = None
    storage_provider: Optional[str] = None
    packet_hash: Optional[str] = None
    payload: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "kind": self.kind,
            "hash": self.content_hash,
            "path": self.locator,
            "meta": self.meta,
            "ts": self.ts,
            "workspace_id": self.workspace_id,
            "created_by": self.created_by,
            "storage_key": self.storage_key,
            "storage_provider": self.storage_provider,
        }


def safe_kind(kind: str) -> str:
    """Filesystem/object-key safe form of a kind (``ai:compose`` -> ``ai.compose``)."""
    return _UNSAFE_KIND_CHARS.sub("_", str(kind or "proof").replace(":", "."))


def kind_from_safe(value: str) -> str:
    return value.replace(".", ":")


def derive_locator(
    subject_id: str, kind: str, ts: int, workspace_id: Optional[str] = None
) -> str:
    """Deterministic locator used when the caller supplies none.

    Format: ``{workspace or _global}/proofs/subject-{id}/{ts}-{kind}``
    """
    return f"{workspace_id or GLOBAL_WORKSPACE}/proofs/subject-{subject_id}/{ts}-{safe_kind(kind)}"


def derive_packet_locator(
    subject_id: str, kind: str, ts: int, workspace_id: Optional[str] = None
) -> str:
    """Locator of the packet evidence file, kept apart from artifact locators."""
    return f"{workspace_id or GLOBAL_WORKSPACE}/proofs/subject-{subject_id}/packets/{ts}-{safe_kind(kind)}.json"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProofStore:
    """Proof record persistence tolerant of schema evolution."""

    def __init__(
        self,
        db: Session,
        schema_version: Optional[ProofSchemaVersion] = None,
        bus: Optional[EventBus] = None,
        storage_provider: Optional[str] = None,
    ):
        """Initialize proof store."""
        self.db = db
        self._schema_version = schema_version
        self.bus = bus
        self.storage_provider = storage_provider
        self._table = None

    @property
    def schema_version(self) -> ProofSchemaVersion:
        if self._schema_version is None:
            self._schema_version = get_schema_version(self.db.get_bind())
        if self._schema_version is None:
            raise SchemaUnavailableError("proofs table not found or has no expected columns")
        return self._schema_version

    @property
    def table(self):
        # One construct per store; columns from distinct constructs would be separate FROMs.
        if self._table is None:
            self._table = proofs_table(self.schema_version)
        return self._table

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        kind: str,
        content_hash: str,
        locator: Optional[str],
        subject_id: str,
        meta: Optional[dict] = None,
        ts: Optional[int] = None,
        packet: Optional[ProofPacket] = None,
        commit: bool = True,
    ) -> ProofRecord:
        """Insert a proof record.

        ``locator=None`` derives the conventional locator; ``""`` records a
        text-only proof. With ``commit=False`` the caller owns the transaction
        and must call ``publish_added`` after committing.
        """
        version = self.schema_version
        meta = dict(meta or {})
        ts = ts if ts is not None else _now_ms()
        subject_id = str(subject_id)
        parsed = ActionKind.parse(kind)
        workspace_id = meta.get("workspaceId")
        if locator is None:
            locator = derive_locator(subject_id, parsed.raw, ts, workspace_id)
        content_hash = normalize_hash(content_hash) or ""
        if packet is not None:
            meta.setdefault("packetHash", packet.packet_hash)

        values: Dict[str, Any] = {"subject_id": subject_id, "path": locator, "ts": ts}

        if version.has_legacy:
            payload = packet.to_canonical() if packet is not None else self._synthesize_payload(
                subject_id, parsed, ts, content_hash, locator, meta
            )
            values["type"] = parsed.legacy_type()
            values["sha256"] = sha256_hex(payload)
            values["payload"] = payload
            if version is ProofSchemaVersion.V1_LEGACY and packet is None and content_hash:
                # v1 has no hash column; export rows carry the artifact hash here.
                values["sha256"] = strip_prefix(content_hash)

        if version.has_normalized:
            values["kind"] = parsed.raw
            values["hash"] = content_hash
            values["meta"] = meta or None

        if version.has_scoping:
            values["workspace_id"] = workspace_id
            values["created_by"] = meta.get("createdBy") or meta.get("actorId") or meta.get("userId")
            values["storage_key"] = meta.get("storageKey") or locator or None
            values["storage_provider"] = meta.get("storageProvider") or self.storage_provider

        t = self.table
        try:
            result = self.db.execute(insert(t).values(**values).returning(t.c.id))
            proof_id = int(result.scalar_one())
            if commit:
                self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateProofError(
                f"Proof already recorded for subject {subject_id} kind {parsed.raw} at {ts}"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecordingError(f"Failed to record proof: {e}") from e

        record = ProofRecord(
            id=proof_id,
            subject_id=subject_id,
            kind=parsed.raw,
            content_hash=content_hash or None,
            locator=locator,
            ts=ts,
            meta=meta,
            workspace_id=workspace_id,
            created_by=values.get("created_by"),
            storage_key=values.get("storage_key"),
            storage_provider=values.get("storage_provider"),
            packet_hash=packet.packet_hash if packet is not None else normalize_hash(meta.get("packetHash")),
            payload=values.get("payload"),
        )
        proofs_recorded.labels(kind=parsed.namespace.value if parsed.namespace else "other").inc()
        logger.info(
            f"Recorded proof {proof_id} for subject {subject_id}",
            extra={"subject_id": subject_id, "kind": parsed.raw, "proof_id": proof_id},
        )
        if commit:
            self.publish_added(record)
        return record

    def publish_added(self, record: ProofRecord) -> None:
        """Fire-and-forget ``proof.added`` broadcast; never raises."""
        if self.bus is None:
            return
        self.bus.publish(
            PROOF_ADDED,
            {
                "type": "proof_added",
                "subjectId": record.subject_id,
                "proofId": record.id,
                "kind": record.kind,
                "sha256": record.content_hash,
                "workspaceId": record.workspace_id,
                "ts": record.ts,
            },
        )

    def _synthesize_payload(
        self,
        subject_id: str,
        parsed: ActionKind,
        ts: int,
        content_hash: str,
        locator: str,
        meta: dict,
    ) -> str:
        return canonicalize(
            {
                "subjectId": subject_id,
                "action": parsed.legacy_type(),
                "timestamp": ts,
                "input": meta.get("input"),
                "output": {"hash": content_hash, "path": locator},
                "runtime": {"source": "attest:proof-store"},
            }
        )

    def delete(self, proof_id: int, commit: bool = True) -> bool:
        """Delete one proof row. Only reconciliation tooling calls this."""
        t = self.table
        result = self.db.execute(delete(t).where(t.c.id == proof_id))
        if commit:
            self.db.commit()
        return (result.rowcount or 0) > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _row_to_record(self, row) -> ProofRecord:
        m = row._mapping
        version = self.schema_version
        meta = m.get("meta") if version.has_normalized else None
        if isinstance(meta, str):
            try:
                meta = json.loads(meta)
            except ValueError:
                meta = {"raw": meta}
        meta = meta if isinstance(meta, dict) else {}

        kind = m.get("kind") if version.has_normalized else None
        if not kind and version.has_legacy:
            kind = kind_from_legacy_type(m.get("type"))

        content_hash = m.get("hash") if version.has_normalized else None
        if not content_hash and version is ProofSchemaVersion.V1_LEGACY:
            # v1 export writers stored the file hash in sha256.
            content_hash = normalize_hash(m.get("sha256"))

        packet_hash = normalize_hash(m.get("sha256")) if version.has_legacy else None
        if not packet_hash:
            packet_hash = normalize_hash(meta.get("packetHash"))

        return ProofRecord(
            id=int(m["id"]),
            subject_id=str(m["subject_id"]),
            kind=kind,
            content_hash=normalize_hash(content_hash),
            locator=str(m.get("path") or ""),
            ts=int(m["ts"]),
            meta=meta,
            workspace_id=m.get("workspace_id") or meta.get("workspaceId"),
            created_by=m.get("created_by"),
            storage_key=m.get("storage_key"),
            storage_provider=m.get("storage_provider"),
            packet_hash=packet_hash,
            payload=m.get("payload") if version.has_legacy else None,
        )

    def _kind_clause(self, kinds: Sequence[str], legacy_types: Optional[Sequence[str]] = None):
        t = self.table
        version = self.schema_version
        if legacy_types is None:
            legacy_types = [ActionKind.parse(k).legacy_type() for k in kinds]
        clauses = []
        if version.has_normalized:
            clauses.append(t.c.kind.in_(list(kinds)))
        if version.has_legacy:
            legacy_clause = t.c.type.in_(list(legacy_types))
            if version.has_normalized:
                legacy_clause = legacy_clause & t.c.kind.is_(None)
            clauses.append(legacy_clause)
        return or_(*clauses)

    def select(
        self,
        subject_id: Optional[str] = None,
        kinds: Optional[Iterable[str]] = None,
        legacy_types: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        with_locator: bool = False,
        newest_first: bool = True,
        before: Optional[int] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> List[ProofRecord]:
        """Select proof records, normalized across schema versions.

        ``before`` is exclusive; ``from_ts`` and ``to_ts`` are inclusive.
        """
        t = self.table
        query = select(t)
        if subject_id is not None:
            query = query.where(t.c.subject_id == str(subject_id))
        if before is not None:
            query = query.where(t.c.ts < before)
        if from_ts is not None:
            query = query.where(t.c.ts >= from_ts)
        if to_ts is not None:
            query = query.where(t.c.ts <= to_ts)
        if kinds:
            query = query.where(self._kind_clause(list(kinds), legacy_types))
        if with_locator:
            query = query.where(t.c.path.is_not(None), t.c.path != "")
        if newest_first:
            query = query.order_by(t.c.ts.desc(), t.c.id.desc())
        else:
            query = query.order_by(t.c.id.asc())
        if limit:
            query = query.limit(limit)
        return [self._row_to_record(row) for row in self.db.execute(query)]

    def get(self, proof_id: int) -> Optional[ProofRecord]:
        t = self.table
        row = self.db.execute(select(t).where(t.c.id == proof_id)).first()
        return self._row_to_record(row) if row else None

    def list_for_subject(self, subject_id: str, limit: int = 50) -> List[ProofRecord]:
        """Proofs for a subject, most recent first."""
        return self.select(subject_id=subject_id, limit=limit)

    def find_matching(self, subject_id: str, kind: str, content_hash: str) -> Optional[ProofRecord]:
        """First proof with the same ``(subject, kind, hash)``, if any."""
        t = self.table
        version = self.schema_version
        wanted = normalize_hash(content_hash)
        query = select(t).where(t.c.subject_id == str(subject_id), self._kind_clause([kind]))
        if version.has_normalized:
            query = query.where(t.c.hash == wanted)
        else:
            query = query.where(t.c.sha256 == strip_prefix(wanted))
        row = self.db.execute(query.limit(1)).first()
        return self._row_to_record(row) if row else None

    def find_by_locator(self, locator: str) -> List[ProofRecord]:
        """Proof rows whose path (or storage key) equals ``locator``."""
        if not locator:
            return []
        t = self.table
        clause = t.c.path == locator
        if self.schema_version.has_scoping:
            clause = or_(clause, t.c.storage_key == locator)
        query = select(t).where(clause).order_by(t.c.id.asc())
        return [self._row_to_record(row) for row in self.db.execute(query)]

    def all_locators(self, subject_id: Optional[str] = None) -> Set[str]:
        """Every non-empty locator (and storage key) referenced by a proof row."""
        t = self.table
        cols = [t.c.path]
        if self.schema_version.has_scoping:
            cols.append(t.c.storage_key)
        query = select(*cols)
        if subject_id is not None:
            query = query.where(t.c.subject_id == str(subject_id))
        locators: Set[str] = set()
        for row in self.db.execute(query):
            for value in row:
                if value:
                    locators.add(str(value))
        return locators
