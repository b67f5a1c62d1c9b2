"""Subject timeline: provenance events merged with AI proof records.

AI operations always write a proof row but have not always written a
provenance row, so the timeline reads both sources. When a provenance row and
a proof row describe the same operation, identified by
``(subject, action, proofHash)``, only the proof-backed row is kept.
Provenance rows outside the AI namespace, and AI rows without a proof hash,
are never dropped.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from attest_api.proofs.kinds import AI_TIMELINE_KINDS, ActorType, is_ai_action, match_action_filter
from attest_api.proofs.store import ProofRecord, ProofStore
from attest_api.provenance.log import ProvenanceLog
from attest_api.settings import get_settings

logger = logging.getLogger(__name__)

SOURCE_PROVENANCE = "provenance"
SOURCE_PROOF = "proof"


@dataclass
class TimelineFilters:
    action: Optional[str] = None
    limit: Optional[int] = None
    before: Optional[int] = None
    from_ts: Optional[int] = None
    to_ts: Optional[int] = None


@dataclass
class TimelineEntry:
    id: int
    subject_id: str
    action: str
    actor: str
    ts: int
    details: Dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[str] = None
    source: str = SOURCE_PROVENANCE

    @property
    def proof_hash(self) -> Optional[str]:
        value = (self.details or {}).get("proofHash")
        return value if isinstance(value, str) and value else None

    def to_dict(self) -> dict:
        return asdict(self)


def clamp_limit(limit: Optional[int], default: int = 50, maximum: int = 200) -> int:
    """Apply the default and the hard cap to a requested limit."""
    if not limit or limit < 1:
        return default
    return min(limit, maximum)


def in_range(ts: int, filters: TimelineFilters) -> bool:
    if filters.before is not None and not ts < filters.before:
        return False
    if filters.from_ts is not None and ts < filters.from_ts:
        return False
    if filters.to_ts is not None and ts > filters.to_ts:
        return False
    return True


def _dedup_key(entry: TimelineEntry) -> Optional[str]:
    if not entry.proof_hash:
        return None
    return f"{entry.subject_id}|{entry.action}|{entry.proof_hash}"


def merge_timeline(
    subject_id: str,
    events: Iterable[TimelineEntry],
    proof_entries: Iterable[TimelineEntry],
    filters: TimelineFilters,
    namespace_predicate: Callable[[str], bool] = is_ai_action,
    limit: int = 50,
    ai_kinds: Optional[Sequence[str]] = AI_TIMELINE_KINDS,
) -> List[TimelineEntry]:
    """Merge, deduplicate, sort newest first and truncate.

    ``namespace_predicate`` decides which provenance rows are eligible for
    deduplication against proof-backed rows. Only proof rows whose kind is in
    ``ai_kinds`` are projected; ``None`` admits every kind.
    """
    allowed = None if ai_kinds is None else frozenset(ai_kinds)
    action_filter = filters.action
    events = [
        e for e in events
        if e.subject_id == subject_id and in_range(e.ts, filters) and match_action_filter(e.action, action_filter)
    ]
    proof_entries = [
        p for p in proof_entries
        if p.subject_id == subject_id
        and (allowed is None or p.action in allowed)
        and in_range(p.ts, filters)
        and match_action_filter(p.action, action_filter)
    ]

    backed = {key for key in (_dedup_key(p) for p in proof_entries) if key}

    kept = []
    for event in events:
        if namespace_predicate(event.action):
            key = _dedup_key(event)
            if key and key in backed:
                continue
        kept.append(event)

    merged = kept + proof_entries
    merged.sort(key=lambda e: (e.ts, e.id), reverse=True)
    return merged[:limit]


def proof_to_entry(record: ProofRecord) -> TimelineEntry:
    """Project an AI proof record as a timeline entry attributed to ``ai``."""
    details = dict(record.meta or {})
    details["proofHash"] = record.content_hash or ""
    details.setdefault("proofId", record.id)
    return TimelineEntry(
        id=record.id,
        subject_id=record.subject_id,
        action=record.kind or "ai:action",
        actor=ActorType.AI.value,
        ts=record.ts,
        details=details,
        actor_id=record.created_by,
        source=SOURCE_PROOF,
    )


class TimelineService:
    """Binds ``merge_timeline`` to the provenance log and proof store."""

    def __init__(
        self,
        db: Session,
        proof_store: Optional[ProofStore] = None,
        provenance_log: Optional[ProvenanceLog] = None,
        ai_kinds: Sequence[str] = AI_TIMELINE_KINDS,
        settings=None,
    ):
        self.db = db
        self.proof_store = proof_store or ProofStore(db)
        self.provenance_log = provenance_log or ProvenanceLog(db)
        self.ai_kinds = tuple(ai_kinds)
        self.settings = settings or get_settings()

    def timeline(self, subject_id: str, filters: Optional[TimelineFilters] = None) -> List[TimelineEntry]:
        filters = filters or TimelineFilters()
        subject_id = str(subject_id)
        limit = clamp_limit(
            filters.limit,
            default=self.settings.timeline_default_limit,
            maximum=self.settings.timeline_max_limit,
        )
        window = self.settings.timeline_candidate_window

        events = [
            TimelineEntry(
                id=row.id,
                subject_id=row.subject_id,
                action=row.action,
                actor=row.actor,
                ts=row.ts,
                details=row.details if isinstance(row.details, dict) else ({} if row.details is None else {"raw": row.details}),
                actor_id=row.actor_id,
            )
            for row in self.provenance_log.recent(
                subject_id,
                window,
                before=filters.before,
                from_ts=filters.from_ts,
                to_ts=filters.to_ts,
            )
        ]
        proof_entries = [
            proof_to_entry(record)
            for record in self.proof_store.select(
                subject_id=subject_id,
                kinds=self.ai_kinds,
                limit=window,
                before=filters.before,
                from_ts=filters.from_ts,
                to_ts=filters.to_ts,
            )
        ]

        entries = merge_timeline(
            subject_id, events, proof_entries, filters, limit=limit, ai_kinds=self.ai_kinds
        )
        logger.debug(
            f"Timeline for {subject_id}: {len(events)} events, {len(proof_entries)} proofs, {len(entries)} returned",
            extra={"subject_id": subject_id},
        )
        return entries
