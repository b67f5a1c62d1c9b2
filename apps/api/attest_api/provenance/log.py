"""Append-only provenance event log."""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attest_api.errors import RecordingError
from attest_api.events.bus import PROVENANCE_APPENDED, EventBus
from attest_api.models import ProvenanceEvent
from attest_api.proofs.kinds import ActorType
from attest_api.utils.metrics import provenance_appended

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppendResult:
    id: int
    ts: int


class ProvenanceLog:
    """Provenance event log. Entries are never updated or deleted."""

    def __init__(self, db: Session, bus: Optional[EventBus] = None):
        """Initialize provenance log."""
        self.db = db
        self.bus = bus

    def append(
        self,
        subject_id: str,
        action: str,
        actor_type: str,
        actor_id: Optional[str] = None,
        details: Optional[dict] = None,
        workspace_id: Optional[str] = None,
        ts: Optional[int] = None,
        commit: bool = True,
    ) -> AppendResult:
        """Append one event stamped with the current wall clock (ms).

        Raises ``ValueError`` for an unknown actor type and ``RecordingError``
        when the insert fails.
        """
        actor = ActorType(actor_type)
        if not action:
            raise ValueError("action is required")
        details = dict(details or {})
        if workspace_id is None:
            workspace_id = details.get("workspaceId")

        event = ProvenanceEvent(
            subject_id=str(subject_id),
            action=action,
            actor=actor.value,
            actor_id=actor_id,
            workspace_id=workspace_id,
            ts=ts if ts is not None else int(time.time() * 1000),
            details=details,
        )
        try:
            self.db.add(event)
            self.db.flush()
            if commit:
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecordingError(f"Failed to append provenance event: {e}") from e

        provenance_appended.labels(actor=actor.value).inc()
        result = AppendResult(id=event.id, ts=event.ts)
        if commit and self.bus is not None:
            self.bus.publish(
                PROVENANCE_APPENDED,
                {"subjectId": event.subject_id, "action": action, "id": result.id, "ts": result.ts},
            )
        return result

    def recent(
        self,
        subject_id: str,
        limit: int,
        before: Optional[int] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> List[ProvenanceEvent]:
        """Most recent events for a subject, newest first (ties by id)."""
        query = self.db.query(ProvenanceEvent).filter(ProvenanceEvent.subject_id == str(subject_id))
        if before is not None:
            query = query.filter(ProvenanceEvent.ts < before)
        if from_ts is not None:
            query = query.filter(ProvenanceEvent.ts >= from_ts)
        if to_ts is not None:
            query = query.filter(ProvenanceEvent.ts <= to_ts)
        return (
            query.order_by(ProvenanceEvent.ts.desc(), ProvenanceEvent.id.desc())
            .limit(limit)
            .all()
        )
