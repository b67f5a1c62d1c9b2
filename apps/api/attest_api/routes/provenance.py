"""Provenance and timeline routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from attest_api.db.session import get_db
from attest_api.errors import RecordingError
from attest_api.events.bus import EventBus
from attest_api.proofs.store import ProofStore
from attest_api.provenance.log import ProvenanceLog
from attest_api.provenance.timeline import TimelineFilters, TimelineService
from attest_api.routes.deps import get_event_bus

router = APIRouter(prefix="/v1", tags=["provenance"])


class ProvenanceCreate(BaseModel):
    """recordProvenance request."""

    action: str
    actor: str  # human, ai, system
    actor_id: Optional[str] = Field(default=None, alias="actorId")
    workspace_id: Optional[str] = Field(default=None, alias="workspaceId")
    details: dict = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


@router.post("/subjects/{subject_id}/provenance", status_code=status.HTTP_201_CREATED)
async def record_provenance(
    subject_id: str,
    event_data: ProvenanceCreate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    """Append a provenance event."""
    try:
        result = ProvenanceLog(db, bus=bus).append(
            subject_id=subject_id,
            action=event_data.action,
            actor_type=event_data.actor,
            actor_id=event_data.actor_id,
            details=event_data.details,
            workspace_id=event_data.workspace_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except RecordingError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return {"id": result.id, "ts": result.ts}


@router.get("/subjects/{subject_id}/timeline")
async def timeline(
    subject_id: str,
    action: Optional[str] = None,
    limit: Optional[int] = None,
    before: Optional[int] = None,
    from_ts: Optional[int] = Query(default=None, alias="from"),
    to_ts: Optional[int] = Query(default=None, alias="to"),
    db: Session = Depends(get_db),
):
    """Merged provenance and AI proof timeline, newest first."""
    filters = TimelineFilters(action=action, limit=limit, before=before, from_ts=from_ts, to_ts=to_ts)
    try:
        entries = TimelineService(db, proof_store=ProofStore(db)).timeline(subject_id, filters)
    except RecordingError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return {"subjectId": subject_id, "entries": [entry.to_dict() for entry in entries]}
