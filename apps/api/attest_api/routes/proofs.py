"""Proof recording and proof health routes."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from attest_api.db.session import get_db
from attest_api.errors import DuplicateProofError, RecordingError
from attest_api.events.bus import EventBus
from attest_api.proofs.recorder import ProofRecorder
from attest_api.proofs.store import ProofStore
from attest_api.routes.deps import get_event_bus, get_storage
from attest_api.storage.service import ArtifactStorage
from attest_api.verification.health import ProofHealthService

router = APIRouter(prefix="/v1", tags=["proofs"])


class ProofCreate(BaseModel):
    """recordProof request.

    Either ``hash`` (an artifact the caller already stored) or ``input`` and
    ``output`` (an operation whose proof packet should be built) is required.
    """

    kind: str
    hash: Optional[str] = None
    path: Optional[str] = None  # omitted: derived locator; "": text-only proof
    meta: dict = Field(default_factory=dict)
    input: Any = None
    output: Any = None
    actor: str = "ai"
    actor_id: Optional[str] = Field(default=None, alias="actorId")

    model_config = {"populate_by_name": True}


class ProofHealthBatch(BaseModel):
    subject_ids: list[str] = Field(alias="subjectIds")

    model_config = {"populate_by_name": True}


@router.post("/subjects/{subject_id}/proofs", status_code=status.HTTP_201_CREATED)
async def record_proof(
    subject_id: str,
    proof_data: ProofCreate,
    db: Session = Depends(get_db),
    storage: ArtifactStorage = Depends(get_storage),
    bus: EventBus = Depends(get_event_bus),
):
    """Record a proof for a subject."""
    store = ProofStore(db, bus=bus, storage_provider=storage.type)
    try:
        if proof_data.output is not None:
            recorded = ProofRecorder(db, storage, proof_store=store).record_operation(
                subject_id=subject_id,
                kind=proof_data.kind,
                input=proof_data.input,
                output=proof_data.output,
                actor_type=proof_data.actor,
                actor_id=proof_data.actor_id,
                meta=proof_data.meta,
                artifact_locator=proof_data.path,
                content_hash=proof_data.hash,
            )
            body = recorded.proof.to_dict()
            body["packet"] = recorded.packet.model_dump(mode="json")
            body["provenanceId"] = recorded.provenance.id
            return body
        if not proof_data.hash:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="hash is required when no output is supplied",
            )
        record = store.record(
            kind=proof_data.kind,
            content_hash=proof_data.hash,
            locator=proof_data.path,
            subject_id=subject_id,
            meta=proof_data.meta,
        )
        return record.to_dict()
    except DuplicateProofError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except RecordingError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.get("/subjects/{subject_id}/proofs")
async def list_proofs(subject_id: str, limit: int = 50, db: Session = Depends(get_db)):
    """List a subject's proofs, most recent first."""
    try:
        records = ProofStore(db).list_for_subject(subject_id, limit=min(max(1, limit), 200))
    except RecordingError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return {"subjectId": subject_id, "proofs": [r.to_dict() for r in records]}


@router.get("/subjects/{subject_id}/proof-health")
def proof_health(
    subject_id: str,
    db: Session = Depends(get_db),
    storage: ArtifactStorage = Depends(get_storage),
):
    """Live verification health of one subject's proofs."""
    return ProofHealthService(db, storage).calculate(subject_id).to_dict()


@router.post("/proof-health/batch")
def proof_health_batch(
    batch: ProofHealthBatch,
    db: Session = Depends(get_db),
    storage: ArtifactStorage = Depends(get_storage),
):
    """Proof health for up to 50 subjects."""
    if not batch.subject_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="subjectIds required")
    results = ProofHealthService(db, storage).calculate_many(batch.subject_ids)
    return {"results": {key: health.to_dict() for key, health in results.items()}}
