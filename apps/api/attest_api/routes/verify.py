"""On-demand re-verification route."""

import time
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from attest_api.db.session import get_db
from attest_api.routes.deps import get_storage
from attest_api.storage.service import ArtifactStorage
from attest_api.verification.compose_replay import (
    ComposeReplayer,
    clamp_replay_limit,
    provider_from_settings,
)
from attest_api.verification.verifier import Verifier, VerifyFilter

router = APIRouter(prefix="/v1", tags=["verification"])


class VerifyRequest(BaseModel):
    subject_id: Optional[str] = Field(default=None, alias="subjectId")
    limit: Optional[int] = None
    include_traces: bool = Field(default=False, alias="includeTraces")

    model_config = {"populate_by_name": True}


@router.post("/verify")
def reverify(
    request_data: VerifyRequest,
    db: Session = Depends(get_db),
    storage: ArtifactStorage = Depends(get_storage),
):
    """Re-verify export artifacts and compose proofs (with rerun)."""
    exports = Verifier(db, storage).verify(VerifyFilter(subject_id=request_data.subject_id))
    compose = ComposeReplayer(db, storage, provider=provider_from_settings()).replay(
        subject_id=request_data.subject_id,
        limit=clamp_replay_limit(request_data.limit),
        rerun=True,
    )
    body = {
        "exportsSummary": exports.summary.to_dict(),
        "composeSummary": compose.to_dict(),
        "ts": int(time.time() * 1000),
    }
    if request_data.include_traces:
        body["traces"] = [trace.to_dict() for trace in exports.traces]
    return body
