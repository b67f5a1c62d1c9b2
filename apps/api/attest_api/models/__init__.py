"""Database models - import all models here for Alembic discovery."""

from attest_api.models.proof import Proof
from attest_api.models.provenance import ProvenanceEvent
from attest_api.models.report import VerificationReport

__all__ = [
    "Proof",
    "ProvenanceEvent",
    "VerificationReport",
]
