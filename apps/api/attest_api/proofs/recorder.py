"""Records an operation's proof packet, proof row and provenance event together."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attest_api.errors import ArtifactNotFoundError, RecordingError, StorageError
from attest_api.proofs import packet as packet_builder
from attest_api.proofs.kinds import ActionKind, ActorType
from attest_api.proofs.packet import ProofPacket
from attest_api.proofs.store import ProofRecord, ProofStore, derive_packet_locator
from attest_api.provenance.log import AppendResult, ProvenanceLog
from attest_api.storage.service import ArtifactStorage

logger = logging.getLogger(__name__)


@dataclass
class RecordedOperation:
    packet: ProofPacket
    proof: ProofRecord
    provenance: AppendResult
    packet_locator: str


class ProofRecorder:
    """Writes the packet file, proof row and provenance event as one unit.

    The two rows share a database transaction. On rollback the packet file
    written for this operation is removed, so no orphan evidence is left.
    """

    def __init__(
        self,
        db: Session,
        storage: ArtifactStorage,
        proof_store: Optional[ProofStore] = None,
        provenance_log: Optional[ProvenanceLog] = None,
    ):
        self.db = db
        self.storage = storage
        self.proof_store = proof_store or ProofStore(db, storage_provider=storage.type)
        self.provenance_log = provenance_log or ProvenanceLog(db)

    def record_operation(
        self,
        subject_id: str,
        kind: str,
        input: Any,
        output: Any,
        actor_type: str = ActorType.AI.value,
        actor_id: Optional[str] = None,
        meta: Optional[dict] = None,
        artifact_locator: Optional[str] = None,
        content_hash: Optional[str] = None,
    ) -> RecordedOperation:
        """Build and persist the evidence for one operation.

        ``artifact_locator`` and ``content_hash`` describe a generated file
        (e.g. an exported PDF); when absent the proof is text-only and its hash
        is the packet's output hash.
        """
        subject_id = str(subject_id)
        meta = dict(meta or {})
        parsed = ActionKind.parse(kind)
        packet = packet_builder.build(parsed.raw, input, output, subject_id=subject_id, meta=meta)
        packet_locator = derive_packet_locator(
            subject_id, parsed.raw, packet.timestamp, meta.get("workspaceId")
        )

        self.storage.write(packet_locator, packet.to_bytes(), content_type="application/json")
        proof_meta = dict(meta, proofFile=packet_locator)
        try:
            proof = self.proof_store.record(
                kind=parsed.raw,
                content_hash=content_hash or packet.content_hash,
                locator=artifact_locator if artifact_locator is not None else "",
                subject_id=subject_id,
                meta=proof_meta,
                ts=packet.timestamp,
                packet=packet,
                commit=False,
            )
            provenance = self.provenance_log.append(
                subject_id=subject_id,
                action=parsed.raw,
                actor_type=actor_type,
                actor_id=actor_id,
                details={
                    "proofHash": proof.content_hash,
                    "proofId": proof.id,
                    "packetId": packet.id,
                },
                workspace_id=meta.get("workspaceId"),
                ts=packet.timestamp,
                commit=False,
            )
            self.db.commit()
        except (RecordingError, ValueError):
            self.db.rollback()
            self._discard(packet_locator)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            self._discard(packet_locator)
            raise RecordingError(f"Failed to commit {parsed.raw} for subject {subject_id}: {e}") from e

        self.proof_store.publish_added(proof)
        logger.info(
            f"Recorded {parsed.raw} for subject {subject_id}",
            extra={"subject_id": subject_id, "proof_id": proof.id, "packet_id": packet.id},
        )
        return RecordedOperation(
            packet=packet, proof=proof, provenance=provenance, packet_locator=packet_locator
        )

    def _discard(self, locator: str) -> None:
        try:
            self.storage.delete(locator)
        except ArtifactNotFoundError:
            pass
        except StorageError as e:
            logger.warning(f"Could not remove packet file {locator} after rollback: {e}")
