"""Tests for atomic proof + provenance recording."""

import json

import pytest

from attest_api.errors import RecordingError
from attest_api.models import ProvenanceEvent
from attest_api.proofs.hashing import content_hash
from attest_api.proofs.recorder import ProofRecorder
from attest_api.proofs.store import ProofStore


@pytest.fixture
def recorder(db, storage):
    return ProofRecorder(db, storage)


def test_record_operation_writes_packet_proof_and_provenance(db, storage, recorder):
    recorded = recorder.record_operation(
        subject_id="42",
        kind="ai:compose",
        input={"prompt": "Write an intro"},
        output={"proposalText": "Hello"},
        actor_id="user-1",
    )

    assert storage.exists(recorded.packet_locator)
    assert recorded.packet_locator.startswith("_global/proofs/subject-42/packets/")
    stored = json.loads(storage.read(recorded.packet_locator))
    assert stored["id"] == recorded.packet.id
    assert content_hash(storage.read(recorded.packet_locator)) == recorded.packet.packet_hash

    proof = ProofStore(db).get(recorded.proof.id)
    assert proof.kind == "ai:compose"
    assert proof.content_hash == recorded.packet.content_hash
    assert proof.meta["proofFile"] == recorded.packet_locator
    assert proof.ts == recorded.packet.timestamp

    event = db.query(ProvenanceEvent).one()
    assert event.id == recorded.provenance.id
    assert event.action == "ai:compose"
    assert event.actor == "ai"
    assert event.actor_id == "user-1"
    assert event.details["proofHash"] == proof.content_hash
    assert event.details["proofId"] == proof.id


def test_export_operation_keeps_artifact_hash(db, storage, recorder, write_artifact):
    data = b"%PDF-1.7 body"
    locator = write_artifact("_global/proofs/subject-5/1000-pdf", data)
    recorded = recorder.record_operation(
        subject_id="5",
        kind="pdf",
        input={"html": "<p>x</p>"},
        output={"bytes": len(data)},
        actor_type="human",
        artifact_locator=locator,
        content_hash=content_hash(data),
    )
    assert recorded.proof.locator == locator
    assert recorded.proof.content_hash == content_hash(data)
    assert recorded.provenance.ts == recorded.packet.timestamp


def test_failed_provenance_rolls_back_proof_and_packet(db, storage, recorder):
    """Neither row nor packet file survives when the second write fails."""
    with pytest.raises(ValueError):
        recorder.record_operation(
            subject_id="42",
            kind="ai:compose",
            input={"prompt": "x"},
            output={"proposalText": "y"},
            actor_type="robot",
        )
    assert ProofStore(db).list_for_subject("42") == []
    assert db.query(ProvenanceEvent).count() == 0
    assert list(storage.walk()) == []


def test_failed_proof_insert_discards_packet(db, storage):
    class BrokenStore(ProofStore):
        def record(self, *args, **kwargs):
            raise RecordingError("database unavailable")

    recorder = ProofRecorder(db, storage, proof_store=BrokenStore(db))
    with pytest.raises(RecordingError):
        recorder.record_operation("1", "ai:compose", {"prompt": "x"}, {"proposalText": "y"})
    assert list(storage.walk()) == []
    assert db.query(ProvenanceEvent).count() == 0
