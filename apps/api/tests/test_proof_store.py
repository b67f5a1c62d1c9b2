"""Tests for proof recording across schema versions."""

import pytest
from sqlalchemy import text

from attest_api.errors import DuplicateProofError
from attest_api.events.bus import PROOF_ADDED, EventBus
from attest_api.proofs import packet as packet_builder
from attest_api.proofs.hashing import content_hash, sha256_hex
from attest_api.proofs.schema import ProofSchemaVersion
from attest_api.proofs.store import (
    ProofStore,
    derive_locator,
    derive_packet_locator,
    kind_from_safe,
    safe_kind,
)

PDF_HASH = content_hash(b"%PDF-1.7 test")


def test_safe_kind_round_trip():
    assert safe_kind("ai:compose") == "ai.compose"
    assert kind_from_safe(safe_kind("ai:compose")) == "ai:compose"
    assert safe_kind("pdf") == "pdf"
    assert safe_kind("a b/c") == "a_b_c"


def test_derived_locators():
    assert derive_locator("42", "pdf", 1700000000000) == "_global/proofs/subject-42/1700000000000-pdf"
    assert derive_locator("42", "ai:compose", 5, "ws1") == "ws1/proofs/subject-42/5-ai.compose"
    assert (
        derive_packet_locator("42", "ai:compose", 5)
        == "_global/proofs/subject-42/packets/5-ai.compose.json"
    )


def test_record_writes_both_column_families(db, store):
    record = store.record(
        kind="pdf",
        content_hash=PDF_HASH,
        locator="ws1/proofs/subject-1/1000-pdf",
        subject_id="1",
        meta={"workspaceId": "ws1", "createdBy": "u1"},
        ts=1000,
    )
    row = db.execute(text("SELECT * FROM proofs WHERE id = :id"), {"id": record.id}).mappings().one()
    assert row["kind"] == "pdf"
    assert row["type"] == "export:pdf"
    assert row["hash"] == PDF_HASH
    assert row["sha256"] == sha256_hex(row["payload"])
    assert row["workspace_id"] == "ws1"
    assert row["created_by"] == "u1"
    assert row["storage_key"] == "ws1/proofs/subject-1/1000-pdf"
    assert row["storage_provider"] == "local"
    assert record.workspace_id == "ws1"


def test_record_normalizes_bare_hash(store):
    bare = PDF_HASH.split(":", 1)[1]
    record = store.record(kind="pdf", content_hash=bare, locator="a", subject_id="1", ts=1)
    assert record.content_hash == PDF_HASH


def test_record_derives_locator_when_none(store):
    record = store.record(kind="docx", content_hash=PDF_HASH, locator=None, subject_id="7", ts=99)
    assert record.locator == "_global/proofs/subject-7/99-docx"


def test_text_only_proof_has_empty_locator(store):
    record = store.record(kind="ai:compose", content_hash=PDF_HASH, locator="", subject_id="7", ts=5)
    assert record.locator == ""
    assert store.get(record.id).locator == ""


def test_duplicate_proof_is_rejected(store):
    store.record(kind="pdf", content_hash=PDF_HASH, locator="a", subject_id="1", ts=1000)
    with pytest.raises(DuplicateProofError):
        store.record(kind="pdf", content_hash=PDF_HASH, locator="a", subject_id="1", ts=1000)
    # the session is still usable after the rollback
    assert len(store.list_for_subject("1")) == 1


def test_record_with_packet_stores_packet_hash(store):
    packet = packet_builder.build("ai:compose", {"prompt": "p"}, {"proposalText": "t"}, subject_id="3")
    record = store.record(
        kind="ai:compose",
        content_hash=packet.content_hash,
        locator="",
        subject_id="3",
        ts=packet.timestamp,
        packet=packet,
    )
    loaded = store.get(record.id)
    assert loaded.packet_hash == packet.packet_hash
    assert loaded.payload == packet.to_canonical()
    assert loaded.meta["packetHash"] == packet.packet_hash


def test_select_reads_legacy_rows_by_kind(db, store):
    """Rows written by older writers (type only, no kind) are selected by kind."""
    db.execute(
        text(
            "INSERT INTO proofs (subject_id, type, sha256, payload, path, ts) "
            "VALUES ('1', 'export:pdf', :sha, '{}', 'old/file.pdf', 10)"
        ),
        {"sha": "ab" * 32},
    )
    db.commit()
    store.record(kind="pdf", content_hash=PDF_HASH, locator="new.pdf", subject_id="1", ts=20)
    store.record(kind="docx", content_hash=PDF_HASH, locator="new.docx", subject_id="1", ts=30)

    records = store.select(subject_id="1", kinds=["pdf"])
    assert [r.locator for r in records] == ["new.pdf", "old/file.pdf"]
    assert records[1].kind == "pdf"


def test_select_orders_newest_first_with_id_tiebreak(store):
    first = store.record(kind="pdf", content_hash=content_hash(b"1"), locator="a", subject_id="1", ts=10)
    second = store.record(kind="pdf", content_hash=content_hash(b"2"), locator="b", subject_id="1", ts=10)
    third = store.record(kind="pdf", content_hash=content_hash(b"3"), locator="c", subject_id="1", ts=5)
    assert [r.id for r in store.select(subject_id="1")] == [second.id, first.id, third.id]
    assert [r.id for r in store.select(subject_id="1", newest_first=False)] == [first.id, second.id, third.id]


def test_find_matching_and_locators(store):
    store.record(kind="pdf", content_hash=PDF_HASH, locator="x/1-pdf", subject_id="1", ts=1)
    assert store.find_matching("1", "pdf", PDF_HASH) is not None
    assert store.find_matching("1", "docx", PDF_HASH) is None
    assert store.find_matching("2", "pdf", PDF_HASH) is None
    assert [r.locator for r in store.find_by_locator("x/1-pdf")] == ["x/1-pdf"]
    assert store.all_locators() == {"x/1-pdf"}


def test_record_publishes_proof_added(db):
    bus = EventBus()
    received = []
    bus.subscribe(PROOF_ADDED, received.append)
    store = ProofStore(db, bus=bus)
    record = store.record(
        kind="pdf", content_hash=PDF_HASH, locator="a", subject_id="9", meta={"workspaceId": "ws"}, ts=1
    )
    assert received == [
        {
            "type": "proof_added",
            "subjectId": "9",
            "proofId": record.id,
            "kind": "pdf",
            "sha256": PDF_HASH,
            "workspaceId": "ws",
            "ts": 1,
        }
    ]


def test_failing_subscriber_does_not_fail_record(db):
    bus = EventBus()

    def broken(payload):
        raise RuntimeError("subscriber down")

    bus.subscribe(PROOF_ADDED, broken)
    record = ProofStore(db, bus=bus).record(kind="pdf", content_hash=PDF_HASH, locator="a", subject_id="1", ts=1)
    assert record.id


def test_v1_legacy_store_round_trip(legacy_db):
    db = legacy_db("v1")
    store = ProofStore(db)
    assert store.schema_version is ProofSchemaVersion.V1_LEGACY
    record = store.record(kind="pdf", content_hash=PDF_HASH, locator="a.pdf", subject_id="1", ts=1)

    row = db.execute(text("SELECT type, sha256 FROM proofs")).one()
    assert row.type == "export:pdf"
    assert row.sha256 == PDF_HASH.split(":", 1)[1]

    loaded = store.get(record.id)
    assert loaded.kind == "pdf"
    assert loaded.content_hash == PDF_HASH
    assert store.find_matching("1", "pdf", PDF_HASH) is not None


def test_v2_normalized_store_round_trip(legacy_db):
    db = legacy_db("v2")
    store = ProofStore(db)
    assert store.schema_version is ProofSchemaVersion.V2_NORMALIZED
    record = store.record(
        kind="docx", content_hash=PDF_HASH, locator="a.docx", subject_id="1", meta={"k": "v"}, ts=1
    )
    loaded = store.get(record.id)
    assert loaded.kind == "docx"
    assert loaded.meta == {"k": "v"}
    assert loaded.payload is None
