"""Tests for backfill and stale/orphan cleanup."""

import threading

from urllib3.exceptions import MaxRetryError

from attest_api.proofs.hashing import content_hash
from attest_api.proofs.recorder import ProofRecorder
from attest_api.reconciliation.scanner import ReconciliationScanner, parse_locator
from attest_api.storage.service import LocalStorage

FILES = {
    "_global/proofs/subject-1/1700000000001-pdf": b"%PDF one",
    "_global/proofs/subject-1/1700000000002-docx": b"PK docx two",
    "ws7/proofs/subject-2/1700000000003-pdf": b"%PDF three",
}


def seed_files(write_artifact):
    for locator, data in FILES.items():
        write_artifact(locator, data)


def test_parse_locator():
    name = parse_locator("ws7/proofs/subject-2/1700000000003-ai.compose")
    assert name.workspace_id == "ws7"
    assert name.subject_id == "2"
    assert name.ts == 1700000000003
    assert name.kind == "ai:compose"
    assert parse_locator("_global/proofs/subject-1/1-pdf").workspace_id is None
    assert parse_locator("_global/proofs/subject-1/packets/1-ai.compose.json") is None
    assert parse_locator("random/file.txt") is None


def test_dry_run_reports_without_writing(db, storage, store, write_artifact):
    seed_files(write_artifact)
    write_artifact("notes/readme.txt", b"not an artifact")
    lines = []

    summary = ReconciliationScanner(db, storage, echo=lines.append).backfill(dry_run=True)

    assert summary.inspected == 3
    assert summary.inserted == 0
    assert len(summary.would_record) == 3
    assert lines == summary.would_record
    assert any(content_hash(b"%PDF one") in line for line in lines)
    assert store.select() == []


def test_backfill_is_idempotent(db, storage, store, write_artifact):
    seed_files(write_artifact)
    scanner = ReconciliationScanner(db, storage)

    first = scanner.backfill()
    assert first.to_dict() == {"inspected": 3, "inserted": 3, "skipped": 0, "errors": 0}

    records = {r.locator: r for r in store.select()}
    assert records["ws7/proofs/subject-2/1700000000003-pdf"].workspace_id == "ws7"
    assert records["ws7/proofs/subject-2/1700000000003-pdf"].meta["backfilled"] is True
    assert records["_global/proofs/subject-1/1700000000002-docx"].kind == "docx"
    assert records["_global/proofs/subject-1/1700000000002-docx"].ts == 1700000000002
    assert records["_global/proofs/subject-1/1700000000001-pdf"].content_hash == content_hash(b"%PDF one")

    second = scanner.backfill()
    assert second.inserted == 0
    assert second.skipped == 3
    assert len(store.select()) == 3


def test_backfill_limited_to_subject(db, storage, store, write_artifact):
    seed_files(write_artifact)
    summary = ReconciliationScanner(db, storage).backfill(subject_id="2")
    assert summary.inserted == 1
    assert [r.subject_id for r in store.select()] == ["2"]


def test_packet_files_are_not_backfilled(db, storage, store):
    ProofRecorder(db, storage).record_operation("1", "ai:compose", {"prompt": "p"}, {"proposalText": "t"})
    summary = ReconciliationScanner(db, storage).backfill()
    assert summary.inspected == 0
    assert len(store.select()) == 1


def test_missing_storage_root_does_nothing(db, tmp_path):
    missing = LocalStorage(str(tmp_path / "does-not-exist"))
    scanner = ReconciliationScanner(db, missing)
    assert scanner.backfill().to_dict() == {"inspected": 0, "inserted": 0, "skipped": 0, "errors": 0}
    assert scanner.cleanup().to_dict()["dbStale"] == 0


def test_cleanup_reports_stale_rows_and_orphans(db, storage, store, write_artifact):
    kept = write_artifact("_global/proofs/subject-1/1-pdf", b"kept")
    store.record(kind="pdf", content_hash=content_hash(b"kept"), locator=kept, subject_id="1", ts=1)
    stale = store.record(kind="pdf", content_hash=content_hash(b"gone"), locator="_global/proofs/subject-1/2-pdf", subject_id="1", ts=2)
    store.record(kind="ai:compose", content_hash=content_hash(b"text"), locator="", subject_id="1", ts=3)
    orphan = write_artifact("_global/proofs/subject-1/3-docx", b"orphan")

    summary = ReconciliationScanner(db, storage).cleanup()

    assert [r.id for r in summary.db_stale] == [stale.id]
    assert summary.fs_orphan == [orphan]
    assert summary.deleted_db_stale == 0
    assert storage.exists(orphan)
    assert store.get(stale.id) is not None


def test_cleanup_deletes_only_when_asked(db, storage, store, write_artifact):
    stale = store.record(kind="pdf", content_hash=content_hash(b"gone"), locator="_global/proofs/subject-1/2-pdf", subject_id="1", ts=2)
    orphan = write_artifact("_global/proofs/subject-1/3-docx", b"orphan")

    summary = ReconciliationScanner(db, storage).cleanup(delete_db_stale=True, delete_orphan_files=True)

    assert summary.to_dict() == {
        "dbStale": 1,
        "fsOrphan": 1,
        "deletedDbStale": 1,
        "deletedFsOrphan": 1,
        "errors": 0,
    }
    assert store.get(stale.id) is None
    assert not storage.exists(orphan)


class FlakyStorage(LocalStorage):
    """Local storage whose backend is unreachable for one locator suffix."""

    def __init__(self, root, failing_suffix):
        super().__init__(root)
        self.failing_suffix = failing_suffix

    def read(self, locator):
        if locator.endswith(self.failing_suffix):
            raise MaxRetryError(None, f"/artifacts/{locator}")
        return super().read(locator)

    def exists(self, locator):
        if locator.endswith(self.failing_suffix):
            raise MaxRetryError(None, f"/artifacts/{locator}")
        return super().exists(locator)


def test_backfill_continues_past_unreadable_file(db, storage, store, write_artifact):
    seed_files(write_artifact)
    flaky = FlakyStorage(str(storage.root), "-docx")

    summary = ReconciliationScanner(db, flaky).backfill()

    assert summary.to_dict() == {"inspected": 3, "inserted": 2, "skipped": 0, "errors": 1}
    assert sorted(r.kind for r in store.select()) == ["pdf", "pdf"]


def test_backfill_bounds_hung_reads(db, storage, store, write_artifact):
    seed_files(write_artifact)
    release = threading.Event()

    class HungStorage(LocalStorage):
        def read(self, locator):
            if locator.endswith("-docx"):
                release.wait(5)
            return super().read(locator)

    try:
        summary = ReconciliationScanner(db, HungStorage(str(storage.root)), read_timeout=0.05).backfill()
    finally:
        release.set()

    assert summary.inserted == 2
    assert summary.errors == 1


def test_cleanup_tallies_failed_checks_without_marking_stale(db, storage, store, write_artifact):
    kept = write_artifact("_global/proofs/subject-1/1-pdf", b"kept")
    store.record(kind="pdf", content_hash=content_hash(b"kept"), locator=kept, subject_id="1", ts=1)
    store.record(kind="docx", content_hash=content_hash(b"x"), locator="_global/proofs/subject-1/2-docx", subject_id="1", ts=2)
    stale = store.record(kind="pdf", content_hash=content_hash(b"gone"), locator="_global/proofs/subject-1/3-pdf", subject_id="1", ts=3)
    flaky = FlakyStorage(str(storage.root), "-docx")

    summary = ReconciliationScanner(db, flaky).cleanup(delete_db_stale=True)

    assert [r.id for r in summary.db_stale] == [stale.id]
    assert summary.errors == 1
    assert summary.deleted_db_stale == 1
    assert len(store.select()) == 2
