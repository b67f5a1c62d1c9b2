"""Tests for replay verification of export artifacts."""

import threading
import time

from urllib3.exceptions import MaxRetryError

from attest_api.proofs.hashing import content_hash
from attest_api.storage.service import LocalStorage
from attest_api.verification.verifier import Verifier, VerifyFilter, VerifyStatus


def seed_exports(store, write_artifact):
    """One intact, one tampered, one missing and one unlocated export."""
    intact = b"%PDF intact"
    write_artifact("_global/proofs/subject-1/1-pdf", intact)
    store.record(kind="pdf", content_hash=content_hash(intact), locator="_global/proofs/subject-1/1-pdf", subject_id="1", ts=1)

    write_artifact("_global/proofs/subject-1/2-pdf", b"%PDF tampered")
    store.record(kind="pdf", content_hash=content_hash(b"%PDF original"), locator="_global/proofs/subject-1/2-pdf", subject_id="1", ts=2)

    store.record(kind="docx", content_hash=content_hash(b"gone"), locator="_global/proofs/subject-1/3-docx", subject_id="1", ts=3)
    store.record(kind="pdf", content_hash=content_hash(b"nowhere"), locator="", subject_id="2", ts=4)


def test_classifies_pass_fail_miss(db, storage, store, write_artifact):
    seed_exports(store, write_artifact)
    result = Verifier(db, storage, max_workers=2).verify()

    assert result.summary.to_dict() == {"total": 4, "pass": 1, "fail": 1, "miss": 2}
    by_ts = {trace.ts: trace for trace in result.traces}
    assert by_ts[1].status is VerifyStatus.PASS
    assert by_ts[2].status is VerifyStatus.FAIL
    assert by_ts[2].actual == content_hash(b"%PDF tampered")
    assert by_ts[3].status is VerifyStatus.MISS
    assert by_ts[4].status is VerifyStatus.MISS
    assert by_ts[4].message == "no artifact locator"


def test_verification_is_idempotent(db, storage, store, write_artifact):
    seed_exports(store, write_artifact)
    verifier = Verifier(db, storage)
    first = verifier.verify()
    second = verifier.verify()
    assert first.summary == second.summary
    assert [t.to_dict() for t in first.traces] == [t.to_dict() for t in second.traces]


def test_filters_by_subject_and_kind(db, storage, store, write_artifact):
    seed_exports(store, write_artifact)
    verifier = Verifier(db, storage)
    assert verifier.verify(VerifyFilter(subject_id="2")).summary.total == 1
    assert verifier.verify(VerifyFilter(kind="docx")).summary.to_dict() == {
        "total": 1,
        "pass": 0,
        "fail": 0,
        "miss": 1,
    }


def test_ignores_non_export_kinds(db, storage, store):
    store.record(kind="ai:compose", content_hash=content_hash(b"x"), locator="", subject_id="1", ts=1)
    assert Verifier(db, storage).verify().summary.total == 0


def test_hung_read_counts_as_miss(db, tmp_path, store, write_artifact):
    class SlowStorage(LocalStorage):
        def read(self, locator):
            time.sleep(0.5)
            return super().read(locator)

    data = b"%PDF slow"
    write_artifact("_global/proofs/subject-1/1-pdf", data)
    store.record(kind="pdf", content_hash=content_hash(data), locator="_global/proofs/subject-1/1-pdf", subject_id="1", ts=1)

    slow = SlowStorage(str(tmp_path / "artifacts"))
    result = Verifier(db, slow, read_timeout=0.05).verify()
    assert result.summary.miss == 1
    assert "timed out" in result.traces[0].message


def test_storage_key_preferred_over_path(db, storage, store, write_artifact):
    data = b"%PDF moved"
    write_artifact("bucket/key-1", data)
    store.record(
        kind="pdf",
        content_hash=content_hash(data),
        locator="/old/absolute/path.pdf",
        subject_id="1",
        meta={"storageKey": "bucket/key-1"},
        ts=1,
    )
    assert Verifier(db, storage).verify().summary.pass_ == 1


def test_single_artifact_lifecycle(db, storage, store, write_artifact):
    """PASS while intact, FAIL once mutated, MISS once deleted."""
    locator = write_artifact("_global/proofs/subject-9/1-pdf", b"abc123")
    store.record(kind="pdf", content_hash=content_hash(b"abc123"), locator=locator, subject_id="9", ts=1)
    verifier = Verifier(db, storage)

    assert verifier.verify().summary.pass_ == 1
    storage.write(locator, b"abc124")
    assert verifier.verify().summary.fail == 1
    storage.delete(locator)
    assert verifier.verify().summary.miss == 1


def test_unreachable_backend_counts_as_miss(db, tmp_path, store, write_artifact):
    class UnreachableStorage(LocalStorage):
        def read(self, locator):
            raise MaxRetryError(None, f"/artifacts/{locator}")

    write_artifact("_global/proofs/subject-1/1-pdf", b"%PDF")
    store.record(kind="pdf", content_hash=content_hash(b"%PDF"), locator="_global/proofs/subject-1/1-pdf", subject_id="1", ts=1)

    result = Verifier(db, UnreachableStorage(str(tmp_path / "artifacts"))).verify()
    assert result.summary.to_dict() == {"total": 1, "pass": 0, "fail": 0, "miss": 1}
    assert result.traces[0].status is VerifyStatus.MISS


def test_abandoned_read_runs_on_daemon_thread(db, tmp_path, store, write_artifact):
    release = threading.Event()

    class HungStorage(LocalStorage):
        def read(self, locator):
            release.wait(5)
            return super().read(locator)

    write_artifact("_global/proofs/subject-1/1-pdf", b"%PDF hung")
    store.record(kind="pdf", content_hash=content_hash(b"%PDF hung"), locator="_global/proofs/subject-1/1-pdf", subject_id="1", ts=1)

    try:
        result = Verifier(db, HungStorage(str(tmp_path / "artifacts")), read_timeout=0.05).verify()
        hung = [t for t in threading.enumerate() if t.name == "storage-io" and t.is_alive()]
        assert result.summary.miss == 1
        assert hung
        assert all(t.daemon for t in hung)
    finally:
        release.set()
