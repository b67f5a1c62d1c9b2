"""Tests for the integrity CLI."""

import json

import pytest
from click.testing import CliRunner

from attest_api import cli as cli_module
from attest_api.proofs.hashing import content_hash
from attest_api.proofs.recorder import ProofRecorder


@pytest.fixture
def runner(session_factory, storage, monkeypatch):
    monkeypatch.setattr(cli_module, "SessionLocal", session_factory)
    monkeypatch.setattr(cli_module, "get_storage_service", lambda: storage)
    monkeypatch.setattr(cli_module, "configure_logging", lambda *args, **kwargs: None)
    return CliRunner()


def last_json(result):
    return json.loads(result.stdout.strip().splitlines()[-1])


def test_backfill_dry_run(runner, store, write_artifact):
    for ts in (1, 2, 3):
        write_artifact(f"_global/proofs/subject-1/{ts}-pdf", f"pdf {ts}".encode())

    result = runner.invoke(cli_module.cli, ["backfill", "--dry-run"])

    assert result.exit_code == 0
    assert result.stdout.count("would record") == 3
    assert last_json(result) == {"inspected": 3, "inserted": 0, "skipped": 0, "errors": 0}
    assert store.select() == []


def test_replay_exits_nonzero_on_failure(runner, store, write_artifact):
    write_artifact("a.pdf", b"good")
    store.record(kind="pdf", content_hash=content_hash(b"good"), locator="a.pdf", subject_id="1", ts=1)

    result = runner.invoke(cli_module.cli, ["replay"])
    assert result.exit_code == 0
    assert last_json(result) == {"total": 1, "pass": 1, "fail": 0, "miss": 0}

    write_artifact("a.pdf", b"tampered")
    result = runner.invoke(cli_module.cli, ["replay", "--kind", "pdf"])
    assert result.exit_code == 1
    assert "FAIL" in result.stdout
    assert last_json(result)["fail"] == 1


def test_compose_replay_summary(runner, db, storage):
    ProofRecorder(db, storage).record_operation("1", "ai:compose", {"prompt": "p"}, {"proposalText": "t"})
    result = runner.invoke(cli_module.cli, ["compose-replay", "--limit", "10"])
    assert result.exit_code == 0
    assert last_json(result) == {"total": 1, "pass": 1, "drift": 0, "miss": 0, "rerun": False}


def test_clean_stale_reports_only(runner, store, write_artifact):
    store.record(kind="pdf", content_hash=content_hash(b"x"), locator="_global/proofs/subject-1/1-pdf", subject_id="1", ts=1)
    write_artifact("_global/proofs/subject-1/2-pdf", b"orphan")

    result = runner.invoke(cli_module.cli, ["clean-stale", "-v"])

    assert result.exit_code == 0
    assert "DB-STALE" in result.stdout
    assert "FS-ORPHAN" in result.stdout
    assert last_json(result)["deletedDbStale"] == 0
    assert len(store.select()) == 1


def test_prune_reports(runner):
    result = runner.invoke(cli_module.cli, ["prune-reports", "--days", "30"])
    assert result.exit_code == 0
    assert last_json(result) == {"deleted": 0, "retentionDays": 30}
