"""CLI commands for the integrity subsystem.

Every command prints human-readable lines followed by one compact JSON line
with its summary, so callers (including the nightly orchestrator) can parse
the last line of stdout. Logs go to stderr.
"""

import json
import sys

import click

from attest_api.db.session import SessionLocal
from attest_api.events.bus import create_default_bus
from attest_api.nightly.orchestrator import run_nightly
from attest_api.proofs.store import ProofStore
from attest_api.reconciliation.scanner import ReconciliationScanner
from attest_api.reports.store import ReportStore
from attest_api.settings import get_settings
from attest_api.storage.service import get_storage_service
from attest_api.utils.logging import configure_logging
from attest_api.verification.compose_replay import ComposeReplayer, provider_from_settings
from attest_api.verification.verifier import Verifier, VerifyFilter, VerifyStatus


def emit_summary(summary: dict) -> None:
    click.echo(json.dumps(summary, separators=(",", ":")))


@click.group()
def cli():
    """Attest integrity CLI."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format, stream=sys.stderr)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Report what would be recorded without writing.")
@click.option("--subject", "subject_id", default=None, help="Limit to one subject.")
@click.option("--verbose", "-v", is_flag=True)
def backfill(dry_run, subject_id, verbose):
    """Record proof rows for conventional artifacts that have none."""
    storage = get_storage_service()
    db = SessionLocal()
    try:
        store = ProofStore(db, bus=create_default_bus(), storage_provider=storage.type)
        scanner = ReconciliationScanner(
            db, storage, proof_store=store, echo=click.echo if (verbose or dry_run) else None
        )
        summary = scanner.backfill(dry_run=dry_run, subject_id=subject_id)
    finally:
        db.close()
    click.echo(
        f"{'[dry-run] ' if dry_run else ''}inspected={summary.inspected} inserted={summary.inserted} "
        f"skipped={summary.skipped} errors={summary.errors}"
    )
    emit_summary(summary.to_dict())


@cli.command()
@click.option("--subject", "subject_id", default=None, help="Limit to one subject.")
@click.option("--kind", "kinds", multiple=True, help="Proof kind to verify (repeatable).")
@click.option("--verbose", "-v", is_flag=True)
def replay(subject_id, kinds, verbose):
    """Verify stored artifacts against their recorded hashes."""
    storage = get_storage_service()
    db = SessionLocal()
    try:
        result = Verifier(db, storage).verify(VerifyFilter(subject_id=subject_id, kinds=list(kinds) or None))
    finally:
        db.close()
    for trace in result.traces:
        if verbose or trace.status is not VerifyStatus.PASS:
            note = f"  ({trace.message})" if trace.message else ""
            click.echo(
                f"{trace.status.value:<5} subject-{trace.subject_id}  {trace.kind}  id={trace.id}  {trace.locator}{note}"
            )
    emit_summary(result.summary.to_dict())
    if result.summary.fail > 0:
        sys.exit(1)


@cli.command("compose-replay")
@click.option("--subject", "subject_id", default=None, help="Limit to one subject.")
@click.option("--limit", type=int, default=None, help="Maximum rows (default 50, max 200).")
@click.option("--rerun", is_flag=True, help="Re-generate output and compare for drift.")
@click.option("--verbose", "-v", is_flag=True)
def compose_replay(subject_id, limit, rerun, verbose):
    """Check AI compose proofs for integrity and, optionally, drift."""
    settings = get_settings()
    storage = get_storage_service()
    rerun = rerun or settings.compose_replay_rerun
    db = SessionLocal()
    try:
        replayer = ComposeReplayer(
            db,
            storage,
            provider=provider_from_settings(settings) if rerun else None,
            echo=click.echo if verbose else None,
        )
        summary = replayer.replay(subject_id=subject_id, limit=limit, rerun=rerun)
    finally:
        db.close()
    emit_summary(summary.to_dict())
    if summary.drift > 0:
        sys.exit(1)


@cli.command("clean-stale")
@click.option("--subject", "subject_id", default=None, help="Limit to one subject.")
@click.option("--delete-db-stale", is_flag=True, help="Delete proof rows whose artifact is gone.")
@click.option("--delete-orphan-files", is_flag=True, help="Delete artifacts no proof row references.")
@click.option("--verbose", "-v", is_flag=True)
def clean_stale(subject_id, delete_db_stale, delete_orphan_files, verbose):
    """Report (and optionally delete) stale proof rows and orphan files."""
    storage = get_storage_service()
    db = SessionLocal()
    try:
        scanner = ReconciliationScanner(db, storage, echo=click.echo if verbose else None)
        summary = scanner.cleanup(
            subject_id=subject_id,
            delete_db_stale=delete_db_stale,
            delete_orphan_files=delete_orphan_files,
        )
    finally:
        db.close()
    click.echo(f"db-stale={len(summary.db_stale)} fs-orphan={len(summary.fs_orphan)}")
    if not (delete_db_stale or delete_orphan_files):
        click.echo("Report only; pass --delete-db-stale or --delete-orphan-files to remove.")
    emit_summary(summary.to_dict())


@cli.command("nightly-verify")
@click.option("--notify", is_flag=True, help="Send notifications on fail/partial when enabled.")
@click.option("--triggered-by", default=None, help="Recorded trigger (default: manual).")
def nightly_verify(notify, triggered_by):
    """Run export verification and compose replay and store a report."""
    result = run_nightly(notify=notify, triggered_by=triggered_by)
    click.echo(f"Report file: {result.report_path}")
    if result.report_id:
        click.echo(f"Report id: {result.report_id}")
    click.echo(f"Overall status: {result.status.upper()}")
    emit_summary(
        {
            "status": result.status,
            "reportId": result.report_id,
            "exports": result.report["exports"]["summary"],
            "composeReplay": result.report["composeReplay"]["summary"],
        }
    )
    sys.exit(result.exit_code)


@cli.command("prune-reports")
@click.option("--days", type=int, default=None, help="Retention in days (default from settings).")
def prune_reports(days):
    """Delete verification reports older than the retention window."""
    days = days or get_settings().report_retention_days
    db = SessionLocal()
    try:
        deleted = ReportStore(db).delete_reports_older_than(days)
    finally:
        db.close()
    click.echo(f"Deleted {deleted} reports older than {days} days")
    emit_summary({"deleted": deleted, "retentionDays": days})


if __name__ == "__main__":
    cli()
