"""Reconciliation between the artifact store and proof records.

Backfill records artifacts that follow the naming convention but have no
proof row. Cleanup reports proof rows whose artifact is gone (DB-stale) and
convention files no proof row references (FS-orphan); it only deletes when
asked to, one item at a time.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attest_api.errors import DuplicateProofError, RecordingError, StorageError
from attest_api.proofs.hashing import content_hash
from attest_api.proofs.store import GLOBAL_WORKSPACE, ProofRecord, ProofStore, kind_from_safe
from attest_api.settings import get_settings
from attest_api.storage.service import ArtifactStorage, call_with_timeout
from attest_api.utils.metrics import reconciliation_items

logger = logging.getLogger(__name__)

ARTIFACT_PATTERN = re.compile(
    r"^(?P<workspace>[^/]+)/proofs/subject-(?P<subject>[^/]+)/(?P<ts>\d+)-(?P<kind>[^/]+)$"
)


@dataclass(frozen=True)
class ArtifactName:
    locator: str
    workspace_id: Optional[str]
    subject_id: str
    ts: int
    kind: str


def parse_locator(locator: str) -> Optional[ArtifactName]:
    """Parse a conventional artifact locator, or None when it does not match."""
    match = ARTIFACT_PATTERN.match(locator)
    if not match:
        return None
    workspace = match.group("workspace")
    return ArtifactName(
        locator=locator,
        workspace_id=None if workspace == GLOBAL_WORKSPACE else workspace,
        subject_id=match.group("subject"),
        ts=int(match.group("ts")),
        kind=kind_from_safe(match.group("kind")),
    )


@dataclass
class BackfillSummary:
    inspected: int = 0
    inserted: int = 0
    skipped: int = 0
    errors: int = 0
    would_record: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "inspected": self.inspected,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class CleanupSummary:
    db_stale: List[ProofRecord] = field(default_factory=list)
    fs_orphan: List[str] = field(default_factory=list)
    deleted_db_stale: int = 0
    deleted_fs_orphan: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "dbStale": len(self.db_stale),
            "fsOrphan": len(self.fs_orphan),
            "deletedDbStale": self.deleted_db_stale,
            "deletedFsOrphan": self.deleted_fs_orphan,
            "errors": self.errors,
        }


class ReconciliationScanner:
    """Backfill and cleanup passes over one storage root."""

    def __init__(
        self,
        db: Session,
        storage: ArtifactStorage,
        proof_store: Optional[ProofStore] = None,
        max_workers: Optional[int] = None,
        echo: Optional[Callable[[str], None]] = None,
        read_timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.db = db
        self.storage = storage
        self.proof_store = proof_store or ProofStore(db, storage_provider=storage.type)
        self.max_workers = max_workers or settings.verify_max_workers
        self.read_timeout = read_timeout if read_timeout is not None else settings.artifact_read_timeout_seconds
        self.echo = echo

    def _line(self, text: str) -> None:
        if self.echo is not None:
            self.echo(text)

    def convention_files(self, subject_id: Optional[str] = None) -> List[ArtifactName]:
        names = []
        for locator in self.storage.walk():
            name = parse_locator(locator)
            if name is None:
                continue
            if subject_id is not None and name.subject_id != str(subject_id):
                continue
            names.append(name)
        return names

    def _hash(self, name: ArtifactName):
        try:
            data = call_with_timeout(self.storage.read, name.locator, timeout=self.read_timeout)
        except Exception as e:
            return name, None, e
        return name, content_hash(data), None

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    def backfill(self, dry_run: bool = False, subject_id: Optional[str] = None) -> BackfillSummary:
        summary = BackfillSummary()
        if not self.storage.available():
            logger.info(f"Storage root {self.storage.describe()} missing; nothing to backfill")
            return summary

        names = self.convention_files(subject_id)
        summary.inspected = len(names)
        recorded = self.proof_store.all_locators(subject_id=subject_id)
        pending = []
        for name in names:
            if name.locator in recorded:
                summary.skipped += 1
            else:
                pending.append(name)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="backfill") as pool:
            hashed = list(pool.map(self._hash, pending))

        for name, digest, error in hashed:
            if error is not None:
                summary.errors += 1
                reconciliation_items.labels(operation="backfill", outcome="error").inc()
                logger.warning(f"Could not hash {name.locator}: {error}")
                continue
            if self.proof_store.find_matching(name.subject_id, name.kind, digest):
                summary.skipped += 1
                reconciliation_items.labels(operation="backfill", outcome="skipped").inc()
                continue
            if dry_run:
                line = f"would record subject-{name.subject_id} {name.kind} {digest} {name.locator}"
                summary.would_record.append(line)
                self._line(line)
                continue

            meta = {"backfilled": True}
            if name.workspace_id:
                meta["workspaceId"] = name.workspace_id
            try:
                self.proof_store.record(
                    kind=name.kind,
                    content_hash=digest,
                    locator=name.locator,
                    subject_id=name.subject_id,
                    meta=meta,
                    ts=name.ts,
                )
            except DuplicateProofError:
                summary.skipped += 1
                reconciliation_items.labels(operation="backfill", outcome="skipped").inc()
                continue
            except RecordingError as e:
                summary.errors += 1
                reconciliation_items.labels(operation="backfill", outcome="error").inc()
                logger.warning(f"Could not record {name.locator}: {e}")
                continue
            summary.inserted += 1
            reconciliation_items.labels(operation="backfill", outcome="inserted").inc()
            self._line(f"recorded subject-{name.subject_id} {name.kind} {name.locator}")

        logger.info(
            f"Backfill: {summary.inspected} inspected, {summary.inserted} inserted, "
            f"{summary.skipped} skipped, {summary.errors} errors",
            extra={"dry_run": dry_run, "subject_id": subject_id},
        )
        return summary

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def _resolves(self, record: ProofRecord):
        """(record, resolved, error). A record whose check failed is neither stale nor fresh."""
        try:
            for locator in (record.storage_key, record.locator):
                if locator and call_with_timeout(self.storage.exists, locator, timeout=self.read_timeout):
                    return record, True, None
        except Exception as e:
            return record, False, e
        return record, False, None

    def check_records(self, subject_id: Optional[str] = None):
        records = self.proof_store.select(subject_id=subject_id, with_locator=True, newest_first=False)
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cleanup") as pool:
            return list(pool.map(self._resolves, records))

    def find_db_stale(self, subject_id: Optional[str] = None) -> List[ProofRecord]:
        return [record for record, ok, error in self.check_records(subject_id) if not ok and error is None]

    def find_fs_orphans(self, subject_id: Optional[str] = None) -> List[str]:
        referenced: Set[str] = self.proof_store.all_locators()
        return [name.locator for name in self.convention_files(subject_id) if name.locator not in referenced]

    def cleanup(
        self,
        subject_id: Optional[str] = None,
        delete_db_stale: bool = False,
        delete_orphan_files: bool = False,
    ) -> CleanupSummary:
        summary = CleanupSummary()
        if not self.storage.available():
            logger.info(f"Storage root {self.storage.describe()} missing; nothing to clean")
            return summary

        for record, ok, error in self.check_records(subject_id):
            if error is not None:
                summary.errors += 1
                reconciliation_items.labels(operation="cleanup", outcome="error").inc()
                logger.warning(f"Could not check proof {record.id} at {record.locator}: {error}")
            elif not ok:
                summary.db_stale.append(record)
        summary.fs_orphan = self.find_fs_orphans(subject_id)
        for record in summary.db_stale:
            self._line(f"DB-STALE  subject-{record.subject_id}  {record.kind}  id={record.id}  {record.locator}")
        for locator in summary.fs_orphan:
            self._line(f"FS-ORPHAN {locator}")

        if delete_db_stale:
            for record in summary.db_stale:
                try:
                    if self.proof_store.delete(record.id):
                        summary.deleted_db_stale += 1
                        reconciliation_items.labels(operation="cleanup", outcome="deleted_row").inc()
                except SQLAlchemyError as e:
                    self.db.rollback()
                    summary.errors += 1
                    logger.warning(f"Could not delete stale proof {record.id}: {e}")

        if delete_orphan_files:
            for locator in summary.fs_orphan:
                try:
                    self.storage.delete(locator)
                    summary.deleted_fs_orphan += 1
                    reconciliation_items.labels(operation="cleanup", outcome="deleted_file").inc()
                except (OSError, StorageError) as e:
                    summary.errors += 1
                    logger.warning(f"Could not delete orphan file {locator}: {e}")

        logger.info(
            f"Cleanup: {len(summary.db_stale)} DB-stale, {len(summary.fs_orphan)} FS-orphan",
            extra={"subject_id": subject_id},
        )
        return summary
