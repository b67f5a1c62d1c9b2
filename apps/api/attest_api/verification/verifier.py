"""Replay verification of stored artifacts against their recorded hashes.

Each selected proof row is classified as

- PASS: artifact readable and its hash equals the recorded hash
- FAIL: artifact readable but the hash differs (tampered or corrupted)
- MISS: no locator, no recorded hash, or the artifact cannot be read

Verification never writes; running it twice over unchanged data gives the
same result.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from attest_api.errors import StorageError, StorageTimeoutError
from attest_api.proofs.hashing import content_hash, normalize_hash
from attest_api.proofs.kinds import EXPORT_KINDS
from attest_api.proofs.store import ProofRecord, ProofStore
from attest_api.settings import get_settings
from attest_api.storage.service import ArtifactStorage, call_with_timeout
from attest_api.utils.metrics import verification_duration, verification_results

logger = logging.getLogger(__name__)

DEFAULT_VERIFY_LIMIT = 5000


class VerifyStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    MISS = "MISS"


@dataclass
class VerifyFilter:
    subject_id: Optional[str] = None
    kind: Optional[str] = None
    kinds: Optional[Sequence[str]] = None
    limit: Optional[int] = None

    def selected_kinds(self) -> List[str]:
        if self.kinds:
            return list(self.kinds)
        if self.kind:
            return [self.kind]
        return sorted(EXPORT_KINDS)


@dataclass
class VerifyTrace:
    id: int
    subject_id: str
    kind: Optional[str]
    locator: str
    status: VerifyStatus
    expected: Optional[str]
    actual: Optional[str] = None
    message: Optional[str] = None
    ts: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class VerifySummary:
    total: int = 0
    pass_: int = 0
    fail: int = 0
    miss: int = 0

    def to_dict(self) -> dict:
        return {"total": self.total, "pass": self.pass_, "fail": self.fail, "miss": self.miss}


@dataclass
class VerifyResult:
    summary: VerifySummary
    traces: List[VerifyTrace] = field(default_factory=list)


class Verifier:
    """Recomputes artifact hashes for selected proof rows."""

    def __init__(
        self,
        db: Session,
        storage: ArtifactStorage,
        proof_store: Optional[ProofStore] = None,
        max_workers: Optional[int] = None,
        read_timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.db = db
        self.storage = storage
        self.proof_store = proof_store or ProofStore(db)
        self.max_workers = max_workers or settings.verify_max_workers
        self.read_timeout = read_timeout if read_timeout is not None else settings.artifact_read_timeout_seconds

    def verify(self, filters: Optional[VerifyFilter] = None) -> VerifyResult:
        filters = filters or VerifyFilter()
        started = time.monotonic()
        records = self.proof_store.select(
            subject_id=filters.subject_id,
            kinds=filters.selected_kinds(),
            limit=filters.limit or DEFAULT_VERIFY_LIMIT,
        )

        summary = VerifySummary(total=len(records))
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="verify") as pool:
            traces = list(pool.map(self._verify_one, records))

        for trace in traces:
            if trace.status is VerifyStatus.PASS:
                summary.pass_ += 1
            elif trace.status is VerifyStatus.FAIL:
                summary.fail += 1
            else:
                summary.miss += 1
            verification_results.labels(status=trace.status.value).inc()

        verification_duration.observe(time.monotonic() - started)
        logger.info(
            f"Verified {summary.total} artifacts: {summary.pass_} pass, {summary.fail} fail, {summary.miss} miss",
            extra={"subject_id": filters.subject_id, "kinds": filters.selected_kinds()},
        )
        return VerifyResult(summary=summary, traces=traces)

    def _read(self, record: ProofRecord) -> bytes:
        if record.storage_key and record.storage_key != record.locator:
            try:
                return self.storage.read(record.storage_key)
            except (OSError, StorageError):
                logger.debug(f"Storage key {record.storage_key} unreadable, falling back to path")
        return self.storage.read(record.locator)

    def _verify_one(self, record: ProofRecord) -> VerifyTrace:
        expected = normalize_hash(record.content_hash)
        trace = VerifyTrace(
            id=record.id,
            subject_id=record.subject_id,
            kind=record.kind,
            locator=record.locator,
            status=VerifyStatus.MISS,
            expected=expected,
            ts=record.ts,
        )
        if not record.locator:
            trace.message = "no artifact locator"
            return trace
        if not expected:
            trace.message = "no recorded hash"
            return trace

        # Any read failure means the artifact is unreadable: MISS.
        try:
            data = call_with_timeout(self._read, record, timeout=self.read_timeout)
        except StorageTimeoutError:
            trace.message = f"read timed out after {self.read_timeout}s"
            return trace
        except (OSError, StorageError) as e:
            trace.message = str(e)
            return trace
        except Exception as e:
            logger.warning(f"Unexpected error reading artifact for proof {record.id}: {e}", exc_info=True)
            trace.message = f"unreadable: {e}"
            return trace

        trace.actual = content_hash(data)
        if trace.actual == expected:
            trace.status = VerifyStatus.PASS
        else:
            trace.status = VerifyStatus.FAIL
            trace.message = "hash mismatch"
        return trace
