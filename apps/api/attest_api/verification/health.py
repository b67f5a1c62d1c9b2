"""Per-subject proof health: live verification rolled into a status and score."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from attest_api.proofs.kinds import COMPOSE_KIND, EXPORT_KINDS, LEGACY_COMPOSE_TYPES
from attest_api.proofs.store import ProofStore
from attest_api.storage.service import ArtifactStorage
from attest_api.verification.compose_replay import ComposeReplayer
from attest_api.verification.verifier import Verifier, VerifyFilter, VerifyStatus

HEALTH_SAMPLE_LIMIT = 100
BATCH_LIMIT = 50
STALE_AFTER_MS = 7 * 24 * 60 * 60 * 1000
DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class ExportCounts:
    total: int = 0
    pass_: int = 0
    fail: int = 0
    miss: int = 0

    def to_dict(self) -> dict:
        return {"total": self.total, "pass": self.pass_, "fail": self.fail, "miss": self.miss}


@dataclass
class ComposeCounts:
    total: int = 0
    pass_: int = 0
    drift: int = 0
    miss: int = 0

    def to_dict(self) -> dict:
        return {"total": self.total, "pass": self.pass_, "drift": self.drift, "miss": self.miss}


@dataclass
class ProofHealth:
    subject_id: str
    status: str
    score: int
    exports: ExportCounts = field(default_factory=ExportCounts)
    compose: ComposeCounts = field(default_factory=ComposeCounts)
    last_verified: Optional[str] = None
    last_activity: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "subjectId": self.subject_id,
            "status": self.status,
            "score": self.score,
            "exports": self.exports.to_dict(),
            "compose": self.compose.to_dict(),
            "lastVerified": self.last_verified,
            "lastActivity": self.last_activity,
        }


def _iso(ts_ms: Optional[int]) -> Optional[str]:
    if not ts_ms:
        return None
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def score_health(
    exports: ExportCounts,
    compose: ComposeCounts,
    last_verified_ts: Optional[int],
    now_ms: Optional[int] = None,
):
    """Map verification counts to ``(status, score)``."""
    if exports.fail > 0 or compose.drift > 0:
        return "failed", 0
    if exports.total + compose.total == 0:
        return "unverified", 25
    if exports.miss == exports.total and compose.miss == compose.total:
        return "unverified", 10

    passed = exports.pass_ + compose.pass_
    checked = exports.pass_ + exports.fail + compose.pass_ + compose.drift
    pass_rate = passed / checked if checked else 0.0

    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    is_stale = last_verified_ts is None or now_ms - last_verified_ts > STALE_AFTER_MS

    if pass_rate == 1 and not is_stale:
        return "healthy", 100
    if pass_rate == 1:
        days_stale = (now_ms - last_verified_ts) // DAY_MS if last_verified_ts else 30
        return "stale", max(50, 80 - days_stale)
    if pass_rate >= 0.5:
        return "stale", round(pass_rate * 70)
    return "unverified", round(pass_rate * 49)


class ProofHealthService:
    def __init__(self, db: Session, storage: ArtifactStorage, proof_store: Optional[ProofStore] = None):
        self.db = db
        self.storage = storage
        self.proof_store = proof_store or ProofStore(db)
        self.verifier = Verifier(db, storage, proof_store=self.proof_store)
        self.replayer = ComposeReplayer(db, storage, proof_store=self.proof_store)

    def calculate(self, subject_id: str, now_ms: Optional[int] = None) -> ProofHealth:
        subject_id = str(subject_id)

        exports = ExportCounts()
        latest_export_ts = None
        result = self.verifier.verify(
            VerifyFilter(subject_id=subject_id, kinds=sorted(EXPORT_KINDS), limit=HEALTH_SAMPLE_LIMIT)
        )
        exports.total = result.summary.total
        for trace in result.traces:
            if trace.status is VerifyStatus.PASS:
                exports.pass_ += 1
                if trace.ts and (latest_export_ts is None or trace.ts > latest_export_ts):
                    latest_export_ts = trace.ts
            elif trace.status is VerifyStatus.FAIL:
                exports.fail += 1
            else:
                exports.miss += 1

        # Health checks compose integrity only; a payload that no longer hashes
        # to its recorded value counts as drift here.
        compose = ComposeCounts()
        latest_compose_ts = None
        compose_records = self.proof_store.select(
            subject_id=subject_id,
            kinds=[COMPOSE_KIND],
            legacy_types=LEGACY_COMPOSE_TYPES,
            limit=HEALTH_SAMPLE_LIMIT,
        )
        compose.total = len(compose_records)
        for record in compose_records:
            packet_text = self.replayer.load_packet_text(record)
            if not packet_text or not record.packet_hash:
                compose.miss += 1
            elif self.replayer.integrity_ok(packet_text, record.packet_hash):
                compose.pass_ += 1
                if latest_compose_ts is None or record.ts > latest_compose_ts:
                    latest_compose_ts = record.ts
            else:
                compose.drift += 1

        last_verified_ts = latest_export_ts or latest_compose_ts
        latest_ts = max(latest_export_ts or 0, latest_compose_ts or 0)
        status, score = score_health(exports, compose, last_verified_ts, now_ms=now_ms)
        return ProofHealth(
            subject_id=subject_id,
            status=status,
            score=score,
            exports=exports,
            compose=compose,
            last_verified=_iso(last_verified_ts),
            last_activity=_iso(latest_ts),
        )

    def calculate_many(self, subject_ids: Iterable[str]) -> Dict[str, ProofHealth]:
        """Health for up to ``BATCH_LIMIT`` subjects."""
        results = {}
        for subject_id in list(subject_ids)[:BATCH_LIMIT]:
            results[str(subject_id)] = self.calculate(subject_id)
        return results


def calculate_proof_health(db: Session, storage: ArtifactStorage, subject_id: str) -> ProofHealth:
    return ProofHealthService(db, storage).calculate(subject_id)
