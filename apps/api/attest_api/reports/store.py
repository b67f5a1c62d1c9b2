"""Verification report persistence."""

import logging
import secrets
import time
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attest_api.errors import RecordingError
from attest_api.models import VerificationReport

logger = logging.getLogger(__name__)

REPORT_STATUSES = ("pass", "fail", "partial")
DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100
DAY_MS = 24 * 60 * 60 * 1000


def new_report_id() -> str:
    return f"vr_{secrets.token_urlsafe(12)[:16]}"


def report_meta(report: VerificationReport) -> dict:
    """Report summary without the full JSON body."""
    return {
        "id": report.id,
        "createdAt": report.created_at,
        "status": report.status,
        "exports": {
            "pass": report.exports_pass,
            "fail": report.exports_fail,
            "miss": report.exports_miss,
        },
        "compose": {
            "pass": report.compose_pass,
            "drift": report.compose_drift,
            "miss": report.compose_miss,
        },
        "triggeredBy": report.triggered_by,
    }


def report_full(report: VerificationReport) -> dict:
    data = report_meta(report)
    data["reportJson"] = report.report_json
    return data


class ReportStore:
    """CRUD and retention for nightly verification reports."""

    def __init__(self, db: Session):
        self.db = db

    def create_report(
        self,
        status: str,
        report_json: dict,
        exports: Optional[dict] = None,
        compose: Optional[dict] = None,
        triggered_by: str = "cron",
        created_at: Optional[int] = None,
    ) -> VerificationReport:
        if status not in REPORT_STATUSES:
            raise ValueError(f"Invalid report status: {status}")
        exports = exports or {}
        compose = compose or {}
        report = VerificationReport(
            id=new_report_id(),
            created_at=created_at if created_at is not None else int(time.time() * 1000),
            status=status,
            exports_pass=int(exports.get("pass", 0)),
            exports_fail=int(exports.get("fail", 0)),
            exports_miss=int(exports.get("miss", 0)),
            compose_pass=int(compose.get("pass", 0)),
            compose_drift=int(compose.get("drift", 0)),
            compose_miss=int(compose.get("miss", 0)),
            report_json=report_json,
            triggered_by=triggered_by,
        )
        try:
            self.db.add(report)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecordingError(f"Failed to store verification report: {e}") from e
        self.db.refresh(report)
        logger.info(f"Stored verification report {report.id} ({status})", extra={"report_id": report.id})
        return report

    def get_report(self, report_id: str) -> Optional[VerificationReport]:
        return self.db.query(VerificationReport).filter(VerificationReport.id == report_id).first()

    def get_report_full(self, report_id: str) -> Optional[dict]:
        report = self.get_report(report_id)
        return report_full(report) if report else None

    def get_latest_report(self) -> Optional[VerificationReport]:
        return (
            self.db.query(VerificationReport)
            .order_by(VerificationReport.created_at.desc(), VerificationReport.id.desc())
            .first()
        )

    def list_reports(
        self,
        limit: Optional[int] = None,
        before: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Tuple[List[VerificationReport], bool]:
        """Newest first. ``before`` is a report id cursor; unknown ids are ignored."""
        effective = min(max(1, limit or DEFAULT_LIST_LIMIT), MAX_LIST_LIMIT)
        query = self.db.query(VerificationReport)
        if before:
            cursor = self.get_report(before)
            if cursor is not None:
                query = query.filter(VerificationReport.created_at < cursor.created_at)
        if status:
            query = query.filter(VerificationReport.status == status)
        rows = (
            query.order_by(VerificationReport.created_at.desc(), VerificationReport.id.desc())
            .limit(effective + 1)
            .all()
        )
        has_more = len(rows) > effective
        return rows[:effective], has_more

    def delete_report(self, report_id: str) -> bool:
        deleted = self.db.query(VerificationReport).filter(VerificationReport.id == report_id).delete()
        self.db.commit()
        return deleted > 0

    def delete_reports_older_than(self, days: int, now_ms: Optional[int] = None) -> int:
        if days < 1:
            raise ValueError("days must be a positive number")
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        cutoff = now_ms - days * DAY_MS
        deleted = (
            self.db.query(VerificationReport)
            .filter(VerificationReport.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if deleted:
            logger.info(f"Deleted {deleted} verification reports older than {days} days")
        return deleted

    def get_report_counts(self) -> dict:
        counts = {"total": 0, "pass": 0, "fail": 0, "partial": 0}
        rows = (
            self.db.query(VerificationReport.status, func.count(VerificationReport.id))
            .group_by(VerificationReport.status)
            .all()
        )
        for status, count in rows:
            counts["total"] += count
            if status in counts:
                counts[status] = count
        return counts
