"""Verification report routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from attest_api.db.session import get_db
from attest_api.reports.store import REPORT_STATUSES, ReportStore, report_full, report_meta
from attest_api.settings import get_settings

router = APIRouter(prefix="/v1/verification-reports", tags=["verification-reports"])


class CleanupRequest(BaseModel):
    days: Optional[int] = None


@router.get("")
async def list_reports(
    limit: Optional[int] = None,
    before: Optional[str] = None,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
):
    """List reports, newest first, with an id cursor."""
    if status_filter and status_filter not in REPORT_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"status must be one of {', '.join(REPORT_STATUSES)}",
        )
    reports, has_more = ReportStore(db).list_reports(limit=limit, before=before, status=status_filter)
    return {"reports": [report_meta(r) for r in reports], "hasMore": has_more}


@router.get("/latest")
async def latest_report(db: Session = Depends(get_db)):
    report = ReportStore(db).get_latest_report()
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No verification reports found")
    return report_meta(report)


@router.get("/counts")
async def report_counts(db: Session = Depends(get_db)):
    return ReportStore(db).get_report_counts()


@router.post("/cleanup")
async def cleanup_reports(request_data: CleanupRequest, db: Session = Depends(get_db)):
    """Apply the retention policy."""
    days = request_data.days or get_settings().report_retention_days
    try:
        deleted = ReportStore(db).delete_reports_older_than(days)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"deleted": deleted, "retentionDays": days}


@router.get("/{report_id}")
async def get_report(report_id: str, full: bool = False, db: Session = Depends(get_db)):
    report = ReportStore(db).get_report(report_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return report_full(report) if full else report_meta(report)


@router.delete("/{report_id}")
async def delete_report(report_id: str, db: Session = Depends(get_db)):
    if not ReportStore(db).delete_report(report_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return {"deleted": True, "id": report_id}
