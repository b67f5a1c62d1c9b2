"""Celery tasks for async operations."""

import json
import logging
from typing import Optional

import redis
from celery import Task
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attest_worker.celery_app import celery_app
from attest_worker.db import SessionLocal, get_db
from attest_worker.settings import get_settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(get_settings().redis_url)
    return _redis_client


class DatabaseTask(Task):
    """Task with database session."""

    _db: Optional[Session] = None

    @property
    def db(self) -> Session:
        """Get database session."""
        if self._db is None:
            self._db = next(get_db())
        return self._db

    def after_return(self, *args, **kwargs):
        """Close database session after task."""
        if self._db:
            self._db.close()
            self._db = None


@celery_app.task(
    bind=True,
    max_retries=3,
    autoretry_for=(redis.RedisError,),
    retry_backoff=True,
    retry_backoff_max=60,
    retry_jitter=True,
)
def broadcast_workspace_event(self, workspace_id: str, payload: dict) -> int:
    """Publish a proof event on the workspace's realtime channel.

    Returns the number of listeners that received it.
    """
    channel = f"{get_settings().workspace_channel_prefix}{workspace_id}"
    receivers = get_redis().publish(channel, json.dumps(payload, separators=(",", ":")))
    logger.info(
        f"Broadcast {payload.get('type')} to {channel} ({receivers} listeners)",
        extra={"task": "broadcast_workspace_event", "workspace_id": workspace_id},
    )
    return receivers


@celery_app.task(bind=True)
def run_nightly_verify(self, notify: bool = True, triggered_by: str = "cron") -> dict:
    """Run the nightly verification in-process and return its summary."""
    from attest_api.nightly.orchestrator import run_nightly

    result = run_nightly(notify=notify, triggered_by=triggered_by, session_factory=SessionLocal)
    logger.info(
        f"Nightly verification finished with status {result.status}",
        extra={"task": "run_nightly_verify", "report_id": result.report_id},
    )
    return {
        "status": result.status,
        "reportId": result.report_id,
        "reportPath": str(result.report_path) if result.report_path else None,
        "notifications": result.notifications,
    }


@celery_app.task(base=DatabaseTask, bind=True)
def prune_verification_reports(self, days: Optional[int] = None) -> int:
    """Delete verification reports past the retention window."""
    from attest_api.reports.store import ReportStore

    days = days or get_settings().report_retention_days
    try:
        deleted = ReportStore(self.db).delete_reports_older_than(days)
    except SQLAlchemyError as e:
        logger.error(f"Report pruning failed: {e}", extra={"task": "prune_verification_reports"})
        raise
    logger.info(f"Pruned {deleted} verification reports older than {days} days")
    return deleted
