"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from attest_worker.settings import get_settings

settings = get_settings()

celery_app = Celery(
    "attest_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=90 * 60,  # nightly runs two replays back to back
    task_soft_time_limit=80 * 60,
    beat_schedule={
        "nightly-verify": {
            "task": "attest_worker.tasks.run_nightly_verify",
            "schedule": crontab(
                hour=settings.nightly_verify_hour,
                minute=settings.nightly_verify_minute,
            ),
        },
        "prune-verification-reports": {
            "task": "attest_worker.tasks.prune_verification_reports",
            "schedule": crontab(hour=settings.report_prune_hour, minute=0),
        },
    },
)

# Import tasks to register them with Celery
# This must be done after celery_app is created
from attest_worker import tasks  # noqa: F401, E402
