"""Shared Celery client for the API to enqueue worker tasks by name.

Configured to match the worker (serializer, timezone, broker) without
importing the worker package.
"""

import logging
from typing import Optional

from celery import Celery

from attest_api.settings import get_settings

logger = logging.getLogger(__name__)

BROADCAST_TASK = "attest_worker.tasks.broadcast_workspace_event"

_celery_app: Optional[Celery] = None


def get_celery_app() -> Celery:
    """Get or create singleton Celery app instance."""
    global _celery_app

    if _celery_app is None:
        settings = get_settings()

        _celery_app = Celery("attest_api")
        _celery_app.conf.update(
            broker_url=settings.redis_url,
            result_backend=settings.redis_url,
            task_serializer="json",
            accept_content=["json"],
            result_serializer="json",
            timezone="UTC",
            enable_utc=True,
        )

        logger.info("Initialized Celery client for attest_api")

    return _celery_app
