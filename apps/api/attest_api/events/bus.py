"""In-process event bus used as the proof store's outbox.

Publishers never block on or fail because of delivery: each subscriber is
called in turn and any exception it raises is logged and dropped. Subscribers
that do real I/O should hand off (e.g. enqueue a Celery task) and return.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

PROOF_ADDED = "proof.added"
PROVENANCE_APPENDED = "provenance.appended"

Handler = Callable[[dict], None]


class EventBus:
    """Topic-based publish/subscribe with isolated subscribers."""

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: str, payload: dict) -> int:
        """Deliver ``payload`` to every subscriber of ``topic``.

        Returns the number of subscribers that accepted the event.
        """
        delivered = 0
        for handler in list(self._subscribers.get(topic, [])):
            try:
                handler(payload)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Subscriber {getattr(handler, '__name__', handler)!r} failed for {topic}: {e}",
                    exc_info=True,
                    extra={"topic": topic},
                )
        return delivered


def enqueue_workspace_broadcast(payload: dict) -> None:
    """Hand a ``proof.added`` event to the worker for workspace delivery."""
    if not payload.get("workspaceId"):
        return
    from attest_api.celery_client import BROADCAST_TASK, get_celery_app

    get_celery_app().send_task(BROADCAST_TASK, args=[payload["workspaceId"], payload])


def create_default_bus() -> EventBus:
    """Bus wired with the production subscribers."""
    bus = EventBus()
    bus.subscribe(PROOF_ADDED, enqueue_workspace_broadcast)
    return bus
