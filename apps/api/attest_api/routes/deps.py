"""Shared route dependencies."""

from functools import lru_cache

from attest_api.events.bus import EventBus, create_default_bus
from attest_api.storage.service import ArtifactStorage, get_storage_service


@lru_cache()
def get_event_bus() -> EventBus:
    return create_default_bus()


def get_storage() -> ArtifactStorage:
    return get_storage_service()
