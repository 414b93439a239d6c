"""Store factory selecting a backend from settings."""

from typing import Optional

from snapflow.constants import StoreBackend
from snapflow.logging import get_logger
from snapflow.settings.store import StoreSettings
from snapflow.snapshot.store.base import SnapshotTableStore
from snapflow.snapshot.store.memory import InMemorySnapshotTableStore
from snapflow.snapshot.store.sql import SQLSnapshotTableStore

logger = get_logger(__name__)


def create_store(target: str, settings: Optional[StoreSettings] = None) -> SnapshotTableStore:
    """Create the snapshot table store configured by ``STORE_*`` settings.

    Args:
        target: Snapshot target the store serves.
        settings: Store settings; read from the environment when omitted.

    Returns:
        An in-memory or SQL store.
    """
    if settings is None:
        from snapflow.settings import get_settings
        settings = get_settings().store

    backend = StoreBackend(settings.backend)
    logger.debug("Creating snapshot store", extra={"backend": backend.value, "target": target})

    if backend == StoreBackend.SQL:
        return SQLSnapshotTableStore.from_settings(settings, target=target)
    return InMemorySnapshotTableStore(target)
