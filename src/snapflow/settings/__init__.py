"""Settings module providing configuration management for SnapFlow.

Built on Pydantic Settings; every value can come from environment
variables or a ``.env`` file, with defaults in code.

Architecture:
    1. Base Layer (base.py):
       - SnapflowBaseSettings: environment, logging, retry and worker settings

    2. Domain Settings:
       - snapshot.py: snapshot target configuration (``SNAPSHOT_*``)
       - store.py: snapshot table store backend (``STORE_*``)

    3. Main Aggregator (main.py):
       - get_settings(): Singleton factory function

Configuration Sources (precedence order):
    1. Environment Variables (highest priority)
    2. ``.env`` file
    3. Default Values in code (lowest priority)

Quick Start:
    >>> from snapflow.settings import get_settings
    >>>
    >>> settings = get_settings()
    >>> config = settings.snapshot.to_config()
    >>> backend = settings.store.backend
"""

from .main import _Settings, get_settings, _reload_settings
from .base import SnapflowBaseSettings
from .snapshot import SnapshotSettings
from .store import StoreSettings

__all__ = [
    "get_settings",
    "SnapflowBaseSettings",
    "SnapshotSettings",
    "StoreSettings",
]
