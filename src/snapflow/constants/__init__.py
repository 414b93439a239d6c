"""Constants module for SnapFlow.

This module contains all constant values and enumerations used throughout
the SnapFlow package. It has no dependencies on other SnapFlow modules.
"""

from snapflow.constants.snapshot import (
    ALL_COLUMNS,
    ChangeType,
    DuplicateKeyPolicy,
    HashAlgorithm,
    StoreBackend,
    SystemColumn,
)

__all__ = [
    "ALL_COLUMNS",
    "ChangeType",
    "DuplicateKeyPolicy",
    "HashAlgorithm",
    "StoreBackend",
    "SystemColumn",
]
