"""Row fingerprinting for check-strategy change detection.

A fingerprint is the digest of the canonical JSON rendering of a row's
tracked columns. Values are first normalized so that representations of
the same value produced by different drivers (``1`` and ``1.0``, a numpy
scalar and a Python int, an aware datetime in two zones, ``NaN`` and
``None``) hash identically, and keys are sorted so column order never
matters.
"""

import enum
import hashlib
import json
import math
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from snapflow.common.exceptions import ErrorCode, configuration_error
from snapflow.constants import ALL_COLUMNS, HashAlgorithm
from snapflow.snapshot.types import SnapshotConfig, SnapshotKey


def is_missing(value: Any) -> bool:
    if value is None or value is pd.NA or value is pd.NaT:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, np.datetime64) and np.isnat(value):
        return True
    return False


def normalize_value(value: Any) -> Any:
    """Convert ``value`` into its canonical JSON-native representation."""
    if is_missing(value):
        return None

    if isinstance(value, np.generic):
        if isinstance(value, np.datetime64):
            value = pd.Timestamp(value).to_pydatetime()
        else:
            value = value.item()
        return normalize_value(value)

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return int(value) if value.is_integer() else value
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None if value.is_nan() else ("inf" if value > 0 else "-inf")
        if value == value.to_integral_value():
            return int(value)
        as_float = float(value)
        if Decimal(repr(as_float)) == value:
            return as_float
        return format(value.normalize(), "f")
    if isinstance(value, str):
        return value

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return normalize_value(value.total_seconds())
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, enum.Enum):
        return normalize_value(value.value)

    if isinstance(value, Mapping):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        items = [normalize_value(v) for v in value]
        return sorted(items, key=_canonical_json)
    if isinstance(value, (list, tuple, np.ndarray, pd.Series)):
        return [normalize_value(v) for v in value]

    return str(value)


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_key(key: SnapshotKey) -> str:
    """Render a normalized key tuple as the string stored by SQL backends."""
    return _canonical_json(list(key))


def parse_canonical_key(value: str) -> SnapshotKey:
    """Inverse of ``canonical_key``."""
    return tuple(json.loads(value))


class RowHasher:
    """Computes unique keys, fingerprints and version ids for source rows.

    Args:
        unique_key: Column(s) forming the unique key.
        tracked_columns: ``"all"`` or the columns compared for changes.
        exclude_columns: Columns skipped when tracking all columns.
        algorithm: Digest algorithm.

    Example:
        >>> hasher = RowHasher(unique_key=["id"], tracked_columns=["city"])
        >>> hasher.fingerprint({"id": 1, "city": "Seattle"}) == \\
        ...     hasher.fingerprint({"city": "Seattle", "id": 1})
        True
    """

    def __init__(
        self,
        unique_key: Sequence[str],
        tracked_columns: Union[str, Sequence[str]] = ALL_COLUMNS,
        exclude_columns: Iterable[str] = (),
        algorithm: Union[str, HashAlgorithm] = HashAlgorithm.SHA256,
    ):
        if isinstance(unique_key, str):
            unique_key = [unique_key]
        if not unique_key:
            raise configuration_error("unique_key must name at least one column", config_key="unique_key")

        self.unique_key: List[str] = list(unique_key)
        self.track_all = isinstance(tracked_columns, str)
        if self.track_all and tracked_columns != ALL_COLUMNS:
            raise configuration_error(
                f"tracked_columns must be '{ALL_COLUMNS}' or a list of columns",
                config_key="tracked_columns",
            )
        self.tracked_columns: Optional[List[str]] = None if self.track_all else list(tracked_columns)
        self._skipped = set(self.unique_key) | set(exclude_columns)
        self.algorithm = HashAlgorithm(algorithm).value

    @classmethod
    def from_config(cls, config: SnapshotConfig) -> "RowHasher":
        return cls(
            unique_key=config.unique_key,
            tracked_columns=config.tracked_columns,
            exclude_columns=config.exclude_columns,
            algorithm=config.hash_algorithm,
        )

    def _digest(self, payload: str) -> str:
        return hashlib.new(self.algorithm, payload.encode("utf-8")).hexdigest()

    def key_of(self, row: Mapping[str, Any]) -> SnapshotKey:
        """Return the normalized unique key of ``row``.

        Raises:
            ConfigurationError: ``MISSING_COLUMN`` if a key column is absent,
                ``MISSING_KEY`` if a key value is null.
        """
        values = []
        for column in self.unique_key:
            if column not in row:
                raise configuration_error(
                    f"Unique key column '{column}' is missing from the source row",
                    config_key=column,
                    error_code=ErrorCode.MISSING_COLUMN,
                )
            value = normalize_value(row[column])
            if value is None:
                raise configuration_error(
                    f"Unique key column '{column}' is null",
                    config_key=column,
                    error_code=ErrorCode.MISSING_KEY,
                )
            values.append(value)
        return tuple(values)

    def tracked_values(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Return the normalized values of the tracked columns of ``row``.

        Raises:
            ConfigurationError: ``MISSING_COLUMN`` if a configured tracked
                column is absent from the row.
        """
        if self.track_all:
            return {
                str(column): normalize_value(value)
                for column, value in row.items()
                if column not in self._skipped
            }

        missing = [c for c in self.tracked_columns if c not in row]
        if missing:
            raise configuration_error(
                f"Tracked column(s) {missing} missing from the source row",
                config_key=missing[0],
                error_code=ErrorCode.MISSING_COLUMN,
                details={"missing_columns": missing},
            )
        return {column: normalize_value(row[column]) for column in self.tracked_columns}

    def fingerprint(self, row: Mapping[str, Any]) -> str:
        """Digest of the tracked values, independent of column order."""
        return self._digest(_canonical_json(self.tracked_values(row)))

    def version_id(self, key: SnapshotKey, fingerprint: str, valid_from: datetime) -> str:
        """Identifier of the version of ``key`` opened at ``valid_from``.

        Reproducible for a given run timestamp, and distinct for a key that
        returns to earlier tracked values in a later run.
        """
        payload = _canonical_json([list(key), fingerprint, normalize_value(valid_from)])
        return self._digest(payload)
