"""Types shared by the hasher, the table stores and the reconciler.

SnapshotRow is the unit of storage: an immutable versioned copy of a
source row. CurrentSnapshotIndex is the read-only view the reconciler
classifies against, and ReconcilePlan/ReconcileResult describe one run
before and after it is applied.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import ConfigDict, Field, field_validator, model_validator

from snapflow.common.exceptions import ErrorCode, SnapflowError
from snapflow.constants import ALL_COLUMNS, DuplicateKeyPolicy, HashAlgorithm, SystemColumn
from snapflow.types.base import SnapflowBaseModel
from snapflow.utils.datetime import ensure_utc

SnapshotKey = Tuple[Any, ...]


class SnapshotConfig(SnapflowBaseModel):
    """Configuration surface consumed by the reconciler.

    Attributes:
        target: Name of the snapshot target, used for logging, metrics and the
            run id kept by the store.
        unique_key: Column(s) identifying a row of the source relation. A single
            column name is accepted as a string.
        tracked_columns: ``"all"`` or the list of columns compared for change
            detection.
        exclude_columns: Columns ignored when ``tracked_columns`` is ``"all"``
            (load timestamps, audit columns).
        invalidate_hard_deletes: Close current versions of keys absent from the
            extract.
        strict_mode: Abort on the first row-level error before any write.
        duplicate_key_policy: Resolution for extract rows sharing a key.
        reinsert_invalidated: Open a fresh version for a key that reappears
            after being invalidated.
        hash_algorithm: Digest used for fingerprints and version ids.
    """

    target: str = Field(..., min_length=1, max_length=256)
    unique_key: List[str] = Field(..., min_length=1)
    tracked_columns: Union[str, List[str]] = ALL_COLUMNS
    exclude_columns: List[str] = Field(default_factory=list)
    invalidate_hard_deletes: bool = False
    strict_mode: bool = False
    duplicate_key_policy: DuplicateKeyPolicy = DuplicateKeyPolicy.REJECT
    reinsert_invalidated: bool = True
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256

    @field_validator("unique_key", mode="before")
    @classmethod
    def _coerce_unique_key(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("tracked_columns")
    @classmethod
    def _validate_tracked(cls, v: Union[str, List[str]]) -> Union[str, List[str]]:
        if isinstance(v, str):
            if v.strip().lower() != ALL_COLUMNS:
                raise ValueError(f"tracked_columns must be '{ALL_COLUMNS}' or a list of columns, got '{v}'")
            return ALL_COLUMNS
        if not v:
            raise ValueError("tracked_columns list cannot be empty")
        if len(set(v)) != len(v):
            raise ValueError("tracked_columns contains duplicates")
        return v

    @model_validator(mode="after")
    def _validate_columns(self) -> "SnapshotConfig":
        if len(set(self.unique_key)) != len(self.unique_key):
            raise ValueError("unique_key contains duplicate columns")
        reserved = {c.value for c in SystemColumn}
        clashing = reserved.intersection(self.unique_key)
        if clashing:
            raise ValueError(f"unique_key uses reserved system column(s): {sorted(clashing)}")
        return self

    @property
    def tracks_all_columns(self) -> bool:
        return self.tracked_columns == ALL_COLUMNS


class SnapshotRow(SnapflowBaseModel):
    """One version of one key in the snapshot table.

    Rows are frozen: the only permitted change, closing ``valid_to``, is
    done by the store producing a closed copy.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: SnapshotKey
    data: Dict[str, Any]
    fingerprint: str
    version_id: str
    valid_from: datetime
    valid_to: Optional[datetime] = None
    run_id: Optional[int] = None

    @field_validator("valid_from", "valid_to")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def is_current(self) -> bool:
        return self.valid_to is None

    def closed(self, close_timestamp: datetime) -> "SnapshotRow":
        """Return a copy of this version closed at ``close_timestamp``."""
        return self.model_copy(update={"valid_to": ensure_utc(close_timestamp)})

    def to_record(self) -> Dict[str, Any]:
        """Flatten into source columns plus system columns."""
        record = dict(self.data)
        record[SystemColumn.VERSION_ID.value] = self.version_id
        record[SystemColumn.FINGERPRINT.value] = self.fingerprint
        record[SystemColumn.VALID_FROM.value] = self.valid_from
        record[SystemColumn.VALID_TO.value] = self.valid_to
        record[SystemColumn.IS_CURRENT.value] = self.is_current
        record[SystemColumn.RUN_ID.value] = self.run_id
        return record


@dataclass(frozen=True)
class VersionClose:
    """A current version the apply phase must close."""

    key: SnapshotKey
    version_id: str


@dataclass(frozen=True)
class CurrentSnapshotIndex:
    """Read-only view of a store's current state, taken once per run.

    Attributes:
        current: Current version of every tracked key
        retired_keys: Keys with history but no current version (invalidated)
        run_id: Last committed run id, used as the compare-and-swap expectation
        last_run_timestamp: Timestamp of the last committed run
    """

    current: Dict[SnapshotKey, SnapshotRow] = field(default_factory=dict)
    retired_keys: FrozenSet[SnapshotKey] = frozenset()
    run_id: int = 0
    last_run_timestamp: Optional[datetime] = None

    def get(self, key: SnapshotKey) -> Optional[SnapshotRow]:
        return self.current.get(key)

    def __len__(self) -> int:
        return len(self.current)


class RowError(SnapflowBaseModel):
    """A source row the reconciler could not classify."""

    row_index: Optional[int] = None
    key: Optional[SnapshotKey] = None
    error_code: str
    message: str

    @classmethod
    def from_exception(
        cls,
        exc: SnapflowError,
        row_index: Optional[int] = None,
        key: Optional[SnapshotKey] = None,
    ) -> "RowError":
        return cls(
            row_index=row_index,
            key=key,
            error_code=exc.error_code.value,
            message=exc.message,
        )

    def to_exception(self) -> SnapflowError:
        """Rebuild the exception raised for this row in strict mode."""
        code = next((c for c in ErrorCode if c.value == self.error_code), ErrorCode.DATA_ERROR)
        return SnapflowError.from_error_code(
            code,
            self.message,
            details={"row_index": self.row_index, "key": self.key},
        )


@dataclass
class ReconcilePlan:
    """Writes computed for one run, before they are applied.

    ``inserts`` holds the new versions for inserted, updated and reinserted
    keys; ``closes`` the superseded versions of updated keys;
    ``invalidations`` the keys closed without successor.
    """

    target: str
    run_timestamp: datetime
    expected_run_id: int
    inserts: List[SnapshotRow] = field(default_factory=list)
    closes: List[VersionClose] = field(default_factory=list)
    invalidations: List[SnapshotKey] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0
    reinserted: int = 0
    unchanged: int = 0
    errors: List[RowError] = field(default_factory=list)

    @property
    def invalidated(self) -> int:
        return len(self.invalidations)

    @property
    def has_writes(self) -> bool:
        return bool(self.inserts or self.closes or self.invalidations)


class ReconcileResult(SnapflowBaseModel):
    """Outcome of one reconciliation run.

    Attributes:
        target: Snapshot target name
        run_id: Store run id after the run (unchanged when nothing was written)
        run_timestamp: Timestamp used for every valid_from/valid_to of the run
        inserted: Keys seen for the first time
        updated: Keys whose tracked values changed
        invalidated: Keys closed because they vanished from the extract
        reinserted: Invalidated keys that reappeared
        unchanged: Keys whose fingerprint matched
        errors: Row-level errors collected in non-strict mode
        applied: Whether a store transaction was committed
    """

    target: str
    run_id: int
    run_timestamp: datetime
    inserted: int = 0
    updated: int = 0
    invalidated: int = 0
    reinserted: int = 0
    unchanged: int = 0
    errors: List[RowError] = Field(default_factory=list)
    applied: bool = False

    @property
    def writes(self) -> int:
        return self.inserted + self.updated + self.invalidated + self.reinserted

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)
