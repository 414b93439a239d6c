"""Declarative snapshot definitions."""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Iterable, List, Mapping, Optional, Union

from pydantic import Field, field_validator

from snapflow.common.exceptions import ErrorCode, configuration_error
from snapflow.constants import ALL_COLUMNS, DuplicateKeyPolicy, HashAlgorithm
from snapflow.snapshot.types import SnapshotConfig
from snapflow.types.base import SnapflowBaseModel


class SnapshotMetadata(SnapflowBaseModel):
    """Metadata attached to a snapshot definition by ``@snapshot_metadata``.

    Attributes:
        target: Snapshot table maintained by the definition.
        unique_key: Columns identifying a source row.
        check_cols: ``"all"`` or the columns compared for change detection.
        invalidate_hard_deletes: Close keys missing from the extract.
        strict_mode: Abort on the first row error.
        duplicate_key_policy: Resolution for duplicate keys in one extract.
        reinsert_invalidated: Reopen invalidated keys that come back.
        exclude_columns: Columns ignored when checking all columns.
        hash_algorithm: Fingerprint digest.
        description: What the snapshot captures and why.
        tags: Categorization tags.
    """
    target: str
    unique_key: List[str]
    check_cols: Union[str, List[str]] = ALL_COLUMNS
    invalidate_hard_deletes: bool = False
    strict_mode: bool = False
    duplicate_key_policy: DuplicateKeyPolicy = DuplicateKeyPolicy.REJECT
    reinsert_invalidated: bool = True
    exclude_columns: List[str] = Field(default_factory=list)
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("unique_key", mode="before")
    @classmethod
    def _coerce_unique_key(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v

    def to_config(self) -> SnapshotConfig:
        return SnapshotConfig(
            target=self.target,
            unique_key=self.unique_key,
            tracked_columns=self.check_cols,
            exclude_columns=self.exclude_columns,
            invalidate_hard_deletes=self.invalidate_hard_deletes,
            strict_mode=self.strict_mode,
            duplicate_key_policy=self.duplicate_key_policy,
            reinsert_invalidated=self.reinsert_invalidated,
            hash_algorithm=self.hash_algorithm,
        )


class SnapshotDefinition(ABC):
    """Base class for declarative snapshots.

    Subclasses implement ``extract()`` and are configured with
    ``@snapshot_metadata``. A definition is itself a source extract
    provider, so it can be handed straight to ``SnapshotJob``.
    """

    _snapshot_metadata: ClassVar[Optional[SnapshotMetadata]] = None

    @abstractmethod
    def extract(self) -> Iterable[Mapping[str, Any]]:
        """Return the full current state of the source relation."""

    @classmethod
    def get_metadata(cls) -> SnapshotMetadata:
        metadata = getattr(cls, "_snapshot_metadata", None)
        if metadata is None:
            raise configuration_error(
                f"{cls.__name__} is not decorated with @snapshot_metadata",
                config_key="_snapshot_metadata",
                error_code=ErrorCode.CONFIG_MISSING,
            )
        return metadata

    @classmethod
    def get_config(cls) -> SnapshotConfig:
        """Reconciler configuration declared on the class."""
        return cls.get_metadata().to_config()
