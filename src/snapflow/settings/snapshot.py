from typing import List, TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import SettingsConfigDict

from .base import SnapflowBaseSettings
from snapflow.constants import ALL_COLUMNS, DuplicateKeyPolicy, HashAlgorithm

if TYPE_CHECKING:
    from snapflow.snapshot.types import SnapshotConfig


def _split_columns(value: str) -> List[str]:
    return [c.strip() for c in value.split(",") if c.strip()]


class SnapshotSettings(SnapflowBaseSettings):
    """Snapshot target configuration read from ``SNAPSHOT_*`` variables.

    Column lists are comma-separated so they fit a single environment
    variable, e.g. ``SNAPSHOT_UNIQUE_KEY=tenant_id,customer_id``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SNAPSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    target: str = Field(
        default="snapshot",
        description="Name of the snapshot target table"
    )
    unique_key: str = Field(
        default="id",
        description="Comma-separated unique key column(s) of the source relation"
    )
    tracked_columns: str = Field(
        default=ALL_COLUMNS,
        description="'all' or a comma-separated list of columns compared for change detection"
    )
    exclude_columns: str = Field(
        default="",
        description="Comma-separated columns ignored when tracked_columns is 'all'"
    )
    invalidate_hard_deletes: bool = Field(
        default=False,
        description="Close current versions of keys that vanish from the source extract"
    )
    strict_mode: bool = Field(
        default=False,
        description="Abort the run on the first row-level error instead of reporting it"
    )
    duplicate_key_policy: DuplicateKeyPolicy = Field(
        default=DuplicateKeyPolicy.REJECT,
        description="Resolution for extract rows sharing a unique key"
    )
    reinsert_invalidated: bool = Field(
        default=True,
        description="Open a fresh version when an invalidated key reappears"
    )
    hash_algorithm: HashAlgorithm = Field(
        default=HashAlgorithm.SHA256,
        description="Digest used for row fingerprints"
    )
    parallel_threshold: int = Field(
        default=10_000,
        ge=1,
        description="Extract size from which fingerprints are computed on a thread pool"
    )

    @field_validator("unique_key")
    @classmethod
    def validate_unique_key(cls, v: str) -> str:
        columns = _split_columns(v)
        if not columns:
            raise ValueError("unique_key must name at least one column")
        return ",".join(columns)

    @field_validator("tracked_columns")
    @classmethod
    def validate_tracked_columns(cls, v: str) -> str:
        if v.strip().lower() == ALL_COLUMNS:
            return ALL_COLUMNS
        columns = _split_columns(v)
        if not columns:
            raise ValueError("tracked_columns must be 'all' or name at least one column")
        return ",".join(columns)

    def to_config(self) -> "SnapshotConfig":
        """Build the reconciler configuration from these settings."""
        from snapflow.snapshot.types import SnapshotConfig

        tracked = (
            ALL_COLUMNS if self.tracked_columns == ALL_COLUMNS
            else _split_columns(self.tracked_columns)
        )
        return SnapshotConfig(
            target=self.target,
            unique_key=_split_columns(self.unique_key),
            tracked_columns=tracked,
            exclude_columns=_split_columns(self.exclude_columns),
            invalidate_hard_deletes=self.invalidate_hard_deletes,
            strict_mode=self.strict_mode,
            duplicate_key_policy=self.duplicate_key_policy,
            reinsert_invalidated=self.reinsert_invalidated,
            hash_algorithm=self.hash_algorithm,
        )
