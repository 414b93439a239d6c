from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import SettingsConfigDict

from .base import SnapflowBaseSettings
from snapflow.constants import StoreBackend


class StoreSettings(SnapflowBaseSettings):
    """Snapshot table store configuration read from ``STORE_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    backend: StoreBackend = Field(
        default=StoreBackend.MEMORY,
        description="Store backend: 'memory' for tests and local runs, 'sql' for a database"
    )
    database_url: Optional[SecretStr] = Field(
        default=None,
        description="SQLAlchemy database URL, required for the sql backend"
    )
    table_name: str = Field(
        default="snapshot_versions",
        min_length=1,
        max_length=128,
        description="Table holding snapshot versions"
    )
    runs_table_name: str = Field(
        default="snapshot_runs",
        min_length=1,
        max_length=128,
        description="Table holding the monotonic run id per target"
    )
    schema_name: Optional[str] = Field(
        default=None,
        description="Database schema for both tables"
    )
    create_tables: bool = Field(
        default=True,
        description="Create the tables on first use if they do not exist"
    )
    pool_size: int = Field(default=5, ge=1, le=100)
    max_overflow: int = Field(default=10, ge=0, le=100)
    pool_timeout: int = Field(default=30, ge=1)
    echo: bool = Field(
        default=False,
        description="Log every SQL statement emitted by SQLAlchemy"
    )

    @model_validator(mode='after')
    def validate_backend(self) -> 'StoreSettings':
        if self.backend == StoreBackend.SQL and self.database_url is None:
            raise ValueError("STORE_DATABASE_URL is required when STORE_BACKEND=sql")
        return self
