from typing import Optional

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from .base import SnapflowBaseSettings
from .snapshot import SnapshotSettings
from .store import StoreSettings


class _Settings(SnapflowBaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__"
    )

    snapshot: SnapshotSettings = Field(
        default_factory=SnapshotSettings,
        description="Snapshot target configuration"
    )
    store: StoreSettings = Field(
        default_factory=StoreSettings,
        description="Snapshot table store configuration"
    )


# Singleton instance
_settings: Optional[_Settings] = None


def get_settings(force_reload: bool = False) -> _Settings:
    """Get the singleton settings instance for the application.

    Settings are loaded from environment variables and ``.env`` on first
    access and reused afterwards.

    Args:
        force_reload: If True, creates a new Settings instance even if
                     one already exists. Useful for testing or when
                     environment variables have changed.

    Returns:
        Settings: The singleton Settings instance

    Example:
        ```python
        settings = get_settings()
        settings2 = get_settings()
        assert settings is settings2

        new_settings = get_settings(force_reload=True)
        assert new_settings is not settings
        ```

    Note:
        The initial creation is not thread-safe. Settings are typically
        loaded once at startup before worker threads exist.
    """
    global _settings

    if _settings is None or force_reload:
        _settings = _Settings()

    return _settings


def _reload_settings() -> _Settings:
    """Force reload of settings.

    This is primarily for testing purposes where you need to reset
    the singleton instance.

    Returns:
        A fresh _Settings instance
    """
    global _settings
    _settings = None
    return get_settings(force_reload=True)
