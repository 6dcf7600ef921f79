"""Application configuration"""

from typing import Optional

from pydantic_settings import BaseSettings

from reconciler.core.errors import ConfigValidationError
from reconciler.core.results import SyncDirection
from reconciler.core.state_mapping import StateMappingConfig


class Settings(BaseSettings):
    """Application settings"""

    # Database (ledger, sync logs, conflicts)
    database_url: str = "sqlite:///./reconciler.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Sync
    sync_direction: str = SyncDirection.BOTH.value
    # 0 disables the periodic job; runs can still be triggered through the API.
    sync_interval_minutes: int = 10
    rate_limit_retry_delay_seconds: float = 1.0

    # Providers. Names are what link metadata records as the owning provider.
    source_name: str = "source"
    source_gitlab_url: str | None = None
    source_gitlab_token: str | None = None
    source_project_id: str | None = None
    # JSON, e.g. {"state_mapping": {"in review": "ready"}, "default_category": "backlog"}.
    # Omitted means the built-in GitLab mapping.
    source_state_mapping: dict | None = None

    target_name: str = "target"
    target_gitlab_url: str | None = None
    target_gitlab_token: str | None = None
    target_project_id: str | None = None
    target_state_mapping: dict | None = None

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


def state_mapping_config(value: Optional[dict]) -> Optional[StateMappingConfig]:
    """Parse a configured state mapping; None when the provider default applies"""
    if not value:
        return None
    return StateMappingConfig.from_dict(value)


def validate_sync_settings(config: Settings) -> SyncDirection:
    """Reject configuration the engine cannot run with; returns the parsed direction"""
    try:
        direction = SyncDirection(str(config.sync_direction).strip().lower())
    except ValueError:
        allowed = ", ".join(d.value for d in SyncDirection)
        raise ConfigValidationError(
            f"Invalid sync direction '{config.sync_direction}' (expected one of: {allowed})"
        )

    missing = [
        key
        for key in (
            "source_gitlab_url",
            "source_gitlab_token",
            "source_project_id",
            "target_gitlab_url",
            "target_gitlab_token",
            "target_project_id",
        )
        if not getattr(config, key)
    ]
    if missing:
        raise ConfigValidationError(f"Missing provider settings: {', '.join(missing)}")

    if not config.source_name or not config.target_name:
        raise ConfigValidationError("Provider names must not be empty")
    if config.source_name == config.target_name:
        raise ConfigValidationError(
            f"Source and target providers must have distinct names (both are '{config.source_name}')"
        )

    for key in ("source_state_mapping", "target_state_mapping"):
        try:
            state_mapping_config(getattr(config, key))
        except (ValueError, TypeError, AttributeError) as e:
            raise ConfigValidationError(f"Invalid {key}: {e}")

    if config.sync_interval_minutes < 0:
        raise ConfigValidationError("sync_interval_minutes must be >= 0")
    if config.rate_limit_retry_delay_seconds < 0:
        raise ConfigValidationError("rate_limit_retry_delay_seconds must be >= 0")

    return direction


settings = Settings()
