"""Environment and settings (Pydantic Settings)."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Default data directory: ~/.docket/data/
_data_dir = Path.home() / ".docket" / "data"


class Settings(BaseSettings):
    """Docket settings loaded from environment and .env.

    Every field can be overridden with a DOCKET_-prefixed environment
    variable, e.g. DOCKET_SYNC_INTERVAL_SECONDS=60.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths (local-first data stored in ~/.docket/data/)
    db_path: Path = _data_dir / "docket.db"

    # Calendar synchronization
    enable_sync: bool = True
    sync_interval_seconds: int = 300  # 5 minutes
    http_timeout: float = 30.0
    # Ask the server to drop items whose local task was deleted
    delete_tombstoned_remote: bool = True

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: Path = _data_dir / "docket.log"


def get_settings() -> Settings:
    """Build settings from the current environment and .env (a fresh instance per call)."""
    return Settings()
