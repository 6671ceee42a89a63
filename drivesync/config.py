"""Application configuration loaded from environment variables."""

from __future__ import annotations

import socket
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from drivesync.exceptions import ConfigurationMissingError
from drivesync.models.scan import ScanMode


class Settings(BaseSettings):
    """DriveSync host settings."""

    model_config = SettingsConfigDict(
        env_prefix="DRIVESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    host_name: str = Field(default_factory=socket.gethostname)
    debug: bool = False

    # Paths
    input_folder: Path | None = None
    remote_database_path: Path | None = None
    local_database_path: Path = Path("data/fileindexer_local.db")
    schedule_file: Path = Path("host-orchestration.toml")

    # Scanning
    scan_mode: ScanMode = ScanMode.AUTO
    force_initial_scan: bool = False
    time_zone: str = "UTC"
    scan_progress_batch_size: int = Field(default=1000, ge=1)

    # Reconciliation
    reconcile_batch_size: int = Field(default=100, ge=1)

    # Job loops
    shutdown_timeout_seconds: float = Field(default=15.0, gt=0)
    buffer_retry_seconds: float = Field(default=180.0, gt=0)
    error_backoff_seconds: float = Field(default=60.0, gt=0)
    record_sync_queue_size: int = Field(default=256, ge=1)

    @property
    def local_database_url(self) -> str:
        """SQLAlchemy URL of the local replica."""
        return sqlite_url(self.local_database_path)

    def validate_required_paths(self) -> None:
        """Fail fast when the paths every job depends on are not configured."""
        missing: list[str] = []
        if self.input_folder is None:
            missing.append("DRIVESYNC_INPUT_FOLDER")
        if self.remote_database_path is None:
            missing.append("DRIVESYNC_REMOTE_DATABASE_PATH")
        if missing:
            raise ConfigurationMissingError(missing)


def sqlite_url(path: Path) -> str:
    """Build an aiosqlite URL for a database file."""
    return f"sqlite+aiosqlite:///{path}"
