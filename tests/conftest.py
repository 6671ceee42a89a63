"""Shared test fixtures for DriveSync."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest

from drivesync.config import Settings
from drivesync.database import create_engine
from drivesync.filesystem.toml_manager import ScheduleConfig
from drivesync.services.index_store import IndexStore
from drivesync.services.replica_service import ReplicaSyncManager

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

# A fixed point in the past for file modification times.
OLD_MTIME = datetime(2020, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def write_file(path: Path, content: bytes, mtime: datetime | None = None) -> Path:
    """Create ``path`` (and parents) with ``content`` and an optional exact mtime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if mtime is not None:
        ts = mtime.timestamp()
        os.utime(path, (ts, ts))
    return path


@pytest.fixture
def input_folder(tmp_path: Path) -> Path:
    folder = tmp_path / "input"
    folder.mkdir()
    return folder


@pytest.fixture
def test_settings(tmp_path: Path, input_folder: Path) -> Settings:
    """Create test settings with every path inside ``tmp_path``."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        host_name="test-host",
        input_folder=input_folder,
        remote_database_path=tmp_path / "remote" / "fileindexer.db",
        local_database_path=tmp_path / "local" / "fileindexer_local.db",
        schedule_file=tmp_path / "host-orchestration.toml",
        shutdown_timeout_seconds=5.0,
    )


@pytest.fixture
def empty_schedule() -> ScheduleConfig:
    return ScheduleConfig()


@pytest.fixture
def replica(test_settings: Settings) -> ReplicaSyncManager:
    assert test_settings.remote_database_path is not None
    return ReplicaSyncManager(
        remote_path=test_settings.remote_database_path,
        local_path=test_settings.local_database_path,
    )


@pytest.fixture
async def store(test_settings: Settings) -> AsyncGenerator[IndexStore]:
    """Index store over a fresh local replica file."""
    engine, session_factory = create_engine(test_settings.local_database_path)
    index_store = IndexStore(engine, session_factory)
    await index_store.ensure_schema()
    yield index_store
    await engine.dispose()
