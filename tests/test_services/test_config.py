"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from drivesync.config import Settings, sqlite_url
from drivesync.exceptions import ConfigurationMissingError
from drivesync.models.scan import ScanMode


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.debug is False
        assert s.scan_mode is ScanMode.AUTO
        assert s.reconcile_batch_size == 100
        assert s.local_database_path == Path("data/fileindexer_local.db")
        assert s.host_name

    def test_settings_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DRIVESYNC_HOST_NAME", "nas-1")
        monkeypatch.setenv("DRIVESYNC_SCAN_MODE", "incremental")
        monkeypatch.setenv("DRIVESYNC_INPUT_FOLDER", "/srv/share")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.host_name == "nas-1"
        assert s.scan_mode is ScanMode.INCREMENTAL
        assert s.input_folder == Path("/srv/share")

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.host_name == "test-host"
        assert test_settings.input_folder is not None
        assert test_settings.input_folder.exists()

    def test_local_database_url(self, tmp_path: Path) -> None:
        s = Settings(_env_file=None, local_database_path=tmp_path / "x.db")  # type: ignore[call-arg]
        assert s.local_database_url == sqlite_url(tmp_path / "x.db")
        assert s.local_database_url.startswith("sqlite+aiosqlite:///")


class TestRequiredPaths:
    def test_missing_paths_are_listed(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        with pytest.raises(ConfigurationMissingError) as exc_info:
            s.validate_required_paths()
        assert exc_info.value.missing == [
            "DRIVESYNC_INPUT_FOLDER",
            "DRIVESYNC_REMOTE_DATABASE_PATH",
        ]
        assert "DRIVESYNC_INPUT_FOLDER" in str(exc_info.value)

    def test_complete_settings_pass(self, test_settings: Settings) -> None:
        test_settings.validate_required_paths()
