"""Tests for the host orchestration schedule parser."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from drivesync.filesystem.toml_manager import (
    DEFAULT_BUFFER_MINUTES,
    JobName,
    load_schedule_config,
    parse_schedule_config,
)
from drivesync.models.scan import ScanMode

if TYPE_CHECKING:
    from pathlib import Path

SCHEDULE_TOML = """\
buffer_minutes = 5

[jobs.scan]
interval_minutes = 30

[jobs.mirror_sync]
critical = false

[hosts.NAS-Warsaw]
timezone = "Europe/Warsaw"
location = "Office"
execution_minutes = [40, 10, 10]

[hosts.NAS-Warsaw.offsets]
scan = 5
reconcile = 15

[hosts.NAS-Warsaw.jobs.scan]
scan_mode = "Incremental"
force_initial_scan = false

[hosts.NAS-Warsaw.jobs.mirror_sync]
enabled = false
"""


class TestParseScheduleConfig:
    def test_full_config(self) -> None:
        config = parse_schedule_config(SCHEDULE_TOML)
        assert config.buffer_minutes == 5
        assert config.job(JobName.SCAN).interval_minutes == 30
        assert config.job(JobName.SCAN).critical is True
        assert config.job(JobName.MIRROR_SYNC).critical is False

        host = config.hosts["NAS-Warsaw"]
        assert host.timezone == "Europe/Warsaw"
        assert host.location == "Office"
        assert host.execution_minutes == (10, 40)
        assert host.offsets == {"scan": 5, "reconcile": 15}
        assert host.job_settings(JobName.SCAN).scan_mode is ScanMode.INCREMENTAL
        assert host.job_settings(JobName.SCAN).force_initial_scan is False
        assert host.job_settings(JobName.MIRROR_SYNC).enabled is False
        assert host.job_settings(JobName.RECONCILE).enabled is True

    def test_find_host_ignores_case(self) -> None:
        config = parse_schedule_config(SCHEDULE_TOML)
        found = config.find_host("nas-warsaw")
        assert found is not None
        assert found.host_name == "NAS-Warsaw"
        assert config.find_host("unknown") is None

    def test_empty_document_uses_defaults(self) -> None:
        config = parse_schedule_config("")
        assert config.hosts == {}
        assert config.buffer_minutes == DEFAULT_BUFFER_MINUTES
        assert config.job(JobName.RECONCILE).interval_minutes == 30
        assert config.job(JobName.PERIODIC_SYNC).critical is True

    def test_unknown_job_gets_fallback_schedule(self) -> None:
        config = parse_schedule_config("")
        assert config.job("custom").critical is False


class TestScheduleValidation:
    @pytest.mark.parametrize("minute", ["-1", "60", "\"5\"", "true"])
    def test_invalid_execution_minute(self, minute: str) -> None:
        text = f"[hosts.a]\nexecution_minutes = [{minute}]\n"
        with pytest.raises(ValueError, match="minute"):
            parse_schedule_config(text)

    def test_invalid_offset(self) -> None:
        with pytest.raises(ValueError, match="offsets.scan"):
            parse_schedule_config("[hosts.a.offsets]\nscan = 75\n")

    def test_invalid_interval(self) -> None:
        with pytest.raises(ValueError, match="interval_minutes"):
            parse_schedule_config("[jobs.scan]\ninterval_minutes = 0\n")

    def test_negative_buffer(self) -> None:
        with pytest.raises(ValueError, match="buffer_minutes"):
            parse_schedule_config("buffer_minutes = -1\n")

    def test_unknown_scan_mode(self) -> None:
        with pytest.raises(ValueError, match="scan mode"):
            parse_schedule_config('[hosts.a.jobs.scan]\nscan_mode = "sometimes"\n')


class TestLoadScheduleConfig:
    def test_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        config = load_schedule_config(tmp_path / "missing.toml")
        assert config.hosts == {}
        assert config.buffer_minutes == DEFAULT_BUFFER_MINUTES

    def test_load_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "host-orchestration.toml"
        path.write_text(SCHEDULE_TOML, encoding="utf-8")
        config = load_schedule_config(path)
        assert "NAS-Warsaw" in config.hosts
