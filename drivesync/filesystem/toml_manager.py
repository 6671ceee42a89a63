"""TOML reader for the host orchestration schedule (host-orchestration.toml)."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from drivesync.models.scan import ScanMode

if TYPE_CHECKING:
    from pathlib import Path


class JobName(StrEnum):
    """Logical jobs each host runs on its own schedule."""

    SCAN = "scan"
    RECONCILE = "reconcile"
    PERIODIC_SYNC = "periodic_sync"
    MIRROR_SYNC = "mirror_sync"


@dataclass(frozen=True)
class JobSchedule:
    """Global settings of one job."""

    interval_minutes: int
    critical: bool


@dataclass(frozen=True)
class HostJobSettings:
    """Per-host overrides for one job."""

    enabled: bool = True
    scan_mode: ScanMode | None = None
    force_initial_scan: bool | None = None


@dataclass(frozen=True)
class HostSchedule:
    """Static schedule entry of one host."""

    host_name: str
    timezone: str = "UTC"
    location: str = ""
    execution_minutes: tuple[int, ...] = ()
    offsets: dict[str, int] = field(default_factory=dict)
    jobs: dict[str, HostJobSettings] = field(default_factory=dict)

    def job_settings(self, job: str) -> HostJobSettings:
        return self.jobs.get(job, HostJobSettings())


DEFAULT_JOBS: dict[str, JobSchedule] = {
    JobName.SCAN: JobSchedule(interval_minutes=20, critical=True),
    JobName.RECONCILE: JobSchedule(interval_minutes=30, critical=True),
    JobName.PERIODIC_SYNC: JobSchedule(interval_minutes=15, critical=True),
    JobName.MIRROR_SYNC: JobSchedule(interval_minutes=30, critical=False),
}

DEFAULT_BUFFER_MINUTES = 3


@dataclass(frozen=True)
class ScheduleConfig:
    """Process-wide schedule table, loaded once at startup and read-only after."""

    hosts: dict[str, HostSchedule] = field(default_factory=dict)
    jobs: dict[str, JobSchedule] = field(default_factory=lambda: dict(DEFAULT_JOBS))
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES

    def find_host(self, host_name: str) -> HostSchedule | None:
        """Look up a host entry, ignoring case."""
        if host_name in self.hosts:
            return self.hosts[host_name]
        folded = host_name.casefold()
        for name, entry in self.hosts.items():
            if name.casefold() == folded:
                return entry
        return None

    def job(self, job: str) -> JobSchedule:
        return self.jobs.get(job, JobSchedule(interval_minutes=20, critical=False))


def _minute(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 59:
        msg = f"{where}: minute must be an integer between 0 and 59, got {value!r}"
        raise ValueError(msg)
    return value


def _parse_jobs(data: dict[str, Any]) -> dict[str, JobSchedule]:
    jobs = dict(DEFAULT_JOBS)
    for job_name, job_data in data.items():
        base = jobs.get(job_name, JobSchedule(interval_minutes=20, critical=False))
        interval = job_data.get("interval_minutes", base.interval_minutes)
        if not isinstance(interval, int) or isinstance(interval, bool) or interval < 1:
            msg = f"jobs.{job_name}.interval_minutes must be a positive integer, got {interval!r}"
            raise ValueError(msg)
        jobs[job_name] = JobSchedule(
            interval_minutes=interval,
            critical=bool(job_data.get("critical", base.critical)),
        )
    return jobs


def _parse_host(host_name: str, data: dict[str, Any]) -> HostSchedule:
    where = f"hosts.{host_name}"
    minutes = tuple(
        sorted({_minute(m, f"{where}.execution_minutes") for m in data.get("execution_minutes", [])})
    )
    offsets = {
        job: _minute(value, f"{where}.offsets.{job}")
        for job, value in data.get("offsets", {}).items()
    }

    jobs: dict[str, HostJobSettings] = {}
    for job_name, job_data in data.get("jobs", {}).items():
        raw_mode = job_data.get("scan_mode")
        try:
            scan_mode = ScanMode(str(raw_mode).lower()) if raw_mode is not None else None
        except ValueError:
            msg = f"{where}.jobs.{job_name}.scan_mode: unknown scan mode {raw_mode!r}"
            raise ValueError(msg) from None
        raw_force = job_data.get("force_initial_scan")
        jobs[job_name] = HostJobSettings(
            enabled=bool(job_data.get("enabled", True)),
            scan_mode=scan_mode,
            force_initial_scan=bool(raw_force) if raw_force is not None else None,
        )

    return HostSchedule(
        host_name=host_name,
        timezone=str(data.get("timezone", "UTC")),
        location=str(data.get("location", "")),
        execution_minutes=minutes,
        offsets=offsets,
        jobs=jobs,
    )


def parse_schedule_config(text: str) -> ScheduleConfig:
    """Parse the schedule table from TOML text."""
    data = tomllib.loads(text)

    buffer_minutes = data.get("buffer_minutes", DEFAULT_BUFFER_MINUTES)
    if not isinstance(buffer_minutes, int) or isinstance(buffer_minutes, bool) or buffer_minutes < 0:
        msg = f"buffer_minutes must be a non-negative integer, got {buffer_minutes!r}"
        raise ValueError(msg)

    hosts = {
        host_name: _parse_host(host_name, host_data)
        for host_name, host_data in data.get("hosts", {}).items()
    }
    return ScheduleConfig(
        hosts=hosts,
        jobs=_parse_jobs(data.get("jobs", {})),
        buffer_minutes=buffer_minutes,
    )


def load_schedule_config(path: Path) -> ScheduleConfig:
    """Load the schedule table; a missing file yields the default job table and no hosts."""
    if not path.exists():
        return ScheduleConfig()
    return parse_schedule_config(path.read_text(encoding="utf-8"))
