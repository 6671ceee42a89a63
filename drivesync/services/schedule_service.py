"""Host orchestration: per-host execution windows and conflict checks.

Each host runs each job only at its own minutes of the hour. Before starting a
job a host checks whether another host's critical job started within the last
``buffer_minutes``. This is advisory: it relies on every host having accurate
clocks and the same schedule table, and it acquires no lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import pendulum

from drivesync.exceptions import ScheduleUnresolvableError
from drivesync.filesystem.toml_manager import HostSchedule, ScheduleConfig
from drivesync.services.datetime_service import in_timezone, now_utc

logger = logging.getLogger(__name__)

_ALL_MINUTES = tuple(range(60))


@dataclass
class HostStatus:
    """Schedule view of one host, for status pages and the CLI."""

    host_name: str
    location: str
    timezone: str
    execution_minutes: list[int]
    next_start: datetime
    is_current_host: bool


class HostScheduleOracle:
    """Answers "when may this job run" and "may it run now" for one host.

    Args:
        config: The process-wide schedule table.
        host_name: The host this process runs on.
    """

    def __init__(self, config: ScheduleConfig, host_name: str) -> None:
        self.config = config
        self.host_name = host_name
        self._warned: set[tuple[str, str]] = set()

    def _warn_once(self, host: str, job: str, message: str) -> None:
        key = (host.casefold(), job)
        if key in self._warned:
            return
        self._warned.add(key)
        logger.warning("%s; %s on %s treated as always eligible", message, job, host)

    def _resolve(self, host: HostSchedule | None, host_name: str, job: str) -> tuple[int, ...]:
        """Eligible minutes of ``job`` on ``host``.

        Raises:
            ScheduleUnresolvableError: If the host is unknown or has no minutes.
        """
        if host is None:
            msg = f"No schedule configured for host {host_name}"
            raise ScheduleUnresolvableError(msg)
        offset = host.offsets.get(job)
        if offset is not None:
            interval = self.config.job(job).interval_minutes
            return tuple(sorted({(offset + k * interval) % 60 for k in range(60)}))
        if not host.execution_minutes:
            msg = f"Host {host_name} has no execution minutes for {job}"
            raise ScheduleUnresolvableError(msg)
        return host.execution_minutes

    def eligible_minutes(self, host_name: str, job: str) -> tuple[int, ...]:
        """Minutes of the hour at which ``job`` may start on ``host_name``.

        Degrades to every minute when the schedule is missing or empty.
        """
        try:
            return self._resolve(self.config.find_host(host_name), host_name, job)
        except ScheduleUnresolvableError as exc:
            self._warn_once(host_name, job, str(exc))
            return _ALL_MINUTES

    def _local_now(
        self, host: HostSchedule | None, host_name: str, job: str, now: datetime
    ) -> pendulum.DateTime | None:
        tz_name = host.timezone if host is not None else "UTC"
        try:
            return in_timezone(now, tz_name)
        except (ValueError, KeyError):
            self._warn_once(host_name, job, f"Unknown time zone {tz_name!r} for host {host_name}")
            return None

    def is_always_eligible(self, host_name: str, job: str) -> bool:
        host = self.config.find_host(host_name)
        try:
            self._resolve(host, host_name, job)
        except ScheduleUnresolvableError:
            return True
        return self._local_now(host, host_name, job, now_utc()) is None

    def next_eligible_start(
        self, host_name: str, job: str, now: datetime | None = None
    ) -> datetime:
        """Earliest start of an eligible minute strictly after ``now``.

        The minute is evaluated in the host's own time zone; the result is an
        aware datetime in that zone (UTC when the zone is unresolvable).
        """
        now = now or now_utc()
        host = self.config.find_host(host_name)
        minutes = self.eligible_minutes(host_name, job)
        local = self._local_now(host, host_name, job, now)
        if local is None:
            local = in_timezone(now, "UTC")
            minutes = _ALL_MINUTES

        hour_start = local.replace(minute=0, second=0, microsecond=0)
        for minute in minutes:
            candidate = hour_start.add(minutes=minute)
            if candidate > local:
                return candidate
        return hour_start.add(hours=1, minutes=minutes[0])

    def get_startup_delay(self, job: str, now: datetime | None = None) -> timedelta:
        """Time this host should wait before its next ``job`` run.

        Zero when the job has no resolvable schedule, so it starts right away.
        """
        if self.is_always_eligible(self.host_name, job):
            return timedelta(0)
        now = now or now_utc()
        start = self.next_eligible_start(self.host_name, job, now)
        delay = start - now
        logger.info("Host %s job %s will start in %s at %s", self.host_name, job, delay, start)
        return delay

    def minutes_since_last_start(
        self, host_name: str, job: str, now: datetime | None = None
    ) -> int | None:
        """Whole minutes since ``job`` last became eligible on ``host_name``.

        ``None`` when the schedule cannot be resolved.
        """
        now = now or now_utc()
        host = self.config.find_host(host_name)
        try:
            minutes = self._resolve(host, host_name, job)
        except ScheduleUnresolvableError:
            return None
        local = self._local_now(host, host_name, job, now)
        if local is None:
            return None
        return min((local.minute - minute) % 60 for minute in minutes)

    def can_start_now(self, job: str, now: datetime | None = None) -> bool:
        """Whether ``job`` may start without overlapping another host's critical job."""
        now = now or now_utc()
        own = self.host_name.casefold()
        for host_name, host in self.config.hosts.items():
            if host_name.casefold() == own:
                continue
            for other_job, schedule in self.config.jobs.items():
                if not schedule.critical or not host.job_settings(other_job).enabled:
                    continue
                elapsed = self.minutes_since_last_start(host_name, other_job, now)
                if elapsed is not None and elapsed < self.config.buffer_minutes:
                    logger.info(
                        "Delaying %s on %s: %s on %s started %d min ago (buffer %d min)",
                        job,
                        self.host_name,
                        other_job,
                        host_name,
                        elapsed,
                        self.config.buffer_minutes,
                    )
                    return False
        return True

    def is_job_enabled(self, job: str) -> bool:
        host = self.config.find_host(self.host_name)
        enabled = host.job_settings(job).enabled if host is not None else True
        logger.debug("Job %s enabled for host %s: %s", job, self.host_name, enabled)
        return enabled

    def host_status(self, job: str, now: datetime | None = None) -> list[HostStatus]:
        """Schedule overview of every configured host for ``job``."""
        now = now or now_utc()
        own = self.host_name.casefold()
        return [
            HostStatus(
                host_name=host_name,
                location=host.location,
                timezone=host.timezone,
                execution_minutes=list(self.eligible_minutes(host_name, job)),
                next_start=self.next_eligible_start(host_name, job, now),
                is_current_host=host_name.casefold() == own,
            )
            for host_name, host in self.config.hosts.items()
        ]
