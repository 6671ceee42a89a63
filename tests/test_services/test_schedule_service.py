"""Tests for host schedule eligibility and cross-host conflict checks."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from drivesync.filesystem.toml_manager import (
    HostJobSettings,
    HostSchedule,
    JobSchedule,
    ScheduleConfig,
)
from drivesync.services.schedule_service import HostScheduleOracle

PROPERTY_SETTINGS = settings(
    max_examples=250,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

BASE = datetime(2025, 6, 2, 10, 0, 0, tzinfo=timezone.utc)

# Eligible minutes in each host's own clock:
#   alpha (UTC):          scan 0,30   reconcile 10
#   beta (UTC):           scan 20,50  reconcile 35
#   gamma (UTC+05:30):    scan 5,35   reconcile 45
THREE_HOSTS = ScheduleConfig(
    hosts={
        "alpha": HostSchedule("alpha", "UTC", offsets={"scan": 0, "reconcile": 10}),
        "beta": HostSchedule("beta", "UTC", offsets={"scan": 20, "reconcile": 35}),
        "gamma": HostSchedule("gamma", "Asia/Kolkata", offsets={"scan": 5, "reconcile": 45}),
    },
    jobs={
        "scan": JobSchedule(interval_minutes=30, critical=True),
        "reconcile": JobSchedule(interval_minutes=60, critical=True),
    },
    buffer_minutes=3,
)

# UTC minutes at which alpha must wait: beta's windows map 1:1, gamma's are
# shifted by 30 minutes.
ALPHA_BLOCKED_UTC_MINUTES = {5, 6, 7, 15, 16, 17, 20, 21, 22, 35, 36, 37, 50, 51, 52}


def _at(minute: int, second: int = 0) -> datetime:
    return BASE + timedelta(minutes=minute, seconds=second)


class TestEligibleMinutes:
    def test_offsets_and_interval(self) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        assert oracle.eligible_minutes("alpha", "scan") == (0, 30)
        assert oracle.eligible_minutes("beta", "scan") == (20, 50)
        assert oracle.eligible_minutes("gamma", "reconcile") == (45,)

    def test_offset_windows_wrap_around_the_hour(self) -> None:
        config = ScheduleConfig(
            hosts={"h": HostSchedule("h", offsets={"scan": 30})},
            jobs={"scan": JobSchedule(interval_minutes=40, critical=True)},
        )
        oracle = HostScheduleOracle(config, "h")
        assert oracle.eligible_minutes("h", "scan") == (10, 30, 50)

    def test_execution_minutes_without_offset(self) -> None:
        config = ScheduleConfig(hosts={"h": HostSchedule("h", execution_minutes=(7, 37))})
        oracle = HostScheduleOracle(config, "h")
        assert oracle.eligible_minutes("h", "scan") == (7, 37)

    def test_host_name_is_case_insensitive(self) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "ALPHA")
        assert oracle.eligible_minutes("Beta", "scan") == (20, 50)


class TestNextEligibleStart:
    @pytest.mark.parametrize(
        ("now", "expected"),
        [
            (_at(15), _at(30)),
            (_at(30), _at(60)),
            (_at(29, 59), _at(30)),
            (_at(45), _at(60)),
            (_at(0), _at(30)),
        ],
    )
    def test_utc_host(self, now: datetime, expected: datetime) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        assert oracle.next_eligible_start("alpha", "scan", now) == expected

    def test_uses_host_time_zone(self) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        # 10:00 UTC is 15:30 in Kolkata; gamma's next scan minute is :35 local
        start = oracle.next_eligible_start("gamma", "scan", BASE)
        assert start.minute == 35
        assert start == _at(5)

    def test_rolls_into_next_hour(self) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        assert oracle.next_eligible_start("beta", "reconcile", _at(40)) == _at(95)

    def test_startup_delay(self) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        assert oracle.get_startup_delay("scan", _at(15)) == timedelta(minutes=15)
        assert oracle.get_startup_delay("reconcile", _at(10)) == timedelta(minutes=60)

    @PROPERTY_SETTINGS
    @given(
        now=st.datetimes(
            min_value=datetime(2000, 1, 1),
            max_value=datetime(2090, 1, 1),
            timezones=st.just(timezone.utc),
        ),
        host=st.sampled_from(["alpha", "beta", "gamma"]),
        job=st.sampled_from(["scan", "reconcile"]),
    )
    def test_next_start_is_future_and_eligible(self, now: datetime, host: str, job: str) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        start = oracle.next_eligible_start(host, job, now)
        assert start > now
        assert start - now <= timedelta(hours=1)
        assert start.minute in oracle.eligible_minutes(host, job)
        assert start.second == 0


class TestCanStartNow:
    @pytest.mark.parametrize("minute", range(60))
    def test_buffer_window_over_three_hosts(self, minute: int) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        expected = minute not in ALPHA_BLOCKED_UTC_MINUTES
        assert oracle.can_start_now("scan", _at(minute, 30)) is expected

    def test_own_windows_do_not_block(self) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        assert oracle.can_start_now("scan", _at(0)) is True
        assert oracle.can_start_now("scan", _at(10)) is True

    def test_non_critical_jobs_do_not_block(self) -> None:
        config = ScheduleConfig(
            hosts={
                "a": HostSchedule("a", offsets={"scan": 0}),
                "b": HostSchedule("b", offsets={"mirror": 0}),
            },
            jobs={
                "scan": JobSchedule(interval_minutes=60, critical=True),
                "mirror": JobSchedule(interval_minutes=60, critical=False),
            },
        )
        oracle = HostScheduleOracle(config, "a")
        assert oracle.can_start_now("scan", _at(1)) is True

    def test_disabled_peer_jobs_do_not_block(self) -> None:
        config = ScheduleConfig(
            hosts={
                "a": HostSchedule("a", offsets={"scan": 0}),
                "b": HostSchedule(
                    "b", offsets={"scan": 0}, jobs={"scan": HostJobSettings(enabled=False)}
                ),
            },
            jobs={"scan": JobSchedule(interval_minutes=60, critical=True)},
        )
        oracle = HostScheduleOracle(config, "a")
        assert oracle.can_start_now("scan", _at(1)) is True

    def test_peers_without_schedule_do_not_block(self) -> None:
        config = ScheduleConfig(
            hosts={"a": HostSchedule("a", offsets={"scan": 0}), "b": HostSchedule("b")},
            jobs={"scan": JobSchedule(interval_minutes=60, critical=True)},
        )
        oracle = HostScheduleOracle(config, "a")
        assert oracle.can_start_now("scan", _at(1)) is True


class TestDegradedSchedules:
    def test_unknown_host_is_always_eligible(self, caplog: pytest.LogCaptureFixture) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "delta")
        with caplog.at_level(logging.WARNING):
            assert oracle.is_always_eligible("delta", "scan") is True
            assert oracle.get_startup_delay("scan") == timedelta(0)
            assert len(oracle.eligible_minutes("delta", "scan")) == 60
        warnings = [r for r in caplog.records if "always eligible" in r.getMessage()]
        assert len(warnings) == 1

    def test_bad_time_zone(self, caplog: pytest.LogCaptureFixture) -> None:
        config = ScheduleConfig(
            hosts={"h": HostSchedule("h", timezone="Not/AZone", offsets={"scan": 15})},
            jobs={"scan": JobSchedule(interval_minutes=60, critical=True)},
        )
        oracle = HostScheduleOracle(config, "h")
        with caplog.at_level(logging.WARNING):
            assert oracle.is_always_eligible("h", "scan") is True
            assert oracle.get_startup_delay("scan", _at(0)) == timedelta(0)
            start = oracle.next_eligible_start("h", "scan", _at(0, 30))
        assert start == _at(1)
        assert oracle.minutes_since_last_start("h", "scan", _at(0)) is None
        assert any("Not/AZone" in r.getMessage() for r in caplog.records)

    def test_empty_minute_set(self) -> None:
        config = ScheduleConfig(hosts={"h": HostSchedule("h")})
        oracle = HostScheduleOracle(config, "h")
        assert oracle.is_always_eligible("h", "scan") is True
        assert oracle.can_start_now("scan") is True


class TestHostStatus:
    def test_minutes_since_last_start(self) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "alpha")
        assert oracle.minutes_since_last_start("beta", "scan", _at(22)) == 2
        assert oracle.minutes_since_last_start("beta", "scan", _at(10)) == 20
        assert oracle.minutes_since_last_start("gamma", "reconcile", _at(16)) == 1

    def test_is_job_enabled(self) -> None:
        config = ScheduleConfig(
            hosts={"a": HostSchedule("a", jobs={"mirror_sync": HostJobSettings(enabled=False)})}
        )
        assert HostScheduleOracle(config, "a").is_job_enabled("mirror_sync") is False
        assert HostScheduleOracle(config, "a").is_job_enabled("scan") is True
        assert HostScheduleOracle(config, "unknown").is_job_enabled("mirror_sync") is True

    def test_host_status(self) -> None:
        oracle = HostScheduleOracle(THREE_HOSTS, "beta")
        statuses = {s.host_name: s for s in oracle.host_status("scan", _at(15))}
        assert set(statuses) == {"alpha", "beta", "gamma"}
        assert statuses["beta"].is_current_host is True
        assert statuses["alpha"].is_current_host is False
        assert statuses["beta"].next_start == _at(20)
        assert statuses["gamma"].execution_minutes == [5, 35]
