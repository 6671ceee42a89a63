"""Protected job execution around the local replica.

Every job that touches the local replica runs through ``run_protected`` so the
replica is pushed after each successful cycle and after a failure, and through
``ProtectedJobRunner`` so it is pulled once before the first cycle and pushed
once more on shutdown. ``JobLoop`` drives one runner on the host schedule.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from drivesync.services.replica_service import ReplicaSyncManager
    from drivesync.services.schedule_service import HostScheduleOracle

logger = logging.getLogger(__name__)


class RunnerState(StrEnum):
    IDLE = "idle"
    PULLING_LOCAL = "pulling_local"
    RUNNING = "running"
    PUSHING_REMOTE = "pushing_remote"
    FAULTED = "faulted"
    DISASTER_PUSH = "disaster_push"
    STOPPING = "stopping"
    FINAL_PUSH = "final_push"
    STOPPED = "stopped"


async def run_protected(
    replica: ReplicaSyncManager,
    body: Callable[[], Awaitable[None]],
    *,
    name: str = "job",
) -> None:
    """Run ``body`` and push the replica afterwards, even if ``body`` fails.

    Exceptions from ``body`` are re-raised after the disaster-recovery push.
    """
    try:
        await body()
    except Exception:
        logger.error("Error during %s, pushing replica before re-raising", name, exc_info=True)
        if await replica.push_to_remote():
            logger.info("Disaster recovery push completed for %s", name)
        raise
    await replica.push_to_remote()


class ProtectedJobRunner:
    """Runs one job's cycles against the local replica.

    Args:
        name: Job name used in log messages.
        replica: Manager of the local and remote store files.
        shutdown_timeout: Upper bound (seconds) for the final push on shutdown.
    """

    def __init__(
        self, name: str, replica: ReplicaSyncManager, shutdown_timeout: float = 15.0
    ) -> None:
        self.name = name
        self._replica = replica
        self._shutdown_timeout = shutdown_timeout
        self._pulled = False
        self.state = RunnerState.IDLE

    async def run(self, body: Callable[[], Awaitable[None]]) -> None:
        """Execute one cycle of ``body``.

        The first call pulls the replica; a failed pull propagates and the
        runner retries it on the next call.
        """
        if self.state is RunnerState.STOPPED:
            msg = f"Runner {self.name} is stopped"
            raise RuntimeError(msg)

        if not self._pulled:
            self.state = RunnerState.PULLING_LOCAL
            try:
                await self._replica.pull_to_local()
            except Exception:
                self.state = RunnerState.FAULTED
                raise
            self._pulled = True
            logger.info("%s started with replica at %s", self.name, self._replica.local_path)

        async def tracked() -> None:
            self.state = RunnerState.RUNNING
            try:
                await body()
            except Exception:
                self.state = RunnerState.DISASTER_PUSH
                raise
            self.state = RunnerState.PUSHING_REMOTE

        try:
            await run_protected(self._replica, tracked, name=self.name)
        finally:
            self.state = RunnerState.IDLE

    async def shutdown(self) -> bool:
        """Push the replica one last time, bounded by the shutdown timeout.

        Returns True if the push finished (successfully or not) in time.
        """
        if self.state is RunnerState.STOPPED:
            return True
        if not self._pulled:
            # never ran, the local replica was not touched by this job
            self.state = RunnerState.STOPPED
            return True
        self.state = RunnerState.STOPPING
        logger.info("%s stopping, performing final push", self.name)
        self.state = RunnerState.FINAL_PUSH
        completed = True
        try:
            await asyncio.wait_for(self._replica.push_to_remote(), timeout=self._shutdown_timeout)
        except TimeoutError:
            completed = False
            logger.warning(
                "Final push for %s timed out after %.1fs", self.name, self._shutdown_timeout
            )
        self.state = RunnerState.STOPPED
        logger.info("%s stopped", self.name)
        return completed


class JobLoop:
    """Tick loop of one job: wait for an eligible minute, check peers, run.

    Args:
        job: Job name as used in the schedule table.
        runner: Protected runner that owns the replica push/pull.
        body: The job body, a coroutine function without arguments.
        oracle: Schedule oracle of this host.
        stop_event: Set to request a graceful stop.
        interval_minutes: Fallback delay when the schedule gives no delay.
        buffer_retry_seconds: Back-off when another host's job is active.
        error_backoff_seconds: Back-off after a failed cycle.
    """

    def __init__(
        self,
        job: str,
        runner: ProtectedJobRunner,
        body: Callable[[], Awaitable[None]],
        oracle: HostScheduleOracle,
        stop_event: asyncio.Event,
        *,
        interval_minutes: int,
        buffer_retry_seconds: float = 180.0,
        error_backoff_seconds: float = 60.0,
    ) -> None:
        self.job = job
        self.runner = runner
        self._body = body
        self._oracle = oracle
        self._stop = stop_event
        self._interval_seconds = interval_minutes * 60.0
        self._buffer_retry_seconds = buffer_retry_seconds
        self._error_backoff_seconds = error_backoff_seconds
        self.cycles = 0
        self.failures = 0

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True if a stop was requested."""
        if seconds <= 0:
            return self._stop.is_set()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        return self._stop.is_set()

    def _next_delay(self) -> float:
        delay = self._oracle.get_startup_delay(self.job).total_seconds()
        return delay if delay > 0 else self._interval_seconds

    async def run(self) -> None:
        """Run until the stop event is set, then shut the runner down."""
        try:
            if not self._oracle.is_job_enabled(self.job):
                logger.info("Job %s is disabled for host %s", self.job, self._oracle.host_name)
                return

            startup = self._oracle.get_startup_delay(self.job).total_seconds()
            if startup > 0:
                logger.info("Delaying %s startup by %.0fs for host orchestration", self.job, startup)
            if await self._sleep(startup):
                return

            while not self._stop.is_set():
                if not self._oracle.can_start_now(self.job):
                    if await self._sleep(self._buffer_retry_seconds):
                        break
                    continue

                try:
                    await self.runner.run(self._body)
                    self.cycles += 1
                except Exception:
                    self.failures += 1
                    logger.exception("Cycle of %s failed, retrying later", self.job)
                    if await self._sleep(self._error_backoff_seconds):
                        break
                    continue

                if await self._sleep(self._next_delay()):
                    break
        finally:
            await self.runner.shutdown()
