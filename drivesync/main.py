"""Host process entry point: wires the index, replica and schedule into job loops."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import TYPE_CHECKING

from drivesync.config import Settings
from drivesync.database import create_engine
from drivesync.exceptions import ConfigurationMissingError, DriveSyncError
from drivesync.filesystem.toml_manager import JobName, ScheduleConfig, load_schedule_config
from drivesync.models.file_record import format_file_size
from drivesync.models.scan import ScanType
from drivesync.services.index_store import IndexStore
from drivesync.services.job_runner import JobLoop, ProtectedJobRunner, run_protected
from drivesync.services.reconcile_service import InactiveRecordReconciler
from drivesync.services.replica_service import RecordSyncQueue, ReplicaSyncManager
from drivesync.services.scanner_service import FileIndexScanner
from drivesync.services.schedule_service import HostScheduleOracle

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime, timedelta

    from sqlalchemy.ext.asyncio import AsyncEngine

    from drivesync.services.index_store import IndexStatistics
    from drivesync.services.reconcile_service import BatchResult
    from drivesync.services.replica_service import PullResult
    from drivesync.services.scanner_service import ScanResult

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


class DriveSyncHost:
    """One host's index coordination process.

    Owns the local replica for its lifetime. ``initialize`` must be awaited
    before any operation that touches the index.
    """

    def __init__(self, settings: Settings, schedule: ScheduleConfig | None = None) -> None:
        settings.validate_required_paths()
        assert settings.input_folder is not None
        assert settings.remote_database_path is not None

        self.settings = settings
        self.schedule = schedule or load_schedule_config(settings.schedule_file)
        self.oracle = HostScheduleOracle(self.schedule, settings.host_name)
        self.replica = ReplicaSyncManager(
            remote_path=settings.remote_database_path,
            local_path=settings.local_database_path,
        )
        self.record_queue = RecordSyncQueue(self.replica, maxsize=settings.record_sync_queue_size)
        self._engine: AsyncEngine | None = None
        self._store: IndexStore | None = None
        self._scanner: FileIndexScanner | None = None
        self._reconciler: InactiveRecordReconciler | None = None
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._extra_jobs: dict[str, Callable[[], Awaitable[None]]] = {}

    @property
    def store(self) -> IndexStore:
        if self._store is None:
            msg = "DriveSyncHost.initialize() has not been called"
            raise RuntimeError(msg)
        return self._store

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop

    async def initialize(self) -> None:
        """Pull the replica if needed and open the local store.

        A failed pull propagates: without a local replica the host cannot run.
        """
        if self._store is not None:
            return
        await self.replica.pull_to_local()
        engine, session_factory = create_engine(
            self.settings.local_database_path, echo=self.settings.debug
        )
        self._engine = engine
        self._store = IndexStore(engine, session_factory)
        await self._store.ensure_schema()

        assert self.settings.input_folder is not None
        host = self.schedule.find_host(self.settings.host_name)
        time_zone = host.timezone if host is not None else self.settings.time_zone
        self._scanner = FileIndexScanner(
            self._store,
            self.settings.input_folder,
            self.settings.host_name,
            time_zone=time_zone,
            progress_every=self.settings.scan_progress_batch_size,
        )
        self._reconciler = InactiveRecordReconciler(self._store, self.settings.input_folder)
        self.record_queue.start()
        logger.info(
            "Host %s initialized with local store %s",
            self.settings.host_name,
            self.settings.local_database_path,
        )

    # Collaborator operations

    async def determine_scan_type(self) -> ScanType:
        """Scan type for this host, applying the per-host overrides of the schedule."""
        assert self._scanner is not None
        mode = self.settings.scan_mode
        force = self.settings.force_initial_scan
        host = self.schedule.find_host(self.settings.host_name)
        if host is not None:
            overrides = host.job_settings(JobName.SCAN)
            if overrides.scan_mode is not None:
                mode = overrides.scan_mode
            if overrides.force_initial_scan is not None:
                force = overrides.force_initial_scan
        return await self._scanner.determine_scan_type(mode, force)

    async def index_files(
        self, stop_event: asyncio.Event | None = None, scan_type: ScanType | None = None
    ) -> ScanResult:
        assert self._scanner is not None
        if scan_type is None:
            scan_type = await self.determine_scan_type()
        return await self._scanner.scan(scan_type, stop_event or self._stop)

    async def process_inactive_files(self, stop_event: asyncio.Event | None = None) -> BatchResult:
        assert self._reconciler is not None
        return await self._reconciler.process_all(
            self.settings.reconcile_batch_size, stop_event or self._stop
        )

    async def get_statistics(self) -> IndexStatistics:
        return await self.store.get_statistics()

    async def copy_database_to_local(self) -> PullResult:
        return await self.replica.pull_to_local()

    async def copy_database_to_remote(self) -> bool:
        return await self.replica.push_to_remote()

    def sync_record_to_remote(self, record_id: int, is_active: bool, modified_at: datetime) -> bool:
        """Queue a single-record push to the remote store. Returns False if dropped."""
        return self.record_queue.submit(record_id, is_active, modified_at)

    async def sync_all_changes_to_remote(self) -> bool:
        return await self.replica.full_reconcile()

    def can_service_start_now(self, job: str) -> bool:
        return self.oracle.can_start_now(job)

    def get_startup_delay(self, job: str) -> timedelta:
        return self.oracle.get_startup_delay(job)

    async def mark_file_inactive(self, record_id: int) -> bool:
        """Mark a record for deletion and publish the change to the remote store."""
        if not await self.store.mark_inactive(record_id):
            logger.warning("Record %d not found, cannot mark inactive", record_id)
            return False
        record = await self.store.get_record(record_id)
        assert record is not None
        self.sync_record_to_remote(record.id, record.is_active, record.modified_at)
        return True

    async def create_sync_request(self, file_id: int) -> bool:
        """Ask the other hosts to push ``file_id`` to this host."""
        return await self.store.create_file_request(file_id, self.settings.host_name)

    # Job loops

    def register_job(self, job: str, body: Callable[[], Awaitable[None]]) -> None:
        """Add a job body driven by its own loop, e.g. ``mirror_sync``."""
        self._extra_jobs[job] = body

    async def _scan_body(self) -> None:
        await self.index_files()

    async def _reconcile_body(self) -> None:
        await self.process_inactive_files()

    async def _periodic_sync_body(self) -> None:
        # the runner pushes the replica after every cycle
        stats = await self.get_statistics()
        logger.info(
            "Periodic sync: %d records (%d active, %d inactive)",
            stats.total,
            stats.active,
            stats.inactive,
        )

    def _job_bodies(self) -> dict[str, Callable[[], Awaitable[None]]]:
        bodies: dict[str, Callable[[], Awaitable[None]]] = {
            JobName.SCAN: self._scan_body,
            JobName.RECONCILE: self._reconcile_body,
            JobName.PERIODIC_SYNC: self._periodic_sync_body,
        }
        bodies.update(self._extra_jobs)
        return bodies

    async def start(self) -> None:
        """Start one loop per job. Disabled jobs return immediately."""
        await self.initialize()
        self._stop.clear()
        for job, body in self._job_bodies().items():
            loop = JobLoop(
                job,
                ProtectedJobRunner(
                    job, self.replica, shutdown_timeout=self.settings.shutdown_timeout_seconds
                ),
                body,
                self.oracle,
                self._stop,
                interval_minutes=self.schedule.job(job).interval_minutes,
                buffer_retry_seconds=self.settings.buffer_retry_seconds,
                error_backoff_seconds=self.settings.error_backoff_seconds,
            )
            self._tasks.append(asyncio.create_task(loop.run(), name=f"job-{job}"))
        logger.info("Started %d job loops on host %s", len(self._tasks), self.settings.host_name)

    def request_stop(self) -> None:
        if not self._stop.is_set():
            logger.info("Stop requested")
            self._stop.set()

    async def stop(self) -> None:
        """Stop the job loops, drain pending record pushes and close the store."""
        self.request_stop()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Job loop %s ended with error: %s", task.get_name(), result)
        self._tasks.clear()

        await self.record_queue.close(timeout=self.settings.shutdown_timeout_seconds)
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._store = None
        logger.info("Host %s stopped", self.settings.host_name)

    async def run_forever(self) -> None:
        await self.start()
        try:
            await self._stop.wait()
        finally:
            await self.stop()


def _install_signal_handlers(host: DriveSyncHost) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # not available on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, host.request_stop)


async def _run(host: DriveSyncHost) -> int:
    _install_signal_handlers(host)
    await host.run_forever()
    return 0


async def _scan(host: DriveSyncHost, force_initial: bool = False) -> int:
    await host.initialize()
    result: ScanResult | None = None

    async def body() -> None:
        nonlocal result
        result = await host.index_files(
            scan_type=ScanType.INITIAL if force_initial else None
        )

    try:
        await run_protected(host.replica, body, name="scan")
    finally:
        await host.stop()
    assert result is not None
    print(
        f"{result.scan_type} scan: {result.files_visited} visited, {result.files_new} new, "
        f"{result.files_updated} updated, {result.files_skipped} skipped, "
        f"{result.files_failed} failed"
    )
    return 1 if result.files_failed else 0


async def _reconcile(host: DriveSyncHost) -> int:
    await host.initialize()
    result: BatchResult | None = None

    async def body() -> None:
        nonlocal result
        result = await host.process_inactive_files()

    try:
        await run_protected(host.replica, body, name="reconcile")
    finally:
        await host.stop()
    assert result is not None
    print(
        f"Reconcile: {result.deleted} deleted, {result.restored} restored, "
        f"{result.ignored} missing, {result.skipped} skipped, {result.failed} failed, "
        f"{format_file_size(result.bytes_freed)} freed"
    )
    return 1 if result.failed else 0


async def _pull(host: DriveSyncHost) -> int:
    result = await host.copy_database_to_local()
    print(f"Pull: {result}")
    return 0


async def _push(host: DriveSyncHost) -> int:
    pushed = await host.copy_database_to_remote()
    print("Push: ok" if pushed else "Push: failed")
    return 0 if pushed else 1


async def _stats(host: DriveSyncHost) -> int:
    await host.initialize()
    try:
        stats = await host.get_statistics()
    finally:
        await host.stop()
    print(f"Total records:    {stats.total}")
    print(f"Active records:   {stats.active}")
    print(f"Inactive records: {stats.inactive}")
    print(f"Total size:       {format_file_size(stats.total_size_bytes)}")
    return 0


def _print_schedule(settings: Settings, schedule: ScheduleConfig, job: str) -> int:
    oracle = HostScheduleOracle(schedule, settings.host_name)
    statuses = oracle.host_status(job)
    if not statuses:
        print(f"No hosts configured in {settings.schedule_file}")
        return 0
    print(f"Schedule for {job} (buffer {schedule.buffer_minutes} min):")
    for status in statuses:
        marker = "*" if status.is_current_host else " "
        minutes = ",".join(str(m) for m in status.execution_minutes)
        print(
            f" {marker} {status.host_name:<16} {status.timezone:<20} "
            f"next {status.next_start.isoformat()}  minutes [{minutes}]"
        )
    print(f"Can start now on {settings.host_name}: {oracle.can_start_now(job)}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drivesync",
        description="Multi-host file index coordination",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--host-name", help="Override the host name used for scheduling")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run all job loops until interrupted")
    scan = subparsers.add_parser("scan", help="Run one scan and push the replica")
    scan.add_argument("--initial", action="store_true", help="Force an initial scan")
    subparsers.add_parser("reconcile", help="Process inactive records once and push the replica")
    subparsers.add_parser("pull", help="Seed the local replica from the remote store")
    subparsers.add_parser("push", help="Copy the local replica to the remote store")
    subparsers.add_parser("stats", help="Show index statistics")
    schedule = subparsers.add_parser("schedule", help="Show the host schedule for a job")
    schedule.add_argument(
        "--job",
        default=JobName.SCAN.value,
        choices=[job.value for job in JobName],
        help="Job to show (default: scan)",
    )
    return parser


_COMMANDS: dict[str, Callable[[DriveSyncHost], Awaitable[int]]] = {
    "run": _run,
    "scan": _scan,
    "reconcile": _reconcile,
    "pull": _pull,
    "push": _push,
    "stats": _stats,
}


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    overrides: dict[str, object] = {}
    if args.debug:
        overrides["debug"] = True
    if args.host_name:
        overrides["host_name"] = args.host_name
    settings = Settings(**overrides)  # type: ignore[arg-type]
    configure_logging(settings.debug)

    try:
        schedule = load_schedule_config(settings.schedule_file)
    except (OSError, ValueError) as exc:
        print(f"Error: invalid schedule file {settings.schedule_file}: {exc}")
        return 2

    if args.command == "schedule":
        return _print_schedule(settings, schedule, args.job)

    try:
        host = DriveSyncHost(settings, schedule)
    except ConfigurationMissingError as exc:
        print(f"Error: {exc}")
        return 2

    logger.info("Starting DriveSync %s on host %s", args.command, settings.host_name)
    try:
        if args.command == "scan":
            return asyncio.run(_scan(host, force_initial=args.initial))
        return asyncio.run(_COMMANDS[args.command](host))
    except DriveSyncError as exc:
        logger.critical("%s failed: %s", args.command, exc)
        return 1


def cli_entry() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
