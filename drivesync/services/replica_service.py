"""Replica lifecycle: local working copy vs. the shared store file.

The shared (remote) store is a plain SQLite file that every host copies to a
local path, mutates locally, and copies back. Nothing here inspects rows,
except the single-record fast path which patches one row of the remote file
directly so that interactive edits become visible before the next full push.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine

from drivesync.config import sqlite_url
from drivesync.exceptions import RecordSyncError, ReplicaCopyError, ReplicaUnavailableError
from drivesync.models.file_record import FileRecord
from drivesync.services.datetime_service import to_store_precision

if TYPE_CHECKING:
    from datetime import datetime

logger = logging.getLogger(__name__)

_TEMP_SUFFIX = ".drivesync-tmp"


class PullResult(StrEnum):
    """Outcome of a pull."""

    LOCAL_EXISTS = "local_exists"
    COPIED = "copied"
    REMOTE_MISSING = "remote_missing"


def _copy_atomic(source: Path, destination: Path) -> None:
    """Copy ``source`` over ``destination`` via a temp file and rename.

    The temp file lives in the destination directory so the final
    ``os.replace`` is a same-filesystem rename and readers never observe a
    half-written file.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{destination.name}.", suffix=_TEMP_SUFFIX, dir=destination.parent
    )
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        shutil.copyfile(source, tmp_path)
        os.replace(tmp_path, destination)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise


class ReplicaSyncManager:
    """Copies the store between the shared location and the local replica.

    Args:
        remote_path: The long-lived shared store file.
        local_path: This host's working copy. Once it exists it is treated as
            authoritative and never overwritten by a pull.
    """

    def __init__(self, remote_path: Path, local_path: Path) -> None:
        self.remote_path = remote_path
        self.local_path = local_path

    async def pull_to_local(self) -> PullResult:
        """Seed the local replica from the remote store if it does not exist yet.

        Idempotent. A missing remote is an expected cold start: the local path
        stays absent and the store is created empty on first open.

        Raises:
            ReplicaCopyError: If the copy itself fails.
        """
        if self.local_path.exists():
            logger.info("Local replica already exists at %s, preserving it", self.local_path)
            return PullResult.LOCAL_EXISTS

        if not self.remote_path.exists():
            logger.info(
                "Remote store %s does not exist, a new local store will be created at %s",
                self.remote_path,
                self.local_path,
            )
            return PullResult.REMOTE_MISSING

        logger.info("Copying store from %s to %s", self.remote_path, self.local_path)
        try:
            await asyncio.to_thread(_copy_atomic, self.remote_path, self.local_path)
        except OSError as exc:
            logger.error("Failed to copy store to local replica: %s", exc, exc_info=True)
            raise ReplicaCopyError(f"Pull from {self.remote_path} failed: {exc}") from exc
        logger.info("Store copied to local replica")
        return PullResult.COPIED

    async def push_to_remote(self) -> bool:
        """Overwrite the remote store with the local replica.

        Never raises: a failed push is logged and reported as ``False`` so the
        calling job is not aborted.
        """
        if not self.local_path.exists():
            logger.warning("Local replica %s does not exist, nothing to push", self.local_path)
            return False

        logger.debug("Pushing store from %s to %s", self.local_path, self.remote_path)
        try:
            await asyncio.to_thread(_copy_atomic, self.local_path, self.remote_path)
        except OSError as exc:
            logger.error(
                "Failed to push local replica to %s: %s", self.remote_path, exc, exc_info=True
            )
            return False
        logger.info("Store pushed to %s", self.remote_path)
        return True

    async def push_record(self, record_id: int, is_active: bool, modified_at: datetime) -> bool:
        """Patch one row of the remote store without copying the whole file.

        Raises:
            ReplicaUnavailableError: If the remote store does not exist.
            RecordSyncError: If the update fails.
        """
        if not self.remote_path.exists():
            raise ReplicaUnavailableError(f"Remote store {self.remote_path} does not exist")

        engine = create_async_engine(sqlite_url(self.remote_path))
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    update(FileRecord)
                    .where(FileRecord.id == record_id)
                    .values(is_active=is_active, modified_at=to_store_precision(modified_at))
                )
        except Exception as exc:
            raise RecordSyncError(f"Updating record {record_id} on remote failed: {exc}") from exc
        finally:
            await engine.dispose()

        if not result.rowcount:
            logger.warning("Record %d not found in remote store", record_id)
            return False
        logger.info("Synced record %d (active=%s) to remote store", record_id, is_active)
        return True

    async def full_reconcile(self) -> bool:
        """Bring the remote store up to date with every local change.

        Currently a full-file push; requires both files to exist.
        """
        if not self.local_path.exists() or not self.remote_path.exists():
            logger.warning("Local or remote store missing, cannot perform full sync")
            return False
        logger.info("Performing full sync from local to remote store")
        return await self.push_to_remote()


@dataclass(frozen=True)
class RecordSyncItem:
    record_id: int
    is_active: bool
    modified_at: datetime


class RecordSyncQueue:
    """Bounded queue of single-record pushes drained by one worker task.

    ``submit`` never blocks the caller; failures are logged and counted so
    they stay observable, and ``close`` bounds how long shutdown waits for
    pending pushes.
    """

    def __init__(self, replica: ReplicaSyncManager, maxsize: int = 256) -> None:
        self._replica = replica
        self._queue: asyncio.Queue[RecordSyncItem] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task[None] | None = None
        self.succeeded = 0
        self.failed = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="record-sync")

    def submit(self, record_id: int, is_active: bool, modified_at: datetime) -> bool:
        """Queue a push. Returns False when the queue is full."""
        try:
            self._queue.put_nowait(RecordSyncItem(record_id, is_active, modified_at))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Record sync queue full, dropping push of record %d; it will reach the "
                "remote store with the next full push",
                record_id,
            )
            return False
        return True

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                synced = await self._replica.push_record(
                    item.record_id, item.is_active, item.modified_at
                )
            except (RecordSyncError, ReplicaUnavailableError) as exc:
                self.failed += 1
                logger.error("Record sync failed for %d: %s", item.record_id, exc)
            else:
                if synced:
                    self.succeeded += 1
                else:
                    self.failed += 1
            finally:
                self._queue.task_done()

    async def close(self, timeout: float = 10.0) -> bool:
        """Wait up to ``timeout`` seconds for pending pushes, then stop the worker.

        Returns True if the queue drained in time.
        """
        drained = True
        if self._worker is not None and not self._worker.done():
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except TimeoutError:
                drained = False
                logger.warning(
                    "Record sync queue did not drain within %.1fs, %d pushes abandoned",
                    timeout,
                    self._queue.qsize(),
                )
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None
        return drained
