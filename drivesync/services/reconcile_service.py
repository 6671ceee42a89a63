"""Deletion of files whose index rows were marked inactive."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from drivesync.services.datetime_service import from_timestamp

if TYPE_CHECKING:
    import asyncio
    from datetime import datetime

    from drivesync.models.file_record import FileRecord
    from drivesync.services.index_store import IndexStore

logger = logging.getLogger(__name__)

_FILE_ATTRIBUTE_SYSTEM = 0x4


@dataclass
class BatchResult:
    next_cutoff: datetime | None
    fetched: int = 0
    deleted: int = 0
    restored: int = 0
    ignored: int = 0
    skipped: int = 0
    failed: int = 0
    bytes_freed: int = 0


def is_protected_file(st: os.stat_result) -> bool:
    """Read-only and system files are never deleted."""
    if not st.st_mode & stat.S_IWUSR:
        return True
    return bool(getattr(st, "st_file_attributes", 0) & _FILE_ATTRIBUTE_SYSTEM)


def prune_empty_dirs(root: Path) -> int:
    """Remove empty directories below ``root``, deepest first. The root itself is kept."""
    removed = 0
    for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
        directory = Path(dirpath)
        if directory == root:
            continue
        try:
            if not any(directory.iterdir()):
                directory.rmdir()
                removed += 1
                logger.debug("Removed empty directory: %s", directory)
        except OSError as exc:
            logger.warning("Cannot remove directory %s: %s", directory, exc)
    return removed


class InactiveRecordReconciler:
    """Applies inactive index rows to the input folder.

    For each inactive row, in ``modified_at`` order:

    - the file is gone: the row is left alone;
    - the file was modified after the row: the file was restored, so an
      active row is appended (unless one already exists) and the inactive
      row is deleted;
    - otherwise the file is deleted together with its row.
    """

    def __init__(self, store: IndexStore, root: Path) -> None:
        self._store = store
        self.root = root.resolve()

    def resolve_path(self, record: FileRecord) -> Path | None:
        """On-disk path of ``record``, or None if it escapes the root.

        The returned path is not resolved, so a symlinked record names the link
        itself. Containment is checked on the resolved target.
        """
        candidate = self.root / record.relative_dir / record.file_name
        if not candidate.resolve().is_relative_to(self.root):
            return None
        return candidate

    async def process_batch(
        self,
        last_cutoff: datetime | None,
        batch_size: int = 100,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        """Process up to ``batch_size`` inactive rows modified after ``last_cutoff``.

        ``next_cutoff`` is the modification time of the last fetched row, so
        rows left untouched are not fetched again by the following batch.
        """
        records = await self._store.get_inactive_batch(last_cutoff, batch_size)
        result = BatchResult(next_cutoff=last_cutoff, fetched=len(records))

        for record in records:
            if stop_event is not None and stop_event.is_set():
                logger.info("Reconcile cancelled")
                break
            result.next_cutoff = record.modified_at
            try:
                await self._process_record(record, result)
            except OSError as exc:
                result.failed += 1
                logger.error("Error processing inactive record %d: %s", record.id, exc)

        if result.deleted:
            prune_empty_dirs(self.root)
        return result

    async def _process_record(self, record: FileRecord, result: BatchResult) -> None:
        path = self.resolve_path(record)
        if path is None:
            result.skipped += 1
            logger.warning(
                "Skipping record %d, path escapes input folder: %s/%s",
                record.id,
                record.relative_dir,
                record.file_name,
            )
            return

        try:
            st = path.stat()
        except FileNotFoundError:
            result.ignored += 1
            logger.debug("File for record %d not found on disk: %s", record.id, path)
            return

        if not stat.S_ISREG(st.st_mode) or is_protected_file(st):
            result.skipped += 1
            logger.info("Skipping protected file: %s", path)
            return

        disk_modified = from_timestamp(st.st_mtime)
        if disk_modified > record.modified_at:
            if not await self._store.has_newer_active_record(record):
                await self._store.insert_restored_record(record, disk_modified, st.st_size)
            await self._store.delete_record(record.id)
            result.restored += 1
            logger.info("File restored externally, reactivated: %s", path)
            return

        # unlinks the link, not its target, for symlinked records
        freed = path.lstat().st_size if path.is_symlink() else st.st_size
        path.unlink()
        await self._store.delete_record(record.id)
        result.deleted += 1
        result.bytes_freed += freed
        logger.info("Deleted file: %s", path)

    async def process_all(
        self,
        batch_size: int = 100,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        """Run batches from the oldest inactive row until a short batch."""
        total = BatchResult(next_cutoff=None)
        while True:
            batch = await self.process_batch(total.next_cutoff, batch_size, stop_event)
            total.next_cutoff = batch.next_cutoff
            total.fetched += batch.fetched
            total.deleted += batch.deleted
            total.restored += batch.restored
            total.ignored += batch.ignored
            total.skipped += batch.skipped
            total.failed += batch.failed
            total.bytes_freed += batch.bytes_freed
            if batch.fetched < batch_size or (stop_event is not None and stop_event.is_set()):
                break

        logger.info(
            "Reconcile finished - deleted: %d, restored: %d, ignored: %d, skipped: %d, "
            "failed: %d, freed: %d bytes",
            total.deleted,
            total.restored,
            total.ignored,
            total.skipped,
            total.failed,
            total.bytes_freed,
        )
        return total
