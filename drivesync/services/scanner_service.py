"""File indexing: scan-type decision and the filesystem walk."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from drivesync.exceptions import ScanIOError
from drivesync.models.scan import ScanMetadata, ScanMode, ScanType
from drivesync.services.datetime_service import from_timestamp, now_utc

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Iterator
    from datetime import datetime

    from drivesync.services.index_store import IndexStore

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Counters of one scan.

    ``files_visited`` counts files that were compared against the index;
    files excluded by the incremental cutoff only count as skipped.
    """

    scan_type: ScanType
    started_at: datetime
    ended_at: datetime | None = None
    files_visited: int = 0
    files_skipped: int = 0
    files_new: int = 0
    files_updated: int = 0
    files_failed: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FileStat:
    relative_dir: str
    file_name: str
    size_bytes: int
    created_at: datetime
    modified_at: datetime


def relative_parts(root: Path, path: Path) -> tuple[str, str]:
    """Split ``path`` into (directory relative to ``root``, file name).

    Files directly under the root have an empty relative directory.
    """
    rel = path.relative_to(root)
    parent = rel.parent.as_posix()
    return ("" if parent == "." else parent), rel.name


def stat_file(root: Path, path: Path) -> FileStat:
    """Read the indexable metadata of one file.

    Raises:
        ScanIOError: If the file cannot be stat'ed.
    """
    try:
        st = path.stat()
    except OSError as exc:
        raise ScanIOError(f"Cannot stat {path}: {exc}") from exc
    relative_dir, file_name = relative_parts(root, path)
    created = getattr(st, "st_birthtime", None) or st.st_ctime
    return FileStat(
        relative_dir=relative_dir,
        file_name=file_name,
        size_bytes=st.st_size,
        created_at=from_timestamp(created),
        modified_at=from_timestamp(st.st_mtime),
    )


def walk_files(root: Path) -> Iterator[Path]:
    """Yield every regular file under ``root``; unreadable directories are logged and skipped."""

    def _on_error(exc: OSError) -> None:
        logger.warning("Cannot read directory %s: %s", exc.filename, exc.strerror)

    for dirpath, _dirnames, filenames in os.walk(root, onerror=_on_error):
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


class FileIndexScanner:
    """Walks the input folder and keeps the file index current.

    Update rule for a file that already has a row:

    - current row active, size or modification time changed: the row is
      updated in place;
    - current row inactive and the file is newer than the row: a new active
      row is appended and the inactive row stays as history;
    - current row inactive and the file is not newer: nothing happens, the
      file is pending deletion by the reconciler.

    Args:
        store: Index store on the local replica.
        root: Input folder.
        host_name: Host recorded in scan metadata.
        time_zone: Time zone recorded in scan metadata.
        progress_every: Log progress after this many visited files.
    """

    def __init__(
        self,
        store: IndexStore,
        root: Path,
        host_name: str,
        *,
        time_zone: str = "UTC",
        progress_every: int = 1000,
    ) -> None:
        self._store = store
        self.root = root
        self.host_name = host_name
        self.time_zone = time_zone
        self._progress_every = progress_every

    async def determine_scan_type(
        self, mode: ScanMode = ScanMode.AUTO, force_initial: bool = False
    ) -> ScanType:
        """Pick Initial or Incremental for this host's next scan."""
        if force_initial or mode is ScanMode.INITIAL:
            return ScanType.INITIAL
        last = await self._store.get_last_scan(self.host_name)
        if last is None:
            logger.info("No previous scan for host %s, performing initial scan", self.host_name)
            return ScanType.INITIAL
        return ScanType.INCREMENTAL

    async def scan(
        self,
        scan_type: ScanType,
        stop_event: asyncio.Event | None = None,
    ) -> ScanResult:
        """Walk the input folder once and upsert index rows.

        A completed scan writes one ``ScanMetadata`` row; a cancelled scan
        writes none, so the next incremental cutoff stays where it was.
        """
        result = ScanResult(scan_type=scan_type, started_at=now_utc())

        if not self.root.is_dir():
            logger.warning("Input folder does not exist: %s", self.root)
            result.ended_at = now_utc()
            return result

        cutoff: datetime | None = None
        if scan_type is ScanType.INCREMENTAL:
            last = await self._store.get_last_scan(self.host_name)
            cutoff = last.ended_at if last is not None else None

        logger.info(
            "Starting %s scan of %s (cutoff: %s)",
            scan_type,
            self.root,
            cutoff.isoformat() if cutoff else "none",
        )

        for path in walk_files(self.root):
            if stop_event is not None and stop_event.is_set():
                logger.info("Scan cancelled after %d files", result.files_visited)
                result.cancelled = True
                break
            try:
                info = stat_file(self.root, path)
                if cutoff is not None and info.modified_at <= cutoff:
                    result.files_skipped += 1
                    continue
                result.files_visited += 1
                await self._index_file(info, result)
            except (ScanIOError, OSError) as exc:
                result.files_failed += 1
                result.errors.append(str(exc))
                logger.error("Error indexing file %s: %s", path, exc)
                continue

            if result.files_visited % self._progress_every == 0:
                logger.info("Processed %d files so far...", result.files_visited)

        result.ended_at = now_utc()
        logger.info(
            "%s scan finished - visited: %d, new: %d, updated: %d, skipped: %d, failed: %d",
            scan_type,
            result.files_visited,
            result.files_new,
            result.files_updated,
            result.files_skipped,
            result.files_failed,
        )

        if not result.cancelled:
            await self._store.record_scan(
                ScanMetadata(
                    host_name=self.host_name,
                    scan_type=str(scan_type),
                    started_at=result.started_at,
                    ended_at=result.ended_at,
                    time_zone=self.time_zone,
                    files_processed=result.files_visited,
                    files_new=result.files_new,
                    files_updated=result.files_updated,
                    files_skipped=result.files_skipped,
                    files_failed=result.files_failed,
                )
            )
        return result

    async def _index_file(self, info: FileStat, result: ScanResult) -> None:
        current = await self._store.get_current_record(info.relative_dir, info.file_name)

        if current is None:
            await self._store.insert_record(
                relative_dir=info.relative_dir,
                file_name=info.file_name,
                size_bytes=info.size_bytes,
                created_at=info.created_at,
                modified_at=info.modified_at,
            )
            result.files_new += 1
            logger.debug("Indexed new file: %s/%s", info.relative_dir, info.file_name)
            return

        if current.is_active:
            if current.modified_at != info.modified_at or current.size_bytes != info.size_bytes:
                await self._store.update_record(
                    current.id,
                    size_bytes=info.size_bytes,
                    modified_at=info.modified_at,
                    content_hash=current.content_hash,
                )
                result.files_updated += 1
                logger.debug("Updated file: %s/%s", info.relative_dir, info.file_name)
            return

        if info.modified_at > current.modified_at:
            await self._store.insert_record(
                relative_dir=info.relative_dir,
                file_name=info.file_name,
                size_bytes=info.size_bytes,
                created_at=current.created_at,
                modified_at=info.modified_at,
            )
            result.files_updated += 1
            logger.debug("Reactivated file: %s/%s", info.relative_dir, info.file_name)
