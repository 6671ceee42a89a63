"""Typed access layer over the file index store."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import case, delete, func, or_, select, update

from drivesync.models.base import Base
from drivesync.models.file_record import FileRecord, FileRequest
from drivesync.models.scan import ScanMetadata
from drivesync.services.datetime_service import now_utc, to_store_precision

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "file_name": FileRecord.file_name,
    "relative_dir": FileRecord.relative_dir,
    "size_bytes": FileRecord.size_bytes,
    "created_at": FileRecord.created_at,
    "modified_at": FileRecord.modified_at,
    "indexed_at": FileRecord.indexed_at,
    "is_active": FileRecord.is_active,
}


@dataclass
class IndexStatistics:
    """Row counts and total size of the file index."""

    total: int
    active: int
    inactive: int
    total_size_bytes: int


@dataclass
class RecordPage:
    """One page of file records plus paging totals."""

    records: list[FileRecord]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0


class IndexStore:
    """Async CRUD over ``FileRecords``, ``FileRequests`` and ``ScanMetadata``.

    Every method runs in its own short session and commits before returning,
    so the replica file on disk is always consistent between calls.
    """

    def __init__(
        self, engine: AsyncEngine, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory

    async def ensure_schema(self) -> None:
        """Create missing tables and indexes. Existing rows are left untouched."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    # File records

    async def get_record(self, record_id: int) -> FileRecord | None:
        async with self._session_factory() as session:
            return await session.get(FileRecord, record_id)

    async def get_current_record(self, relative_dir: str, file_name: str) -> FileRecord | None:
        """Return the latest-indexed row for a path, active or not."""
        stmt = (
            select(FileRecord)
            .where(FileRecord.relative_dir == relative_dir, FileRecord.file_name == file_name)
            .order_by(FileRecord.indexed_at.desc(), FileRecord.id.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def file_exists(self, relative_dir: str, file_name: str) -> bool:
        stmt = select(func.count()).where(
            FileRecord.relative_dir == relative_dir, FileRecord.file_name == file_name
        )
        async with self._session_factory() as session:
            count = (await session.execute(stmt)).scalar_one()
        return count > 0

    async def insert_record(
        self,
        *,
        relative_dir: str,
        file_name: str,
        size_bytes: int,
        created_at: datetime,
        modified_at: datetime,
        indexed_at: datetime | None = None,
        is_active: bool = True,
        content_hash: str | None = None,
    ) -> FileRecord:
        record = FileRecord(
            relative_dir=relative_dir,
            file_name=file_name,
            size_bytes=size_bytes,
            created_at=to_store_precision(created_at),
            modified_at=to_store_precision(modified_at),
            indexed_at=to_store_precision(indexed_at) if indexed_at else now_utc(),
            is_active=is_active,
            content_hash=content_hash,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    async def update_record(
        self,
        record_id: int,
        *,
        size_bytes: int,
        modified_at: datetime,
        is_active: bool = True,
        indexed_at: datetime | None = None,
        content_hash: str | None = None,
    ) -> bool:
        """Update the mutable metadata of one row in place."""
        stmt = (
            update(FileRecord)
            .where(FileRecord.id == record_id)
            .values(
                size_bytes=size_bytes,
                modified_at=to_store_precision(modified_at),
                indexed_at=to_store_precision(indexed_at) if indexed_at else now_utc(),
                is_active=is_active,
                content_hash=content_hash,
            )
        )
        return await self._execute_rowcount(stmt) > 0

    async def mark_inactive(self, record_id: int, modified_at: datetime | None = None) -> bool:
        """Flip a row to inactive and stamp its modification date.

        The stamp is what the inactive-record reconciler compares against the
        file on disk, so it defaults to now.
        """
        stmt = (
            update(FileRecord)
            .where(FileRecord.id == record_id)
            .values(
                is_active=False,
                modified_at=to_store_precision(modified_at) if modified_at else now_utc(),
            )
        )
        return await self._execute_rowcount(stmt) > 0

    async def mark_active(self, record_id: int) -> bool:
        stmt = update(FileRecord).where(FileRecord.id == record_id).values(is_active=True)
        return await self._execute_rowcount(stmt) > 0

    async def delete_record(self, record_id: int) -> bool:
        """Delete a row and any sync requests pointing at it."""
        async with self._session_factory() as session:
            await session.execute(delete(FileRequest).where(FileRequest.file_id == record_id))
            result = await session.execute(delete(FileRecord).where(FileRecord.id == record_id))
            await session.commit()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def insert_restored_record(
        self, inactive: FileRecord, modified_at: datetime, size_bytes: int
    ) -> FileRecord:
        """Append an active row for a file that reappeared after being marked inactive."""
        return await self.insert_record(
            relative_dir=inactive.relative_dir,
            file_name=inactive.file_name,
            size_bytes=size_bytes,
            created_at=inactive.created_at,
            modified_at=modified_at,
            is_active=True,
        )

    async def get_records_page(
        self,
        page: int = 1,
        page_size: int = 50,
        search: str | None = None,
        sort_by: str = "indexed_at",
        ascending: bool = False,
        is_active: bool | None = None,
    ) -> RecordPage:
        """Return one page of records filtered by status and a substring search."""
        page = max(page, 1)
        page_size = max(page_size, 1)

        filters = []
        if is_active is not None:
            filters.append(FileRecord.is_active == is_active)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(FileRecord.file_name.like(pattern), FileRecord.relative_dir.like(pattern))
            )

        sort_column = _SORT_COLUMNS.get(sort_by, FileRecord.indexed_at)
        order = sort_column.asc() if ascending else sort_column.desc()

        count_stmt = select(func.count()).select_from(FileRecord).where(*filters)
        data_stmt = (
            select(FileRecord)
            .where(*filters)
            .order_by(order, FileRecord.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            records = list((await session.execute(data_stmt)).scalars().all())
        return RecordPage(records=records, total_count=total, page=page, page_size=page_size)

    async def get_statistics(self) -> IndexStatistics:
        stmt = select(
            func.count(FileRecord.id),
            func.coalesce(func.sum(case((FileRecord.is_active.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(case((FileRecord.is_active.is_(False), 1), else_=0)), 0),
            func.coalesce(func.sum(FileRecord.size_bytes), 0),
        )
        async with self._session_factory() as session:
            total, active, inactive, size = (await session.execute(stmt)).one()
        return IndexStatistics(
            total=int(total),
            active=int(active),
            inactive=int(inactive),
            total_size_bytes=int(size),
        )

    async def get_inactive_batch(
        self, after: datetime | None = None, batch_size: int = 100
    ) -> list[FileRecord]:
        """Inactive rows with ``modified_at > after``, oldest first."""
        stmt = select(FileRecord).where(FileRecord.is_active.is_(False))
        if after is not None:
            stmt = stmt.where(FileRecord.modified_at > to_store_precision(after))
        stmt = stmt.order_by(FileRecord.modified_at.asc(), FileRecord.id.asc()).limit(batch_size)
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def get_last_inactive_modification(self) -> datetime | None:
        stmt = select(func.max(FileRecord.modified_at)).where(FileRecord.is_active.is_(False))
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def has_newer_active_record(self, record: FileRecord) -> bool:
        """Whether an active row for the same path was indexed after ``record``."""
        stmt = select(func.count()).where(
            FileRecord.relative_dir == record.relative_dir,
            FileRecord.file_name == record.file_name,
            FileRecord.is_active.is_(True),
            FileRecord.id != record.id,
            FileRecord.indexed_at >= record.indexed_at,
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one() > 0

    # Sync requests

    async def create_file_request(self, file_id: int, requested_by_host: str) -> bool:
        """Create an active request. Returns False if one already exists."""
        async with self._session_factory() as session:
            existing = await session.execute(
                _active_request_stmt(file_id, requested_by_host).limit(1)
            )
            if existing.scalar_one_or_none() is not None:
                return False
            session.add(
                FileRequest(
                    file_id=file_id,
                    requested_by_host=requested_by_host,
                    requested_at=now_utc(),
                    is_active=True,
                )
            )
            await session.commit()
        return True

    async def get_active_file_request(
        self, file_id: int, requested_by_host: str
    ) -> FileRequest | None:
        async with self._session_factory() as session:
            result = await session.execute(
                _active_request_stmt(file_id, requested_by_host).limit(1)
            )
            return result.scalar_one_or_none()

    async def deactivate_file_request(self, file_id: int, requested_by_host: str) -> bool:
        stmt = (
            update(FileRequest)
            .where(
                FileRequest.file_id == file_id,
                FileRequest.requested_by_host == requested_by_host,
                FileRequest.is_active.is_(True),
            )
            .values(is_active=False)
        )
        return await self._execute_rowcount(stmt) > 0

    async def list_active_file_requests(self, host: str | None = None) -> list[FileRequest]:
        stmt = select(FileRequest).where(FileRequest.is_active.is_(True))
        if host is not None:
            stmt = stmt.where(FileRequest.requested_by_host == host)
        stmt = stmt.order_by(FileRequest.requested_at.asc(), FileRequest.id.asc())
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    # Scan metadata

    async def record_scan(self, metadata: ScanMetadata) -> ScanMetadata:
        async with self._session_factory() as session:
            session.add(metadata)
            await session.commit()
        return metadata

    async def get_last_scan(self, host_name: str) -> ScanMetadata | None:
        stmt = (
            select(ScanMetadata)
            .where(ScanMetadata.host_name == host_name)
            .order_by(ScanMetadata.ended_at.desc(), ScanMetadata.id.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def _execute_rowcount(self, stmt: object) -> int:
        async with self._session_factory() as session:
            result = await session.execute(stmt)  # type: ignore[call-overload]
            await session.commit()
        return int(result.rowcount or 0)


def _active_request_stmt(file_id: int, requested_by_host: str):  # type: ignore[no-untyped-def]
    return select(FileRequest).where(
        FileRequest.file_id == file_id,
        FileRequest.requested_by_host == requested_by_host,
        FileRequest.is_active.is_(True),
    )
