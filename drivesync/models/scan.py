"""Scan provenance model."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from drivesync.models.base import Base, StoreDateTime


class ScanType(StrEnum):
    """Kind of filesystem walk performed by the scanner."""

    INITIAL = "Initial"
    INCREMENTAL = "Incremental"


class ScanMode(StrEnum):
    """Configured scan policy for a host."""

    INITIAL = "initial"
    INCREMENTAL = "incremental"
    AUTO = "auto"


class ScanMetadata(Base):
    """One completed scan cycle. Written once, never updated."""

    __tablename__ = "ScanMetadata"

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    host_name: Mapped[str] = mapped_column("HostName", Text, nullable=False)
    scan_type: Mapped[str] = mapped_column("ScanType", Text, nullable=False)
    started_at: Mapped[datetime] = mapped_column("StartedAt", StoreDateTime, nullable=False)
    ended_at: Mapped[datetime] = mapped_column("EndedAt", StoreDateTime, nullable=False)
    time_zone: Mapped[str] = mapped_column("TimeZone", Text, nullable=False, default="UTC")
    files_processed: Mapped[int] = mapped_column("FilesProcessed", Integer, nullable=False)
    files_new: Mapped[int] = mapped_column("FilesNew", Integer, nullable=False)
    files_updated: Mapped[int] = mapped_column("FilesUpdated", Integer, nullable=False)
    files_skipped: Mapped[int] = mapped_column("FilesSkipped", Integer, nullable=False, default=0)
    files_failed: Mapped[int] = mapped_column("FilesFailed", Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_scanmetadata_host", "HostName"),)

    @property
    def elapsed_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()
