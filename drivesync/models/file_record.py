"""File index models."""

from __future__ import annotations

from datetime import datetime
from pathlib import PurePath

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from drivesync.models.base import Base, StoreDateTime

_SIZE_SUFFIXES = ("B", "KB", "MB", "GB", "TB")


class FileRecord(Base):
    """One observed version of a file under the input folder.

    A (relative_dir, file_name) pair may have several rows; the current one
    is the row with the latest ``indexed_at``.
    """

    __tablename__ = "FileRecords"

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    relative_dir: Mapped[str] = mapped_column("RelativePath", Text, nullable=False)
    file_name: Mapped[str] = mapped_column("FileName", Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column("FileSizeBytes", Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column("CreationDate", StoreDateTime, nullable=False)
    modified_at: Mapped[datetime] = mapped_column(
        "ModificationDate", StoreDateTime, nullable=False
    )
    indexed_at: Mapped[datetime] = mapped_column("IndexedDate", StoreDateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column("IsActive", Boolean, nullable=False, default=True)
    content_hash: Mapped[str | None] = mapped_column("FileHash", Text, nullable=True)

    __table_args__ = (
        Index("idx_relativepath", "RelativePath"),
        Index("idx_filename", "FileName"),
        Index("idx_isactive", "IsActive"),
    )

    @property
    def relative_path(self) -> str:
        """Path of the file relative to the input folder."""
        if not self.relative_dir:
            return self.file_name
        return str(PurePath(self.relative_dir) / self.file_name)

    @property
    def size_formatted(self) -> str:
        return format_file_size(self.size_bytes)

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<FileRecord id={self.id} path={self.relative_path!r} {state}>"


class FileRequest(Base):
    """Cross-host request to have a file pushed to the requesting host."""

    __tablename__ = "FileRequests"

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(
        "FileId", Integer, ForeignKey("FileRecords.Id"), nullable=False
    )
    requested_by_host: Mapped[str] = mapped_column("RequestedByHost", Text, nullable=False)
    requested_at: Mapped[datetime] = mapped_column("RequestedAt", StoreDateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column("IsActive", Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_filerequests_fileid", "FileId"),
        Index("idx_filerequests_isactive", "IsActive"),
    )


def format_file_size(size_bytes: int) -> str:
    """Human-readable size, e.g. ``1.5 MB``."""
    number = float(size_bytes)
    index = 0
    while number >= 1024 and index < len(_SIZE_SUFFIXES) - 1:
        number /= 1024
        index += 1
    return f"{number:,.1f} {_SIZE_SUFFIXES[index]}"
