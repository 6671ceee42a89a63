"""SQLAlchemy ORM models for the DriveSync file index."""

from drivesync.models.base import Base
from drivesync.models.file_record import FileRecord, FileRequest
from drivesync.models.scan import ScanMetadata, ScanMode, ScanType

__all__ = [
    "Base",
    "FileRecord",
    "FileRequest",
    "ScanMetadata",
    "ScanMode",
    "ScanType",
]
