"""Application-level exception types.

Convention:
- ``ConfigurationMissingError`` is the only error allowed to stop the host
  process. It is raised at startup when a required path or section is absent.
- Replica and scan errors are raised close to the failing I/O call and are
  caught by the caller that owns the failure policy: pull failures at startup
  propagate, push failures and per-file scan failures are logged and swallowed.
- ``ScheduleUnresolvableError`` never leaves the schedule service; the
  affected host/job degrades to "always eligible".
"""

from __future__ import annotations


class DriveSyncError(Exception):
    """Base class for DriveSync errors."""


class ConfigurationMissingError(DriveSyncError):
    """Raised when a required configuration value is missing at startup."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required configuration: {', '.join(missing)}")


class ReplicaUnavailableError(DriveSyncError):
    """Raised when the shared store file is required but does not exist."""


class ReplicaCopyError(DriveSyncError):
    """Raised when copying the store between local and remote paths fails."""


class ScanIOError(DriveSyncError):
    """Raised for a file or directory that cannot be read during a scan."""


class ScheduleUnresolvableError(DriveSyncError):
    """Raised when a host schedule has a bad time zone or no eligible minutes."""


class RecordSyncError(DriveSyncError):
    """Raised when a single-record push to the shared store fails."""
