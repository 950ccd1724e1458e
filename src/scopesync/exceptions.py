"""Exceptions for scopesync."""

from pathlib import Path


class ScopeSyncError(Exception):
    """Base exception for scopesync errors."""

    pass


class NotFoundError(ScopeSyncError):
    """A profile, project, backup or path is unknown."""

    pass


class EntityParseError(ScopeSyncError):
    """A single configuration entity file could not be parsed."""

    def __init__(self, path: Path | str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class FileOperationError(ScopeSyncError):
    """Error reading or writing a file."""

    pass


class ValidationError(ScopeSyncError):
    """Invalid name, path or profile data."""

    pass


class ProjectBusyError(ScopeSyncError):
    """Another apply or rollback holds the project lock."""

    pass


class BackupCorruptedError(ScopeSyncError):
    """Captured backup bytes do not match their recorded hash."""

    pass
