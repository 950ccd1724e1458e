"""Backup manager: versioned snapshots taken by apply, and rollback."""

import logging
import uuid
from pathlib import Path
from typing import Any

import yaml

from .exceptions import BackupCorruptedError
from .exceptions import FileOperationError
from .exceptions import NotFoundError
from .locks import ProjectLocks
from .models import BackupFile
from .models import BackupRecord
from .utils import atomic_write
from .utils import content_hash
from .utils import prune_empty_dirs
from .utils import safe_join
from .utils import utcnow

logger = logging.getLogger(__name__)

RECORD_FILE = "record.yaml"
FILES_DIR = "files"


class BackupManager:
    """Stores backup records and the file bytes they captured.

    Layout::

        <backups_dir>/<backup_id>/record.yaml
        <backups_dir>/<backup_id>/files/<project-relative path>

    Records are written once and never deleted automatically.

    Args:
        backups_dir: Root directory for backups
        locks: Project locks shared with apply
    """

    def __init__(self, backups_dir: Path, locks: ProjectLocks | None = None):
        self.backups_dir = backups_dir
        self.locks = locks or ProjectLocks()

    # ===== Writing =====

    def new_backup_id(self) -> str:
        """Sortable unique id: UTC timestamp plus a random suffix."""
        return f"{utcnow().strftime('%Y%m%dT%H%M%S%fZ')}-{uuid.uuid4().hex[:8]}"

    def capture(self, backup_id: str, project_path: Path, relative_path: str) -> BackupFile:
        """Copy a project file into the backup before it is overwritten or deleted.

        Raises:
            FileOperationError: If the file cannot be read or the copy cannot be written
        """
        source = safe_join(project_path, relative_path)
        target = safe_join(self._backup_dir(backup_id) / FILES_DIR, relative_path)
        try:
            data = source.read_bytes()
            atomic_write(target, data)
        except OSError as e:
            raise FileOperationError(f"Failed to back up {source}: {e}") from e
        return BackupFile(path=relative_path, existed=True, sha256=content_hash(data))

    def save(self, record: BackupRecord) -> None:
        """Persist a record.

        Raises:
            FileOperationError: If the record cannot be written
        """
        path = self._backup_dir(record.id) / RECORD_FILE
        text = yaml.safe_dump(record.to_dict(), default_flow_style=False, sort_keys=False, allow_unicode=True)
        try:
            atomic_write(path, text.encode("utf-8"))
        except OSError as e:
            raise FileOperationError(f"Failed to write backup record {path}: {e}") from e

    # ===== Reading =====

    def get(self, backup_id: str) -> BackupRecord:
        """Load a record.

        Raises:
            NotFoundError: If no backup has this id
        """
        data = self._read_record(self._backup_dir(backup_id) / RECORD_FILE)
        if data is None:
            raise NotFoundError(f"Backup not found: {backup_id}")
        return BackupRecord.from_dict(data)

    def list_backups(self, project_id: str) -> list[BackupRecord]:
        """All records for a project, oldest first."""
        records = []
        if self.backups_dir.is_dir():
            for path in self.backups_dir.glob(f"*/{RECORD_FILE}"):
                data = self._read_record(path)
                if data is not None and data.get("project_id") == project_id:
                    records.append(BackupRecord.from_dict(data))
        return sorted(records, key=lambda r: (r.created_at, r.id))

    def latest(self, project_id: str, profile_id: str | None = None) -> BackupRecord | None:
        """Most recent record for a project, optionally for one profile."""
        records = [r for r in self.list_backups(project_id) if profile_id is None or r.profile_id == profile_id]
        return records[-1] if records else None

    def read_captured(self, backup_id: str, relative_path: str) -> bytes:
        path = safe_join(self._backup_dir(backup_id) / FILES_DIR, relative_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise BackupCorruptedError(f"Backup {backup_id} is missing {relative_path}: {e}") from e

    def verify(self, backup_id: str) -> list[str]:
        """Paths whose captured bytes are missing or fail their hash check."""
        record = self.get(backup_id)
        corrupted = []
        for captured in record.files:
            if not captured.existed:
                continue
            try:
                data = self.read_captured(backup_id, captured.path)
            except BackupCorruptedError:
                corrupted.append(captured.path)
                continue
            if content_hash(data) != captured.sha256:
                corrupted.append(captured.path)
        return corrupted

    # ===== Rollback =====

    def rollback(self, backup_id: str, project_path: Path) -> int:
        """Restore a project to the state captured by a backup.

        Captured files are restored byte-for-byte and files the apply created
        are removed, along with directories left empty. The record is kept,
        so rolling back twice gives the same result.

        Args:
            backup_id: Backup to restore
            project_path: Project root to restore into

        Returns:
            Number of files restored or removed

        Raises:
            NotFoundError: If the backup or the project directory does not exist
            BackupCorruptedError: If captured bytes fail verification; nothing
                is changed in that case
        """
        record = self.get(backup_id)
        project_path = Path(project_path)
        if not project_path.is_dir():
            raise NotFoundError(f"Project directory not found: {project_path}")

        with self.locks.hold(project_path):
            restore: dict[str, bytes] = {}
            for captured in record.files:
                if not captured.existed:
                    continue
                data = self.read_captured(backup_id, captured.path)
                if content_hash(data) != captured.sha256:
                    raise BackupCorruptedError(f"Backup {backup_id} has a corrupted copy of {captured.path}")
                restore[captured.path] = data

            count = 0
            for captured in record.files:
                target = safe_join(project_path, captured.path)
                try:
                    if captured.existed:
                        atomic_write(target, restore[captured.path])
                        count += 1
                    elif target.exists():
                        target.unlink()
                        prune_empty_dirs(target.parent, project_path)
                        count += 1
                except OSError as e:
                    raise FileOperationError(f"Failed to restore {target}: {e}") from e

        logger.info(f"Rolled back {project_path} to backup {backup_id} ({count} files)")
        return count

    # ===== Helpers =====

    def _backup_dir(self, backup_id: str) -> Path:
        return safe_join(self.backups_dir, backup_id)

    def _read_record(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read backup record from {path}: {e}")
            return None
        return data if isinstance(data, dict) else None
