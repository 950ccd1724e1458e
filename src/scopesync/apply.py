"""Apply engine: executes a freshly computed diff with backup-before-destroy."""

import logging
from pathlib import Path

from .backup import BackupManager
from .diff import DiffEngine
from .exceptions import FileOperationError
from .exceptions import NotFoundError
from .locks import ProjectLocks
from .models import BackupFile
from .models import BackupRecord
from .models import CreateOp
from .models import DiffOperation
from .models import ModifyOp
from .models import OperationError
from .models import OperationType
from .profiles import ProfileStore
from .utils import atomic_write
from .utils import prune_empty_dirs
from .utils import safe_join
from .utils import utcnow

logger = logging.getLogger(__name__)


class ApplyEngine:
    """Writes a profile's target state into a project.

    Args:
        store: Profile store; unregistered projects are registered on first apply
        diff_engine: Computes the operations under the project lock
        backups: Receives captured files and the resulting record
        locks: Project locks shared with rollback
    """

    def __init__(
        self,
        store: ProfileStore,
        diff_engine: DiffEngine,
        backups: BackupManager,
        locks: ProjectLocks,
    ):
        self.store = store
        self.diff_engine = diff_engine
        self.backups = backups
        self.locks = locks

    def apply(self, profile_id: str, project_path: Path, timeout: float | None = None) -> BackupRecord:
        """Apply a profile to a project.

        The diff is recomputed under the project lock, so a preview taken
        earlier is never trusted. Every file about to be modified or deleted
        is copied into the backup first; an operation whose copy fails is
        skipped. Remaining operations are best-effort: failures are
        collected in the returned record and nothing is undone.

        Args:
            profile_id: Profile to apply
            project_path: Project root
            timeout: Seconds to wait for the project lock; None waits indefinitely

        Returns:
            The persisted backup record, including any per-operation errors

        Raises:
            NotFoundError: If the profile or project directory does not exist
            ProjectBusyError: If the project lock was not acquired within timeout
        """
        self.store.get(profile_id)
        project_path = Path(project_path)
        if not project_path.is_dir():
            raise NotFoundError(f"Project directory not found: {project_path}")
        project_path = project_path.resolve()

        # Registration takes the store lock, so it happens before the project lock
        project = self.store.register_project(project_path)

        with self.locks.hold(project_path, timeout=timeout):
            diff = self.diff_engine.preview(profile_id, project_path)
            backup_id = self.backups.new_backup_id()

            files: list[BackupFile] = []
            errors: list[OperationError] = []
            ready: list[DiffOperation] = []
            for op in diff.operations:
                if isinstance(op, CreateOp):
                    files.append(BackupFile(path=op.path, existed=False))
                    ready.append(op)
                    continue
                try:
                    files.append(self.backups.capture(backup_id, project_path, op.path))
                    ready.append(op)
                except FileOperationError as e:
                    logger.warning(f"Skipping {op.type.value} of {op.path}: {e}")
                    errors.append(OperationError(path=op.path, operation=op.type, message=str(e)))

            writes = [op for op in ready if op.type is not OperationType.DELETE]
            deletes = [op for op in ready if op.type is OperationType.DELETE]
            for op in writes + deletes:
                error = self._execute(project_path, op)
                if error is not None:
                    errors.append(error)

            failed = {error.path for error in errors}
            record = BackupRecord(
                id=backup_id,
                project_id=project.id,
                project_path=project_path,
                profile_id=profile_id,
                created_at=utcnow(),
                files=tuple(files),
                managed_paths=diff.managed_paths,
                managed_entries=diff.managed_entries,
                written_hashes={p: h for p, h in diff.target_hashes.items() if p not in failed},
                errors=tuple(errors),
            )
            self.backups.save(record)

        logger.info(
            f"Applied profile {profile_id} to {project_path}: "
            f"{len(diff.operations) - len(errors)} operations, {len(errors)} errors, backup {backup_id}"
        )
        return record

    def _execute(self, project_path: Path, op: DiffOperation) -> OperationError | None:
        target = safe_join(project_path, op.path)
        try:
            if isinstance(op, CreateOp):
                atomic_write(target, op.content)
            elif isinstance(op, ModifyOp):
                atomic_write(target, op.new_content)
            else:
                target.unlink(missing_ok=True)
                prune_empty_dirs(target.parent, project_path)
        except OSError as e:
            logger.warning(f"Failed to {op.type.value} {op.path}: {e}")
            return OperationError(path=op.path, operation=op.type, message=str(e))
        logger.debug(f"{op.type.value}: {op.path}")
        return None
