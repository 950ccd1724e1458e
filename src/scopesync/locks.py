"""Per-project mutual exclusion for apply, rollback and recomputation."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .exceptions import ProjectBusyError

logger = logging.getLogger(__name__)


class ProjectLocks:
    """Registry of one re-entrant lock per resolved project path.

    Locks are created on first use and never removed. Re-entrancy lets an
    apply that triggers project registration take the same lock again.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Path, threading.RLock] = {}

    def lock_for(self, project_path: Path) -> threading.RLock:
        key = Path(project_path).resolve()
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, project_path: Path, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for a project.

        Args:
            project_path: Project root
            timeout: Seconds to wait; None waits indefinitely

        Raises:
            ProjectBusyError: If the lock was not acquired within timeout
        """
        lock = self.lock_for(project_path)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise ProjectBusyError(f"Project is busy: {project_path}")
        logger.debug(f"Acquired project lock: {project_path}")
        try:
            yield
        finally:
            lock.release()
