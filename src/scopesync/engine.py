"""Engine facade wiring scanner, store, diff, apply and backups together."""

import asyncio
from collections.abc import Iterable
from pathlib import Path

from .apply import ApplyEngine
from .backup import BackupManager
from .config import EnginePaths
from .diff import DiffEngine
from .locks import ProjectLocks
from .models import AssignmentResult
from .models import BackupRecord
from .models import DeleteResult
from .models import Diff
from .models import Inventory
from .models import PluginRef
from .models import Profile
from .models import ProjectAssignment
from .models import ToolRef
from .models import UpdateResult
from .profiles import PluginInstaller
from .profiles import ProfileStore
from .scanner import Scanner


class ProfileEngine:
    """Request/response surface for scanning, profiles, apply and rollback.

    All operations are blocking. Apply and rollback on the same project are
    serialized; scans take no lock.

    Args:
        paths: Store, backup and scan locations (default: EnginePaths.default())
        plugin_installer: Optional installer called for plugin refs on assign

    Example:
        ```python
        engine = ProfileEngine(EnginePaths.under(state_dir, ScanPaths.default()))
        profile = engine.create_profile("review", source_path=Path("~/src/app").expanduser())
        diff = engine.preview_apply(profile.id, Path("~/src/other").expanduser())
        record = engine.apply(profile.id, Path("~/src/other").expanduser())
        engine.rollback(record.id, Path("~/src/other").expanduser())
        ```
    """

    def __init__(self, paths: EnginePaths | None = None, plugin_installer: PluginInstaller | None = None):
        self.paths = paths or EnginePaths.default()
        self.locks = ProjectLocks()
        self.scanner = Scanner(self.paths.scan)
        self.store = ProfileStore(
            self.paths.store_dir,
            locks=self.locks,
            plugin_installer=plugin_installer,
            scanner=self.scanner,
        )
        self.backups = BackupManager(self.paths.backups_dir, locks=self.locks)
        self.diffs = DiffEngine(self.store, self.scanner, self.backups)
        self.applier = ApplyEngine(self.store, self.diffs, self.backups, self.locks)

    # ===== Scanning =====

    def scan(self, path: Path) -> Inventory:
        return self.scanner.scan(path)

    def scan_user(self) -> Inventory:
        return self.scanner.scan_user_scope()

    def scan_many(self, paths: Iterable[Path]) -> list[Inventory]:
        return self.scanner.scan_many(paths)

    # ===== Profiles =====

    def create_profile(self, name: str, source_path: Path | None = None, description: str | None = None) -> Profile:
        return self.store.create(name, source_path=source_path, description=description)

    def get_profile(self, profile_id: str) -> Profile:
        return self.store.get(profile_id)

    def list_profiles(self) -> list[Profile]:
        return self.store.list_profiles()

    def update_profile(
        self,
        profile_id: str,
        tool_refs: Iterable[ToolRef] | None = None,
        plugin_refs: Iterable[PluginRef] | None = None,
    ) -> UpdateResult:
        return self.store.update(profile_id, tool_refs=tool_refs, plugin_refs=plugin_refs)

    def delete_profile(self, profile_id: str) -> DeleteResult:
        return self.store.delete(profile_id)

    # ===== Projects =====

    def register_project(self, path: Path) -> ProjectAssignment:
        return self.store.register_project(path)

    def assign_profile(self, project_id: str, profile_id: str) -> AssignmentResult:
        return self.store.assign(project_id, profile_id)

    def unassign_profile(self, project_id: str) -> ProjectAssignment:
        return self.store.unassign(project_id)

    # ===== Apply & rollback =====

    def preview_apply(self, profile_id: str, project_path: Path) -> Diff:
        return self.diffs.preview(profile_id, project_path)

    def apply(self, profile_id: str, project_path: Path, timeout: float | None = None) -> BackupRecord:
        return self.applier.apply(profile_id, project_path, timeout=timeout)

    def list_backups(self, project_id: str) -> list[BackupRecord]:
        return self.backups.list_backups(project_id)

    def rollback(self, backup_id: str, project_path: Path) -> int:
        return self.backups.rollback(backup_id, project_path)


class AsyncProfileEngine:
    """Coroutine wrappers around ProfileEngine.

    Each call runs the blocking operation in a worker thread and completes
    exactly once. There is no cancellation of work already started.
    """

    def __init__(self, engine: ProfileEngine | None = None):
        self.engine = engine or ProfileEngine()

    async def scan(self, path: Path) -> Inventory:
        return await asyncio.to_thread(self.engine.scan, path)

    async def scan_user(self) -> Inventory:
        return await asyncio.to_thread(self.engine.scan_user)

    async def scan_many(self, paths: Iterable[Path]) -> list[Inventory]:
        return await asyncio.to_thread(self.engine.scan_many, list(paths))

    async def create_profile(
        self, name: str, source_path: Path | None = None, description: str | None = None
    ) -> Profile:
        return await asyncio.to_thread(self.engine.create_profile, name, source_path, description)

    async def update_profile(
        self,
        profile_id: str,
        tool_refs: Iterable[ToolRef] | None = None,
        plugin_refs: Iterable[PluginRef] | None = None,
    ) -> UpdateResult:
        return await asyncio.to_thread(self.engine.update_profile, profile_id, tool_refs, plugin_refs)

    async def delete_profile(self, profile_id: str) -> DeleteResult:
        return await asyncio.to_thread(self.engine.delete_profile, profile_id)

    async def register_project(self, path: Path) -> ProjectAssignment:
        return await asyncio.to_thread(self.engine.register_project, path)

    async def assign_profile(self, project_id: str, profile_id: str) -> AssignmentResult:
        return await asyncio.to_thread(self.engine.assign_profile, project_id, profile_id)

    async def unassign_profile(self, project_id: str) -> ProjectAssignment:
        return await asyncio.to_thread(self.engine.unassign_profile, project_id)

    async def preview_apply(self, profile_id: str, project_path: Path) -> Diff:
        return await asyncio.to_thread(self.engine.preview_apply, profile_id, project_path)

    async def apply(self, profile_id: str, project_path: Path, timeout: float | None = None) -> BackupRecord:
        return await asyncio.to_thread(self.engine.apply, profile_id, project_path, timeout)

    async def list_backups(self, project_id: str) -> list[BackupRecord]:
        return await asyncio.to_thread(self.engine.list_backups, project_id)

    async def rollback(self, backup_id: str, project_path: Path) -> int:
        return await asyncio.to_thread(self.engine.rollback, backup_id, project_path)
