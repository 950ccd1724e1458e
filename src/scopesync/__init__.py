"""scopesync: Scope resolution and profile application for AI coding-assistant config.

This library scans the configuration scopes of an AI coding-assistant host
tool into one inventory and applies reusable profiles to projects:
- Managed (centrally deployed, highest precedence)
- Local (project-local, machine-specific)
- Project (checked into the repository)
- User (global, typically ~/.claude)
- Plugin (supplied by installed plugins, lowest precedence)

Applications inject paths to define where state lives. The library provides
scanning, collision detection, profile storage, diff preview, apply with
backup, and rollback.

Public API:
    ProfileEngine: Facade for every operation
    AsyncProfileEngine: Coroutine wrappers around ProfileEngine
    EnginePaths, ScanPaths: Injected filesystem locations
    Scanner, ProfileStore, DiffEngine, ApplyEngine, BackupManager: Components
    Scope, ScopeKind, EntityKind, ToolRef, PluginRef: Core data types
    ScopeSyncError and subclasses: Exception types

Example:
    ```python
    from pathlib import Path
    from scopesync import EnginePaths, ProfileEngine, ScanPaths

    paths = EnginePaths.under(Path.home() / ".scopesync", ScanPaths.default())
    engine = ProfileEngine(paths)

    # Snapshot one project's tools into a profile
    profile = engine.create_profile("reviewers", source_path=Path("app"))

    # Preview, apply, and roll back on another project
    diff = engine.preview_apply(profile.id, Path("service"))
    record = engine.apply(profile.id, Path("service"))
    engine.rollback(record.id, Path("service"))
    ```
"""

from .apply import ApplyEngine
from .backup import BackupManager
from .config import EnginePaths
from .config import ScanPaths
from .diff import DiffEngine
from .engine import AsyncProfileEngine
from .engine import ProfileEngine
from .exceptions import BackupCorruptedError
from .exceptions import EntityParseError
from .exceptions import FileOperationError
from .exceptions import NotFoundError
from .exceptions import ProjectBusyError
from .exceptions import ScopeSyncError
from .exceptions import ValidationError
from .locks import ProjectLocks
from .models import BackupRecord
from .models import Diff
from .models import EntityKind
from .models import Inventory
from .models import PluginRef
from .models import Profile
from .models import ProjectAssignment
from .models import Scope
from .models import ScopeKind
from .models import ToolPermissions
from .models import ToolRef
from .profiles import ProfileStore
from .scanner import Scanner
from .utils import deep_merge

__version__ = "0.1.0"

__all__ = [
    "ProfileEngine",
    "AsyncProfileEngine",
    "EnginePaths",
    "ScanPaths",
    "Scanner",
    "ProfileStore",
    "DiffEngine",
    "ApplyEngine",
    "BackupManager",
    "ProjectLocks",
    "Scope",
    "ScopeKind",
    "EntityKind",
    "Inventory",
    "Profile",
    "ProjectAssignment",
    "ToolRef",
    "ToolPermissions",
    "PluginRef",
    "Diff",
    "BackupRecord",
    "deep_merge",
    "ScopeSyncError",
    "NotFoundError",
    "EntityParseError",
    "FileOperationError",
    "ValidationError",
    "ProjectBusyError",
    "BackupCorruptedError",
]
