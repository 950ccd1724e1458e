"""Data models for scopesync."""

import getpass
import os
import platform
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any
from typing import ClassVar

from .utils import parse_timestamp

# ===== Scopes =====


class ScopeKind(Enum):
    """Precedence tier a configuration entity originates from."""

    MANAGED = "managed"
    LOCAL = "local"
    PROJECT = "project"
    USER = "user"
    PLUGIN = "plugin"


# Lower rank wins: Managed > Local > Project > User > Plugin
SCOPE_RANKS: dict[ScopeKind, int] = {
    ScopeKind.MANAGED: 0,
    ScopeKind.LOCAL: 1,
    ScopeKind.PROJECT: 2,
    ScopeKind.USER: 3,
    ScopeKind.PLUGIN: 4,
}


@dataclass(frozen=True)
class Scope:
    """Scope tag attached to every scanned entity.

    A closed variant: ``kind`` selects the tier and ``plugin_id`` is set
    exactly when ``kind`` is PLUGIN.

    Attributes:
        kind: Precedence tier
        plugin_id: Plugin identifier (``name@marketplace``) for plugin scopes
    """

    kind: ScopeKind
    plugin_id: str | None = None

    def __post_init__(self) -> None:
        if (self.kind is ScopeKind.PLUGIN) != (self.plugin_id is not None):
            raise ValueError("plugin_id must be set for plugin scopes and only for them")

    @classmethod
    def user(cls) -> "Scope":
        return cls(ScopeKind.USER)

    @classmethod
    def project(cls) -> "Scope":
        return cls(ScopeKind.PROJECT)

    @classmethod
    def local(cls) -> "Scope":
        return cls(ScopeKind.LOCAL)

    @classmethod
    def managed(cls) -> "Scope":
        return cls(ScopeKind.MANAGED)

    @classmethod
    def plugin(cls, plugin_id: str) -> "Scope":
        return cls(ScopeKind.PLUGIN, plugin_id)

    @classmethod
    def parse(cls, value: str) -> "Scope":
        """Parse ``user``, ``project``, ``local``, ``managed`` or ``plugin:<id>``."""
        if value.startswith("plugin:"):
            return cls.plugin(value.split(":", 1)[1])
        return cls(ScopeKind(value))

    @property
    def rank(self) -> int:
        return SCOPE_RANKS[self.kind]

    def sort_key(self) -> tuple[int, str]:
        """Ordering key; smaller sorts first and wins collisions."""
        return (self.rank, self.plugin_id or "")

    def __str__(self) -> str:
        if self.kind is ScopeKind.PLUGIN:
            return f"plugin:{self.plugin_id}"
        return self.kind.value


# ===== Entities =====


class EntityKind(Enum):
    """Kinds of configuration entity."""

    SKILL = "skill"
    COMMAND = "command"
    AGENT = "agent"
    HOOK = "hook"
    MCP = "mcp"


# Kinds stored as individual front-matter + markdown files
FILE_KINDS = (EntityKind.SKILL, EntityKind.COMMAND, EntityKind.AGENT)


@dataclass(frozen=True)
class Entity:
    """A named configuration unit read from disk.

    Identity is ``(kind, name)``. ``content_hash`` is the SHA-256 of the
    bytes the entity was parsed from and detects drift between copies.
    """

    name: str
    path: Path
    scope: Scope
    content_hash: str
    description: str | None = None

    kind: ClassVar[EntityKind]

    @property
    def key(self) -> tuple[EntityKind, str]:
        return (self.kind, self.name)


@dataclass(frozen=True)
class Skill(Entity):
    """Skill directory with a SKILL.md file."""

    allowed_tools: tuple[str, ...] = ()
    user_invocable: bool = False
    model: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    body: str = ""

    kind: ClassVar[EntityKind] = EntityKind.SKILL


@dataclass(frozen=True)
class Command(Entity):
    """Slash command markdown file; name derived from the filename."""

    allowed_tools: tuple[str, ...] = ()
    model: str | None = None
    thinking: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    body: str = ""

    kind: ClassVar[EntityKind] = EntityKind.COMMAND


@dataclass(frozen=True)
class Agent(Entity):
    """Subagent definition markdown file."""

    tools: tuple[str, ...] = ()
    model: str | None = None
    permission_mode: str = "default"
    skills: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    body: str = ""

    kind: ClassVar[EntityKind] = EntityKind.AGENT


@dataclass(frozen=True)
class HookRule(Entity):
    """One matcher entry under a hook event in a settings file."""

    event: str = ""
    matcher: str | None = None
    hooks: tuple[dict[str, Any], ...] = ()

    kind: ClassVar[EntityKind] = EntityKind.HOOK

    def to_entry(self) -> dict[str, Any]:
        """Render as a settings.json hook array element."""
        entry: dict[str, Any] = {}
        if self.matcher is not None:
            entry["matcher"] = self.matcher
        entry["hooks"] = [dict(h) for h in self.hooks]
        return entry


@dataclass(frozen=True)
class McpServer(Entity):
    """MCP server entry from an ``mcpServers`` map."""

    transport: str = "stdio"
    command: str | None = None
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    config: dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[EntityKind] = EntityKind.MCP


def hook_rule_name(event: str, matcher: str | None) -> str:
    """Logical name of a hook rule: ``<event>`` or ``<event>:<matcher>``.

    A rule without a matcher and a rule with the literal matcher ``*`` are
    different entries and get different names.
    """
    return f"{event}:{matcher}" if matcher else event


# ===== Scan results =====


@dataclass(frozen=True)
class ParseWarning:
    """A file skipped during a scan."""

    path: Path
    message: str


@dataclass(frozen=True)
class HostInfo:
    """Host system information."""

    os: str
    username: str
    home_dir: Path

    @classmethod
    def current(cls, home_dir: Path | None = None) -> "HostInfo":
        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            username = os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"
        return cls(
            os=platform.system().lower(),
            username=username,
            home_dir=home_dir or Path.home(),
        )


@dataclass(frozen=True)
class InstalledPlugin:
    """Plugin listed in installed_plugins.json."""

    id: str
    name: str
    marketplace: str | None
    version: str
    scope: Scope
    path: Path
    enabled: bool = True
    project_path: Path | None = None

    def visible_to(self, project_path: Path | None) -> bool:
        """Project-scoped installs are only visible to their own project."""
        if self.scope.kind in (ScopeKind.PROJECT, ScopeKind.LOCAL):
            return project_path is not None and self.project_path == project_path
        return True


@dataclass(frozen=True)
class ScopeInventory:
    """Entities read from one scope root."""

    scope: Scope
    root: Path | None = None
    skills: tuple[Skill, ...] = ()
    commands: tuple[Command, ...] = ()
    agents: tuple[Agent, ...] = ()
    hooks: tuple[HookRule, ...] = ()
    mcp_servers: tuple[McpServer, ...] = ()
    settings: dict[str, Any] = field(default_factory=dict)

    def entities(self, kind: EntityKind) -> tuple[Entity, ...]:
        return {
            EntityKind.SKILL: self.skills,
            EntityKind.COMMAND: self.commands,
            EntityKind.AGENT: self.agents,
            EntityKind.HOOK: self.hooks,
            EntityKind.MCP: self.mcp_servers,
        }[kind]

    def is_empty(self) -> bool:
        return not any(self.entities(kind) for kind in EntityKind) and not self.settings


@dataclass(frozen=True)
class CollisionOccurrence:
    """One place a colliding name was found."""

    scope: Scope
    path: Path


@dataclass(frozen=True)
class Collision:
    """Same-name entity present in more than one scope occurrence."""

    kind: EntityKind
    name: str
    winner_scope: Scope
    occurrences: tuple[CollisionOccurrence, ...]


@dataclass(frozen=True)
class CollisionReport:
    """Collisions for skills, commands and agents."""

    skills: tuple[Collision, ...] = ()
    commands: tuple[Collision, ...] = ()
    agents: tuple[Collision, ...] = ()

    def for_kind(self, kind: EntityKind) -> tuple[Collision, ...]:
        return {
            EntityKind.SKILL: self.skills,
            EntityKind.COMMAND: self.commands,
            EntityKind.AGENT: self.agents,
        }.get(kind, ())

    def has_collisions(self) -> bool:
        return bool(self.skills or self.commands or self.agents)

    def total_count(self) -> int:
        return len(self.skills) + len(self.commands) + len(self.agents)


@dataclass(frozen=True)
class EffectiveView:
    """Precedence-resolved entities and merged settings.

    Attributes:
        entities: Per kind, name -> winning entity
        settings: Settings documents deep-merged from lowest to highest scope
    """

    entities: dict[EntityKind, dict[str, Entity]] = field(default_factory=dict)
    settings: dict[str, Any] = field(default_factory=dict)

    def get(self, kind: EntityKind, name: str) -> Entity | None:
        return self.entities.get(kind, {}).get(name)

    def names(self, kind: EntityKind) -> list[str]:
        return sorted(self.entities.get(kind, {}))


@dataclass(frozen=True)
class Inventory:
    """Full scan result for one project, or for the user scope alone."""

    host: HostInfo
    project_path: Path | None
    scopes: tuple[ScopeInventory, ...]
    plugins: tuple[InstalledPlugin, ...]
    scanned_at: datetime
    collisions: CollisionReport = field(default_factory=CollisionReport)
    effective: EffectiveView = field(default_factory=EffectiveView)
    warnings: tuple[ParseWarning, ...] = ()

    def scope(self, scope: Scope) -> ScopeInventory | None:
        for inventory in self.scopes:
            if inventory.scope == scope:
                return inventory
        return None

    def entities(self, kind: EntityKind) -> list[Entity]:
        """All entities of a kind across scopes, sorted by name then scope."""
        found = [e for inventory in self.scopes for e in inventory.entities(kind)]
        return sorted(found, key=lambda e: (e.name, e.scope.sort_key()))


# ===== Profiles =====


@dataclass(frozen=True)
class ToolPermissions:
    """Permission overrides attached to a tool reference."""

    allowed_directories: tuple[str, ...] = ()
    allowed_tools: tuple[str, ...] = ()
    disallowed_tools: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed_directories": list(self.allowed_directories),
            "allowed_tools": list(self.allowed_tools),
            "disallowed_tools": list(self.disallowed_tools),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolPermissions":
        return cls(
            allowed_directories=tuple(data.get("allowed_directories") or ()),
            allowed_tools=tuple(data.get("allowed_tools") or ()),
            disallowed_tools=tuple(data.get("disallowed_tools") or ()),
        )


@dataclass(frozen=True)
class ToolRef:
    """Reference to a tool by name and kind."""

    name: str
    kind: EntityKind
    source_scope: Scope | None = None
    permissions: ToolPermissions | None = None

    @property
    def key(self) -> tuple[EntityKind, str]:
        return (self.kind, self.name)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "kind": self.kind.value}
        if self.source_scope is not None:
            data["source_scope"] = str(self.source_scope)
        if self.permissions is not None:
            data["permissions"] = self.permissions.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolRef":
        source = data.get("source_scope")
        permissions = data.get("permissions")
        return cls(
            name=data["name"],
            kind=EntityKind(data["kind"]),
            source_scope=Scope.parse(source) if source else None,
            permissions=ToolPermissions.from_dict(permissions) if permissions else None,
        )


@dataclass(frozen=True)
class PluginRef:
    """Reference to a plugin a profile wants enabled."""

    id: str
    marketplace: str | None = None
    scope: Scope = field(default_factory=Scope.project)
    enabled: bool = True

    @property
    def qualified_id(self) -> str:
        """``name@marketplace`` key used by enabledPlugins."""
        if self.marketplace:
            return f"{self.id}@{self.marketplace}"
        return self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "marketplace": self.marketplace,
            "scope": str(self.scope),
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PluginRef":
        return cls(
            id=data["id"],
            marketplace=data.get("marketplace"),
            scope=Scope.parse(data.get("scope") or "project"),
            enabled=data.get("enabled", True),
        )


@dataclass(frozen=True)
class Profile:
    """Named, independently stored bundle of tool and plugin references."""

    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    tool_refs: tuple[ToolRef, ...] = ()
    plugin_refs: tuple[PluginRef, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tool_refs": [ref.to_dict() for ref in self.tool_refs],
            "plugin_refs": [ref.to_dict() for ref in self.plugin_refs],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description"),
            tool_refs=tuple(ToolRef.from_dict(r) for r in data.get("tool_refs") or ()),
            plugin_refs=tuple(PluginRef.from_dict(r) for r in data.get("plugin_refs") or ()),
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )


@dataclass(frozen=True)
class ProjectAssignment:
    """A registered project, its profile and its local tool overrides."""

    id: str
    path: Path
    name: str
    created_at: datetime
    updated_at: datetime
    profile_id: str | None = None
    local_overrides: tuple[ToolRef, ...] = ()
    effective_tools: tuple[ToolRef, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": str(self.path),
            "name": self.name,
            "profile_id": self.profile_id,
            "local_overrides": [ref.to_dict() for ref in self.local_overrides],
            "effective_tools": [ref.to_dict() for ref in self.effective_tools],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectAssignment":
        return cls(
            id=data["id"],
            path=Path(data["path"]),
            name=data["name"],
            profile_id=data.get("profile_id"),
            local_overrides=tuple(ToolRef.from_dict(r) for r in data.get("local_overrides") or ()),
            effective_tools=tuple(ToolRef.from_dict(r) for r in data.get("effective_tools") or ()),
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )


@dataclass(frozen=True)
class AssignmentResult:
    """Outcome of assigning a profile to a project."""

    project_id: str
    profile_id: str
    plugins_installed: int = 0
    plugin_errors: tuple[str, ...] = ()
    collisions: tuple[str, ...] = ()


@dataclass(frozen=True)
class UpdateResult:
    """Updated profile and how many assigned projects were recomputed."""

    profile: Profile
    affected_project_count: int


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of deleting a profile."""

    deleted: bool
    converted_project_count: int


# ===== Diffs =====


class OperationType(Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


@dataclass(frozen=True)
class DiffOperation:
    """File operation on a project-relative POSIX path."""

    path: str

    type: ClassVar[OperationType]


@dataclass(frozen=True)
class CreateOp(DiffOperation):
    content: bytes = b""

    type: ClassVar[OperationType] = OperationType.CREATE


@dataclass(frozen=True)
class ModifyOp(DiffOperation):
    unified_diff: str = ""
    new_content: bytes = b""

    type: ClassVar[OperationType] = OperationType.MODIFY


@dataclass(frozen=True)
class DeleteOp(DiffOperation):
    type: ClassVar[OperationType] = OperationType.DELETE


class WarningKind(Enum):
    CONCURRENT_MODIFICATION = "concurrent_modification"
    UNRESOLVED_TOOL = "unresolved_tool"
    COLLISION = "collision"
    INVALID_FILE = "invalid_file"


@dataclass(frozen=True)
class DiffWarning:
    """Non-fatal finding reported with a diff."""

    kind: WarningKind
    message: str
    path: str | None = None


@dataclass(frozen=True)
class Diff:
    """Ordered operations bringing a project to a profile's target state.

    Attributes:
        project_path: Project root the paths are relative to
        profile_id: Profile being applied
        operations: Creates and modifies by path, then deletes
        warnings: Non-fatal findings
        target_hashes: Hash of the content each target file has after apply
        managed_paths: Files the profile owns once applied
        managed_entries: JSON entries the profile owns once applied
    """

    project_path: Path
    profile_id: str
    operations: tuple[DiffOperation, ...] = ()
    warnings: tuple[DiffWarning, ...] = ()
    target_hashes: dict[str, str] = field(default_factory=dict)
    managed_paths: tuple[str, ...] = ()
    managed_entries: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not self.operations

    def of_type(self, op_type: OperationType) -> list[DiffOperation]:
        return [op for op in self.operations if op.type is op_type]


# ===== Backups =====


@dataclass(frozen=True)
class BackupFile:
    """A file captured before apply touched it.

    ``existed`` is False for files the apply created; rollback deletes those.
    """

    path: str
    existed: bool
    sha256: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "existed": self.existed, "sha256": self.sha256}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupFile":
        return cls(path=data["path"], existed=data["existed"], sha256=data.get("sha256"))


@dataclass(frozen=True)
class OperationError:
    """A single file operation that failed during apply."""

    path: str
    operation: OperationType
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "operation": self.operation.value, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OperationError":
        return cls(path=data["path"], operation=OperationType(data["operation"]), message=data["message"])


@dataclass(frozen=True)
class BackupRecord:
    """Immutable snapshot written once per apply."""

    id: str
    project_id: str
    project_path: Path
    created_at: datetime
    profile_id: str | None = None
    files: tuple[BackupFile, ...] = ()
    managed_paths: tuple[str, ...] = ()
    managed_entries: tuple[str, ...] = ()
    written_hashes: dict[str, str] = field(default_factory=dict)
    errors: tuple[OperationError, ...] = ()

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def file(self, path: str) -> BackupFile | None:
        for captured in self.files:
            if captured.path == path:
                return captured
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_path": str(self.project_path),
            "profile_id": self.profile_id,
            "created_at": self.created_at.isoformat(),
            "files": [f.to_dict() for f in self.files],
            "managed_paths": list(self.managed_paths),
            "managed_entries": list(self.managed_entries),
            "written_hashes": dict(self.written_hashes),
            "errors": [e.to_dict() for e in self.errors],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupRecord":
        return cls(
            id=data["id"],
            project_id=data["project_id"],
            project_path=Path(data["project_path"]),
            profile_id=data.get("profile_id"),
            created_at=parse_timestamp(data["created_at"]),
            files=tuple(BackupFile.from_dict(f) for f in data.get("files") or ()),
            managed_paths=tuple(data.get("managed_paths") or ()),
            managed_entries=tuple(data.get("managed_entries") or ()),
            written_hashes=dict(data.get("written_hashes") or {}),
            errors=tuple(OperationError.from_dict(e) for e in data.get("errors") or ()),
        )
