"""Profile store: profiles, their tool content, and project assignments.

Records are YAML files written atomically. Tool content lives beside each
record in the same layout the host tool uses, so a profile can be applied
without the machine that created it.

Lock order is store lock, then project lock. Nothing that holds a project
lock may take the store lock.
"""

import copy
import logging
import shutil
import threading
import uuid
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path
from typing import Any
from typing import Protocol

import yaml

from .exceptions import EntityParseError
from .exceptions import FileOperationError
from .exceptions import NotFoundError
from .exceptions import ValidationError
from .locks import ProjectLocks
from .models import FILE_KINDS
from .models import AssignmentResult
from .models import DeleteResult
from .models import EntityKind
from .models import HookRule
from .models import McpServer
from .models import PluginRef
from .models import Profile
from .models import ProjectAssignment
from .models import Scope
from .models import ToolRef
from .models import UpdateResult
from .parser import dump_json
from .parser import read_json
from .scanner import Scanner
from .utils import atomic_write
from .utils import prune_empty_dirs
from .utils import safe_join
from .utils import utcnow
from .utils import validate_name

logger = logging.getLogger(__name__)

PROFILE_FILE = "profile.yaml"
PROJECT_FILE = "project.yaml"
TOOLS_DIR = "tools"
EXPORT_FORMAT_VERSION = 1


class PluginInstaller(Protocol):
    """Installs a plugin for a project. Raises on failure."""

    def install(self, plugin: PluginRef, project_path: Path) -> None: ...


# ===== Tool content =====


class ToolDirectory:
    """Stored tool content under one ``tools/`` directory.

    Skills, commands and agents are markdown text at the paths the host
    tool uses. MCP servers and hook rules are JSON objects collected in
    ``mcp.json`` and ``hooks.json``, keyed by name.
    """

    JSON_FILES = {EntityKind.MCP: "mcp.json", EntityKind.HOOK: "hooks.json"}

    def __init__(self, root: Path):
        self.root = root

    def path_for(self, kind: EntityKind, name: str) -> Path:
        name = validate_name(name) if kind in FILE_KINDS else name
        if kind is EntityKind.SKILL:
            return safe_join(self.root, f"skills/{name}/SKILL.md")
        if kind is EntityKind.COMMAND:
            return safe_join(self.root, f"commands/{name}.md")
        if kind is EntityKind.AGENT:
            return safe_join(self.root, f"agents/{name}.md")
        return self.root / self.JSON_FILES[kind]

    def read(self, kind: EntityKind, name: str) -> str | dict[str, Any] | None:
        """Stored content, or None when nothing is stored for the tool."""
        path = self.path_for(kind, name)
        if kind in FILE_KINDS:
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError as e:
                raise FileOperationError(f"Failed to read tool content from {path}: {e}") from e
        entries = self._read_entries(kind)
        return entries.get(name)

    def write(self, kind: EntityKind, name: str, content: str | dict[str, Any]) -> None:
        path = self.path_for(kind, name)
        if kind in FILE_KINDS:
            if not isinstance(content, str):
                raise ValidationError(f"{kind.value} content must be text")
            _write_bytes(path, content.encode("utf-8"))
            return
        if not isinstance(content, dict):
            raise ValidationError(f"{kind.value} content must be a JSON object")
        entries = self._read_entries(kind)
        entries[name] = content
        _write_bytes(path, dump_json(entries).encode("utf-8"))

    def remove(self, kind: EntityKind, name: str) -> bool:
        path = self.path_for(kind, name)
        if kind in FILE_KINDS:
            if not path.exists():
                return False
            path.unlink()
            prune_empty_dirs(path.parent, self.root)
            return True
        entries = self._read_entries(kind)
        if name not in entries:
            return False
        del entries[name]
        if entries:
            _write_bytes(path, dump_json(entries).encode("utf-8"))
        else:
            path.unlink()
        return True

    def names(self, kind: EntityKind) -> list[str]:
        if kind is EntityKind.SKILL:
            base = self.root / "skills"
            return sorted(p.name for p in base.iterdir() if (p / "SKILL.md").is_file()) if base.is_dir() else []
        if kind in FILE_KINDS:
            base = self.root / f"{kind.value}s"
            return sorted(p.stem for p in base.glob("*.md")) if base.is_dir() else []
        return sorted(self._read_entries(kind))

    def copy_from(self, other: "ToolDirectory", kind: EntityKind, name: str) -> bool:
        content = other.read(kind, name)
        if content is None:
            return False
        self.write(kind, name, content)
        return True

    def _read_entries(self, kind: EntityKind) -> dict[str, Any]:
        path = self.root / self.JSON_FILES[kind]
        if not path.exists():
            return {}
        try:
            data, _ = read_json(path)
        except EntityParseError as e:
            raise FileOperationError(str(e)) from e
        return data


def _write_bytes(path: Path, data: bytes) -> None:
    try:
        atomic_write(path, data)
    except OSError as e:
        raise FileOperationError(f"Failed to write {path}: {e}") from e


# ===== Store =====


class ProfileStore:
    """Owns profile records, project registrations and local overrides.

    Args:
        store_dir: Root directory of the store
        locks: Project locks shared with apply and rollback
        plugin_installer: Optional installer called for each plugin ref on assign
        scanner: Scanner used to snapshot a project on create; required only
            when ``create`` is given a ``source_path``
    """

    def __init__(
        self,
        store_dir: Path,
        locks: ProjectLocks | None = None,
        plugin_installer: PluginInstaller | None = None,
        scanner: Scanner | None = None,
    ):
        self.store_dir = store_dir
        self.locks = locks or ProjectLocks()
        self.plugin_installer = plugin_installer
        self.scanner = scanner
        self._lock = threading.RLock()

    @property
    def profiles_dir(self) -> Path:
        return self.store_dir / "profiles"

    @property
    def projects_dir(self) -> Path:
        return self.store_dir / "projects"

    def profile_tools(self, profile_id: str) -> ToolDirectory:
        return ToolDirectory(safe_join(self.profiles_dir, profile_id) / TOOLS_DIR)

    def project_tools(self, project_id: str) -> ToolDirectory:
        return ToolDirectory(safe_join(self.projects_dir, project_id) / TOOLS_DIR)

    # ===== Profiles =====

    def create(self, name: str, source_path: Path | None = None, description: str | None = None) -> Profile:
        """Create a profile, optionally snapshotting a project's tools.

        Args:
            name: Unique, path-safe profile name
            source_path: Project whose skills, commands, agents, hooks and
                MCP servers become the profile's tools
            description: Free-form description

        Returns:
            The stored profile

        Raises:
            ValidationError: If the name is invalid or already used
            NotFoundError: If source_path does not exist
        """
        name = validate_name(name)
        with self._lock:
            if any(p.name == name for p in self.list_profiles()):
                raise ValidationError(f"Profile already exists: {name}")

            now = utcnow()
            profile = Profile(id=str(uuid.uuid4()), name=name, description=description, created_at=now, updated_at=now)
            if source_path is not None:
                profile = replace(profile, tool_refs=self._snapshot(profile.id, Path(source_path)))

            self._save_profile(profile)
            logger.info(f"Created profile '{name}' ({profile.id}) with {len(profile.tool_refs)} tools")
            return profile

    def _snapshot(self, profile_id: str, source_path: Path) -> tuple[ToolRef, ...]:
        if self.scanner is None:
            raise ValidationError("Snapshotting a project requires a scanner")
        inventory = self.scanner.scan(source_path)
        project_scope = inventory.scope(Scope.project())
        if project_scope is None:
            return ()

        tools = self.profile_tools(profile_id)
        refs = []
        for kind in FILE_KINDS:
            for entity in project_scope.entities(kind):
                tools.write(kind, entity.name, entity.path.read_text(encoding="utf-8"))
                refs.append(ToolRef(name=entity.name, kind=kind))
        for rule in project_scope.hooks:
            tools.write(EntityKind.HOOK, rule.name, hook_content(rule))
            refs.append(ToolRef(name=rule.name, kind=EntityKind.HOOK))
        for server in project_scope.mcp_servers:
            tools.write(EntityKind.MCP, server.name, mcp_content(server))
            refs.append(ToolRef(name=server.name, kind=EntityKind.MCP))
        return tuple(refs)

    def get(self, profile_id: str) -> Profile:
        """Load a profile.

        Raises:
            NotFoundError: If no profile has this id
        """
        data = self._read_yaml(safe_join(self.profiles_dir, profile_id) / PROFILE_FILE)
        if data is None:
            raise NotFoundError(f"Profile not found: {profile_id}")
        return Profile.from_dict(data)

    def exists(self, profile_id: str) -> bool:
        try:
            self.get(profile_id)
            return True
        except (NotFoundError, ValidationError):
            return False

    def list_profiles(self) -> list[Profile]:
        """All profiles sorted by name."""
        profiles = []
        if self.profiles_dir.is_dir():
            for record in self.profiles_dir.glob(f"*/{PROFILE_FILE}"):
                data = self._read_yaml(record)
                if data is not None:
                    profiles.append(Profile.from_dict(data))
        return sorted(profiles, key=lambda p: p.name)

    def update(
        self,
        profile_id: str,
        tool_refs: Iterable[ToolRef] | None = None,
        plugin_refs: Iterable[PluginRef] | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> UpdateResult:
        """Replace the given parts of a profile and resync its projects.

        Stored content of tools no longer referenced is removed. Every
        project assigned to the profile has its effective tool set
        recomputed while its project lock is held.

        Raises:
            NotFoundError: If the profile does not exist
            ValidationError: If the new name is invalid or already used
        """
        with self._lock:
            profile = self.get(profile_id)
            changes: dict[str, Any] = {"updated_at": utcnow()}
            if name is not None:
                name = validate_name(name)
                if any(p.name == name and p.id != profile_id for p in self.list_profiles()):
                    raise ValidationError(f"Profile already exists: {name}")
                changes["name"] = name
            if description is not None:
                changes["description"] = description
            if tool_refs is not None:
                changes["tool_refs"] = _dedupe_refs(tool_refs)
            if plugin_refs is not None:
                changes["plugin_refs"] = tuple(plugin_refs)
            profile = replace(profile, **changes)

            if tool_refs is not None:
                self._prune_tool_content(self.profile_tools(profile_id), profile.tool_refs)
            self._save_profile(profile)

            affected = 0
            for project in self.list_projects():
                if project.profile_id != profile_id:
                    continue
                with self.locks.hold(project.path):
                    self._save_project(self._with_effective_tools(project, profile))
                affected += 1

            logger.info(f"Updated profile '{profile.name}', {affected} assigned projects resynced")
            return UpdateResult(profile=profile, affected_project_count=affected)

    def delete(self, profile_id: str) -> DeleteResult:
        """Delete a profile, converting its tools into local overrides.

        Every project assigned to the profile keeps its effective tool set:
        profile tools not already overridden are copied into the project's
        overrides together with their stored content.

        Returns:
            DeleteResult; ``deleted`` is False if the profile did not exist
        """
        with self._lock:
            try:
                profile = self.get(profile_id)
            except NotFoundError:
                return DeleteResult(deleted=False, converted_project_count=0)

            converted = 0
            source = self.profile_tools(profile_id)
            for project in self.list_projects():
                if project.profile_id != profile_id:
                    continue
                with self.locks.hold(project.path):
                    target = self.project_tools(project.id)
                    overrides = {ref.key: ref for ref in project.local_overrides}
                    for ref in profile.tool_refs:
                        if ref.key in overrides:
                            continue
                        overrides[ref.key] = ref
                        target.copy_from(source, ref.kind, ref.name)
                    project = replace(
                        project,
                        profile_id=None,
                        local_overrides=_sorted_refs(overrides.values()),
                        updated_at=utcnow(),
                    )
                    self._save_project(self._with_effective_tools(project, None))
                converted += 1

            shutil.rmtree(safe_join(self.profiles_dir, profile_id))
            logger.info(f"Deleted profile '{profile.name}', converted {converted} projects to local overrides")
            return DeleteResult(deleted=True, converted_project_count=converted)

    def list_for_project(self, project_id: str) -> list[Profile]:
        """Profiles assigned to a project (at most one)."""
        project = self.get_project(project_id)
        if project.profile_id is None:
            return []
        return [self.get(project.profile_id)]

    # ===== Tool content =====

    def store_tool_content(self, profile_id: str, kind: EntityKind, name: str, content: str | dict[str, Any]) -> None:
        """Store the content a profile tool renders from."""
        self.get(profile_id)
        with self._lock:
            self.profile_tools(profile_id).write(kind, name, content)

    def tool_content(self, profile_id: str, kind: EntityKind, name: str) -> str | dict[str, Any] | None:
        return self.profile_tools(profile_id).read(kind, name)

    def override_content(self, project_id: str, kind: EntityKind, name: str) -> str | dict[str, Any] | None:
        return self.project_tools(project_id).read(kind, name)

    # ===== Projects =====

    def register_project(self, path: Path, name: str | None = None) -> ProjectAssignment:
        """Register a project directory, or return its existing registration.

        Raises:
            NotFoundError: If the directory does not exist
        """
        path = Path(path)
        if not path.is_dir():
            raise NotFoundError(f"Project directory not found: {path}")
        path = path.resolve()

        with self._lock:
            existing = self.find_project_by_path(path)
            if existing is not None:
                return existing
            now = utcnow()
            project = ProjectAssignment(
                id=str(uuid.uuid4()),
                path=path,
                name=name or path.name,
                created_at=now,
                updated_at=now,
            )
            self._save_project(project)
            logger.info(f"Registered project {path} ({project.id})")
            return project

    def get_project(self, project_id: str) -> ProjectAssignment:
        """Load a project registration.

        Raises:
            NotFoundError: If no project has this id
        """
        data = self._read_yaml(safe_join(self.projects_dir, project_id) / PROJECT_FILE)
        if data is None:
            raise NotFoundError(f"Project not found: {project_id}")
        return ProjectAssignment.from_dict(data)

    def list_projects(self) -> list[ProjectAssignment]:
        projects = []
        if self.projects_dir.is_dir():
            for record in self.projects_dir.glob(f"*/{PROJECT_FILE}"):
                data = self._read_yaml(record)
                if data is not None:
                    projects.append(ProjectAssignment.from_dict(data))
        return sorted(projects, key=lambda p: str(p.path))

    def find_project_by_path(self, path: Path) -> ProjectAssignment | None:
        resolved = Path(path).resolve()
        for project in self.list_projects():
            if project.path == resolved:
                return project
        return None

    def assign(self, project_id: str, profile_id: str) -> AssignmentResult:
        """Assign a profile to a project, replacing any previous assignment.

        Local overrides that shadow profile tools are reported, not
        rejected. Plugin refs are passed to the plugin installer when one
        is configured; failures are collected per plugin.

        Raises:
            NotFoundError: If the project or the profile does not exist
        """
        with self._lock:
            project = self.get_project(project_id)
            profile = self.get(profile_id)
            with self.locks.hold(project.path):
                project = replace(project, profile_id=profile_id, updated_at=utcnow())
                self._save_project(self._with_effective_tools(project, profile))

        override_keys = {ref.key for ref in project.local_overrides}
        collisions = tuple(f"{ref.kind.value}:{ref.name}" for ref in profile.tool_refs if ref.key in override_keys)

        installed = 0
        errors = []
        if self.plugin_installer is not None:
            for plugin in profile.plugin_refs:
                try:
                    self.plugin_installer.install(plugin, project.path)
                    installed += 1
                except Exception as e:
                    logger.warning(f"Failed to install plugin {plugin.qualified_id}: {e}")
                    errors.append(f"{plugin.qualified_id}: {e}")

        logger.info(f"Assigned profile '{profile.name}' to project {project.path}")
        return AssignmentResult(
            project_id=project_id,
            profile_id=profile_id,
            plugins_installed=installed,
            plugin_errors=tuple(errors),
            collisions=collisions,
        )

    def unassign(self, project_id: str) -> ProjectAssignment:
        """Clear a project's profile; its local overrides stay."""
        with self._lock:
            project = self.get_project(project_id)
            with self.locks.hold(project.path):
                project = replace(project, profile_id=None, updated_at=utcnow())
                project = self._with_effective_tools(project, None)
                self._save_project(project)
            logger.info(f"Unassigned profile from project {project.path}")
            return project

    def add_local_override(
        self,
        project_id: str,
        ref: ToolRef,
        content: str | dict[str, Any] | None = None,
    ) -> ProjectAssignment:
        """Add or replace a project-local tool override, with optional content."""
        with self._lock:
            project = self.get_project(project_id)
            if content is not None:
                self.project_tools(project_id).write(ref.kind, ref.name, content)
            overrides = {r.key: r for r in project.local_overrides}
            overrides[ref.key] = ref
            project = replace(project, local_overrides=_sorted_refs(overrides.values()), updated_at=utcnow())
            project = self._with_effective_tools(project, self._assigned_profile(project))
            self._save_project(project)
            return project

    def remove_local_override(self, project_id: str, kind: EntityKind, name: str) -> bool:
        """Remove a local override and its stored content."""
        with self._lock:
            project = self.get_project(project_id)
            remaining = tuple(r for r in project.local_overrides if r.key != (kind, name))
            if len(remaining) == len(project.local_overrides):
                return False
            self.project_tools(project_id).remove(kind, name)
            project = replace(project, local_overrides=remaining, updated_at=utcnow())
            self._save_project(self._with_effective_tools(project, self._assigned_profile(project)))
            return True

    def effective_tools(self, project_id: str) -> tuple[ToolRef, ...]:
        """Profile tools overlaid by local overrides, recomputed from records."""
        project = self.get_project(project_id)
        return compute_effective_tools(self._assigned_profile(project), project.local_overrides)

    def _assigned_profile(self, project: ProjectAssignment) -> Profile | None:
        if project.profile_id is None:
            return None
        return self.get(project.profile_id)

    def _with_effective_tools(self, project: ProjectAssignment, profile: Profile | None) -> ProjectAssignment:
        return replace(project, effective_tools=compute_effective_tools(profile, project.local_overrides))

    # ===== Export / import =====

    def export_profile(self, profile_id: str) -> dict[str, Any]:
        """Profile record plus stored tool content, as a JSON-ready dict."""
        profile = self.get(profile_id)
        tools = self.profile_tools(profile_id)
        content: dict[str, dict[str, Any]] = {}
        for ref in profile.tool_refs:
            stored = tools.read(ref.kind, ref.name)
            if stored is not None:
                content.setdefault(ref.kind.value, {})[ref.name] = stored
        return {"version": EXPORT_FORMAT_VERSION, "profile": profile.to_dict(), "content": content}

    def import_profile(self, data: dict[str, Any], name: str | None = None) -> Profile:
        """Create a new profile from ``export_profile`` output.

        Raises:
            ValidationError: If the data is malformed or the name is taken
        """
        try:
            exported = Profile.from_dict(data["profile"])
            content = data.get("content") or {}
            version = data.get("version", EXPORT_FORMAT_VERSION)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid profile export: {e}") from e
        if version != EXPORT_FORMAT_VERSION:
            raise ValidationError(f"Unsupported profile export version: {version}")

        profile = self.create(name or exported.name, description=exported.description)
        tools = self.profile_tools(profile.id)
        with self._lock:
            for kind_value, entries in content.items():
                kind = EntityKind(kind_value)
                for tool_name, stored in entries.items():
                    tools.write(kind, tool_name, stored)
        return self.update(profile.id, tool_refs=exported.tool_refs, plugin_refs=exported.plugin_refs).profile

    # ===== Persistence =====

    def _save_profile(self, profile: Profile) -> None:
        self._write_yaml(safe_join(self.profiles_dir, profile.id) / PROFILE_FILE, profile.to_dict())

    def _save_project(self, project: ProjectAssignment) -> None:
        self._write_yaml(safe_join(self.projects_dir, project.id) / PROJECT_FILE, project.to_dict())

    def _prune_tool_content(self, tools: ToolDirectory, refs: Iterable[ToolRef]) -> None:
        keep = {ref.key for ref in refs}
        for kind in EntityKind:
            for tool_name in tools.names(kind):
                if (kind, tool_name) not in keep:
                    tools.remove(kind, tool_name)

    def _read_yaml(self, path: Path) -> dict[str, Any] | None:
        """Read a YAML record.

        Args:
            path: Path to YAML file

        Returns:
            Dictionary from YAML or None if the file doesn't exist or is unreadable
        """
        if not path.exists():
            return None

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read record from {path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def _write_yaml(self, path: Path, data: dict[str, Any]) -> None:
        """Write a YAML record atomically.

        Raises:
            FileOperationError: If write fails
        """
        text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
        _write_bytes(path, text.encode("utf-8"))


# ===== Helpers =====


def compute_effective_tools(profile: Profile | None, overrides: Iterable[ToolRef]) -> tuple[ToolRef, ...]:
    """Profile tools overlaid by overrides, keyed on (kind, name)."""
    merged: dict[tuple[EntityKind, str], ToolRef] = {}
    if profile is not None:
        merged.update((ref.key, ref) for ref in profile.tool_refs)
    merged.update((ref.key, ref) for ref in overrides)
    return _sorted_refs(merged.values())


def _sorted_refs(refs: Iterable[ToolRef]) -> tuple[ToolRef, ...]:
    return tuple(sorted(refs, key=lambda r: (r.kind.value, r.name)))


def _dedupe_refs(refs: Iterable[ToolRef]) -> tuple[ToolRef, ...]:
    """Last ref wins for each (kind, name); first-seen order is kept."""
    unique: dict[tuple[EntityKind, str], ToolRef] = {}
    for ref in refs:
        if ref.kind in FILE_KINDS:
            validate_name(ref.name)
        unique[ref.key] = ref
    return tuple(unique.values())


def hook_content(rule: HookRule) -> dict[str, Any]:
    """Stored form of a hook rule."""
    return {"event": rule.event, **rule.to_entry()}


def mcp_content(server: McpServer) -> dict[str, Any]:
    """Stored form of an MCP server."""
    return copy.deepcopy(server.config)
