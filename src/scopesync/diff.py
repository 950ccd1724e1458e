"""Diff engine: file operations that bring a project to a profile's target state.

The target state is the profile's tools overlaid by the project's local
overrides, plus the profile's plugin flags. File-backed tools map to one
file each; MCP servers, hook rules and plugin flags are merged into the
shared JSON files. Only files proven to be profile-managed by the latest
backup record of the same project and profile are ever deleted.
"""

import difflib
import logging
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from .backup import BackupManager
from .exceptions import EntityParseError
from .exceptions import NotFoundError
from .merge import group_entry_keys
from .merge import hook_entry_key
from .merge import merge_enabled_plugins
from .merge import merge_hooks
from .merge import merge_mcp_servers
from .merge import mcp_entry_key
from .merge import plugin_entry_key
from .models import FILE_KINDS
from .models import BackupRecord
from .models import CreateOp
from .models import DeleteOp
from .models import Diff
from .models import DiffOperation
from .models import DiffWarning
from .models import Entity
from .models import EntityKind
from .models import HookRule
from .models import Inventory
from .models import McpServer
from .models import ModifyOp
from .models import Profile
from .models import ProjectAssignment
from .models import Scope
from .models import ScopeKind
from .models import ToolRef
from .models import WarningKind
from .parser import apply_permissions
from .parser import dump_json
from .parser import read_json
from .profiles import ProfileStore
from .profiles import ToolDirectory
from .profiles import compute_effective_tools
from .scanner import Scanner
from .utils import content_hash
from .utils import file_hash
from .utils import safe_join
from .utils import validate_name

logger = logging.getLogger(__name__)

MCP_FILE = ".mcp.json"
SETTINGS_FILE = ".claude/settings.json"


def tool_path(kind: EntityKind, name: str) -> str:
    """Project-relative path a file-backed tool renders to."""
    name = validate_name(name)
    if kind is EntityKind.SKILL:
        return f".claude/skills/{name}/SKILL.md"
    if kind is EntityKind.COMMAND:
        return f".claude/commands/{name}.md"
    if kind is EntityKind.AGENT:
        return f".claude/agents/{name}.md"
    raise ValueError(f"{kind.value} is not a file-backed kind")


def unified_diff(path: str, old: bytes, new: bytes) -> str:
    """Line-based unified diff between two versions of a file."""
    old_lines = old.decode("utf-8", errors="replace").splitlines(keepends=True)
    new_lines = new.decode("utf-8", errors="replace").splitlines(keepends=True)
    return "".join(difflib.unified_diff(old_lines, new_lines, fromfile=f"a/{path}", tofile=f"b/{path}"))


@dataclass
class _Target:
    """Rendered target state before comparison with disk."""

    files: dict[str, bytes] = field(default_factory=dict)
    mcp_servers: dict[str, dict[str, Any]] = field(default_factory=dict)
    hooks: list[HookRule] = field(default_factory=list)
    plugins: dict[str, bool] = field(default_factory=dict)
    warnings: list[DiffWarning] = field(default_factory=list)


@dataclass
class _Plan:
    """Comparison results accumulated across target files."""

    writes: list[DiffOperation] = field(default_factory=list)
    deletes: list[DiffOperation] = field(default_factory=list)
    warnings: list[DiffWarning] = field(default_factory=list)
    target_hashes: dict[str, str] = field(default_factory=dict)
    managed_paths: set[str] = field(default_factory=set)
    managed_entries: set[str] = field(default_factory=set)


class DiffEngine:
    """Computes previews of applying a profile to a project.

    Args:
        store: Profile store holding profiles, overrides and tool content
        scanner: Scanner for the project's current inventory
        backups: Backup manager, consulted for what the profile manages
    """

    def __init__(self, store: ProfileStore, scanner: Scanner, backups: BackupManager):
        self.store = store
        self.scanner = scanner
        self.backups = backups

    def preview(self, profile_id: str, project_path: Path) -> Diff:
        """Compute the operations applying a profile would perform.

        Never writes.

        Raises:
            NotFoundError: If the profile or the project directory does not exist
        """
        profile = self.store.get(profile_id)
        project_path = Path(project_path)
        if not project_path.is_dir():
            raise NotFoundError(f"Project directory not found: {project_path}")
        project_path = project_path.resolve()

        project = self.store.find_project_by_path(project_path)
        inventory = self.scanner.scan(project_path)
        last = self.backups.latest(project.id, profile_id) if project is not None else None

        target = self._render_target(profile, project, inventory)
        plan = _Plan(warnings=list(target.warnings))
        self._plan_tool_files(project_path, target, last, plan)
        self._plan_json_files(project_path, target, last, plan)
        self._plan_deletes(project_path, target, last, plan)

        diff = Diff(
            project_path=project_path,
            profile_id=profile_id,
            operations=tuple(sorted(plan.writes, key=lambda op: op.path))
            + tuple(sorted(plan.deletes, key=lambda op: op.path)),
            warnings=tuple(plan.warnings),
            target_hashes=dict(sorted(plan.target_hashes.items())),
            managed_paths=tuple(sorted(plan.managed_paths)),
            managed_entries=tuple(sorted(plan.managed_entries)),
        )
        logger.debug(
            f"Previewed profile {profile_id} on {project_path}: "
            f"{len(diff.operations)} operations, {len(diff.warnings)} warnings"
        )
        return diff

    # ===== Target resolution =====

    def _render_target(
        self, profile: Profile, project: ProjectAssignment | None, inventory: Inventory
    ) -> _Target:
        target = _Target()
        overrides = project.local_overrides if project is not None else ()
        override_keys = {ref.key for ref in overrides}
        profile_tools = self.store.profile_tools(profile.id)
        project_tools = self.store.project_tools(project.id) if project is not None else None

        for ref in compute_effective_tools(profile, overrides):
            owner = project_tools if ref.key in override_keys else profile_tools
            if ref.kind in FILE_KINDS:
                self._render_tool_file(ref, owner, inventory, target)
            elif ref.kind is EntityKind.MCP:
                config = self._stored_or_scanned(ref, owner, inventory)
                if isinstance(config, McpServer):
                    config = dict(config.config)
                if config is None:
                    target.warnings.append(_unresolved(ref))
                else:
                    target.mcp_servers[ref.name] = config
            else:
                rule = self._resolve_hook(ref, owner, inventory)
                if rule is None:
                    target.warnings.append(_unresolved(ref))
                else:
                    target.hooks.append(rule)

        for plugin in profile.plugin_refs:
            target.plugins[plugin.qualified_id] = plugin.enabled
        return target

    def _render_tool_file(self, ref: ToolRef, owner: ToolDirectory, inventory: Inventory, target: _Target) -> None:
        content = self._stored_or_scanned(ref, owner, inventory)
        if isinstance(content, Entity):
            try:
                content = content.path.read_text(encoding="utf-8")
            except OSError:
                content = None
        if content is None:
            target.warnings.append(_unresolved(ref))
            return

        path = tool_path(ref.kind, ref.name)
        try:
            rendered = apply_permissions(content, ref.kind, ref.permissions)
        except ValueError as e:
            target.warnings.append(DiffWarning(WarningKind.INVALID_FILE, f"{ref.kind.value} '{ref.name}': {e}", path))
            return
        target.files[path] = rendered.encode("utf-8")

        for collision in inventory.collisions.for_kind(ref.kind):
            if collision.name == ref.name:
                scopes = ", ".join(str(o.scope) for o in collision.occurrences)
                target.warnings.append(
                    DiffWarning(
                        WarningKind.COLLISION,
                        f"{ref.kind.value} '{ref.name}' is defined in several scopes ({scopes}); "
                        f"{collision.winner_scope} wins",
                        path,
                    )
                )

    def _stored_or_scanned(self, ref: ToolRef, owner: ToolDirectory, inventory: Inventory):
        """Stored content of the owning record, else the best scanned entity."""
        stored = owner.read(ref.kind, ref.name)
        if stored is not None:
            return stored
        return _scanned_entity(ref, inventory)

    def _resolve_hook(self, ref: ToolRef, owner: ToolDirectory, inventory: Inventory) -> HookRule | None:
        found = self._stored_or_scanned(ref, owner, inventory)
        if isinstance(found, HookRule) or found is None:
            return found
        event = found.get("event") or ref.name.partition(":")[0]
        matcher = found.get("matcher") or None
        return HookRule(
            name=ref.name,
            path=owner.root,
            scope=Scope.project(),
            content_hash="",
            event=event,
            matcher=matcher,
            hooks=tuple(found.get("hooks") or ()),
        )

    # ===== Comparison =====

    def _plan_tool_files(self, project_path: Path, target: _Target, last: BackupRecord | None, plan: _Plan) -> None:
        previously_managed = set(last.managed_paths) if last else set()
        for path, content in target.files.items():
            self._compare(project_path, path, content, path in previously_managed, last, plan)

    def _plan_json_files(self, project_path: Path, target: _Target, last: BackupRecord | None, plan: _Plan) -> None:
        previous_entries = set(last.managed_entries) if last else set()
        previously_managed = set(last.managed_paths) if last else set()
        old_servers, old_hooks, old_plugins = group_entry_keys(previous_entries)

        def merge_mcp(document: dict[str, Any]):
            return [merge_mcp_servers(document, target.mcp_servers, old_servers)]

        def merge_settings(document: dict[str, Any]):
            hooks = merge_hooks(document, target.hooks, old_hooks)
            return [hooks, merge_enabled_plugins(hooks.document, target.plugins, old_plugins)]

        wanted_keys = {
            MCP_FILE: {mcp_entry_key(name) for name in target.mcp_servers},
            SETTINGS_FILE: {hook_entry_key(r.event, r.matcher) for r in target.hooks}
            | {plugin_entry_key(p) for p in target.plugins},
        }
        removals = {
            MCP_FILE: bool(old_servers),
            SETTINGS_FILE: bool(old_hooks or old_plugins),
        }

        for path, merge in ((MCP_FILE, merge_mcp), (SETTINGS_FILE, merge_settings)):
            if not wanted_keys[path] and not removals[path]:
                if path in previously_managed and safe_join(project_path, path).exists():
                    plan.managed_paths.add(path)
                continue

            file_path = safe_join(project_path, path)
            exists = file_path.exists()
            document: dict[str, Any] = {}
            if exists:
                try:
                    document, _ = read_json(file_path)
                except EntityParseError as e:
                    plan.warnings.append(DiffWarning(WarningKind.INVALID_FILE, e.message, path))
                    continue

            try:
                results = merge(document)
            except ValueError as e:
                plan.warnings.append(DiffWarning(WarningKind.INVALID_FILE, f"{path}: {e}", path))
                continue
            merged = results[-1].document
            inserted = {key for r in results for key in r.inserted}
            plan.managed_entries.update(
                key for key in wanted_keys[path] if key in inserted or key in previous_entries
            )

            if not exists:
                if merged:
                    self._compare(project_path, path, dump_json(merged).encode("utf-8"), False, last, plan)
                continue
            if not any(r.changed for r in results):
                plan.target_hashes[path] = file_hash(file_path)
                if path in previously_managed:
                    plan.managed_paths.add(path)
                continue
            if not merged and path in previously_managed:
                self._delete(project_path, path, last, plan)
                continue
            self._compare(project_path, path, dump_json(merged).encode("utf-8"), path in previously_managed, last, plan)

    def _plan_deletes(self, project_path: Path, target: _Target, last: BackupRecord | None, plan: _Plan) -> None:
        if last is None:
            return
        for path in last.managed_paths:
            if path in target.files or path in (MCP_FILE, SETTINGS_FILE):
                continue
            if safe_join(project_path, path).is_file():
                self._delete(project_path, path, last, plan)

    def _compare(
        self,
        project_path: Path,
        path: str,
        content: bytes,
        was_managed: bool,
        last: BackupRecord | None,
        plan: _Plan,
    ) -> None:
        file_path = safe_join(project_path, path)
        plan.target_hashes[path] = content_hash(content)
        if not file_path.exists():
            plan.writes.append(CreateOp(path=path, content=content))
            plan.managed_paths.add(path)
            return

        current = file_path.read_bytes()
        if was_managed:
            plan.managed_paths.add(path)
        if content_hash(current) == plan.target_hashes[path]:
            return
        self._check_concurrent(path, content_hash(current), last, plan)
        plan.writes.append(ModifyOp(path=path, unified_diff=unified_diff(path, current, content), new_content=content))

    def _delete(self, project_path: Path, path: str, last: BackupRecord | None, plan: _Plan) -> None:
        current = file_hash(safe_join(project_path, path))
        if current is not None:
            self._check_concurrent(path, current, last, plan)
        plan.deletes.append(DeleteOp(path=path))

    def _check_concurrent(self, path: str, current_hash: str, last: BackupRecord | None, plan: _Plan) -> None:
        """Warn when a file changed since this profile last wrote it."""
        if last is None or path not in last.written_hashes:
            return
        captured = last.file(path)
        pre_apply = captured.sha256 if captured is not None else None
        if current_hash not in (last.written_hashes[path], pre_apply):
            plan.warnings.append(
                DiffWarning(
                    WarningKind.CONCURRENT_MODIFICATION,
                    f"{path} was modified outside of this profile since it was last applied",
                    path,
                )
            )


def _unresolved(ref: ToolRef) -> DiffWarning:
    where = f" in scope {ref.source_scope}" if ref.source_scope is not None else ""
    return DiffWarning(WarningKind.UNRESOLVED_TOOL, f"{ref.kind.value} '{ref.name}' not found{where}")


def _scanned_entity(ref: ToolRef, inventory: Inventory) -> Entity | None:
    """Highest-precedence scanned entity outside the project's own scopes."""
    for scope_inventory in inventory.scopes:
        if scope_inventory.scope.kind in (ScopeKind.PROJECT, ScopeKind.LOCAL):
            continue
        if ref.source_scope is not None and scope_inventory.scope != ref.source_scope:
            continue
        for entity in scope_inventory.entities(ref.kind):
            if entity.name == ref.name:
                return entity
    return None
