"""Scope scanner: walks every scope root and builds an Inventory.

Scanning never writes and never raises for a single malformed entity
file; such files are logged and recorded as parse warnings.
"""

import logging
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path
from typing import Any
from typing import TypeVar

from .collision import resolve
from .config import ScanPaths
from .exceptions import EntityParseError
from .exceptions import NotFoundError
from .models import Agent
from .models import Command
from .models import HookRule
from .models import HostInfo
from .models import InstalledPlugin
from .models import Inventory
from .models import McpServer
from .models import ParseWarning
from .models import Scope
from .models import ScopeInventory
from .models import ScopeKind
from .models import Skill
from .parser import parse_agent
from .parser import parse_command
from .parser import parse_hooks_file
from .parser import parse_mcp_config
from .parser import parse_mcp_servers
from .parser import parse_settings
from .parser import parse_skill
from .parser import read_json
from .utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

SKILL_FILE = "SKILL.md"
CONFIG_DIR = ".claude"


class Scanner:
    """Builds inventories from the host tool's configuration roots.

    Args:
        paths: Locations of the user, managed and plugin roots
    """

    def __init__(self, paths: ScanPaths):
        self.paths = paths

    # ===== Public API =====

    def scan(self, project_path: Path) -> Inventory:
        """Scan every scope visible to a project.

        Raises:
            NotFoundError: If the project directory does not exist
        """
        project_path = Path(project_path)
        if not project_path.is_dir():
            raise NotFoundError(f"Project directory not found: {project_path}")
        return self._scan(project_path.resolve())

    def scan_many(self, project_paths: Iterable[Path]) -> list[Inventory]:
        """Scan several projects; one inventory per path, in order."""
        return [self.scan(path) for path in project_paths]

    def scan_user_scope(self) -> Inventory:
        """Scan managed, user and user-installed plugin scopes only."""
        return self._scan(None)

    def installed_plugins(self, project_path: Path | None = None) -> list[InstalledPlugin]:
        """List installed plugins with their enabled state for a project."""
        return self._installed_plugins(project_path, [])

    # ===== Scope roots =====

    def _scan(self, project_path: Path | None) -> Inventory:
        warnings: list[ParseWarning] = []
        user_state = self._read_user_state(warnings)

        scopes = [
            self._scan_managed(warnings),
            self._scan_user(user_state, warnings),
        ]
        if project_path is not None:
            scopes.append(self._scan_project(project_path, warnings))
            scopes.append(self._scan_local(project_path, user_state, warnings))

        plugins = self._installed_plugins(project_path, warnings)
        for plugin in plugins:
            if plugin.enabled and plugin.visible_to(project_path):
                scopes.append(self._scan_plugin(plugin, warnings))

        inventory = Inventory(
            host=HostInfo.current(),
            project_path=project_path,
            scopes=tuple(sorted(scopes, key=lambda s: s.scope.sort_key())),
            plugins=tuple(plugins),
            scanned_at=utcnow(),
            warnings=tuple(warnings),
        )
        effective, collisions = resolve(inventory)
        logger.debug(
            f"Scanned {project_path or 'user scope'}: {len(inventory.scopes)} scopes, "
            f"{collisions.total_count()} collisions, {len(warnings)} warnings"
        )
        return replace(inventory, effective=effective, collisions=collisions)

    def _scan_managed(self, warnings: list[ParseWarning]) -> ScopeInventory:
        root = self.paths.managed_dir
        scope = Scope.managed()
        settings, hooks = self._settings(root / "settings.json", scope, warnings)
        mcp_file = root / "managed-mcp.json"
        if not mcp_file.exists():
            mcp_file = root / "mcp.json"
        servers = self._mcp_file(mcp_file, scope, warnings)
        return self._entity_dirs(root, scope, warnings, settings=settings, hooks=hooks, mcp_servers=servers)

    def _scan_user(self, user_state: dict[str, Any], warnings: list[ParseWarning]) -> ScopeInventory:
        root = self.paths.user_dir
        scope = Scope.user()
        settings, hooks = self._settings(root / "settings.json", scope, warnings)
        servers = self._guard(
            lambda: parse_mcp_servers(user_state.get("mcpServers"), self.paths.user_config_file, scope),
            warnings,
        )
        return self._entity_dirs(root, scope, warnings, settings=settings, hooks=hooks, mcp_servers=servers or ())

    def _scan_project(self, project_path: Path, warnings: list[ParseWarning]) -> ScopeInventory:
        root = project_path / CONFIG_DIR
        scope = Scope.project()
        settings, hooks = self._settings(root / "settings.json", scope, warnings)
        servers = self._mcp_file(project_path / ".mcp.json", scope, warnings)
        return self._entity_dirs(root, scope, warnings, settings=settings, hooks=hooks, mcp_servers=servers)

    def _scan_local(
        self, project_path: Path, user_state: dict[str, Any], warnings: list[ParseWarning]
    ) -> ScopeInventory:
        scope = Scope.local()
        settings, hooks = self._settings(project_path / CONFIG_DIR / "settings.local.json", scope, warnings)
        project_state = (user_state.get("projects") or {}).get(str(project_path)) or {}
        servers = self._guard(
            lambda: parse_mcp_servers(project_state.get("mcpServers"), self.paths.user_config_file, scope),
            warnings,
        )
        return ScopeInventory(
            scope=scope,
            root=project_path / CONFIG_DIR,
            hooks=hooks,
            mcp_servers=servers or (),
            settings=settings,
        )

    def _scan_plugin(self, plugin: InstalledPlugin, warnings: list[ParseWarning]) -> ScopeInventory:
        root = plugin.path
        scope = Scope.plugin(plugin.id)
        hooks_file = root / "hooks" / "hooks.json"
        hooks = self._guard(lambda: parse_hooks_file(hooks_file, scope), warnings) if hooks_file.exists() else None
        servers = self._mcp_file(root / ".mcp.json", scope, warnings)
        return self._entity_dirs(root, scope, warnings, hooks=hooks or (), mcp_servers=servers)

    # ===== Plugins =====

    def _installed_plugins(self, project_path: Path | None, warnings: list[ParseWarning]) -> list[InstalledPlugin]:
        registry_file = self.paths.installed_plugins_file
        if not registry_file.exists():
            return []
        registry = self._guard(lambda: read_json(registry_file)[0], warnings)
        if not registry:
            return []

        enabled_flags = self._enabled_plugin_flags(project_path)
        raw_plugins = registry.get("plugins") or {}
        if not isinstance(raw_plugins, dict):
            self._warn(warnings, registry_file, "'plugins' must be an object")
            return []

        plugins = []
        for plugin_id, entries in sorted(raw_plugins.items()):
            # Older registries hold a single install object per plugin
            if isinstance(entries, dict):
                entries = [entries]
            for entry in entries or ():
                plugin = self._plugin_from_entry(plugin_id, entry, enabled_flags, registry_file, warnings)
                if plugin is not None:
                    plugins.append(plugin)
        return plugins

    def _plugin_from_entry(
        self,
        plugin_id: str,
        entry: Any,
        enabled_flags: dict[str, Any],
        registry_file: Path,
        warnings: list[ParseWarning],
    ) -> InstalledPlugin | None:
        if not isinstance(entry, dict) or not entry.get("installPath"):
            self._warn(warnings, registry_file, f"invalid install entry for plugin '{plugin_id}'")
            return None

        name, _, marketplace = plugin_id.partition("@")
        try:
            scope = Scope.parse(entry.get("scope") or "user")
        except ValueError:
            self._warn(warnings, registry_file, f"unknown scope for plugin '{plugin_id}'")
            return None
        if scope.kind is ScopeKind.PLUGIN:
            scope = Scope.user()

        install_path = Path(entry["installPath"])
        if not install_path.is_absolute():
            install_path = self.paths.plugins_dir / install_path
        project_path = entry.get("projectPath")

        return InstalledPlugin(
            id=plugin_id,
            name=name,
            marketplace=marketplace or None,
            version=str(entry.get("version") or "unknown"),
            scope=scope,
            path=install_path,
            enabled=bool(enabled_flags.get(plugin_id, True)),
            project_path=Path(project_path).resolve() if project_path else None,
        )

    def _enabled_plugin_flags(self, project_path: Path | None) -> dict[str, Any]:
        """``enabledPlugins`` from user settings, overlaid by the project's own files."""
        files = [self.paths.user_settings_file]
        if project_path is not None:
            files.append(project_path / CONFIG_DIR / "settings.json")
            files.append(project_path / CONFIG_DIR / "settings.local.json")

        flags: dict[str, Any] = {}
        for path in files:
            if not path.exists():
                continue
            try:
                data, _ = read_json(path)
            except EntityParseError:
                # Reported by the settings scan of the same file
                continue
            enabled = data.get("enabledPlugins")
            if isinstance(enabled, dict):
                flags.update(enabled)
        return flags

    # ===== Helpers =====

    def _read_user_state(self, warnings: list[ParseWarning]) -> dict[str, Any]:
        path = self.paths.user_config_file
        if not path.exists():
            return {}
        data = self._guard(lambda: read_json(path)[0], warnings)
        return data or {}

    def _entity_dirs(
        self,
        root: Path,
        scope: Scope,
        warnings: list[ParseWarning],
        settings: dict[str, Any] | None = None,
        hooks: tuple[HookRule, ...] = (),
        mcp_servers: tuple[McpServer, ...] = (),
    ) -> ScopeInventory:
        skills: list[Skill] = []
        skills_dir = root / "skills"
        if skills_dir.is_dir():
            for skill_dir in sorted(p for p in skills_dir.iterdir() if p.is_dir()):
                skill_file = skill_dir / SKILL_FILE
                if skill_file.is_file():
                    logger.debug(f"Parsing skill: {skill_file}")
                    skill = self._guard(lambda: parse_skill(skill_file, scope), warnings)
                    if skill is not None:
                        skills.append(skill)

        commands: list[Command] = []
        for command_file in _markdown_files(root / "commands"):
            command = self._guard(lambda: parse_command(command_file, scope), warnings)
            if command is not None:
                commands.append(command)

        agents: list[Agent] = []
        for agent_file in _markdown_files(root / "agents"):
            agent = self._guard(lambda: parse_agent(agent_file, scope), warnings)
            if agent is not None:
                agents.append(agent)

        return ScopeInventory(
            scope=scope,
            root=root,
            skills=tuple(sorted(skills, key=lambda e: e.name)),
            commands=tuple(sorted(commands, key=lambda e: e.name)),
            agents=tuple(sorted(agents, key=lambda e: e.name)),
            hooks=tuple(sorted(hooks, key=lambda e: e.name)),
            mcp_servers=tuple(sorted(mcp_servers, key=lambda e: e.name)),
            settings=settings or {},
        )

    def _settings(
        self, path: Path, scope: Scope, warnings: list[ParseWarning]
    ) -> tuple[dict[str, Any], tuple[HookRule, ...]]:
        if not path.exists():
            return {}, ()
        parsed = self._guard(lambda: parse_settings(path, scope), warnings)
        return parsed if parsed is not None else ({}, ())

    def _mcp_file(self, path: Path, scope: Scope, warnings: list[ParseWarning]) -> tuple[McpServer, ...]:
        if not path.exists():
            return ()
        return self._guard(lambda: parse_mcp_config(path, scope), warnings) or ()

    def _guard(self, parse: Callable[[], T], warnings: list[ParseWarning]) -> T | None:
        """Run a parser, turning EntityParseError into a recorded warning."""
        try:
            return parse()
        except EntityParseError as e:
            self._warn(warnings, Path(e.path), e.message)
            return None

    def _warn(self, warnings: list[ParseWarning], path: Path, message: str) -> None:
        logger.warning(f"Skipping {path}: {message}")
        warnings.append(ParseWarning(path=path, message=message))


def _markdown_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.glob("*.md") if p.is_file())
