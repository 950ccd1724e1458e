"""Filesystem locations used by the scanner and the profile engine.

Applications inject these paths; nothing else in the library looks up the
home directory or environment on its own.
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

HOME_ENV_VAR = "SCOPESYNC_HOME"


def default_managed_dir() -> Path:
    """Platform directory for centrally managed configuration."""
    if sys.platform == "darwin":
        return Path("/Library/Application Support/ClaudeCode")
    if sys.platform.startswith("win"):
        return Path(os.environ.get("PROGRAMDATA", r"C:\ProgramData")) / "ClaudeCode"
    return Path("/etc/claude")


@dataclass(frozen=True)
class ScanPaths:
    """Host tool locations outside any project.

    Attributes:
        user_dir: User configuration directory (typically ~/.claude)
        user_config_file: User state file holding MCP servers (typically ~/.claude.json)
        managed_dir: Centrally managed configuration directory
        plugins_dir: Installed plugin registry directory (typically ~/.claude/plugins)
    """

    user_dir: Path
    user_config_file: Path
    managed_dir: Path
    plugins_dir: Path

    @classmethod
    def default(cls, home: Path | None = None) -> "ScanPaths":
        home = home or Path.home()
        user_dir = home / ".claude"
        return cls(
            user_dir=user_dir,
            user_config_file=home / ".claude.json",
            managed_dir=default_managed_dir(),
            plugins_dir=user_dir / "plugins",
        )

    @classmethod
    def under(cls, root: Path) -> "ScanPaths":
        """All locations beneath one directory, with a private managed dir."""
        return cls(
            user_dir=root / ".claude",
            user_config_file=root / ".claude.json",
            managed_dir=root / "managed",
            plugins_dir=root / ".claude" / "plugins",
        )

    @property
    def user_settings_file(self) -> Path:
        return self.user_dir / "settings.json"

    @property
    def installed_plugins_file(self) -> Path:
        return self.plugins_dir / "installed_plugins.json"


@dataclass(frozen=True)
class EnginePaths:
    """Where profile records and backups live, plus the scan locations.

    Attributes:
        store_dir: Root of profile and project records
        backups_dir: Root of backup snapshots
        scan: Host tool locations
    """

    store_dir: Path
    backups_dir: Path
    scan: ScanPaths

    @classmethod
    def default(cls) -> "EnginePaths":
        """State under ``$SCOPESYNC_HOME`` or ``~/.scopesync``."""
        root = Path(os.environ[HOME_ENV_VAR]) if os.environ.get(HOME_ENV_VAR) else Path.home() / ".scopesync"
        return cls.under(root, ScanPaths.default())

    @classmethod
    def under(cls, root: Path, scan: ScanPaths) -> "EnginePaths":
        return cls(store_dir=root, backups_dir=root / "backups", scan=scan)
