"""Shared fixtures: an isolated home, managed dir, store and projects."""

import json
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from scopesync import EnginePaths
from scopesync import ProfileEngine
from scopesync import ScanPaths


class Workspace:
    """Temporary filesystem with helpers for writing host tool config."""

    def __init__(self, root: Path):
        self.root = root
        self.home = root / "home"
        self.home.mkdir()
        self.scan_paths = ScanPaths.under(self.home)
        self.engine_paths = EnginePaths.under(root / "state", self.scan_paths)

    @property
    def user_dir(self) -> Path:
        return self.scan_paths.user_dir

    @property
    def managed_dir(self) -> Path:
        return self.scan_paths.managed_dir

    def project(self, name: str = "project") -> Path:
        path = self.root / "projects" / name
        path.mkdir(parents=True, exist_ok=True)
        return path.resolve()

    def engine(self, **kwargs) -> ProfileEngine:
        return ProfileEngine(self.engine_paths, **kwargs)

    def write(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def write_json(self, path: Path, data) -> Path:
        return self.write(path, json.dumps(data, indent=2) + "\n")

    def skill(self, root: Path, name: str, description: str = "A skill", body: str = "Instructions.\n") -> Path:
        text = f"---\nname: {name}\ndescription: {description}\n---\n\n{body}"
        return self.write(root / "skills" / name / "SKILL.md", text)

    def command(self, root: Path, name: str, description: str = "A command", body: str = "Do it.\n") -> Path:
        return self.write(root / "commands" / f"{name}.md", f"---\ndescription: {description}\n---\n\n{body}")

    def agent(self, root: Path, name: str, description: str = "An agent", tools: str = "Read, Grep") -> Path:
        text = f"---\nname: {name}\ndescription: {description}\ntools: {tools}\n---\n\nYou are {name}.\n"
        return self.write(root / "agents" / f"{name}.md", text)

    def plugin(self, plugin_id: str, scope: str = "user", project: Path | None = None) -> Path:
        """Install a plugin directory and register it in installed_plugins.json."""
        install_path = self.scan_paths.plugins_dir / "cache" / plugin_id.replace("@", "-")
        install_path.mkdir(parents=True, exist_ok=True)

        registry_file = self.scan_paths.installed_plugins_file
        registry = json.loads(registry_file.read_text()) if registry_file.exists() else {"version": 2, "plugins": {}}
        entry = {"scope": scope, "installPath": str(install_path), "version": "1.0.0"}
        if project is not None:
            entry["projectPath"] = str(project)
        registry["plugins"].setdefault(plugin_id, []).append(entry)
        self.write_json(registry_file, registry)
        return install_path


@pytest.fixture
def workspace():
    """Create an isolated workspace for testing."""
    with TemporaryDirectory() as tmpdir:
        yield Workspace(Path(tmpdir).resolve())
