"""End-to-end tests through the engine facade."""

import asyncio
from pathlib import Path

import pytest
from scopesync import AsyncProfileEngine
from scopesync import EnginePaths
from scopesync import EntityKind
from scopesync import Scope
from scopesync import ToolRef
from scopesync.config import HOME_ENV_VAR
from scopesync.models import CreateOp


class TestProfileEngine:
    """Test full scan, profile, apply and rollback flows."""

    @pytest.fixture
    def engine(self, workspace):
        """Create a ProfileEngine over the workspace."""
        return workspace.engine()

    def test_snapshot_profile_onto_fresh_project(self, workspace, engine):
        """Test a profile captured from one project reproduces its tools in another."""
        source = workspace.project("source")
        agent_path = workspace.agent(source / ".claude", "reviewer")
        skill_path = workspace.skill(source / ".claude", "lint")
        workspace.write_json(source / ".mcp.json", {"mcpServers": {"db": {"command": "db-mcp"}}})
        target = workspace.project("target")

        profile = engine.create_profile("team", source_path=source)
        record = engine.apply(profile.id, target)

        assert record.succeeded
        assert (target / ".claude/agents/reviewer.md").read_bytes() == agent_path.read_bytes()
        assert (target / ".claude/skills/lint/SKILL.md").read_bytes() == skill_path.read_bytes()
        project_scope = engine.scan(target).scope(Scope.project())
        assert [a.name for a in project_scope.agents] == ["reviewer"]
        assert [m.name for m in project_scope.mcp_servers] == ["db"]
        assert engine.preview_apply(profile.id, target).is_empty()

    def test_single_agent_profile(self, workspace, engine):
        """Test one agent gives exactly one create, then nothing."""
        source = workspace.project("source")
        workspace.agent(source / ".claude", "reviewer")
        profile = engine.create_profile("reviewers", source_path=source)
        target = workspace.project("target")

        diff = engine.preview_apply(profile.id, target)
        assert [(type(op), op.path) for op in diff.operations] == [(CreateOp, ".claude/agents/reviewer.md")]

        engine.apply(profile.id, target)
        assert engine.preview_apply(profile.id, target).is_empty()

    def test_apply_then_rollback_restores_inventory(self, workspace, engine):
        """Test rollback returns the project to its scanned state."""
        source = workspace.project("source")
        workspace.agent(source / ".claude", "reviewer", description="profile version")
        workspace.command(source / ".claude", "deploy")
        target = workspace.project("target")
        workspace.agent(target / ".claude", "reviewer", description="local version")
        before = engine.scan(target).scopes

        profile = engine.create_profile("team", source_path=source)
        record = engine.apply(profile.id, target)
        reviewer = engine.scan(target).effective.get(EntityKind.AGENT, "reviewer")
        assert reviewer.description == "profile version"

        engine.rollback(record.id, target)

        assert engine.scan(target).scopes == before

    def test_delete_profile_keeps_projects_tools(self, workspace, engine):
        """Test deleting an assigned profile converts every project to overrides."""
        source = workspace.project("source")
        workspace.agent(source / ".claude", "reviewer")
        profile = engine.create_profile("team", source_path=source)
        projects = [engine.register_project(workspace.project(name)) for name in ("a", "b", "c")]
        for project in projects:
            engine.assign_profile(project.id, profile.id)

        result = engine.delete_profile(profile.id)

        assert result.deleted
        assert result.converted_project_count == 3
        for project in projects:
            assert engine.store.effective_tools(project.id) == (ToolRef("reviewer", EntityKind.AGENT),)
            assert engine.store.get_project(project.id).profile_id is None

    def test_assigned_profile_listed_for_project(self, workspace, engine):
        """Test assignment is visible from the project side and can be undone."""
        profile = engine.create_profile("team")
        project = engine.register_project(workspace.project())

        engine.assign_profile(project.id, profile.id)
        assert [p.id for p in engine.store.list_for_project(project.id)] == [profile.id]

        engine.unassign_profile(project.id)
        assert engine.store.list_for_project(project.id) == []

    def test_scan_user_and_many(self, workspace, engine):
        """Test user-only and multi-project scans."""
        workspace.skill(workspace.user_dir, "lint")
        assert [s.name for s in engine.scan_user().scope(Scope.user()).skills] == ["lint"]
        assert len(engine.scan_many([workspace.project("a"), workspace.project("b")])) == 2


class TestAsyncProfileEngine:
    """Test the coroutine wrappers."""

    def test_async_round_trip(self, workspace):
        """Test create, preview, apply and rollback through coroutines."""
        source = workspace.project("source")
        workspace.agent(source / ".claude", "reviewer")
        target = workspace.project("target")
        engine = AsyncProfileEngine(workspace.engine())

        async def run():
            profile = await engine.create_profile("team", source_path=source)
            diff = await engine.preview_apply(profile.id, target)
            record = await engine.apply(profile.id, target)
            backups = await engine.list_backups(record.project_id)
            restored = await engine.rollback(record.id, target)
            return diff, backups, restored

        diff, backups, restored = asyncio.run(run())

        assert len(diff.operations) == 1
        assert len(backups) == 1
        assert restored == 1
        assert not (target / ".claude").exists()

    def test_concurrent_scans(self, workspace):
        """Test concurrent scans each complete with their own result."""
        engine = AsyncProfileEngine(workspace.engine())
        paths = [workspace.project(name) for name in ("a", "b", "c")]

        async def run():
            return await asyncio.gather(*(engine.scan(path) for path in paths))

        inventories = asyncio.run(run())

        assert [i.project_path for i in inventories] == paths


class TestEnginePaths:
    """Test default state locations."""

    def test_home_env_var(self, workspace, monkeypatch):
        """Test SCOPESYNC_HOME relocates the store and backups."""
        monkeypatch.setenv(HOME_ENV_VAR, str(workspace.root / "custom"))
        paths = EnginePaths.default()
        assert paths.store_dir == workspace.root / "custom"
        assert paths.backups_dir == workspace.root / "custom" / "backups"

    def test_default_under_home(self, monkeypatch):
        """Test the fallback location is ~/.scopesync."""
        monkeypatch.delenv(HOME_ENV_VAR, raising=False)
        paths = EnginePaths.default()
        assert paths.store_dir == Path.home() / ".scopesync"
        assert paths.scan.user_dir == Path.home() / ".claude"
