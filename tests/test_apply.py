"""Tests for apply, backups and rollback."""

import pytest
from scopesync import BackupCorruptedError
from scopesync import EntityKind
from scopesync import FileOperationError
from scopesync import NotFoundError
from scopesync import ToolRef
from scopesync.models import OperationType

REVIEWER = "---\nname: reviewer\ndescription: Reviews code\n---\n\nReview carefully.\n"
DEPLOY = "---\ndescription: Deploy\n---\n\nShip it.\n"


def tree(root):
    """Map of project-relative file paths to bytes."""
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


class TestApply:
    """Test ApplyEngine through the engine facade."""

    @pytest.fixture
    def engine(self, workspace):
        """Create a ProfileEngine over the workspace."""
        return workspace.engine()

    @pytest.fixture
    def profile(self, engine):
        """Create a profile with an agent and a command."""
        profile = engine.create_profile("team")
        engine.store.store_tool_content(profile.id, EntityKind.AGENT, "reviewer", REVIEWER)
        engine.store.store_tool_content(profile.id, EntityKind.COMMAND, "deploy", DEPLOY)
        refs = [ToolRef("reviewer", EntityKind.AGENT), ToolRef("deploy", EntityKind.COMMAND)]
        return engine.update_profile(profile.id, tool_refs=refs).profile

    def test_apply_writes_files_and_record(self, workspace, engine, profile):
        """Test apply writes the target files and persists a record."""
        project = workspace.project()

        record = engine.apply(profile.id, project)

        assert (project / ".claude/agents/reviewer.md").read_text() == REVIEWER
        assert (project / ".claude/commands/deploy.md").read_text() == DEPLOY
        assert record.succeeded
        assert record.profile_id == profile.id
        assert {f.path for f in record.files} == {".claude/agents/reviewer.md", ".claude/commands/deploy.md"}
        assert not any(f.existed for f in record.files)
        assert engine.backups.get(record.id) == record

    def test_apply_registers_project(self, workspace, engine, profile):
        """Test an unregistered project is registered on first apply."""
        project = workspace.project()
        record = engine.apply(profile.id, project)
        assert engine.store.find_project_by_path(project).id == record.project_id

    def test_empty_diff_still_records(self, workspace, engine, profile):
        """Test applying with nothing to do creates a record without files."""
        project = workspace.project()
        engine.apply(profile.id, project)
        record = engine.apply(profile.id, project)
        assert record.files == ()
        assert len(engine.list_backups(record.project_id)) == 2

    def test_apply_captures_modified_file(self, workspace, engine, profile):
        """Test a modified file's previous bytes are captured in the backup."""
        project = workspace.project()
        original = workspace.write(project / ".claude/agents/reviewer.md", "mine\n")

        record = engine.apply(profile.id, project)

        captured = record.file(".claude/agents/reviewer.md")
        assert captured.existed
        assert engine.backups.read_captured(record.id, captured.path) == b"mine\n"
        assert original.read_text() == REVIEWER

    def test_failed_backup_skips_operation(self, workspace, engine, profile, monkeypatch):
        """Test an operation whose backup copy fails is skipped and reported."""
        project = workspace.project()
        workspace.write(project / ".claude/agents/reviewer.md", "mine\n")

        def failing_capture(backup_id, project_path, relative_path):
            raise FileOperationError(f"disk full: {relative_path}")

        monkeypatch.setattr(engine.backups, "capture", failing_capture)
        record = engine.apply(profile.id, project)

        assert (project / ".claude/agents/reviewer.md").read_text() == "mine\n"
        assert (project / ".claude/commands/deploy.md").read_text() == DEPLOY
        assert [(e.path, e.operation) for e in record.errors] == [(".claude/agents/reviewer.md", OperationType.MODIFY)]
        assert not record.succeeded

    def test_failed_write_is_collected(self, workspace, engine, profile, monkeypatch):
        """Test IO errors on one write do not stop the others."""
        import scopesync.apply

        project = workspace.project()
        real_write = scopesync.apply.atomic_write

        def flaky_write(path, data):
            if path.name == "deploy.md":
                raise PermissionError("read-only")
            real_write(path, data)

        monkeypatch.setattr(scopesync.apply, "atomic_write", flaky_write)
        record = engine.apply(profile.id, project)

        assert (project / ".claude/agents/reviewer.md").exists()
        assert not (project / ".claude/commands/deploy.md").exists()
        assert [e.path for e in record.errors] == [".claude/commands/deploy.md"]
        assert ".claude/commands/deploy.md" not in record.written_hashes

    def test_apply_unknown_profile(self, workspace, engine):
        """Test applying an unknown profile raises NotFoundError."""
        with pytest.raises(NotFoundError):
            engine.apply("missing", workspace.project())


class TestRollback:
    """Test BackupManager rollback."""

    @pytest.fixture
    def engine(self, workspace):
        """Create a ProfileEngine over the workspace."""
        return workspace.engine()

    @pytest.fixture
    def profile(self, engine):
        """Create a profile with an agent and a command."""
        profile = engine.create_profile("team")
        engine.store.store_tool_content(profile.id, EntityKind.AGENT, "reviewer", REVIEWER)
        engine.store.store_tool_content(profile.id, EntityKind.COMMAND, "deploy", DEPLOY)
        refs = [ToolRef("reviewer", EntityKind.AGENT), ToolRef("deploy", EntityKind.COMMAND)]
        return engine.update_profile(profile.id, tool_refs=refs).profile

    def test_rollback_restores_tree_and_inventory(self, workspace, engine, profile):
        """Test rollback of an apply restores every touched file and the inventory."""
        project = workspace.project()
        workspace.write(project / ".claude/agents/reviewer.md", "mine\n")
        workspace.write_json(project / ".mcp.json", {"mcpServers": {"mine": {"command": "keep"}}})
        engine.store.store_tool_content(profile.id, EntityKind.MCP, "db", {"command": "db"})
        engine.update_profile(profile.id, tool_refs=[*profile.tool_refs, ToolRef("db", EntityKind.MCP)])
        before_tree = tree(project)
        before_scopes = engine.scan(project).scopes

        record = engine.apply(profile.id, project)
        assert tree(project) != before_tree

        restored = engine.rollback(record.id, project)

        assert restored == 3
        assert tree(project) == before_tree
        assert engine.scan(project).scopes == before_scopes

    def test_rollback_prunes_created_directories(self, workspace, engine, profile):
        """Test directories created by apply are removed on rollback."""
        project = workspace.project()
        record = engine.apply(profile.id, project)
        engine.rollback(record.id, project)
        assert list(project.iterdir()) == []

    def test_rollback_twice_is_idempotent(self, workspace, engine, profile):
        """Test rolling back the same backup twice yields the same state."""
        project = workspace.project()
        workspace.write(project / ".claude/agents/reviewer.md", "mine\n")
        record = engine.apply(profile.id, project)

        engine.rollback(record.id, project)
        first = tree(project)
        engine.rollback(record.id, project)

        assert tree(project) == first
        assert engine.backups.get(record.id) == record

    def test_rollback_restores_deleted_file(self, workspace, engine, profile):
        """Test a file deleted by a later apply comes back on rollback."""
        project = workspace.project()
        engine.apply(profile.id, project)
        engine.update_profile(profile.id, tool_refs=[ToolRef("reviewer", EntityKind.AGENT)])

        record = engine.apply(profile.id, project)
        assert not (project / ".claude/commands/deploy.md").exists()

        engine.rollback(record.id, project)
        assert (project / ".claude/commands/deploy.md").read_text() == DEPLOY

    def test_rollback_unknown_backup(self, workspace, engine):
        """Test unknown backup ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            engine.rollback("20260101T000000000000Z-deadbeef", workspace.project())

    def test_corrupted_backup_changes_nothing(self, workspace, engine, profile):
        """Test a tampered capture is detected before anything is restored."""
        project = workspace.project()
        workspace.write(project / ".claude/agents/reviewer.md", "mine\n")
        record = engine.apply(profile.id, project)
        copy = engine.backups.backups_dir / record.id / "files" / ".claude/agents/reviewer.md"
        copy.write_text("tampered\n")
        after_apply = tree(project)

        assert engine.backups.verify(record.id) == [".claude/agents/reviewer.md"]
        with pytest.raises(BackupCorruptedError):
            engine.rollback(record.id, project)
        assert tree(project) == after_apply

    def test_list_backups_oldest_first(self, workspace, engine, profile):
        """Test records list oldest first and latest filters by profile."""
        project = workspace.project()
        first = engine.apply(profile.id, project)
        second = engine.apply(profile.id, project)
        other = engine.create_profile("other")
        third = engine.apply(other.id, project)

        assert [r.id for r in engine.list_backups(first.project_id)] == [first.id, second.id, third.id]
        assert engine.backups.latest(first.project_id, profile.id).id == second.id
        assert engine.backups.latest(first.project_id).id == third.id
