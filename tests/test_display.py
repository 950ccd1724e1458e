"""Tests for diff and inventory rendering."""

from pathlib import Path

from scopesync import Scanner
from scopesync.display import DiffSummary
from scopesync.display import format_diff
from scopesync.display import format_diff_markdown
from scopesync.display import format_inventory_markdown
from scopesync.display import inventory_to_dict
from scopesync.models import CreateOp
from scopesync.models import DeleteOp
from scopesync.models import Diff
from scopesync.models import DiffWarning
from scopesync.models import ModifyOp
from scopesync.models import WarningKind


def sample_diff() -> Diff:
    return Diff(
        project_path=Path("/work/app"),
        profile_id="p1",
        operations=(
            CreateOp(path=".claude/agents/reviewer.md", content=b"hello\n"),
            ModifyOp(path=".mcp.json", unified_diff="--- a/.mcp.json\n+++ b/.mcp.json\n-old\n+new\n", new_content=b"new\n"),
            DeleteOp(path=".claude/commands/old.md"),
        ),
        warnings=(DiffWarning(WarningKind.UNRESOLVED_TOOL, "Tool not found: skill:ghost"),),
    )


class TestDiffRendering:
    """Test diff summaries and reports."""

    def test_summary(self):
        """Test counts and byte totals."""
        summary = DiffSummary.from_diff(sample_diff())
        assert (summary.creates, summary.modifies, summary.deletes, summary.total_bytes) == (1, 1, 1, 10)
        assert summary.one_line() == "1 create(s), 1 modify(s), 1 delete(s) - 10 bytes total"

    def test_format_diff(self):
        """Test the terminal rendering lists warnings and each operation."""
        text = format_diff(sample_diff())

        assert text.startswith("=== Diff Plan ===\nOperations: 3")
        assert "[unresolved_tool] Tool not found: skill:ghost" in text
        assert "CREATE: .claude/agents/reviewer.md" in text
        assert "  +new" in text
        assert "DELETE: .claude/commands/old.md" in text

    def test_format_diff_markdown(self):
        """Test the Markdown rendering fences unified diffs."""
        text = format_diff_markdown(sample_diff())

        assert "### Create `.claude/agents/reviewer.md`" in text
        assert "```diff\n--- a/.mcp.json" in text
        assert "### Delete `.claude/commands/old.md`" in text


class TestInventoryRendering:
    """Test inventory reports."""

    def test_inventory_dict_and_markdown(self, workspace):
        """Test collisions and per-scope counts appear in both renderings."""
        project = workspace.project()
        workspace.skill(workspace.user_dir, "lint")
        workspace.skill(project / ".claude", "lint")
        inventory = Scanner(workspace.scan_paths).scan(project)

        data = inventory_to_dict(inventory)
        text = format_inventory_markdown(inventory)

        assert data["project_path"] == str(project)
        assert [s["scope"] for s in data["scopes"]] == ["managed", "local", "project", "user"]
        assert data["collisions"][0]["winner_scope"] == "project"
        assert text.startswith("# Inventory Report")
        assert "## Project Scope" in text
        assert "- **lint** (winner: project)" in text
        assert "_No collisions detected_" not in text
