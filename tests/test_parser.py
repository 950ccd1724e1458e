"""Tests for entity parsers."""

from pathlib import Path

import pytest
from scopesync import EntityKind
from scopesync import EntityParseError
from scopesync import Scope
from scopesync import ToolPermissions
from scopesync.parser import apply_permissions
from scopesync.parser import parse_agent
from scopesync.parser import parse_command
from scopesync.parser import parse_hooks
from scopesync.parser import parse_hooks_file
from scopesync.parser import parse_mcp_config
from scopesync.parser import parse_settings
from scopesync.parser import parse_skill
from scopesync.parser import split_frontmatter
from scopesync.utils import content_hash

SKILL = """---
name: test-skill
description: A test skill
user-invocable: true
allowed-tools:
  - Read
  - Grep
---

# Test Skill Instructions
"""

AGENT = """---
name: reviewer
description: Reviews code
tools: Read, Grep, Glob
model: sonnet
---

You review code.
"""


class TestFrontmatter:
    """Test front-matter splitting."""

    def test_no_frontmatter(self):
        """Test documents without front-matter return the whole body."""
        assert split_frontmatter("# Title\n") == (None, "# Title\n")

    def test_empty_frontmatter(self):
        """Test an empty front-matter block yields an empty mapping."""
        data, body = split_frontmatter("---\n---\nBody\n")
        assert data == {}
        assert body == "Body\n"

    def test_invalid_yaml_raises(self):
        """Test malformed YAML raises ValueError."""
        with pytest.raises(ValueError):
            split_frontmatter("---\nname: [unclosed\n---\n")

    def test_non_mapping_raises(self):
        """Test a YAML list is rejected."""
        with pytest.raises(ValueError):
            split_frontmatter("---\n- a\n- b\n---\n")


class TestFileParsers:
    """Test skill, command and agent parsers."""

    def test_parse_skill(self):
        """Test a SKILL.md with list tools."""
        path = Path("/x/skills/test-skill/SKILL.md")
        skill = parse_skill(path, Scope.user(), SKILL)
        assert skill.name == "test-skill"
        assert skill.description == "A test skill"
        assert skill.user_invocable
        assert skill.allowed_tools == ("Read", "Grep")
        assert skill.scope == Scope.user()
        assert skill.content_hash == content_hash(SKILL)
        assert skill.body.strip() == "# Test Skill Instructions"

    def test_skill_name_defaults_to_directory(self):
        """Test skills without a name key use their directory name."""
        skill = parse_skill(Path("/x/skills/lint/SKILL.md"), Scope.project(), "---\ndescription: Lints\n---\n")
        assert skill.name == "lint"

    def test_skill_without_frontmatter_fails(self):
        """Test a skill with no front-matter is a parse error."""
        with pytest.raises(EntityParseError):
            parse_skill(Path("/x/skills/a/SKILL.md"), Scope.user(), "# just text\n")

    def test_skill_without_description_fails(self):
        """Test description is required for skills."""
        with pytest.raises(EntityParseError, match="description"):
            parse_skill(Path("/x/skills/a/SKILL.md"), Scope.user(), "---\nname: a\n---\n")

    def test_parse_command_uses_file_stem(self):
        """Test command names come from the filename."""
        text = "---\ndescription: A test command\nthinking: true\n---\n\nDo something with $ARGUMENTS\n"
        command = parse_command(Path("/x/commands/test-cmd.md"), Scope.project(), text)
        assert command.name == "test-cmd"
        assert command.description == "A test command"
        assert command.thinking

    def test_command_frontmatter_optional(self):
        """Test plain markdown commands parse."""
        command = parse_command(Path("/x/commands/plain.md"), Scope.user(), "Just do it.\n")
        assert command.name == "plain"
        assert command.description is None
        assert command.body == "Just do it.\n"

    def test_parse_agent_comma_tools(self):
        """Test agent tools given as a comma-separated string."""
        agent = parse_agent(Path("/x/agents/reviewer.md"), Scope.user(), AGENT)
        assert agent.name == "reviewer"
        assert agent.tools == ("Read", "Grep", "Glob")
        assert agent.model == "sonnet"
        assert agent.permission_mode == "default"

    def test_agent_invalid_frontmatter(self):
        """Test agents with broken YAML raise EntityParseError with the path."""
        path = Path("/x/agents/broken.md")
        with pytest.raises(EntityParseError) as excinfo:
            parse_agent(path, Scope.project(), "---\nname: broken\ndescription: [oops\n---\n")
        assert excinfo.value.path == path

    def test_reads_from_disk(self, workspace):
        """Test parsers read the file when no text is given."""
        path = workspace.agent(workspace.user_dir, "helper")
        agent = parse_agent(path, Scope.user())
        assert agent.name == "helper"
        assert agent.path == path


class TestPermissions:
    """Test tool list rewriting."""

    def test_no_overrides_returns_text_unchanged(self):
        """Test documents are untouched without permission overrides."""
        assert apply_permissions(AGENT, EntityKind.AGENT, None) is AGENT
        assert apply_permissions(AGENT, EntityKind.AGENT, ToolPermissions()) is AGENT

    def test_allowed_tools_replace_agent_tools(self):
        """Test allowed_tools replaces the agent's tools list."""
        text = apply_permissions(AGENT, EntityKind.AGENT, ToolPermissions(allowed_tools=("Read",)))
        agent = parse_agent(Path("/x/agents/reviewer.md"), Scope.project(), text)
        assert agent.tools == ("Read",)
        assert agent.body == "\nYou review code.\n"

    def test_disallowed_tools_filter_skill_tools(self):
        """Test disallowed_tools are removed from allowed-tools."""
        text = apply_permissions(SKILL, EntityKind.SKILL, ToolPermissions(disallowed_tools=("Grep",)))
        skill = parse_skill(Path("/x/skills/test-skill/SKILL.md"), Scope.project(), text)
        assert skill.allowed_tools == ("Read",)


class TestJsonParsers:
    """Test settings, hooks and MCP parsers."""

    def test_parse_settings_hooks(self, workspace):
        """Test hook rules are extracted from settings."""
        path = workspace.write_json(
            workspace.root / "settings.json",
            {
                "model": "opus",
                "hooks": {
                    "PreToolUse": [
                        {"matcher": "Bash", "hooks": [{"type": "command", "command": "check.sh"}]},
                        {"hooks": [{"type": "command", "command": "log.sh"}]},
                    ]
                },
            },
        )
        settings, hooks = parse_settings(path, Scope.project())
        assert settings["model"] == "opus"
        assert [h.name for h in hooks] == ["PreToolUse:Bash", "PreToolUse"]
        assert hooks[0].matcher == "Bash"
        assert hooks[1].matcher is None
        assert hooks[0].to_entry() == {"matcher": "Bash", "hooks": [{"type": "command", "command": "check.sh"}]}

    def test_invalid_json_raises(self, workspace):
        """Test malformed JSON raises EntityParseError."""
        path = workspace.write(workspace.root / "settings.json", "{not json")
        with pytest.raises(EntityParseError):
            parse_settings(path, Scope.project())

    def test_bad_hook_shape_raises(self):
        """Test hook events must map to arrays."""
        with pytest.raises(EntityParseError):
            parse_hooks({"Stop": {"hooks": []}}, Path("settings.json"), Scope.user())

    def test_mcp_wrapped_format(self, workspace):
        """Test the mcpServers wrapper format."""
        path = workspace.write_json(
            workspace.root / ".mcp.json",
            {
                "mcpServers": {
                    "test-server": {"type": "stdio", "command": "/usr/bin/test", "args": ["--flag"], "env": {"KEY": "v"}},
                    "remote": {"type": "http", "url": "https://example.com/mcp"},
                }
            },
        )
        servers = parse_mcp_config(path, Scope.project())
        assert [s.name for s in servers] == ["remote", "test-server"]
        assert servers[0].transport == "http"
        assert servers[0].url == "https://example.com/mcp"
        assert servers[1].transport == "stdio"
        assert servers[1].args == ("--flag",)
        assert servers[1].env == {"KEY": "v"}

    def test_mcp_flat_plugin_format(self, workspace):
        """Test the flat name -> config format used by plugins."""
        path = workspace.write_json(workspace.root / ".mcp.json", {"db": {"command": "db-mcp"}})
        servers = parse_mcp_config(path, Scope.plugin("tools@market"))
        assert len(servers) == 1
        assert servers[0].name == "db"
        assert servers[0].scope == Scope.plugin("tools@market")

    def test_plugin_hooks_file(self, workspace):
        """Test plugin hooks.json with a description and wrapped events."""
        path = workspace.write_json(
            workspace.root / "hooks" / "hooks.json",
            {"description": "Formatting", "hooks": {"PostToolUse": [{"matcher": "Edit", "hooks": []}]}},
        )
        hooks = parse_hooks_file(path, Scope.plugin("fmt@market"))
        assert [h.name for h in hooks] == ["PostToolUse:Edit"]
