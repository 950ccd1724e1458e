"""Parsers for individual configuration entities.

Skills, commands and agents are markdown files with YAML front-matter.
Settings, MCP server lists and plugin hook files are JSON. Every parser
tags its result with the scope it is given; the scanner decides the scope.
"""

import json
import re
from pathlib import Path
from typing import Any

import yaml

from .exceptions import EntityParseError
from .models import Agent
from .models import Command
from .models import EntityKind
from .models import HookRule
from .models import McpServer
from .models import Scope
from .models import Skill
from .models import ToolPermissions
from .models import hook_rule_name
from .utils import content_hash

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)

# Front-matter key that carries the tool list for each file kind
TOOL_LIST_KEYS = {
    EntityKind.SKILL: "allowed-tools",
    EntityKind.COMMAND: "allowed-tools",
    EntityKind.AGENT: "tools",
}


# ===== Front-matter =====


def split_frontmatter(text: str) -> tuple[dict[str, Any] | None, str]:
    """Split a markdown document into front-matter and body.

    Args:
        text: Full file content

    Returns:
        (front-matter mapping or None if the file has none, body)

    Raises:
        ValueError: If the front-matter is not valid YAML or not a mapping
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return None, text

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise ValueError(f"invalid front-matter: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("front-matter must be a mapping")
    return data, text[match.end() :]


def render_frontmatter(data: dict[str, Any], body: str) -> str:
    """Render a front-matter mapping and body back into a markdown document."""
    header = yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"---\n{header}---\n{body}"


def _tool_list(value: Any) -> tuple[str, ...]:
    """Accept both YAML lists and comma-separated strings."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, list):
        return tuple(str(item) for item in value)
    raise ValueError(f"expected a list of tool names, got {type(value).__name__}")


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return None if value is None else str(value)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise EntityParseError(path, f"cannot read file: {e}") from e


# ===== Skills, commands, agents =====


def parse_skill(path: Path, scope: Scope, text: str | None = None) -> Skill:
    """Parse a ``SKILL.md`` file.

    The skill name comes from the ``name`` key, falling back to the
    containing directory name. A description is required.

    Raises:
        EntityParseError: If the file has no front-matter or it is invalid
    """
    text = _read_text(path) if text is None else text
    try:
        data, body = split_frontmatter(text)
        if data is None:
            raise ValueError("missing front-matter")
        description = _optional_str(data, "description")
        if not description:
            raise ValueError("missing required field 'description'")
        return Skill(
            name=str(data.get("name") or path.parent.name),
            path=path,
            scope=scope,
            content_hash=content_hash(text),
            description=description,
            allowed_tools=_tool_list(data.get("allowed-tools")),
            user_invocable=bool(data.get("user-invocable", False)),
            model=_optional_str(data, "model"),
            metadata=data,
            body=body,
        )
    except ValueError as e:
        raise EntityParseError(path, str(e)) from e


def parse_command(path: Path, scope: Scope, text: str | None = None) -> Command:
    """Parse a slash command file. Front-matter is optional."""
    text = _read_text(path) if text is None else text
    try:
        data, body = split_frontmatter(text)
        data = data or {}
        return Command(
            name=path.stem,
            path=path,
            scope=scope,
            content_hash=content_hash(text),
            description=_optional_str(data, "description"),
            allowed_tools=_tool_list(data.get("allowed-tools")),
            model=_optional_str(data, "model"),
            thinking=bool(data.get("thinking", False)),
            metadata=data,
            body=body,
        )
    except ValueError as e:
        raise EntityParseError(path, str(e)) from e


def parse_agent(path: Path, scope: Scope, text: str | None = None) -> Agent:
    """Parse a subagent definition file.

    Raises:
        EntityParseError: If front-matter is missing or invalid, or lacks
            a description
    """
    text = _read_text(path) if text is None else text
    try:
        data, body = split_frontmatter(text)
        if data is None:
            raise ValueError("missing front-matter")
        description = _optional_str(data, "description")
        if not description:
            raise ValueError("missing required field 'description'")
        return Agent(
            name=str(data.get("name") or path.stem),
            path=path,
            scope=scope,
            content_hash=content_hash(text),
            description=description,
            tools=_tool_list(data.get("tools")),
            model=_optional_str(data, "model"),
            permission_mode=str(data.get("permissionMode") or data.get("permission-mode") or "default"),
            skills=_tool_list(data.get("skills")),
            metadata=data,
            body=body,
        )
    except ValueError as e:
        raise EntityParseError(path, str(e)) from e


def apply_permissions(text: str, kind: EntityKind, permissions: ToolPermissions | None) -> str:
    """Rewrite the tool list of a skill, command or agent document.

    ``allowed_tools`` replaces the list when given; ``disallowed_tools`` is
    then removed from it. Documents without overrides are returned as-is.

    Raises:
        ValueError: If the document's front-matter is invalid
    """
    if permissions is None or not (permissions.allowed_tools or permissions.disallowed_tools):
        return text

    data, body = split_frontmatter(text)
    data = dict(data or {})
    key = TOOL_LIST_KEYS[kind]

    tools = list(permissions.allowed_tools) if permissions.allowed_tools else list(_tool_list(data.get(key)))
    tools = [tool for tool in tools if tool not in permissions.disallowed_tools]
    data[key] = tools
    return render_frontmatter(data, body)


# ===== JSON documents =====


def read_json(path: Path) -> tuple[dict[str, Any], str]:
    """Read a JSON object file.

    Returns:
        (document, raw text)

    Raises:
        EntityParseError: If the file is unreadable, invalid JSON, or not an object
    """
    text = _read_text(path)
    if not text.strip():
        return {}, text
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise EntityParseError(path, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise EntityParseError(path, "top-level JSON value must be an object")
    return data, text


def dump_json(data: dict[str, Any]) -> str:
    """Serialize a JSON document the way the host tool writes it."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def _canonical_hash(value: Any) -> str:
    return content_hash(json.dumps(value, sort_keys=True, ensure_ascii=False))


def parse_hooks(events: Any, path: Path, scope: Scope) -> tuple[HookRule, ...]:
    """Parse a ``hooks`` mapping of event name to matcher entries.

    Each entry becomes one HookRule named ``<event>`` or ``<event>:<matcher>``.

    Raises:
        EntityParseError: If the mapping has the wrong shape
    """
    if events is None:
        return ()
    if not isinstance(events, dict):
        raise EntityParseError(path, "'hooks' must be an object")

    rules = []
    for event, entries in events.items():
        if not isinstance(entries, list):
            raise EntityParseError(path, f"hooks for event '{event}' must be an array")
        for entry in entries:
            if not isinstance(entry, dict):
                raise EntityParseError(path, f"hook entry for event '{event}' must be an object")
            matcher = entry.get("matcher") or None
            hooks = entry.get("hooks") or []
            if not isinstance(hooks, list):
                raise EntityParseError(path, f"'hooks' list for event '{event}' must be an array")
            rules.append(
                HookRule(
                    name=hook_rule_name(event, matcher),
                    path=path,
                    scope=scope,
                    content_hash=_canonical_hash(entry),
                    event=event,
                    matcher=matcher,
                    hooks=tuple(dict(h) for h in hooks if isinstance(h, dict)),
                )
            )
    return tuple(rules)


def parse_mcp_servers(servers: Any, path: Path, scope: Scope) -> tuple[McpServer, ...]:
    """Parse an ``mcpServers`` mapping of server name to configuration.

    Raises:
        EntityParseError: If the mapping has the wrong shape
    """
    if servers is None:
        return ()
    if not isinstance(servers, dict):
        raise EntityParseError(path, "'mcpServers' must be an object")

    parsed = []
    for name, config in servers.items():
        if not isinstance(config, dict):
            raise EntityParseError(path, f"MCP server '{name}' must be an object")
        transport = config.get("type")
        parsed.append(
            McpServer(
                name=name,
                path=path,
                scope=scope,
                content_hash=_canonical_hash(config),
                description=_optional_str(config, "description"),
                transport=transport if transport in ("http", "sse") else "stdio",
                command=_optional_str(config, "command"),
                args=tuple(str(arg) for arg in config.get("args") or ()),
                env={str(k): str(v) for k, v in (config.get("env") or {}).items()},
                url=_optional_str(config, "url"),
                config=dict(config),
            )
        )
    return tuple(sorted(parsed, key=lambda server: server.name))


def parse_mcp_config(path: Path, scope: Scope) -> tuple[McpServer, ...]:
    """Parse an MCP configuration file.

    Accepts both the ``{"mcpServers": {...}}`` wrapper and the flat
    ``{"<name>": {...}}`` form used by plugins.
    """
    data, _ = read_json(path)
    if "mcpServers" in data:
        return parse_mcp_servers(data["mcpServers"], path, scope)
    return parse_mcp_servers(data, path, scope)


def parse_settings(path: Path, scope: Scope) -> tuple[dict[str, Any], tuple[HookRule, ...]]:
    """Parse a settings file into its raw document and hook rules."""
    data, _ = read_json(path)
    return data, parse_hooks(data.get("hooks"), path, scope)


def parse_hooks_file(path: Path, scope: Scope) -> tuple[HookRule, ...]:
    """Parse a plugin ``hooks/hooks.json``; the event map may be wrapped in ``hooks``."""
    data, _ = read_json(path)
    events = data["hooks"] if "hooks" in data else {k: v for k, v in data.items() if k != "description"}
    return parse_hooks(events, path, scope)
