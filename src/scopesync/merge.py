"""Structural merge of profile-owned entries into shared JSON files.

``.mcp.json`` and ``.claude/settings.json`` hold entries from several
owners. These functions insert, update and remove only the entries named
by the caller and leave everything else in the document untouched.
Inputs are never mutated.
"""

import copy
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from .models import HookRule
from .models import hook_rule_name

MCP_SERVERS_KEY = "mcpServers"
HOOKS_KEY = "hooks"
ENABLED_PLUGINS_KEY = "enabledPlugins"


@dataclass
class MergeResult:
    """Merged document and the entry keys that changed."""

    document: dict[str, Any]
    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated or self.removed)


# ===== Entry keys =====


def mcp_entry_key(name: str) -> str:
    return f"mcp:{name}"


def hook_entry_key(event: str, matcher: str | None) -> str:
    return f"hook:{hook_rule_name(event, matcher)}"


def plugin_entry_key(plugin_id: str) -> str:
    return f"plugin:{plugin_id}"


def split_entry_key(key: str) -> tuple[str, str]:
    """Split ``mcp:<name>`` style keys into (prefix, identifier)."""
    prefix, _, ident = key.partition(":")
    return prefix, ident


def _parse_hook_ident(ident: str) -> tuple[str, str | None]:
    event, _, matcher = ident.partition(":")
    return event, matcher or None


def _container(document: dict[str, Any], key: str) -> dict[str, Any]:
    """Top-level object under key, created when absent.

    Raises:
        ValueError: If the key holds something other than an object
    """
    value = document.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be an object")
    return value


# ===== Merges =====


def merge_mcp_servers(
    document: dict[str, Any],
    servers: dict[str, dict[str, Any]],
    remove: Iterable[str] = (),
) -> MergeResult:
    """Insert or update MCP servers and remove the named ones.

    Args:
        document: Existing ``.mcp.json`` document
        servers: Server name -> configuration to ensure present
        remove: Server names to remove when not also in ``servers``

    Returns:
        MergeResult with keys in ``mcp:<name>`` form

    Raises:
        ValueError: If ``mcpServers`` is not an object
    """
    result = MergeResult(document=copy.deepcopy(document))
    current = _container(result.document, MCP_SERVERS_KEY)

    for name, config in servers.items():
        if name not in current:
            result.inserted.append(mcp_entry_key(name))
        elif current[name] != config:
            result.updated.append(mcp_entry_key(name))
        else:
            continue
        current[name] = copy.deepcopy(config)

    for name in remove:
        if name not in servers and name in current:
            del current[name]
            result.removed.append(mcp_entry_key(name))

    if current or MCP_SERVERS_KEY in result.document and not result.removed:
        result.document[MCP_SERVERS_KEY] = current
    else:
        result.document.pop(MCP_SERVERS_KEY, None)
    return result


def merge_hooks(
    document: dict[str, Any],
    rules: Iterable[HookRule],
    remove: Iterable[tuple[str, str | None]] = (),
) -> MergeResult:
    """Insert or update hook rules keyed by (event, matcher).

    Rules are matched against existing entries of the same event with the
    same matcher; unrelated entries keep their position.

    Returns:
        MergeResult with keys in ``hook:<event>[:<matcher>]`` form

    Raises:
        ValueError: If ``hooks`` or one of its events has the wrong shape
    """
    result = MergeResult(document=copy.deepcopy(document))
    events = _container(result.document, HOOKS_KEY)
    for event, entries in events.items():
        if not isinstance(entries, list):
            raise ValueError(f"hooks for event '{event}' must be an array")

    wanted = set()
    for rule in rules:
        wanted.add((rule.event, rule.matcher))
        entries = events.setdefault(rule.event, [])
        key = hook_entry_key(rule.event, rule.matcher)
        entry = rule.to_entry()
        index = _find_hook_entry(entries, rule.matcher)
        if index is None:
            entries.append(entry)
            result.inserted.append(key)
        elif entries[index] != entry:
            entries[index] = entry
            result.updated.append(key)

    for event, matcher in remove:
        if (event, matcher) in wanted:
            continue
        entries = events.get(event)
        if entries is None:
            continue
        index = _find_hook_entry(entries, matcher)
        if index is not None:
            del entries[index]
            result.removed.append(hook_entry_key(event, matcher))
            if not entries:
                del events[event]

    if events or HOOKS_KEY in result.document and not result.removed:
        result.document[HOOKS_KEY] = events
    else:
        result.document.pop(HOOKS_KEY, None)
    return result


def _find_hook_entry(entries: list[Any], matcher: str | None) -> int | None:
    for index, entry in enumerate(entries):
        if isinstance(entry, dict) and (entry.get("matcher") or None) == matcher:
            return index
    return None


def merge_enabled_plugins(
    document: dict[str, Any],
    flags: dict[str, bool],
    remove: Iterable[str] = (),
) -> MergeResult:
    """Set ``enabledPlugins`` flags and remove the named plugin ids.

    Returns:
        MergeResult with keys in ``plugin:<id>`` form

    Raises:
        ValueError: If ``enabledPlugins`` is not an object
    """
    result = MergeResult(document=copy.deepcopy(document))
    current = _container(result.document, ENABLED_PLUGINS_KEY)

    for plugin_id, enabled in flags.items():
        if plugin_id not in current:
            result.inserted.append(plugin_entry_key(plugin_id))
        elif current[plugin_id] != enabled:
            result.updated.append(plugin_entry_key(plugin_id))
        else:
            continue
        current[plugin_id] = enabled

    for plugin_id in remove:
        if plugin_id not in flags and plugin_id in current:
            del current[plugin_id]
            result.removed.append(plugin_entry_key(plugin_id))

    if current or ENABLED_PLUGINS_KEY in result.document and not result.removed:
        result.document[ENABLED_PLUGINS_KEY] = current
    else:
        result.document.pop(ENABLED_PLUGINS_KEY, None)
    return result


def group_entry_keys(keys: Iterable[str]) -> tuple[list[str], list[tuple[str, str | None]], list[str]]:
    """Split entry keys into (server names, hook (event, matcher) pairs, plugin ids)."""
    servers: list[str] = []
    hooks: list[tuple[str, str | None]] = []
    plugins: list[str] = []
    for key in keys:
        prefix, ident = split_entry_key(key)
        if prefix == "mcp":
            servers.append(ident)
        elif prefix == "hook":
            hooks.append(_parse_hook_ident(ident))
        elif prefix == "plugin":
            plugins.append(ident)
    return servers, hooks, plugins
