"""Plain-text and Markdown renderings of diffs and inventories."""

from dataclasses import dataclass
from typing import Any

from .models import Collision
from .models import CreateOp
from .models import DeleteOp
from .models import Diff
from .models import Entity
from .models import EntityKind
from .models import Inventory
from .models import ModifyOp

SCOPE_LABELS = {
    "managed": "Managed",
    "local": "Local",
    "project": "Project",
    "user": "User",
}

INVENTORY_KEYS = {
    EntityKind.SKILL: "skills",
    EntityKind.COMMAND: "commands",
    EntityKind.AGENT: "agents",
    EntityKind.HOOK: "hooks",
    EntityKind.MCP: "mcp_servers",
}


@dataclass(frozen=True)
class DiffSummary:
    """Operation counts and bytes written for a diff."""

    creates: int = 0
    modifies: int = 0
    deletes: int = 0
    total_bytes: int = 0

    @classmethod
    def from_diff(cls, diff: Diff) -> "DiffSummary":
        creates = modifies = deletes = total = 0
        for op in diff.operations:
            if isinstance(op, CreateOp):
                creates += 1
                total += len(op.content)
            elif isinstance(op, ModifyOp):
                modifies += 1
                total += len(op.new_content)
            elif isinstance(op, DeleteOp):
                deletes += 1
        return cls(creates=creates, modifies=modifies, deletes=deletes, total_bytes=total)

    def one_line(self) -> str:
        return (
            f"{self.creates} create(s), {self.modifies} modify(s), "
            f"{self.deletes} delete(s) - {self.total_bytes} bytes total"
        )


def format_diff(diff: Diff) -> str:
    """Render a diff for terminal review: warnings first, then operations."""
    lines = ["=== Diff Plan ===", f"Operations: {len(diff.operations)}", ""]

    if diff.warnings:
        lines.append("Warnings:")
        for warning in diff.warnings:
            lines.append(f"  [{warning.kind.value}] {warning.message}")
        lines.append("")

    for op in diff.operations:
        if isinstance(op, CreateOp):
            lines.append(f"CREATE: {op.path}")
            lines.append(f"  Size: {len(op.content)} bytes")
        elif isinstance(op, ModifyOp):
            lines.append(f"MODIFY: {op.path}")
            lines.extend(f"  {line}" for line in op.unified_diff.splitlines())
        else:
            lines.append(f"DELETE: {op.path}")
        lines.append("")

    return "\n".join(lines)


def format_diff_markdown(diff: Diff) -> str:
    """Render a diff as Markdown."""
    lines = ["# Diff Plan", "", f"**Operations:** {len(diff.operations)}", ""]

    if diff.warnings:
        lines += ["## Warnings", ""]
        lines.extend(f"- **{w.kind.value}**: {w.message}" for w in diff.warnings)
        lines.append("")

    lines += ["## Changes", ""]
    for op in diff.operations:
        if isinstance(op, CreateOp):
            lines += [f"### Create `{op.path}`", "", f"New file ({len(op.content)} bytes)"]
        elif isinstance(op, ModifyOp):
            lines += [f"### Modify `{op.path}`", "", "```diff", op.unified_diff.rstrip("\n"), "```"]
        else:
            lines.append(f"### Delete `{op.path}`")
        lines.append("")

    return "\n".join(lines)


# ===== Inventory =====


def _entity_to_dict(entity: Entity) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": entity.name,
        "kind": entity.kind.value,
        "scope": str(entity.scope),
        "path": str(entity.path),
        "sha256": entity.content_hash,
    }
    if entity.description is not None:
        data["description"] = entity.description
    return data


def _collision_to_dict(collision: Collision) -> dict[str, Any]:
    return {
        "name": collision.name,
        "kind": collision.kind.value,
        "winner_scope": str(collision.winner_scope),
        "occurrences": [{"scope": str(o.scope), "path": str(o.path)} for o in collision.occurrences],
    }


def inventory_to_dict(inventory: Inventory) -> dict[str, Any]:
    """JSON-ready representation of an inventory."""
    return {
        "scanned_at": inventory.scanned_at.isoformat(),
        "host": {
            "os": inventory.host.os,
            "username": inventory.host.username,
            "home_dir": str(inventory.host.home_dir),
        },
        "project_path": str(inventory.project_path) if inventory.project_path else None,
        "scopes": [
            {
                "scope": str(scope.scope),
                "root": str(scope.root) if scope.root else None,
                **{INVENTORY_KEYS[kind]: [_entity_to_dict(e) for e in scope.entities(kind)] for kind in EntityKind},
            }
            for scope in inventory.scopes
        ],
        "plugins": [
            {
                "id": plugin.id,
                "version": plugin.version,
                "scope": str(plugin.scope),
                "path": str(plugin.path),
                "enabled": plugin.enabled,
            }
            for plugin in inventory.plugins
        ],
        "collisions": [
            _collision_to_dict(c)
            for c in inventory.collisions.skills + inventory.collisions.commands + inventory.collisions.agents
        ],
        "warnings": [{"path": str(w.path), "message": w.message} for w in inventory.warnings],
    }


def format_inventory_markdown(inventory: Inventory) -> str:
    """Markdown report of an inventory."""
    lines = [
        "# Inventory Report",
        "",
        f"**Scanned at:** {inventory.scanned_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        "",
        "## Host",
        "",
        f"- **OS:** {inventory.host.os}",
        f"- **User:** {inventory.host.username}",
        f"- **Home:** {inventory.host.home_dir}",
        "",
    ]
    if inventory.project_path is not None:
        lines += [f"**Project:** {inventory.project_path}", ""]

    for scope in inventory.scopes:
        label = SCOPE_LABELS.get(str(scope.scope), f"Plugin {scope.scope.plugin_id}")
        lines += [
            f"## {label} Scope",
            "",
            f"- **Skills:** {len(scope.skills)}",
            f"- **Commands:** {len(scope.commands)}",
            f"- **Agents:** {len(scope.agents)}",
            f"- **Hooks:** {len(scope.hooks)}",
            f"- **MCP servers:** {len(scope.mcp_servers)}",
            "",
        ]

    lines += ["## Collisions", ""]
    report = inventory.collisions
    if not report.has_collisions():
        lines += ["_No collisions detected_", ""]
    else:
        lines += [f"**Total:** {report.total_count()} collisions detected", ""]
        for title, collisions in (("Skill", report.skills), ("Command", report.commands), ("Agent", report.agents)):
            if not collisions:
                continue
            lines += [f"### {title} Collisions", ""]
            lines.extend(f"- **{c.name}** (winner: {c.winner_scope})" for c in collisions)
            lines.append("")

    if inventory.warnings:
        lines += ["## Warnings", ""]
        lines.extend(f"- `{w.path}`: {w.message}" for w in inventory.warnings)
        lines.append("")

    return "\n".join(lines)
