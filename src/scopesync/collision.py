"""Precedence resolution across scopes.

Groups same-kind entities by logical name, picks the highest-precedence
occurrence as the effective one, and reports every group with more than
one member. Only skills, commands and agents are reported as collisions;
hook rules and MCP servers still take part in the effective view.
"""

from collections import defaultdict
from collections.abc import Iterable

from .models import FILE_KINDS
from .models import Collision
from .models import CollisionOccurrence
from .models import CollisionReport
from .models import EffectiveView
from .models import Entity
from .models import EntityKind
from .models import Inventory
from .models import ScopeInventory
from .models import ScopeKind
from .utils import deep_merge


def _group_by_name(entities: Iterable[Entity]) -> dict[str, list[Entity]]:
    groups: dict[str, list[Entity]] = defaultdict(list)
    for entity in entities:
        groups[entity.name].append(entity)
    for members in groups.values():
        # Stable: same-scope duplicates keep traversal order
        members.sort(key=lambda e: e.scope.sort_key())
    return groups


def merge_settings(scopes: Iterable[ScopeInventory]) -> dict:
    """Deep-merge settings documents of non-plugin scopes, highest precedence last wins."""
    ordered = sorted(
        (s for s in scopes if s.scope.kind is not ScopeKind.PLUGIN),
        key=lambda s: s.scope.sort_key(),
        reverse=True,
    )
    merged: dict = {}
    for scope_inventory in ordered:
        merged = deep_merge(merged, scope_inventory.settings)
    return merged


def resolve_scopes(scopes: Iterable[ScopeInventory]) -> tuple[EffectiveView, CollisionReport]:
    """Resolve a set of scope inventories.

    Returns:
        (effective view, collision report)
    """
    scopes = list(scopes)
    effective: dict[EntityKind, dict[str, Entity]] = {}
    collisions: dict[EntityKind, list[Collision]] = {kind: [] for kind in FILE_KINDS}

    for kind in EntityKind:
        groups = _group_by_name(e for s in scopes for e in s.entities(kind))
        effective[kind] = {name: members[0] for name, members in sorted(groups.items())}

        if kind not in FILE_KINDS:
            continue
        for name, members in sorted(groups.items()):
            if len(members) < 2:
                continue
            collisions[kind].append(
                Collision(
                    kind=kind,
                    name=name,
                    winner_scope=members[0].scope,
                    occurrences=tuple(CollisionOccurrence(scope=m.scope, path=m.path) for m in members),
                )
            )

    report = CollisionReport(
        skills=tuple(collisions[EntityKind.SKILL]),
        commands=tuple(collisions[EntityKind.COMMAND]),
        agents=tuple(collisions[EntityKind.AGENT]),
    )
    return EffectiveView(entities=effective, settings=merge_settings(scopes)), report


def resolve(inventory: Inventory) -> tuple[EffectiveView, CollisionReport]:
    """Resolve an inventory into its effective view and collision report."""
    return resolve_scopes(inventory.scopes)
