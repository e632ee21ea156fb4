"""Role inheritance: folding parent role permissions into a role.

Provides:
- ``merge_additive()`` / ``merge_restrictive()`` / ``merge_override()`` —
  per-resource combination of two resource maps.
- ``merge_role_inheritance()`` — pure, priority-ordered fold of parents into a base map.
- ``RoleInheritanceResolver`` — loads parent roles from the store, then folds.

Resources are keyed by ``(app, module)`` (or ``(key,)`` for a top-level
entry). Plain operation lists are treated as resource entries with a level
inferred from their operations and scope ``all``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

from ..exceptions import PermissionDataError
from .constants import METADATA_KEY, InheritanceMode, level_rank, scope_rank
from .normalizer import (
    ResourceKey,
    decode_permissions,
    from_resources,
    resource_map,
    strip_metadata,
    to_hierarchical,
)

if TYPE_CHECKING:
    from ..models import Role
    from ..store.protocol import PermissionStore

logger = logging.getLogger(__name__)

ResourceMap = dict[ResourceKey, dict[str, Any]]
MergeFn = Callable[[ResourceMap, ResourceMap], ResourceMap]


# ── Per-resource merges ─────────────────────────────────


def _union(first: Sequence[str], second: Sequence[str]) -> list[str]:
    return list(dict.fromkeys([*first, *second]))


def merge_additive(running: ResourceMap, parent: ResourceMap) -> ResourceMap:
    """Union of resources: widest operations, highest level, broadest scope.

    Conditions start from the parent's; the running map's win on conflict.
    """
    merged: ResourceMap = dict(parent)
    for key, entry in running.items():
        other = parent.get(key)
        if other is None:
            merged[key] = entry
            continue
        merged[key] = {
            "level": max(entry["level"], other["level"], key=level_rank),
            "operations": _union(entry["operations"], other["operations"]),
            "scope": max(entry["scope"], other["scope"], key=scope_rank),
            "conditions": {**other["conditions"], **entry["conditions"]},
        }
    return merged


def merge_restrictive(running: ResourceMap, parent: ResourceMap) -> ResourceMap:
    """Intersection of resources: common operations, lowest level, narrowest scope.

    Conditions start from the running map's; the parent's win on conflict.
    """
    merged: ResourceMap = {}
    for key, entry in running.items():
        other = parent.get(key)
        if other is None:
            continue
        allowed = set(other["operations"])
        merged[key] = {
            "level": min(entry["level"], other["level"], key=level_rank),
            "operations": [op for op in entry["operations"] if op in allowed],
            "scope": min(entry["scope"], other["scope"], key=scope_rank),
            "conditions": {**entry["conditions"], **other["conditions"]},
        }
    return merged


def merge_override(running: ResourceMap, parent: ResourceMap) -> ResourceMap:
    """Running map wins per resource; the parent only fills gaps."""
    return {**parent, **running}


_MERGERS: dict[InheritanceMode, MergeFn] = {
    InheritanceMode.ADDITIVE: merge_additive,
    InheritanceMode.RESTRICTIVE: merge_restrictive,
    InheritanceMode.OVERRIDE: merge_override,
}


def resolve_mode(mode: InheritanceMode | str | None) -> InheritanceMode:
    """Coerce a mode name. Unknown or missing modes fall back to additive."""
    if mode is None:
        return InheritanceMode.ADDITIVE
    try:
        return InheritanceMode(mode)
    except ValueError:
        logger.warning("Unknown inheritance mode %r, falling back to additive", mode)
        return InheritanceMode.ADDITIVE


# ── Fold ────────────────────────────────────────────────


def _parent_record(parent: Any) -> tuple[int, str, Any]:
    """Return ``(priority, role_id, raw permissions)`` for a parent."""
    if isinstance(parent, Mapping):
        if "permissions" in parent and ("role_id" in parent or "priority" in parent):
            return int(parent.get("priority") or 0), str(parent.get("role_id", "")), parent["permissions"]
        return 0, "", parent
    if hasattr(parent, "permissions"):
        return int(getattr(parent, "priority", 0) or 0), str(getattr(parent, "role_id", "")), parent.permissions
    return 0, "", parent


def merge_role_inheritance(
    base: Any,
    parents: Iterable[Any],
    mode: InheritanceMode | str | None = InheritanceMode.ADDITIVE,
) -> dict[str, Any]:
    """Fold parent permissions into a base permission map.

    Args:
        base: The role's own permissions (map, flat list, or JSON string).
        parents: Parent roles, ``{"role_id", "priority", "permissions"}``
            mappings, or bare permission maps (priority 0).
        mode: ``additive``, ``restrictive`` or ``override``.

    Returns:
        The merged hierarchical map. The base's ``metadata`` is kept;
        parents' metadata never is.

    Raises:
        PermissionDataError: If ``base`` itself cannot be decoded.

    Example::

        base = {"crm": {"leads": {"level": "read", "operations": ["read"], "scope": "own"}}}
        parent = {"crm": {"leads": {"level": "write", "operations": ["create"], "scope": "team"}}}
        merge_role_inheritance(base, [parent], "additive")["crm"]["leads"]
        # {"level": "write", "operations": ["read", "create"], "scope": "team", "conditions": {}}
    """
    merge = _MERGERS[resolve_mode(mode)]
    base_map = to_hierarchical(decode_permissions(base))

    # Priority descending; ties keep role-id order
    records = sorted((_parent_record(p) for p in parents), key=lambda r: (-r[0], r[1]))
    if not records:
        return base_map

    running = resource_map(base_map)
    applied = 0
    for _, role_id, raw in records:
        try:
            parent_map = strip_metadata(to_hierarchical(decode_permissions(raw)))
        except PermissionDataError as e:
            logger.warning("Skipping parent role %s with unreadable permissions: %s", role_id or "<map>", e)
            continue
        running = merge(running, resource_map(parent_map))
        applied += 1

    if not applied:
        return base_map

    result = from_resources(running)
    if isinstance(base_map.get(METADATA_KEY), dict):
        result[METADATA_KEY] = base_map[METADATA_KEY]
    return result


# ── Store-backed resolver ───────────────────────────────


class RoleInheritanceResolver:
    """Load parent roles and fold them into a role's permissions."""

    def __init__(
        self,
        store: PermissionStore,
        default_mode: InheritanceMode | str = InheritanceMode.ADDITIVE,
    ) -> None:
        self._store = store
        self._default_mode = resolve_mode(default_mode)

    async def resolve(
        self,
        base: Any,
        parent_role_ids: Sequence[str],
        mode: InheritanceMode | str | None,
        tenant_id: str,
    ) -> dict[str, Any]:
        """Merge ``base`` with the named parent roles of ``tenant_id``.

        Missing parents are logged and skipped. With no parents found the
        base is returned unchanged.
        """
        if not parent_role_ids:
            return to_hierarchical(decode_permissions(base))

        loaded = await asyncio.gather(*(self._store.get_role(tenant_id, rid) for rid in parent_role_ids))
        parents = [role for role in loaded if role is not None]
        missing = [rid for rid, role in zip(parent_role_ids, loaded) if role is None]
        if missing:
            logger.warning("Parent roles not found in tenant %s: %s", tenant_id, ", ".join(missing))

        return merge_role_inheritance(base, parents, mode if mode is not None else self._default_mode)

    async def resolve_role(self, role: Role) -> dict[str, Any]:
        """Effective map of one role, applying ``metadata.inheritance`` if present."""
        spec = role.inheritance
        if spec is None:
            return to_hierarchical(decode_permissions(role.permissions))
        return await self.resolve(role.permissions, spec.parent_roles, spec.inheritance_mode, role.tenant_id)


__all__ = [
    "ResourceMap",
    "RoleInheritanceResolver",
    "merge_additive",
    "merge_override",
    "merge_restrictive",
    "merge_role_inheritance",
    "resolve_mode",
]
