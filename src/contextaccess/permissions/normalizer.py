"""Conversion between permission representations.

Stored role and override permissions come in two shapes:

- a flat list of ``app.module.operation`` codes, and
- a hierarchical map ``app → module → operations | resource entry``.

Shape detection happens once, in :func:`decode_permissions`, which returns
a :class:`FlatList` or a :class:`HierarchicalMap`. Everything downstream
works on the decoded value.

A known corruption is recovered here as well: a list coerced into a map with
numeric-string keys (``{"0": [...], "1": [...]}``) decodes back to a flat list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from ..exceptions import PermissionDataError
from .codes import PermissionCode
from .constants import METADATA_KEY, PermissionScope, infer_level

logger = logging.getLogger(__name__)

ResourceKey = tuple[str, ...]

_LIST_TYPES = (list, tuple, set, frozenset)


@dataclass(frozen=True)
class FlatList:
    """Flat list of permission code strings."""

    codes: tuple[str, ...] = ()


@dataclass(frozen=True)
class HierarchicalMap:
    """Nested ``app → module → operations | resource entry`` mapping."""

    data: dict[str, Any] = field(default_factory=dict)


PermissionData = Union[FlatList, HierarchicalMap]


# ── Decoding ────────────────────────────────────────────


def _is_list_coerced_map(value: dict[str, Any]) -> bool:
    """True for ``{"0": [...], "1": [...]}``: a list that went through map coercion."""
    return bool(value) and all(
        isinstance(k, str) and k.isdigit() and isinstance(v, _LIST_TYPES) for k, v in value.items()
    )


def _uncoerce(value: dict[str, Any]) -> list[Any]:
    items: list[Any] = []
    for key in sorted(value, key=int):
        items.extend(value[key])
    return items


def decode_permissions(raw: Any) -> PermissionData:
    """Decode a stored permission blob into its tagged representation.

    Accepts a list, a mapping, a JSON string of either, or None.

    Raises:
        PermissionDataError: If the blob is not valid JSON or not a list/map.
    """
    if raw is None or raw == "":
        return HierarchicalMap({})
    if isinstance(raw, (FlatList, HierarchicalMap)):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise PermissionDataError(f"Permission data is not valid JSON: {e}") from e
        if raw is None:
            return HierarchicalMap({})
    if isinstance(raw, _LIST_TYPES):
        return FlatList(tuple(raw))
    if isinstance(raw, dict):
        if _is_list_coerced_map(raw):
            logger.warning("Recovered list-coerced permission map with %d numeric keys", len(raw))
            return FlatList(tuple(_uncoerce(raw)))
        return HierarchicalMap(dict(raw))
    raise PermissionDataError(f"Unsupported permission data type: {type(raw).__name__}")


# ── Flat ↔ hierarchical ─────────────────────────────────


def _group_codes(codes: Any) -> dict[str, dict[str, list[str]]]:
    hierarchical: dict[str, dict[str, list[str]]] = {}
    for code in codes:
        pc = PermissionCode.parse(code)
        if pc is None:
            continue  # fewer than 3 segments
        ops = hierarchical.setdefault(pc.app, {}).setdefault(pc.module, [])
        if pc.operation not in ops:
            ops.append(pc.operation)
    return hierarchical


def to_hierarchical(permissions: Any) -> dict[str, Any]:
    """Return the hierarchical map form of any permission representation.

    - Flat list → grouped by ``app.module``, operations deduplicated.
    - Map → returned as-is.
    - List-coerced map (numeric keys, list values) → flattened, then grouped.
    - Anything else → empty map.

    Example::

        to_hierarchical(["crm.leads.read", "crm.leads.create", "hr.leave.read"])
        # {"crm": {"leads": ["read", "create"]}, "hr": {"leave": ["read"]}}
    """
    if isinstance(permissions, HierarchicalMap):
        return permissions.data
    if isinstance(permissions, FlatList):
        return _group_codes(permissions.codes)
    if isinstance(permissions, _LIST_TYPES):
        return _group_codes(permissions)
    if isinstance(permissions, dict):
        if _is_list_coerced_map(permissions):
            return _group_codes(_uncoerce(permissions))
        return permissions
    return {}


def is_resource_entry(value: Any) -> bool:
    """True for ``{level, operations, scope, conditions}`` style entries."""
    return isinstance(value, dict) and (
        "level" in value or isinstance(value.get("operations"), _LIST_TYPES)
    )


def _walk(node: dict[str, Any], prefix: tuple[str, ...], out: list[str]) -> None:
    for key, value in node.items():
        if not prefix and key == METADATA_KEY:
            continue
        path = prefix + (str(key),)
        if isinstance(value, _LIST_TYPES):
            out.extend(".".join(path + (str(op),)) for op in value)
        elif is_resource_entry(value):
            ops = value.get("operations")
            if isinstance(ops, _LIST_TYPES):
                out.extend(".".join(path + (str(op),)) for op in ops)
        elif isinstance(value, dict):
            _walk(value, path, out)
        # scalar leaves carry no permissions


def to_flat(permissions: Any) -> list[str]:
    """Emit every fully-qualified code found in a permission representation.

    Recurses through nested maps. Resource entries contribute their
    ``operations``; their level, scope, and conditions never become codes.
    Non-list, non-map leaves are ignored, as are results with fewer than
    three segments.
    """
    if isinstance(permissions, FlatList):
        candidates: list[str] = [str(c) for c in permissions.codes]
    elif isinstance(permissions, _LIST_TYPES):
        candidates = [str(c) for c in permissions]
    else:
        data = to_hierarchical(permissions)
        candidates = []
        _walk(data, (), candidates)

    seen: set[str] = set()
    flat: list[str] = []
    for code in candidates:
        if code in seen or PermissionCode.parse(code) is None:
            continue
        seen.add(code)
        flat.append(code)
    return flat


# Public names used by the engine facade
normalize_hierarchy = to_hierarchical
flatten_hierarchy = to_flat


# ── Resource entries ────────────────────────────────────


def strip_metadata(permissions: dict[str, Any]) -> dict[str, Any]:
    """Copy of a map without the reserved ``metadata`` key."""
    return {k: v for k, v in permissions.items() if k != METADATA_KEY}


def as_resource_entry(value: Any) -> dict[str, Any]:
    """Coerce an operations list or partial entry to a full resource entry."""
    if isinstance(value, _LIST_TYPES):
        ops = list(dict.fromkeys(str(op) for op in value))
        return {
            "level": infer_level(ops),
            "operations": ops,
            "scope": PermissionScope.ALL.value,
            "conditions": {},
        }
    if isinstance(value, dict):
        ops_raw = value.get("operations")
        ops = list(dict.fromkeys(str(op) for op in ops_raw)) if isinstance(ops_raw, _LIST_TYPES) else []
        conditions = value.get("conditions")
        return {
            "level": value.get("level") or infer_level(ops),
            "operations": ops,
            "scope": value.get("scope") or PermissionScope.OWN.value,
            "conditions": dict(conditions) if isinstance(conditions, dict) else {},
        }
    return {"level": "none", "operations": [], "scope": PermissionScope.OWN.value, "conditions": {}}


def iter_resources(permissions: dict[str, Any]) -> Iterator[tuple[ResourceKey, Any]]:
    """Yield ``(resource_key, value)`` for every resource in a map.

    A resource is any operations list or resource entry, keyed by its path:
    a top-level entry (``{"crm.leads": {...}}``), an ``app → module`` leaf
    (``{"crm": {"leads": [...]}}``), or a leaf under nested sub-objects
    (``{"crm": {"leads": {"notes": [...]}}}`` keys as ``("crm", "leads", "notes")``).
    """
    yield from _iter_leaves(permissions, ())


def _iter_leaves(node: dict[str, Any], prefix: ResourceKey) -> Iterator[tuple[ResourceKey, Any]]:
    for key, value in node.items():
        if not prefix and key == METADATA_KEY:
            continue
        path = prefix + (str(key),)
        if isinstance(value, _LIST_TYPES) or is_resource_entry(value):
            yield path, value
        elif isinstance(value, dict):
            yield from _iter_leaves(value, path)


def resource_map(permissions: dict[str, Any]) -> dict[ResourceKey, dict[str, Any]]:
    """Flatten a map to ``{resource_key: resource entry}``."""
    return {key: as_resource_entry(value) for key, value in iter_resources(permissions)}


def from_resources(resources: dict[ResourceKey, dict[str, Any]]) -> dict[str, Any]:
    """Rebuild a nested map from :func:`resource_map` output."""
    nested: dict[str, Any] = {}
    for key, entry in resources.items():
        node = nested
        for part in key[:-1]:
            node = node.setdefault(part, {})
            if is_resource_entry(node):
                break
        else:
            node[key[-1]] = entry
            continue
        logger.warning("Dropping resource %s nested under a resource entry", ".".join(key))
    return nested


def to_structured(permissions: Any) -> dict[str, Any]:
    """Convert codes to a map of resource entries with inferred levels.

    Every module becomes ``{level, operations, scope: "all", conditions: {}}``.
    """
    grouped = _group_codes(to_flat(permissions))
    return {
        app: {module: as_resource_entry(ops) for module, ops in modules.items()}
        for app, modules in grouped.items()
    }


def find_resource(permissions: dict[str, Any], resource: str) -> Any:
    """Look up a resource by ``app.module`` (or a top-level key). None if absent."""
    if resource in permissions and resource != METADATA_KEY:
        return permissions[resource]
    app, _, module = resource.partition(".")
    node = permissions.get(app)
    if module and isinstance(node, dict) and not is_resource_entry(node):
        return node.get(module)
    return None


__all__ = [
    "FlatList",
    "HierarchicalMap",
    "PermissionData",
    "ResourceKey",
    "as_resource_entry",
    "decode_permissions",
    "find_resource",
    "flatten_hierarchy",
    "from_resources",
    "is_resource_entry",
    "iter_resources",
    "normalize_hierarchy",
    "resource_map",
    "strip_metadata",
    "to_flat",
    "to_hierarchical",
    "to_structured",
]
