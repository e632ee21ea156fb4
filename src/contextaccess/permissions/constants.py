"""Permission levels, scopes, inheritance modes, and subscription tiers.

Provides:
- ``PermissionLevel`` — ordinal access level (none < read < write < admin).
- ``PermissionScope`` — ordinal data scope (own < team < department < zone < all).
- ``InheritanceMode`` — how a role combines with its parent roles.
- ``SubscriptionTier`` — tenant plan names used by the tier gate.
- ``ACTION_LEVEL_REQUIREMENTS`` — action → minimum level table.
"""

from __future__ import annotations

from enum import Enum

# Reserved top-level key in a permission map. Never a permission resource.
METADATA_KEY = "metadata"

# Top-level keys skipped when validating a stored role blob.
NON_PERMISSION_KEYS = frozenset({"metadata", "inheritance", "restrictions"})


class PermissionLevel(str, Enum):
    """Access level granted on a resource.

    Ordinal: ``none`` < ``read`` < ``write`` < ``admin``.
    """

    NONE = "none"
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return LEVEL_HIERARCHY.index(self.value)


class PermissionScope(str, Enum):
    """Data scope of a grant, narrow to broad."""

    OWN = "own"
    TEAM = "team"
    DEPARTMENT = "department"
    ZONE = "zone"
    ALL = "all"

    @property
    def rank(self) -> int:
        return SCOPE_HIERARCHY.index(self.value)


class InheritanceMode(str, Enum):
    """Combination semantics for a role and its parents."""

    ADDITIVE = "additive"  # union, higher level, broader scope
    RESTRICTIVE = "restrictive"  # intersection, lower level, narrower scope
    OVERRIDE = "override"  # child wins, parents fill gaps


class SubscriptionTier(str, Enum):
    """Tenant subscription plans known to the tier gate."""

    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"
    CUSTOM = "custom"


# Hierarchies: index is the ordinal rank
LEVEL_HIERARCHY = ("none", "read", "write", "admin")
SCOPE_HIERARCHY = ("own", "team", "department", "zone", "all")

ACTION_LEVEL_REQUIREMENTS: dict[str, str] = {
    "view": PermissionLevel.READ.value,
    "read": PermissionLevel.READ.value,
    "create": PermissionLevel.WRITE.value,
    "edit": PermissionLevel.WRITE.value,
    "update": PermissionLevel.WRITE.value,
    "delete": PermissionLevel.ADMIN.value,
    "manage": PermissionLevel.ADMIN.value,
    "admin": PermissionLevel.ADMIN.value,
}

# Substrings used to infer a level from a bare list of operations
ADMIN_OPERATION_MARKERS = ("delete", "manage", "admin")
WRITE_OPERATION_MARKERS = ("create", "update", "edit")


def level_rank(level: str | None) -> int:
    """Ordinal rank of a level; unknown or missing levels rank as ``none``."""
    try:
        return LEVEL_HIERARCHY.index(str(level))
    except ValueError:
        return 0


def scope_rank(scope: str | None) -> int:
    """Ordinal rank of a scope; unknown or missing scopes rank as ``own``."""
    try:
        return SCOPE_HIERARCHY.index(str(scope))
    except ValueError:
        return 0


def required_level(action: str) -> str:
    """Minimum level an action needs. Unmapped actions need ``read``."""
    return ACTION_LEVEL_REQUIREMENTS.get(action, PermissionLevel.READ.value)


def infer_level(operations: list[str] | tuple[str, ...]) -> str:
    """Derive a level from operation names.

    ``admin`` if any operation mentions delete/manage/admin, ``write`` if any
    mentions create/update/edit, otherwise ``read``.
    """
    if any(marker in op for op in operations for marker in ADMIN_OPERATION_MARKERS):
        return PermissionLevel.ADMIN.value
    if any(marker in op for op in operations for marker in WRITE_OPERATION_MARKERS):
        return PermissionLevel.WRITE.value
    return PermissionLevel.READ.value


__all__ = [
    "ACTION_LEVEL_REQUIREMENTS",
    "ADMIN_OPERATION_MARKERS",
    "LEVEL_HIERARCHY",
    "METADATA_KEY",
    "NON_PERMISSION_KEYS",
    "SCOPE_HIERARCHY",
    "WRITE_OPERATION_MARKERS",
    "InheritanceMode",
    "PermissionLevel",
    "PermissionScope",
    "SubscriptionTier",
    "infer_level",
    "level_rank",
    "required_level",
    "scope_rank",
]
