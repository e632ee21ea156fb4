"""Permission resolution and role inheritance.

Defines:
- constants: PermissionLevel, PermissionScope, InheritanceMode, SubscriptionTier
- codes: PermissionCode (``app.module.operation``)
- normalizer: flat ↔ hierarchical conversion, decode_permissions()
- tiers: subscription tier gate (accessible_modules())
- inheritance: additive / restrictive / override role merges
- aggregator: effective permissions with provenance
- restrictions: time / IP / resource-action evaluation
- validation: permission map and restriction set checks
"""

from .aggregator import PermissionAggregator
from .codes import PermissionCode, parse_codes, qualify
from .constants import (
    ACTION_LEVEL_REQUIREMENTS,
    METADATA_KEY,
    InheritanceMode,
    PermissionLevel,
    PermissionScope,
    SubscriptionTier,
    infer_level,
    level_rank,
    required_level,
    scope_rank,
)
from .inheritance import (
    RoleInheritanceResolver,
    merge_additive,
    merge_override,
    merge_restrictive,
    merge_role_inheritance,
)
from .normalizer import (
    FlatList,
    HierarchicalMap,
    PermissionData,
    decode_permissions,
    flatten_hierarchy,
    normalize_hierarchy,
    to_flat,
    to_hierarchical,
    to_structured,
)
from .restrictions import AccessDecision, RoleAccessValidator, evaluate_access
from .tiers import (
    ALL_MODULES,
    PERMISSION_TIERS,
    accessible_modules,
    filter_accessible_modules,
    is_module_accessible,
)
from .validation import (
    ValidationReport,
    check_permission_structure,
    check_restrictions,
    validate_permission_structure,
    validate_restrictions,
)

__all__ = [
    "ACTION_LEVEL_REQUIREMENTS",
    "ALL_MODULES",
    "METADATA_KEY",
    "PERMISSION_TIERS",
    "AccessDecision",
    "FlatList",
    "HierarchicalMap",
    "InheritanceMode",
    "PermissionAggregator",
    "PermissionCode",
    "PermissionData",
    "PermissionLevel",
    "PermissionScope",
    "RoleAccessValidator",
    "RoleInheritanceResolver",
    "SubscriptionTier",
    "ValidationReport",
    "accessible_modules",
    "check_permission_structure",
    "check_restrictions",
    "decode_permissions",
    "evaluate_access",
    "filter_accessible_modules",
    "flatten_hierarchy",
    "infer_level",
    "is_module_accessible",
    "level_rank",
    "merge_additive",
    "merge_override",
    "merge_restrictive",
    "merge_role_inheritance",
    "normalize_hierarchy",
    "parse_codes",
    "qualify",
    "required_level",
    "scope_rank",
    "to_flat",
    "to_hierarchical",
    "to_structured",
    "validate_permission_structure",
    "validate_restrictions",
]
