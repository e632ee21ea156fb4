"""Subscription tier gate.

Provides:
- ``PERMISSION_TIERS`` — tier → app → ``"all"`` or module list.
- ``accessible_modules()`` — the ceiling a tier puts on one app.
- ``filter_accessible_modules()`` — apply that ceiling to the live module catalog.
- ``is_module_accessible()`` — single-module predicate.

The gate decides what *can* be granted. It never looks at what a role
actually grants.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping, Sequence, TypeVar, Union

from .constants import SubscriptionTier

logger = logging.getLogger(__name__)

ALL_MODULES: Literal["all"] = "all"

TierModules = Union[Literal["all"], list[str]]
TierConfig = Mapping[str, Mapping[str, Union[str, Sequence[str]]]]

_M = TypeVar("_M")

# ── Tier → Module Ceilings ──────────────────────────────

PERMISSION_TIERS: dict[str, dict[str, Union[str, list[str]]]] = {
    SubscriptionTier.FREE.value: {
        "crm": ["leads", "contacts", "dashboard"],
        "accounting": ["dashboard", "invoices", "customers", "reports"],
    },
    SubscriptionTier.STARTER.value: {
        "crm": ["leads", "contacts"],
        "hr": ["employees", "leave"],
        "project_management": ["projects", "tasks", "team"],
        "accounting": ["dashboard", "general_ledger", "invoices", "customers", "bills", "vendors", "reports"],
    },
    SubscriptionTier.PROFESSIONAL.value: {
        "crm": [
            "leads",
            "contacts",
            "accounts",
            "opportunities",
            "quotations",
            "invoices",
            "tickets",
            "communications",
            "calendar",
            "dashboard",
        ],
        "hr": ["employees", "payroll", "leave", "dashboard"],
        "project_management": ["projects", "tasks", "sprints", "time_tracking", "team", "reports"],
        "accounting": ALL_MODULES,
    },
    SubscriptionTier.ENTERPRISE.value: {
        "crm": ALL_MODULES,
        "hr": ALL_MODULES,
        "project_management": ALL_MODULES,
        "accounting": ALL_MODULES,
        "affiliate": ALL_MODULES,
    },
    # Custom plans are configured per tenant (enabled-module override lists)
    SubscriptionTier.CUSTOM.value: {},
}


def accessible_modules(
    app_code: str,
    tier: str,
    tier_config: TierConfig | None = None,
) -> TierModules:
    """Return the modules a tier may ever grant for an app.

    Args:
        app_code: Application code (e.g. ``"crm"``).
        tier: Subscription tier (e.g. ``"starter"``).
        tier_config: Optional replacement for :data:`PERMISSION_TIERS`.

    Returns:
        ``"all"``, a module list, or an empty list when the tier or app is
        unknown.

    Example::

        accessible_modules("crm", "starter")     # ["leads", "contacts"]
        accessible_modules("crm", "enterprise")  # "all"
        accessible_modules("crm", "custom")      # []
    """
    config = PERMISSION_TIERS if tier_config is None else tier_config
    tier_key = tier.value if isinstance(tier, SubscriptionTier) else str(tier)
    apps = config.get(tier_key)
    if not apps:
        return []
    modules = apps.get(app_code)
    if modules == ALL_MODULES:
        return ALL_MODULES
    if isinstance(modules, (list, tuple)):
        return list(modules)
    return []


def is_module_accessible(
    app_code: str,
    module_code: str,
    tier: str,
    tier_config: TierConfig | None = None,
) -> bool:
    """True if the tier allows the module to be granted at all."""
    modules = accessible_modules(app_code, tier, tier_config)
    return modules == ALL_MODULES or module_code in modules


def _module_code(module: Any) -> str:
    if isinstance(module, str):
        return module
    if isinstance(module, Mapping):
        return str(module.get("module_code") or module.get("moduleCode") or "")
    return str(getattr(module, "module_code", ""))


def filter_accessible_modules(
    app_code: str,
    tier: str,
    catalog_modules: Sequence[_M],
    fallback_enabled_modules: Sequence[str] | None = None,
    tier_config: TierConfig | None = None,
) -> list[_M]:
    """Filter the live module catalog by the tier ceiling.

    Resolution order:
    1. ``"all"`` → the whole catalog.
    2. Non-empty tier list → catalog entries whose code is listed.
    3. Tenant override list (``fallback_enabled_modules``) if given.
    4. Otherwise deny-all for this app.

    Catalog entries may be module codes, mappings with ``module_code``, or
    objects with a ``module_code`` attribute.
    """
    modules = accessible_modules(app_code, tier, tier_config)

    if modules == ALL_MODULES:
        logger.debug("Tier %s grants all %d modules of %s", tier, len(catalog_modules), app_code)
        return list(catalog_modules)

    if modules:
        allowed = set(modules)
        return [m for m in catalog_modules if _module_code(m) in allowed]

    if fallback_enabled_modules is not None:
        allowed = set(fallback_enabled_modules)
        result = [m for m in catalog_modules if _module_code(m) in allowed]
        logger.debug("Tier %s has no config for %s; tenant override allows %d modules", tier, app_code, len(result))
        return result

    logger.info("No module access configured for app %s on tier %s", app_code, tier)
    return []


__all__ = [
    "ALL_MODULES",
    "PERMISSION_TIERS",
    "TierConfig",
    "TierModules",
    "accessible_modules",
    "filter_accessible_modules",
    "is_module_accessible",
]
