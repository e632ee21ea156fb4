"""Effective permission aggregation.

Combines a user's active role assignments (after role inheritance) with
their active per-module overrides into one effective code set, keeping a
provenance record for every contribution.

No tier gating and no restriction evaluation happens here; callers compose
those on top (see :meth:`contextaccess.engine.AccessEngine.authorize`).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Optional

from ..exceptions import PermissionDataError
from ..models import (
    EffectivePermissions,
    PermissionSource,
    PermissionSummary,
    Role,
    UserPermissionOverride,
    utcnow,
)
from .codes import PermissionCode, qualify
from .inheritance import RoleInheritanceResolver
from .normalizer import FlatList, decode_permissions, to_flat

if TYPE_CHECKING:
    from ..store.protocol import PermissionStore

logger = logging.getLogger(__name__)


class PermissionAggregator:
    """Resolve the effective permission set of a user in a tenant."""

    def __init__(self, store: PermissionStore, resolver: RoleInheritanceResolver | None = None) -> None:
        self._store = store
        self._resolver = resolver or RoleInheritanceResolver(store)

    async def resolve_effective_permissions(
        self,
        user_id: str,
        tenant_id: str,
        now: Optional[datetime] = None,
    ) -> EffectivePermissions:
        """Aggregate role and override permissions.

        A role whose stored permissions cannot be decoded is skipped and
        logged. :class:`~contextaccess.exceptions.StoreUnavailableError`
        propagates.
        """
        now = now or utcnow()

        assignments, overrides, tenant_apps = await asyncio.gather(
            self._store.get_user_assignments(user_id, tenant_id),
            self._store.get_user_overrides(user_id, tenant_id),
            self._store.list_tenant_applications(tenant_id),
        )
        active = [a for a in assignments if a.is_effective(now)]
        role_ids = list(dict.fromkeys(a.role_id for a in active))

        roles = await asyncio.gather(*(self._store.get_role(tenant_id, rid) for rid in role_ids))

        sources: list[PermissionSource] = []
        role_count = 0
        for role_id, role in zip(role_ids, roles):
            if role is None:
                logger.warning("Assigned role %s not found in tenant %s", role_id, tenant_id)
                continue
            if not role.is_active:
                continue
            codes = await self._role_codes(role)
            if codes is None:
                continue
            role_count += 1
            sources.extend(
                PermissionSource(source="role", permission=code, role_id=role.role_id, role_name=role.name)
                for code in codes
            )

        live_overrides = [o for o in overrides if o.is_effective(now)]
        override_sources = await self._override_sources(live_overrides)
        sources.extend(override_sources)

        permissions = list(dict.fromkeys(s.permission for s in sources))
        logger.debug(
            "Resolved %d permissions for user %s in tenant %s (%d roles, %d overrides)",
            len(permissions),
            user_id,
            tenant_id,
            role_count,
            len(live_overrides),
        )
        return EffectivePermissions(
            user_id=user_id,
            tenant_id=tenant_id,
            permissions=permissions,
            sources=sources,
            summary=PermissionSummary(
                total=len(permissions),
                role_count=role_count,
                override_count=len(live_overrides),
                enabled_apps=len(tenant_apps),
            ),
        )

    async def _role_codes(self, role: Role) -> list[str] | None:
        """Flattened codes of one role after inheritance. None if the role is unreadable."""
        try:
            resolved = await self._resolver.resolve_role(role)
        except PermissionDataError as e:
            logger.warning("Skipping role %s (%s): %s", role.role_id, role.name, e)
            return None
        return to_flat(resolved)

    async def _override_sources(self, overrides: Iterable[UserPermissionOverride]) -> list[PermissionSource]:
        sources: list[PermissionSource] = []
        for override in overrides:
            app, module = await asyncio.gather(
                self._store.get_application(override.app_id),
                self._store.get_module(override.module_id),
            )
            if app is None or module is None:
                logger.warning(
                    "Override %s references unknown app %s or module %s",
                    override.override_id,
                    override.app_id,
                    override.module_id,
                )
                continue
            try:
                operations = _override_operations(override.permissions)
            except PermissionDataError as e:
                logger.warning("Skipping override %s: %s", override.override_id, e)
                continue
            sources.extend(
                PermissionSource(
                    source="user_override",
                    permission=qualify(app.app_code, module.module_code, op),
                    reason=override.reason,
                )
                for op in operations
            )
        return sources


def _override_operations(raw: object) -> list[str]:
    """Operation tokens of an override.

    Overrides usually hold bare operations (``["read", "export"]``). Full
    codes and maps are accepted too; only their operation part is kept since
    the override's own app/module always qualifies the result.
    """
    decoded = decode_permissions(raw)
    tokens: list[str] = []
    items = decoded.codes if isinstance(decoded, FlatList) else to_flat(decoded)
    for item in items:
        pc = PermissionCode.parse(item)
        tokens.append(pc.operation if pc is not None else str(item))
    return list(dict.fromkeys(t for t in tokens if t))


__all__ = ["PermissionAggregator"]
