"""In-memory PermissionStore.

Reference implementation of :class:`~contextaccess.store.protocol.PermissionStore`.
Records are copied on the way in and out so callers can never mutate stored
state by accident. Mutations run under one ``asyncio.Lock``.

Seeding is synchronous (``add_role``, ``add_assignment``, ...) so fixtures
can build a store without an event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence, TypeVar

from pydantic import BaseModel

from ..exceptions import ConflictError, NotFoundError, StoreUnavailableError
from ..models import (
    Application,
    ApplicationModule,
    AssignmentSource,
    Role,
    RoleAssignment,
    TenantApplication,
    UserPermissionOverride,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T", bound=BaseModel)


def _copy(record: _T) -> _T:
    return record.model_copy(deep=True)


class InMemoryPermissionStore:
    """Dict-backed store. Set ``available = False`` to simulate an outage."""

    def __init__(self) -> None:
        self.available = True
        self._roles: dict[tuple[str, str], Role] = {}
        self._assignments: list[RoleAssignment] = []
        self._overrides: list[UserPermissionOverride] = []
        self._applications: dict[str, Application] = {}
        self._modules: dict[str, ApplicationModule] = {}
        self._tenant_apps: list[TenantApplication] = []
        self._lock = asyncio.Lock()

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError("In-memory store marked unavailable")

    # ── Seeding ──

    def add_role(self, role: Role) -> Role:
        self._roles[(role.tenant_id, role.role_id)] = _copy(role)
        return role

    def add_assignment(self, assignment: RoleAssignment) -> RoleAssignment:
        self._assignments.append(_copy(assignment))
        return assignment

    def add_override(self, override: UserPermissionOverride) -> UserPermissionOverride:
        self._overrides.append(_copy(override))
        return override

    def add_application(self, app: Application) -> Application:
        self._applications[app.app_id] = _copy(app)
        return app

    def add_module(self, module: ApplicationModule) -> ApplicationModule:
        self._modules[module.module_id] = _copy(module)
        return module

    def add_tenant_application(self, tenant_app: TenantApplication) -> TenantApplication:
        self._tenant_apps.append(_copy(tenant_app))
        return tenant_app

    # ── Roles ──

    async def get_role(self, tenant_id: str, role_id: str) -> Optional[Role]:
        self._check()
        role = self._roles.get((tenant_id, role_id))
        return _copy(role) if role is not None else None

    async def get_roles(self, tenant_id: str, role_ids: Sequence[str]) -> list[Role]:
        self._check()
        return [_copy(self._roles[(tenant_id, rid)]) for rid in role_ids if (tenant_id, rid) in self._roles]

    async def list_roles(self, tenant_id: str, include_inactive: bool = False) -> list[Role]:
        self._check()
        roles = [r for (tid, _), r in self._roles.items() if tid == tenant_id]
        if not include_inactive:
            roles = [r for r in roles if r.is_active]
        return [_copy(r) for r in sorted(roles, key=lambda r: (-r.priority, r.name))]

    def _ensure_name_free(self, role: Role) -> None:
        for (tid, rid), other in self._roles.items():
            if tid == role.tenant_id and rid != role.role_id and other.name == role.name:
                raise ConflictError(f'Role with name "{role.name}" already exists', name=role.name)

    async def find_role_by_name(self, tenant_id: str, name: str) -> Optional[Role]:
        self._check()
        for (tid, _), role in self._roles.items():
            if tid == tenant_id and role.name == name:
                return _copy(role)
        return None

    async def create_role(self, role: Role) -> Role:
        self._check()
        async with self._lock:
            key = (role.tenant_id, role.role_id)
            if key in self._roles:
                raise ConflictError(f"Role {role.role_id} already exists")
            self._ensure_name_free(role)
            self._roles[key] = _copy(role)
        return _copy(role)

    async def update_role(self, role: Role) -> Role:
        self._check()
        async with self._lock:
            key = (role.tenant_id, role.role_id)
            if key not in self._roles:
                raise NotFoundError(f"Role {role.role_id} not found")
            self._ensure_name_free(role)
            self._roles[key] = _copy(role)
        return _copy(role)

    async def delete_role(
        self,
        tenant_id: str,
        role_id: str,
        transfer_to: Optional[str] = None,
        force: bool = False,
    ) -> int:
        self._check()
        async with self._lock:
            if (tenant_id, role_id) not in self._roles:
                raise NotFoundError(f"Role {role_id} not found")

            affected = [a for a in self._assignments if a.tenant_id == tenant_id and a.role_id == role_id]
            active = [a for a in affected if a.is_active]
            if active and transfer_to is None and not force:
                raise ConflictError(
                    f"Role {role_id} has {len(active)} active assignments",
                    assignments=len(active),
                )
            if transfer_to is not None and (tenant_id, transfer_to) not in self._roles:
                raise ConflictError(f"Transfer target role {transfer_to} not found")

            kept: list[RoleAssignment] = []
            for assignment in self._assignments:
                if assignment.tenant_id != tenant_id or assignment.role_id != role_id:
                    kept.append(assignment)
                elif transfer_to is not None and assignment.source == AssignmentSource.DIRECT:
                    kept.append(assignment.model_copy(update={"role_id": transfer_to}))
                # organization assignments, and everything under force, are dropped
            self._assignments = kept
            del self._roles[(tenant_id, role_id)]

        users = {a.user_id for a in affected}
        logger.debug("Deleted role %s in tenant %s (%d users affected)", role_id, tenant_id, len(users))
        return len(users)

    # ── Assignments ──

    async def get_user_assignments(self, user_id: str, tenant_id: str) -> list[RoleAssignment]:
        self._check()
        return [_copy(a) for a in self._assignments if a.user_id == user_id and a.tenant_id == tenant_id]

    async def get_role_assignments(self, tenant_id: str, role_id: str) -> list[RoleAssignment]:
        self._check()
        return [_copy(a) for a in self._assignments if a.tenant_id == tenant_id and a.role_id == role_id]

    async def count_role_assignments(self, tenant_id: str, role_id: str) -> int:
        self._check()
        return sum(1 for a in self._assignments if a.tenant_id == tenant_id and a.role_id == role_id and a.is_active)

    # ── Overrides ──

    async def get_user_overrides(self, user_id: str, tenant_id: str) -> list[UserPermissionOverride]:
        self._check()
        return [_copy(o) for o in self._overrides if o.user_id == user_id and o.tenant_id == tenant_id]

    # ── Application catalog ──

    async def get_application(self, app_id: str) -> Optional[Application]:
        self._check()
        app = self._applications.get(app_id)
        return _copy(app) if app is not None else None

    async def get_module(self, module_id: str) -> Optional[ApplicationModule]:
        self._check()
        module = self._modules.get(module_id)
        return _copy(module) if module is not None else None

    async def list_modules(self, app_id: str) -> list[ApplicationModule]:
        self._check()
        return [_copy(m) for m in self._modules.values() if m.app_id == app_id]

    async def list_tenant_applications(self, tenant_id: str) -> list[TenantApplication]:
        self._check()
        return [_copy(ta) for ta in self._tenant_apps if ta.tenant_id == tenant_id and ta.is_enabled]


__all__ = ["InMemoryPermissionStore"]
