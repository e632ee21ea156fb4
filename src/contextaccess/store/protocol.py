"""Store collaborator contract.

The engine never talks to a database directly. Anything that implements
:class:`PermissionStore` can back it: a relational store in production,
:class:`~contextaccess.store.memory.InMemoryPermissionStore` in tests.

Implementations raise :class:`~contextaccess.exceptions.StoreUnavailableError`
when the backing store cannot be reached. The engine lets it propagate.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from ..models import (
    Application,
    ApplicationModule,
    Role,
    RoleAssignment,
    TenantApplication,
    UserPermissionOverride,
)


@runtime_checkable
class PermissionStore(Protocol):
    """Async read/write access to roles, assignments, overrides and the app catalog."""

    # ── Roles ──

    async def get_role(self, tenant_id: str, role_id: str) -> Optional[Role]: ...

    async def get_roles(self, tenant_id: str, role_ids: Sequence[str]) -> list[Role]: ...

    async def list_roles(self, tenant_id: str, include_inactive: bool = False) -> list[Role]: ...

    async def find_role_by_name(self, tenant_id: str, name: str) -> Optional[Role]: ...

    async def create_role(self, role: Role) -> Role:
        """Insert a role.

        Must raise ConflictError if the role id, or the name within the
        tenant, is already taken. The check and the insert are one atomic step.
        """
        ...

    async def update_role(self, role: Role) -> Role:
        """Replace a stored role. Raises ConflictError on a name taken by another role."""
        ...

    async def delete_role(
        self,
        tenant_id: str,
        role_id: str,
        transfer_to: Optional[str] = None,
        force: bool = False,
    ) -> int:
        """Delete a role and handle its assignments in one atomic step.

        - ``transfer_to``: direct assignments move to that role, organization
          assignments are removed.
        - ``force``: every assignment is removed.
        - neither: must raise ConflictError, without mutating anything, if
          the role has active assignments.

        Returns the number of users whose assignments were affected.
        """
        ...

    # ── Assignments ──

    async def get_user_assignments(self, user_id: str, tenant_id: str) -> list[RoleAssignment]: ...

    async def get_role_assignments(self, tenant_id: str, role_id: str) -> list[RoleAssignment]: ...

    async def count_role_assignments(self, tenant_id: str, role_id: str) -> int:
        """Number of active assignments of a role."""
        ...

    # ── Overrides ──

    async def get_user_overrides(self, user_id: str, tenant_id: str) -> list[UserPermissionOverride]: ...

    # ── Application catalog ──

    async def get_application(self, app_id: str) -> Optional[Application]: ...

    async def get_module(self, module_id: str) -> Optional[ApplicationModule]: ...

    async def list_modules(self, app_id: str) -> list[ApplicationModule]: ...

    async def list_tenant_applications(self, tenant_id: str) -> list[TenantApplication]:
        """Enabled applications of a tenant."""
        ...


__all__ = ["PermissionStore"]
