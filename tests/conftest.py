"""Shared fixtures: a seeded in-memory store and an engine on top of it."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from contextaccess import AccessEngine, AccessEngineConfig
from contextaccess.models import (
    Application,
    ApplicationModule,
    AssignmentSource,
    Role,
    RoleAssignment,
    TenantApplication,
    UserPermissionOverride,
)
from contextaccess.store import InMemoryPermissionStore

TENANT = "tenant-1"

VIEWER_PERMISSIONS = {"crm": {"leads": {"level": "read", "operations": ["read"], "scope": "own"}}}
EDITOR_PERMISSIONS = {
    "crm": {
        "leads": {"level": "write", "operations": ["create"], "scope": "team"},
        "contacts": ["read", "update"],
    }
}


def seed_store(store: InMemoryPermissionStore) -> InMemoryPermissionStore:
    past = datetime.now(timezone.utc) - timedelta(days=1)

    store.add_application(Application(app_id="app-crm", app_code="crm", name="CRM"))
    store.add_application(Application(app_id="app-hr", app_code="hr", name="HR"))
    for module_id, app_id, code in [
        ("mod-leads", "app-crm", "leads"),
        ("mod-contacts", "app-crm", "contacts"),
        ("mod-invoices", "app-crm", "invoices"),
        ("mod-employees", "app-hr", "employees"),
        ("mod-payroll", "app-hr", "payroll"),
    ]:
        store.add_module(ApplicationModule(module_id=module_id, app_id=app_id, module_code=code))
    store.add_tenant_application(TenantApplication(tenant_id=TENANT, app_id="app-crm", subscription_tier="starter"))
    store.add_tenant_application(
        TenantApplication(tenant_id=TENANT, app_id="app-hr", subscription_tier="custom", enabled_modules=["employees"])
    )

    store.add_role(Role(role_id="role-viewer", tenant_id=TENANT, name="Viewer", permissions=VIEWER_PERMISSIONS, priority=10))
    store.add_role(Role(role_id="role-editor", tenant_id=TENANT, name="Editor", permissions=EDITOR_PERMISSIONS, priority=20))
    store.add_role(
        Role(
            role_id="role-child",
            tenant_id=TENANT,
            name="Lead Manager",
            permissions={
                **VIEWER_PERMISSIONS,
                "metadata": {"inheritance": {"parentRoles": ["role-editor"], "inheritanceMode": "additive"}},
            },
            priority=30,
        )
    )
    store.add_role(
        Role(
            role_id="role-flat",
            tenant_id=TENANT,
            name="HR Clerk",
            permissions=["hr.employees.read", "hr.employees.update"],
        )
    )
    store.add_role(Role(role_id="role-corrupt", tenant_id=TENANT, name="Broken", permissions="{not json"))
    store.add_role(
        Role(role_id="role-admin", tenant_id=TENANT, name="Super Administrator", permissions=EDITOR_PERMISSIONS, priority=1000)
    )
    store.add_role(
        Role(role_id="role-owner", tenant_id=TENANT, name="Owner", permissions=EDITOR_PERMISSIONS, is_system_role=True)
    )
    store.add_role(
        Role(
            role_id="role-restricted",
            tenant_id=TENANT,
            name="Office Hours",
            permissions=EDITOR_PERMISSIONS,
            restrictions={
                "timeRestrictions": {"allowedHours": list(range(9, 18))},
                "ipRestrictions": {"allowedIPs": ["10.0.0.0/8"], "blockedIPs": ["10.0.0.66"]},
            },
        )
    )

    store.add_assignment(RoleAssignment(user_id="user-1", role_id="role-child", tenant_id=TENANT))
    store.add_assignment(
        RoleAssignment(user_id="user-1", role_id="role-flat", tenant_id=TENANT, source=AssignmentSource.ORGANIZATION)
    )
    store.add_assignment(
        RoleAssignment(user_id="user-1", role_id="role-admin", tenant_id=TENANT, is_temporary=True, expires_at=past)
    )
    store.add_assignment(RoleAssignment(user_id="user-2", role_id="role-viewer", tenant_id=TENANT))
    store.add_assignment(RoleAssignment(user_id="user-2", role_id="role-corrupt", tenant_id=TENANT))
    store.add_assignment(
        RoleAssignment(user_id="user-3", role_id="role-viewer", tenant_id=TENANT, source=AssignmentSource.ORGANIZATION)
    )
    store.add_assignment(RoleAssignment(user_id="user-4", role_id="role-editor", tenant_id=TENANT, is_active=False))

    store.add_override(
        UserPermissionOverride(
            override_id="ovr-1",
            user_id="user-1",
            tenant_id=TENANT,
            app_id="app-crm",
            module_id="mod-invoices",
            permissions=["export"],
            reason="Quarter close",
        )
    )
    store.add_override(
        UserPermissionOverride(
            override_id="ovr-expired",
            user_id="user-1",
            tenant_id=TENANT,
            app_id="app-hr",
            module_id="mod-payroll",
            permissions=["read"],
            expires_at=past,
        )
    )
    return store


@pytest.fixture
def store() -> InMemoryPermissionStore:
    return seed_store(InMemoryPermissionStore())


@pytest.fixture
def engine(store: InMemoryPermissionStore) -> AccessEngine:
    return AccessEngine(store, AccessEngineConfig())
