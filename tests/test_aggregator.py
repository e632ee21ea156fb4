"""Tests for effective permission aggregation."""

from __future__ import annotations

import json
import logging

import pytest

from contextaccess.exceptions import StoreUnavailableError
from contextaccess.models import Role, RoleAssignment, UserPermissionOverride
from contextaccess.permissions import PermissionAggregator
from contextaccess.store import InMemoryPermissionStore

TENANT = "tenant-1"


class TestResolveEffectivePermissions:
    """Tests for PermissionAggregator.resolve_effective_permissions."""

    @pytest.mark.asyncio
    async def test_roles_inheritance_and_overrides(self, store: InMemoryPermissionStore) -> None:
        """Codes from inherited roles, flat roles and overrides are combined."""
        result = await PermissionAggregator(store).resolve_effective_permissions("user-1", TENANT)

        assert set(result.permissions) == {
            "crm.leads.read",
            "crm.leads.create",
            "crm.contacts.read",
            "crm.contacts.update",
            "hr.employees.read",
            "hr.employees.update",
            "crm.invoices.export",
        }
        assert result.user_id == "user-1"
        assert result.tenant_id == TENANT

    @pytest.mark.asyncio
    async def test_expired_assignment_and_override_ignored(self, store: InMemoryPermissionStore) -> None:
        """Expired grants contribute nothing."""
        result = await PermissionAggregator(store).resolve_effective_permissions("user-1", TENANT)
        assert "hr.payroll.read" not in result.permissions
        assert all(s.role_id != "role-admin" for s in result.sources)

    @pytest.mark.asyncio
    async def test_summary(self, store: InMemoryPermissionStore) -> None:
        """The summary counts codes, roles, overrides and enabled apps."""
        result = await PermissionAggregator(store).resolve_effective_permissions("user-1", TENANT)
        assert result.summary.total == len(result.permissions) == 7
        assert result.summary.role_count == 2
        assert result.summary.override_count == 1
        assert result.summary.enabled_apps == 2

    @pytest.mark.asyncio
    async def test_override_provenance(self, store: InMemoryPermissionStore) -> None:
        """Override sources carry the override reason."""
        result = await PermissionAggregator(store).resolve_effective_permissions("user-1", TENANT)
        overrides = [s for s in result.sources if s.source == "user_override"]
        assert [(s.permission, s.reason) for s in overrides] == [("crm.invoices.export", "Quarter close")]
        assert overrides[0].role_id is None

    @pytest.mark.asyncio
    async def test_duplicate_codes_keep_every_source(self, store: InMemoryPermissionStore) -> None:
        """A code granted twice appears once in permissions and twice in sources."""
        store.add_assignment(RoleAssignment(user_id="user-1", role_id="role-viewer", tenant_id=TENANT))
        result = await PermissionAggregator(store).resolve_effective_permissions("user-1", TENANT)

        assert result.permissions.count("crm.leads.read") == 1
        granting = {s.role_name for s in result.sources if s.permission == "crm.leads.read"}
        assert granting == {"Lead Manager", "Viewer"}

    @pytest.mark.asyncio
    async def test_corrupt_role_skipped(self, store: InMemoryPermissionStore, caplog: pytest.LogCaptureFixture) -> None:
        """An unreadable role is logged and the other roles still count."""
        with caplog.at_level(logging.WARNING):
            result = await PermissionAggregator(store).resolve_effective_permissions("user-2", TENANT)
        assert result.permissions == ["crm.leads.read"]
        assert result.summary.role_count == 1
        assert "role-corrupt" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_inheritance_skipped(
        self, store: InMemoryPermissionStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A role whose parent list is not a list is skipped; healthy roles still resolve."""
        store.add_role(
            Role(
                role_id="role-bad-parents",
                tenant_id=TENANT,
                name="Bad Parents",
                permissions={
                    "crm": {"contacts": ["read"]},
                    "metadata": {"inheritance": {"parentRoles": "role-editor"}},
                },
            )
        )
        store.add_assignment(RoleAssignment(user_id="user-3", role_id="role-bad-parents", tenant_id=TENANT))

        with caplog.at_level(logging.WARNING):
            result = await PermissionAggregator(store).resolve_effective_permissions("user-3", TENANT)

        assert result.permissions == ["crm.leads.read"]
        assert result.summary.role_count == 1
        assert "role-bad-parents" in caplog.text

    @pytest.mark.asyncio
    async def test_non_mapping_conditions_tolerated(self, store: InMemoryPermissionStore) -> None:
        """Scalar conditions on an inheriting role do not break resolution."""
        store.add_role(
            Role(
                role_id="role-odd-conditions",
                tenant_id=TENANT,
                name="Odd Conditions",
                permissions={
                    "crm": {"contacts": {"level": "read", "operations": ["read"], "conditions": "x"}},
                    "metadata": {"inheritance": {"parentRoles": ["role-editor"]}},
                },
            )
        )
        store.add_assignment(RoleAssignment(user_id="user-3", role_id="role-odd-conditions", tenant_id=TENANT))

        result = await PermissionAggregator(store).resolve_effective_permissions("user-3", TENANT)

        assert set(result.permissions) == {
            "crm.leads.read",
            "crm.leads.create",
            "crm.contacts.read",
            "crm.contacts.update",
        }

    @pytest.mark.asyncio
    async def test_json_string_role_inherits(self, store: InMemoryPermissionStore) -> None:
        """Inheritance metadata inside a JSON-string blob is honoured."""
        blob = json.dumps(
            {"crm": {"leads": ["read"]}, "metadata": {"inheritance": {"parentRoles": ["role-editor"]}}}
        )
        store.add_role(Role(role_id="role-json", tenant_id=TENANT, name="Json", permissions=blob))
        store.add_assignment(RoleAssignment(user_id="user-8", role_id="role-json", tenant_id=TENANT))

        result = await PermissionAggregator(store).resolve_effective_permissions("user-8", TENANT)

        assert set(result.permissions) == {
            "crm.leads.read",
            "crm.leads.create",
            "crm.contacts.read",
            "crm.contacts.update",
        }

    @pytest.mark.asyncio
    async def test_inactive_assignment(self, store: InMemoryPermissionStore) -> None:
        """Inactive assignments grant nothing."""
        result = await PermissionAggregator(store).resolve_effective_permissions("user-4", TENANT)
        assert result.permissions == []
        assert result.summary.role_count == 0

    @pytest.mark.asyncio
    async def test_inactive_role(self, store: InMemoryPermissionStore) -> None:
        """Deactivated roles grant nothing even with an active assignment."""
        store.add_role(Role(role_id="role-off", tenant_id=TENANT, name="Off", permissions=["crm.leads.delete"], is_active=False))
        store.add_assignment(RoleAssignment(user_id="user-5", role_id="role-off", tenant_id=TENANT))
        result = await PermissionAggregator(store).resolve_effective_permissions("user-5", TENANT)
        assert result.permissions == []

    @pytest.mark.asyncio
    async def test_missing_role_logged(self, store: InMemoryPermissionStore, caplog: pytest.LogCaptureFixture) -> None:
        """Assignments to unknown roles are skipped."""
        store.add_assignment(RoleAssignment(user_id="user-6", role_id="role-ghost", tenant_id=TENANT))
        with caplog.at_level(logging.WARNING):
            result = await PermissionAggregator(store).resolve_effective_permissions("user-6", TENANT)
        assert result.permissions == []
        assert "role-ghost" in caplog.text

    @pytest.mark.asyncio
    async def test_override_with_full_codes(self, store: InMemoryPermissionStore) -> None:
        """Full codes in an override are re-qualified with the override's module."""
        store.add_override(
            UserPermissionOverride(
                user_id="user-7",
                tenant_id=TENANT,
                app_id="app-crm",
                module_id="mod-leads",
                permissions=["crm.contacts.delete", "export"],
            )
        )
        result = await PermissionAggregator(store).resolve_effective_permissions("user-7", TENANT)
        assert result.permissions == ["crm.leads.delete", "crm.leads.export"]
        assert result.sources[0].reason == "Individual access"

    @pytest.mark.asyncio
    async def test_unknown_user(self, store: InMemoryPermissionStore) -> None:
        """A user with no grants has no permissions."""
        result = await PermissionAggregator(store).resolve_effective_permissions("nobody", TENANT)
        assert result.permissions == []
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_idempotent(self, store: InMemoryPermissionStore) -> None:
        """Repeated resolution gives the same result."""
        aggregator = PermissionAggregator(store)
        first = await aggregator.resolve_effective_permissions("user-1", TENANT)
        second = await aggregator.resolve_effective_permissions("user-1", TENANT)
        assert first.permissions == second.permissions
        assert first.sources == second.sources

    @pytest.mark.asyncio
    async def test_store_unavailable_propagates(self, store: InMemoryPermissionStore) -> None:
        """Store outages are not swallowed."""
        store.available = False
        with pytest.raises(StoreUnavailableError):
            await PermissionAggregator(store).resolve_effective_permissions("user-1", TENANT)
