"""Tests for role administration."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from contextaccess.events import ROLE_CREATED, ROLE_DELETED, ROLE_UPDATED, EventEmitter
from contextaccess.exceptions import ConflictError, NotFoundError, StoreUnavailableError, ValidationError
from contextaccess.models import Role
from contextaccess.roles import RoleService, drop_resources
from contextaccess.store import InMemoryPermissionStore

TENANT = "tenant-1"


@pytest.fixture
def publisher() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def events(publisher: AsyncMock) -> EventEmitter:
    return EventEmitter(publisher)


@pytest.fixture
def service(store: InMemoryPermissionStore, events: EventEmitter) -> RoleService:
    return RoleService(store, events=events)


class TestCreateRole:
    """Tests for RoleService.create_role."""

    @pytest.mark.asyncio
    async def test_create(
        self, service: RoleService, events: EventEmitter, store: InMemoryPermissionStore, publisher: AsyncMock
    ) -> None:
        """A valid role is stored and announced."""
        role = await service.create_role(
            TENANT,
            "Support",
            {"crm": {"contacts": {"level": "read", "operations": ["read"]}}},
            {"timeRestrictions": {"allowedHours": [9, 10, 11]}},
            description="Support desk",
            created_by="admin-1",
        )
        await events.drain()

        stored = await store.get_role(TENANT, role.role_id)
        assert stored is not None
        assert stored.permissions == {"crm": {"contacts": {"level": "read", "operations": ["read"], "scope": "own"}}}
        assert stored.restrictions["timeRestrictions"]["allowedHours"] == [9, 10, 11]
        assert stored.created_by == "admin-1"
        publisher.publish.assert_awaited_once_with(
            ROLE_CREATED, TENANT, role.role_id, {"name": "Support", "created_by": "admin-1"}
        )

    @pytest.mark.asyncio
    async def test_duplicate_name(self, service: RoleService) -> None:
        """Names are unique per tenant."""
        with pytest.raises(ConflictError, match='Role with name "Viewer" already exists'):
            await service.create_role(TENANT, "Viewer", ["crm.leads.read"])

    @pytest.mark.asyncio
    async def test_concurrent_same_name(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Two creates racing past the name lookup still leave one role."""
        store.find_role_by_name = AsyncMock(return_value=None)
        results = await asyncio.gather(
            service.create_role(TENANT, "Support", ["crm.leads.read"]),
            service.create_role(TENANT, "Support", ["crm.contacts.read"]),
            return_exceptions=True,
        )
        assert sum(isinstance(r, Role) for r in results) == 1
        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert [r.name for r in await store.list_roles(TENANT)].count("Support") == 1

    @pytest.mark.asyncio
    async def test_invalid_permissions(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Invalid levels are rejected before anything is stored."""
        with pytest.raises(ValidationError):
            await service.create_role(TENANT, "Bad", {"crm": {"leads": {"level": "god", "operations": []}}})
        assert await store.find_role_by_name(TENANT, "Bad") is None

    @pytest.mark.asyncio
    async def test_with_inheritance(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Parents are merged in and the inheritance settings kept in metadata."""
        role = await service.create_role(
            TENANT,
            "Senior Viewer",
            {"crm": {"leads": {"level": "read", "operations": ["read"], "scope": "own"}}},
            inheritance={"parentRoles": ["role-editor"], "inheritanceMode": "additive", "priority": 40},
        )
        stored = await store.get_role(TENANT, role.role_id)
        assert stored.permissions["crm"]["leads"]["operations"] == ["read", "create"]
        assert stored.permissions["crm"]["contacts"]["operations"] == ["read", "update"]
        assert stored.metadata["inheritance"] == {
            "parentRoles": ["role-editor"],
            "inheritanceMode": "additive",
            "priority": 40,
        }
        assert stored.priority == 40

    @pytest.mark.asyncio
    async def test_metadata_and_default_flag(self, service: RoleService) -> None:
        """Extra metadata is stored; isDefault marks the role default."""
        role = await service.create_role(TENANT, "Newcomer", ["crm.leads.read"], metadata={"isDefault": True})
        assert role.is_default is True
        assert role.metadata == {"isDefault": True}


class TestUpdateRole:
    """Tests for RoleService.update_role."""

    @pytest.mark.asyncio
    async def test_update(
        self, service: RoleService, events: EventEmitter, store: InMemoryPermissionStore, publisher: AsyncMock
    ) -> None:
        """Given fields change and an event lists them."""
        await service.update_role(TENANT, "role-viewer", description="Read only", priority=15, updated_by="admin-1")
        await events.drain()

        stored = await store.get_role(TENANT, "role-viewer")
        assert stored.description == "Read only"
        assert stored.priority == 15
        publisher.publish.assert_awaited_once_with(
            ROLE_UPDATED, TENANT, "role-viewer", {"changes": ["description", "priority"], "updated_by": "admin-1"}
        )

    @pytest.mark.asyncio
    async def test_system_role(self, service: RoleService) -> None:
        """System roles are immutable."""
        with pytest.raises(ConflictError, match="Cannot modify system roles"):
            await service.update_role(TENANT, "role-owner", description="x")

    @pytest.mark.asyncio
    async def test_not_found(self, service: RoleService) -> None:
        """Unknown roles raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await service.update_role(TENANT, "role-ghost", description="x")

    @pytest.mark.asyncio
    async def test_empty_permissions(self, service: RoleService) -> None:
        """Permissions that validate to nothing are a conflict."""
        with pytest.raises(ConflictError, match="empty permissions"):
            await service.update_role(TENANT, "role-viewer", permissions={"metadata": {}})

    @pytest.mark.asyncio
    async def test_permissions_keep_metadata(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Replacing permissions keeps the stored inheritance metadata."""
        await service.update_role(TENANT, "role-child", permissions=["crm.leads.export"])
        stored = await store.get_role(TENANT, "role-child")
        assert stored.inheritance is not None
        assert stored.permissions["crm"]["leads"]["operations"] == ["export"]

    @pytest.mark.asyncio
    async def test_json_string_role_keeps_metadata(
        self, service: RoleService, store: InMemoryPermissionStore
    ) -> None:
        """Metadata stored inside a JSON-string blob survives a permission update."""
        blob = json.dumps({"crm": {"leads": ["read"]}, "metadata": {"inheritance": {"parentRoles": ["role-editor"]}}})
        store.add_role(Role(role_id="role-json", tenant_id=TENANT, name="Json", permissions=blob))

        await service.update_role(TENANT, "role-json", permissions=["crm.leads.export"])

        stored = await store.get_role(TENANT, "role-json")
        assert stored.inheritance.parent_roles == ["role-editor"]

    @pytest.mark.asyncio
    async def test_rename_conflict(self, service: RoleService) -> None:
        """Renaming onto an existing name is a conflict."""
        with pytest.raises(ConflictError):
            await service.update_role(TENANT, "role-viewer", name="Editor")

    @pytest.mark.asyncio
    async def test_no_changes(self, service: RoleService, events: EventEmitter, publisher: AsyncMock) -> None:
        """Nothing to change publishes nothing."""
        role = await service.update_role(TENANT, "role-viewer")
        await events.drain()
        assert role.role_id == "role-viewer"
        publisher.publish.assert_not_awaited()


class TestDeleteRole:
    """Tests for RoleService.delete_role."""

    @pytest.mark.asyncio
    async def test_assigned_without_force(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Assigned roles are left untouched."""
        with pytest.raises(ConflictError, match="assigned to 2 user"):
            await service.delete_role(TENANT, "role-viewer")
        assert await store.get_role(TENANT, "role-viewer") is not None
        assert await store.count_role_assignments(TENANT, "role-viewer") == 2

    @pytest.mark.asyncio
    async def test_force(
        self, service: RoleService, events: EventEmitter, store: InMemoryPermissionStore, publisher: AsyncMock
    ) -> None:
        """Force removes the role and every assignment."""
        result = await service.delete_role(TENANT, "role-viewer", force=True, deleted_by="admin-1")
        await events.drain()

        assert result.deleted is True
        assert result.users_affected == 2
        assert await store.get_role(TENANT, "role-viewer") is None
        assert await store.get_role_assignments(TENANT, "role-viewer") == []
        event_type, tenant_id, entity_id, payload = publisher.publish.await_args.args
        assert (event_type, tenant_id, entity_id) == (ROLE_DELETED, TENANT, "role-viewer")
        assert payload["users_affected"] == 2
        assert payload["force"] is True

    @pytest.mark.asyncio
    async def test_transfer(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Direct assignments move; organization assignments are dropped."""
        result = await service.delete_role(TENANT, "role-viewer", transfer_users_to="role-editor")

        assert result.transferred_to == "role-editor"
        moved = await store.get_role_assignments(TENANT, "role-editor")
        assert {a.user_id for a in moved} == {"user-2", "user-4"}
        assert await store.get_user_assignments("user-3", TENANT) == []

    @pytest.mark.asyncio
    async def test_transfer_target_missing(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """A missing transfer target aborts the delete."""
        with pytest.raises(ConflictError, match="not found"):
            await service.delete_role(TENANT, "role-viewer", transfer_users_to="role-ghost")
        assert await store.get_role(TENANT, "role-viewer") is not None

    @pytest.mark.asyncio
    async def test_transfer_to_self(self, service: RoleService) -> None:
        """Users cannot be transferred to the role being deleted."""
        with pytest.raises(ConflictError):
            await service.delete_role(TENANT, "role-viewer", transfer_users_to="role-viewer")

    @pytest.mark.asyncio
    async def test_unassigned(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Roles nobody holds are deleted without force."""
        result = await service.delete_role(TENANT, "role-restricted")
        assert result.users_affected == 0
        assert await store.get_role(TENANT, "role-restricted") is None

    @pytest.mark.asyncio
    async def test_system_and_super_admin(self, service: RoleService) -> None:
        """System and super-admin roles are protected even with force."""
        with pytest.raises(ConflictError, match="system roles"):
            await service.delete_role(TENANT, "role-owner", force=True)
        with pytest.raises(ConflictError, match="super administrator"):
            await service.delete_role(TENANT, "role-admin", force=True)

    @pytest.mark.asyncio
    async def test_not_found(self, service: RoleService) -> None:
        """Unknown roles raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await service.delete_role(TENANT, "role-ghost")


class TestCloneAndExport:
    """Tests for clone_role and export_role."""

    @pytest.mark.asyncio
    async def test_clone(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Clones merge added permissions, drop resources and replace restriction sections."""
        clone = await service.clone_role(
            TENANT,
            "role-restricted",
            "Night Shift",
            add_permissions={"hr": {"leave": ["read"]}},
            remove_resources=["crm.contacts"],
            update_restrictions={"timeRestrictions": {"allowedHours": [22, 23]}},
        )
        stored = await store.get_role(TENANT, clone.role_id)

        assert set(stored.permissions) == {"crm", "hr"}
        assert "contacts" not in stored.permissions["crm"]
        assert stored.permissions["hr"]["leave"]["operations"] == ["read"]
        assert stored.restrictions["timeRestrictions"]["allowedHours"] == [22, 23]
        assert stored.restrictions["ipRestrictions"]["blockedIPs"] == ["10.0.0.66"]

    @pytest.mark.asyncio
    async def test_clone_super_admin_is_deletable(self, service: RoleService) -> None:
        """A clone of a super-admin role drops below the protected priority."""
        clone = await service.clone_role(TENANT, "role-admin", "Deputy Administrator")
        assert clone.priority == 999

        result = await service.delete_role(TENANT, clone.role_id)
        assert result.deleted is True

    @pytest.mark.asyncio
    async def test_clone_missing_source(self, service: RoleService) -> None:
        """Cloning an unknown role fails."""
        with pytest.raises(NotFoundError, match="Source role not found"):
            await service.clone_role(TENANT, "role-ghost", "Copy")

    @pytest.mark.asyncio
    async def test_export(self, service: RoleService) -> None:
        """Exports carry a version, the role's maps and its flags."""
        exported = await service.export_role(TENANT, "role-flat")
        assert exported["export_version"] == "1.0"
        assert exported["role"]["name"] == "HR Clerk"
        assert exported["role"]["permissions"] == {"hr": {"employees": ["read", "update"]}}
        assert exported["role"]["metadata"] == {"is_system_role": False, "priority": 0}


class TestBulkOperations:
    """Tests for bulk_role_operation."""

    @pytest.mark.asyncio
    async def test_partial_failure(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Per-role failures are collected, successes applied."""
        result = await service.bulk_role_operation(TENANT, "deactivate", ["role-viewer", "role-owner", "role-ghost"])
        assert result["summary"] == {"total": 3, "success": 1, "failure": 2}
        assert [f["role_id"] for f in result["failed"]] == ["role-owner", "role-ghost"]
        assert result["failed"][1]["code"] == "NOT_FOUND"
        assert (await store.get_role(TENANT, "role-viewer")).is_active is False

    @pytest.mark.asyncio
    async def test_export(self, service: RoleService) -> None:
        """Exports are returned per role."""
        result = await service.bulk_role_operation(TENANT, "export", ["role-flat"])
        assert result["successful"][0]["result"]["role"]["name"] == "HR Clerk"

    @pytest.mark.asyncio
    async def test_delete_with_force(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Bulk delete honours force."""
        result = await service.bulk_role_operation(TENANT, "delete", ["role-viewer", "role-flat"], force=True)
        assert result["summary"]["success"] == 2
        assert await store.get_role(TENANT, "role-flat") is None

    @pytest.mark.asyncio
    async def test_unknown_operation(self, service: RoleService) -> None:
        """Unknown operations are rejected up front."""
        with pytest.raises(ValidationError, match="Unknown operation"):
            await service.bulk_role_operation(TENANT, "archive", ["role-viewer"])

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, service: RoleService, store: InMemoryPermissionStore) -> None:
        """Store outages abort the batch."""
        store.available = False
        with pytest.raises(StoreUnavailableError):
            await service.bulk_role_operation(TENANT, "activate", ["role-viewer"])


class TestEvents:
    """Tests for event publication around mutations."""

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_undo(
        self, store: InMemoryPermissionStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failing publisher is logged; the mutation stands."""
        publisher = AsyncMock()
        publisher.publish.side_effect = ConnectionError("redis down")
        events = EventEmitter(publisher)
        service = RoleService(store, events=events)

        role = await service.create_role(TENANT, "Auditor", ["crm.leads.read"])
        await events.drain()

        assert await store.get_role(TENANT, role.role_id) is not None
        assert "Failed to publish role_created" in caplog.text


def test_drop_resources() -> None:
    """Apps and modules are removed; emptied apps disappear."""
    permissions = {"crm": {"leads": ["read"]}, "hr": {"leave": ["read"]}, "metadata": {"a": 1}}
    assert drop_resources(permissions, ["crm.leads", "hr", "metadata"]) == {"metadata": {"a": 1}}
    assert permissions["crm"] == {"leads": ["read"]}
