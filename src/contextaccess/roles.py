"""Role administration.

``RoleService`` implements the mutations the engine guards: create, update,
delete (with transfer or force), clone, export and bulk operations. Every
mutation is validated before it reaches the store, and publishes an event
afterwards without waiting for it.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Sequence

from .events import ROLE_CREATED, ROLE_DELETED, ROLE_UPDATED, EventEmitter
from .exceptions import ConflictError, ContextAccessError, DependencyFailureError, NotFoundError, ValidationError
from .logging import get_access_logger, safe_preview
from .models import InheritanceSpec, RestrictionSet, Role, RoleDeletionResult, utcnow
from .permissions.constants import METADATA_KEY, InheritanceMode
from .permissions.inheritance import RoleInheritanceResolver, merge_role_inheritance
from .permissions.normalizer import decode_permissions, strip_metadata, to_hierarchical
from .permissions.restrictions import coerce_restrictions
from .permissions.validation import KnownOperations, validate_permission_structure, validate_restrictions

if TYPE_CHECKING:
    from .store.protocol import PermissionStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
SUPER_ADMIN_PRIORITY = 1000

BULK_OPERATIONS = ("delete", "activate", "deactivate", "export")


def drop_resources(permissions: dict[str, Any], resources: Iterable[str]) -> dict[str, Any]:
    """Copy of a map without the given ``app`` or ``app.module`` resources."""
    result = {k: (dict(v) if isinstance(v, dict) else v) for k, v in permissions.items()}
    for resource in resources:
        if resource == METADATA_KEY:
            continue
        if resource in result:
            del result[resource]
            continue
        app, _, module = resource.partition(".")
        node = result.get(app)
        if module and isinstance(node, dict):
            node.pop(module, None)
            if not node:
                del result[app]
    return result


class RoleService:
    """Create, update, delete, clone and export tenant roles."""

    def __init__(
        self,
        store: PermissionStore,
        events: EventEmitter | None = None,
        resolver: RoleInheritanceResolver | None = None,
        super_admin_priority: int = SUPER_ADMIN_PRIORITY,
    ) -> None:
        self._store = store
        self._events = events or EventEmitter()
        self._resolver = resolver or RoleInheritanceResolver(store)
        self._super_admin_priority = super_admin_priority

    async def _get_role(self, tenant_id: str, role_id: str, message: str = "Role not found") -> Role:
        role = await self._store.get_role(tenant_id, role_id)
        if role is None:
            raise NotFoundError(message, role_id=role_id, tenant_id=tenant_id)
        return role

    async def _ensure_name_free(self, tenant_id: str, name: str, exclude_role_id: str | None = None) -> None:
        existing = await self._store.find_role_by_name(tenant_id, name)
        if existing is not None and existing.role_id != exclude_role_id:
            raise ConflictError(f'Role with name "{name}" already exists', name=name)

    # ── Create ──

    async def create_role(
        self,
        tenant_id: str,
        name: str,
        permissions: Any,
        restrictions: Any = None,
        *,
        description: Optional[str] = None,
        inheritance: InheritanceSpec | Mapping[str, Any] | None = None,
        metadata: Optional[Mapping[str, Any]] = None,
        priority: int = 0,
        created_by: Optional[str] = None,
        known_operations: KnownOperations = None,
    ) -> Role:
        """Create a role.

        With ``inheritance`` naming parent roles, the parents are merged into
        ``permissions`` before validation, and the inheritance settings are
        kept under ``metadata.inheritance`` for later resolution.

        Raises:
            ConflictError: A role with this name already exists.
            ValidationError: Permissions or restrictions are invalid.
        """
        await self._ensure_name_free(tenant_id, name)

        spec = InheritanceSpec.model_validate(inheritance) if inheritance is not None else None
        effective = permissions
        if spec is not None and spec.parent_roles:
            effective = await self._resolver.resolve(permissions, spec.parent_roles, spec.inheritance_mode, tenant_id)
            priority = spec.priority or priority

        validated = validate_permission_structure(effective, known_operations)
        validated_restrictions = validate_restrictions(restrictions)

        own_metadata = validated.get(METADATA_KEY)
        role_metadata = {**(own_metadata if isinstance(own_metadata, dict) else {}), **(metadata or {})}
        if spec is not None:
            role_metadata["inheritance"] = spec.model_dump(by_alias=True, exclude_none=True)
        stored = strip_metadata(validated)
        if role_metadata:
            stored[METADATA_KEY] = role_metadata

        role = Role(
            role_id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            name=name,
            description=description,
            permissions=stored,
            restrictions=validated_restrictions.to_wire(),
            priority=priority,
            is_default=bool(role_metadata.get("isDefault", False)),
            created_by=created_by,
        )
        created = await self._store.create_role(role)

        log = get_access_logger(__name__, tenant_id=tenant_id, user_id=created_by)
        log.info("Role created: %s permissions=%s", name, safe_preview(stored), role=created)
        self._events.emit(ROLE_CREATED, tenant_id, created.role_id, {"name": name, "created_by": created_by})
        return created

    # ── Update ──

    async def update_role(
        self,
        tenant_id: str,
        role_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permissions: Any = None,
        restrictions: Any = None,
        is_active: Optional[bool] = None,
        priority: Optional[int] = None,
        updated_by: Optional[str] = None,
        known_operations: KnownOperations = None,
    ) -> Role:
        """Update a non-system role. Only the given fields change.

        Raises:
            NotFoundError: The role does not exist.
            ConflictError: System role, duplicate name, or permissions that
                validate to nothing.
            ValidationError: Permissions or restrictions are invalid.
        """
        role = await self._get_role(tenant_id, role_id)
        if role.is_system_role:
            raise ConflictError("Cannot modify system roles", role_id=role_id)

        changes: dict[str, Any] = {}
        if name is not None and name != role.name:
            await self._ensure_name_free(tenant_id, name, exclude_role_id=role_id)
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if permissions is not None:
            validated = strip_metadata(validate_permission_structure(permissions, known_operations))
            if not validated:
                raise ConflictError(
                    "Permission validation resulted in empty permissions",
                    role_id=role_id,
                )
            if role.metadata:
                validated[METADATA_KEY] = role.metadata
            changes["permissions"] = validated
        if restrictions is not None:
            changes["restrictions"] = validate_restrictions(restrictions).to_wire()
        if is_active is not None:
            changes["is_active"] = is_active
        if priority is not None:
            changes["priority"] = priority

        if not changes:
            return role

        updated = await self._store.update_role(role.model_copy(update={**changes, "updated_at": utcnow()}))
        logger.info("Role %s updated in tenant %s: %s", role_id, tenant_id, ", ".join(sorted(changes)))
        self._events.emit(
            ROLE_UPDATED,
            tenant_id,
            role_id,
            {"changes": sorted(changes), "updated_by": updated_by},
        )
        return updated

    # ── Delete ──

    async def delete_role(
        self,
        tenant_id: str,
        role_id: str,
        force: bool = False,
        transfer_users_to: Optional[str] = None,
        deleted_by: Optional[str] = None,
    ) -> RoleDeletionResult:
        """Delete a role and deal with its assignments.

        - ``transfer_users_to``: direct assignments move to that role;
          organization assignments are removed.
        - ``force``: all assignments are removed.
        - neither: a role with active assignments is left untouched and
          ConflictError is raised.

        Raises:
            NotFoundError: The role does not exist.
            ConflictError: System role, super-admin role, assigned role
                without force/transfer, or a bad transfer target.
        """
        role = await self._get_role(tenant_id, role_id)
        if role.is_system_role:
            raise ConflictError("Cannot delete system roles", role_id=role_id)
        if role.priority >= self._super_admin_priority:
            raise ConflictError("Cannot delete the super administrator role", role_id=role_id)

        if transfer_users_to is not None:
            if transfer_users_to == role_id:
                raise ConflictError("Cannot transfer users to the role being deleted", role_id=role_id)
            if await self._store.get_role(tenant_id, transfer_users_to) is None:
                raise ConflictError(f"Transfer target role {transfer_users_to} not found", role_id=role_id)
        elif not force:
            assigned = await self._store.count_role_assignments(tenant_id, role_id)
            if assigned:
                raise ConflictError(
                    f"Cannot delete role that is assigned to {assigned} user(s)",
                    role_id=role_id,
                    assignments=assigned,
                )

        users_affected = await self._store.delete_role(
            tenant_id,
            role_id,
            transfer_to=transfer_users_to,
            force=force,
        )

        logger.info(
            "Role %s (%s) deleted in tenant %s, %d users affected",
            role_id,
            role.name,
            tenant_id,
            users_affected,
        )
        self._events.emit(
            ROLE_DELETED,
            tenant_id,
            role_id,
            {
                "name": role.name,
                "deleted_by": deleted_by,
                "users_affected": users_affected,
                "transferred_to": transfer_users_to,
                "force": force,
            },
        )
        return RoleDeletionResult(deleted=True, users_affected=users_affected, transferred_to=transfer_users_to)

    # ── Clone / export ──

    async def clone_role(
        self,
        tenant_id: str,
        source_role_id: str,
        name: str,
        *,
        description: Optional[str] = None,
        add_permissions: Any = None,
        remove_resources: Sequence[str] = (),
        update_restrictions: Optional[Mapping[str, Any]] = None,
        created_by: Optional[str] = None,
    ) -> Role:
        """Create a new role from an existing one.

        ``add_permissions`` is merged additively, ``remove_resources`` lists
        ``app`` or ``app.module`` keys to drop, and ``update_restrictions``
        replaces whole restriction sections.
        """
        source = await self._get_role(tenant_id, source_role_id, "Source role not found")
        await self._ensure_name_free(tenant_id, name)

        permissions = to_hierarchical(decode_permissions(source.permissions))
        if add_permissions is not None:
            permissions = merge_role_inheritance(permissions, [add_permissions], InheritanceMode.ADDITIVE)
        if remove_resources:
            permissions = drop_resources(permissions, remove_resources)

        restrictions = coerce_restrictions(source.restrictions).to_wire()
        if update_restrictions:
            overlay = coerce_restrictions(update_restrictions).model_dump(
                by_alias=True, exclude_none=True, include=_sections(update_restrictions)
            )
            restrictions = {**restrictions, **overlay}

        validated = validate_permission_structure(permissions)
        role = Role(
            role_id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            name=name,
            description=description if description is not None else source.description,
            permissions=validated,
            restrictions=validate_restrictions(restrictions).to_wire(),
            # a clone never inherits super-admin protection
            priority=min(source.priority, self._super_admin_priority - 1),
            created_by=created_by,
        )
        created = await self._store.create_role(role)
        logger.info("Role %s cloned from %s in tenant %s", created.role_id, source_role_id, tenant_id)
        self._events.emit(
            ROLE_CREATED,
            tenant_id,
            created.role_id,
            {"name": name, "created_by": created_by, "cloned_from": source_role_id},
        )
        return created

    async def export_role(self, tenant_id: str, role_id: str) -> dict[str, Any]:
        """Portable description of a role."""
        role = await self._get_role(tenant_id, role_id)
        return {
            "export_version": EXPORT_VERSION,
            "exported_at": utcnow().isoformat(),
            "role": {
                "name": role.name,
                "description": role.description,
                "permissions": to_hierarchical(decode_permissions(role.permissions)),
                "restrictions": coerce_restrictions(role.restrictions).to_wire(),
                "metadata": {"is_system_role": role.is_system_role, "priority": role.priority},
            },
        }

    # ── Bulk ──

    async def bulk_role_operation(
        self,
        tenant_id: str,
        operation: str,
        role_ids: Sequence[str],
        *,
        force: bool = False,
        transfer_users_to: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Apply one operation to many roles, collecting per-role outcomes.

        Per-role NotFound/Conflict/Validation errors are reported in
        ``failed``; store failures propagate.
        """
        if operation not in BULK_OPERATIONS:
            raise ValidationError(errors=[f"Unknown operation: {operation}"])

        successful: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for role_id in role_ids:
            try:
                result: Any
                if operation == "delete":
                    result = await self.delete_role(
                        tenant_id,
                        role_id,
                        force=force,
                        transfer_users_to=transfer_users_to,
                        deleted_by=user_id,
                    )
                elif operation == "export":
                    result = await self.export_role(tenant_id, role_id)
                else:
                    result = await self.update_role(
                        tenant_id,
                        role_id,
                        is_active=operation == "activate",
                        updated_by=user_id,
                    )
            except DependencyFailureError:
                raise
            except ContextAccessError as e:
                failed.append({"role_id": role_id, "error": e.message, "code": e.code})
                continue
            successful.append({"role_id": role_id, "result": result})

        return {
            "successful": successful,
            "failed": failed,
            "summary": {"total": len(role_ids), "success": len(successful), "failure": len(failed)},
        }


def _sections(restrictions: Mapping[str, Any]) -> set[str]:
    """Snake-case names of the restriction sections present in a mapping."""
    names = set()
    for field_name, info in RestrictionSet.model_fields.items():
        if field_name in restrictions or info.alias in restrictions:
            names.add(field_name)
    return names


__all__ = [
    "BULK_OPERATIONS",
    "EXPORT_VERSION",
    "RoleService",
    "SUPER_ADMIN_PRIORITY",
    "drop_resources",
]
