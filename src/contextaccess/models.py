"""Core data models for the access engine.

Pydantic models for the records the engine reads from the store and the
results it derives. Restriction models accept the camelCase wire keys
(``allowedHours``, ``blockedIPs``, ...) as well as snake_case names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import PermissionDataError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_live(is_active: bool, expires_at: datetime | None, now: datetime | None) -> bool:
    if not is_active:
        return False
    if expires_at is None:
        return True
    current = now or utcnow()
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at > current


# ── Restrictions ────────────────────────────────────────

_WIRE = ConfigDict(populate_by_name=True, extra="ignore")


class TimeRestrictions(BaseModel):
    """When access is allowed. Days are 0 = Sunday .. 6 = Saturday."""

    model_config = _WIRE

    allowed_hours: Optional[list[int]] = Field(default=None, alias="allowedHours")
    allowed_days: Optional[list[int]] = Field(default=None, alias="allowedDays")
    timezone: Optional[str] = None
    block_weekends: bool = Field(default=False, alias="blockWeekends")
    block_holidays: bool = Field(default=False, alias="blockHolidays")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        """Reject names the IANA database does not know."""
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


class IPRestrictions(BaseModel):
    """Where access is allowed from."""

    model_config = _WIRE

    allowed_ips: list[str] = Field(default_factory=list, alias="allowedIPs")
    blocked_ips: list[str] = Field(default_factory=list, alias="blockedIPs")
    allow_vpn: Optional[bool] = Field(default=None, alias="allowVPN")


class DataRestrictions(BaseModel):
    """Volume limits on data handled through a role."""

    model_config = _WIRE

    max_records_per_day: Optional[float] = Field(default=None, alias="maxRecordsPerDay")
    max_exports_per_month: Optional[float] = Field(default=None, alias="maxExportsPerMonth")
    allowed_file_types: Optional[list[str]] = Field(default=None, alias="allowedFileTypes")
    max_file_size: Optional[float] = Field(default=None, alias="maxFileSize")
    data_retention_days: Optional[float] = Field(default=None, alias="dataRetentionDays")
    custom_rules: Optional[dict[str, Any]] = Field(default=None, alias="customRules")


class FeatureRestrictions(BaseModel):
    """Feature switches attached to a role."""

    model_config = _WIRE

    allow_bulk_operations: Optional[bool] = Field(default=None, alias="allowBulkOperations")
    allow_api_access: Optional[bool] = Field(default=None, alias="allowAPIAccess")
    allow_integrations: Optional[bool] = Field(default=None, alias="allowIntegrations")
    max_api_calls: Optional[float] = Field(default=None, alias="maxApiCalls")


class RestrictionSet(BaseModel):
    """All restrictions attached to a role. Missing sections are empty."""

    model_config = _WIRE

    time_restrictions: TimeRestrictions = Field(default_factory=TimeRestrictions, alias="timeRestrictions")
    ip_restrictions: IPRestrictions = Field(default_factory=IPRestrictions, alias="ipRestrictions")
    data_restrictions: DataRestrictions = Field(default_factory=DataRestrictions, alias="dataRestrictions")
    feature_restrictions: FeatureRestrictions = Field(
        default_factory=FeatureRestrictions, alias="featureRestrictions"
    )

    def to_wire(self) -> dict[str, Any]:
        """Storage form: camelCase keys, unset fields omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ── Roles, assignments, overrides ───────────────────────


class InheritanceSpec(BaseModel):
    """Parent roles a role inherits from, stored under ``metadata.inheritance``."""

    model_config = _WIRE

    parent_roles: list[str] = Field(default_factory=list, alias="parentRoles")
    # None means the engine's configured default mode
    inheritance_mode: Optional[str] = Field(default=None, alias="inheritanceMode")
    priority: int = 0


class Role(BaseModel):
    """A tenant role.

    ``permissions`` is the raw stored blob: a hierarchical map, a flat code
    list, or a JSON string of either. It is decoded on use, not on load,
    so one corrupt role cannot break loading of the others.
    """

    role_id: str
    tenant_id: str
    name: str
    description: Optional[str] = None
    permissions: Any = Field(default_factory=dict)
    restrictions: Any = Field(default_factory=dict)
    priority: int = 0
    is_system_role: bool = False
    is_active: bool = True
    is_default: bool = False
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def metadata(self) -> dict[str, Any]:
        """The ``metadata`` block of the stored permissions, in any encoding.

        Empty for flat lists and for blobs that cannot be decoded.
        """
        # normalizer imports the permissions package, which imports this module
        from .permissions.normalizer import decode_permissions, to_hierarchical

        try:
            perms = to_hierarchical(decode_permissions(self.permissions))
        except PermissionDataError:
            return {}
        meta = perms.get("metadata")
        return meta if isinstance(meta, dict) else {}

    @property
    def inheritance(self) -> InheritanceSpec | None:
        """Parsed ``metadata.inheritance``; None when absent or naming no parents.

        Raises:
            PermissionDataError: If the inheritance block is malformed.
        """
        raw = self.metadata.get("inheritance")
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise PermissionDataError(
                f"Role {self.role_id} has a malformed inheritance block", role_id=self.role_id
            )
        try:
            spec = InheritanceSpec.model_validate(raw)
        except (PydanticValidationError, ValueError) as e:
            raise PermissionDataError(
                f"Role {self.role_id} has a malformed inheritance block: {e}", role_id=self.role_id
            ) from e
        return spec if spec.parent_roles else None


class AssignmentSource(str, Enum):
    """How a user came to hold a role."""

    DIRECT = "direct"
    ORGANIZATION = "organization"  # via organization membership


class RoleAssignment(BaseModel):
    """A user's membership in a role."""

    assignment_id: Optional[str] = None
    user_id: str
    role_id: str
    tenant_id: str
    is_active: bool = True
    is_temporary: bool = False
    expires_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    assigned_at: datetime = Field(default_factory=utcnow)
    source: AssignmentSource = AssignmentSource.DIRECT

    def is_effective(self, now: datetime | None = None) -> bool:
        """Active and not expired."""
        return _is_live(self.is_active, self.expires_at, now)


class UserPermissionOverride(BaseModel):
    """Extra permissions for one user on one module, independent of roles."""

    override_id: Optional[str] = None
    user_id: str
    tenant_id: str
    app_id: str
    module_id: str
    permissions: Any = Field(default_factory=list)
    reason: str = "Individual access"
    expires_at: Optional[datetime] = None
    is_active: bool = True

    def is_effective(self, now: datetime | None = None) -> bool:
        return _is_live(self.is_active, self.expires_at, now)


# ── Application catalog ─────────────────────────────────


class Application(BaseModel):
    app_id: str
    app_code: str
    name: str = ""


class ApplicationModule(BaseModel):
    module_id: str
    app_id: str
    module_code: str
    name: str = ""


class TenantApplication(BaseModel):
    """A tenant's enabled application and its module override list."""

    tenant_id: str
    app_id: str
    subscription_tier: str = "free"
    enabled_modules: list[str] = Field(default_factory=list)
    is_enabled: bool = True


# ── Derived results ─────────────────────────────────────


class PermissionSource(BaseModel):
    """Provenance record: which role or override contributed a code."""

    source: Literal["role", "user_override"]
    permission: str
    role_id: Optional[str] = None
    role_name: Optional[str] = None
    reason: Optional[str] = None


class PermissionSummary(BaseModel):
    total: int = 0
    role_count: int = 0
    override_count: int = 0
    enabled_apps: int = 0


class EffectivePermissions(BaseModel):
    """Aggregated permissions of one user in one tenant."""

    user_id: str
    tenant_id: str
    permissions: list[str] = Field(default_factory=list)
    sources: list[PermissionSource] = Field(default_factory=list)
    summary: PermissionSummary = Field(default_factory=PermissionSummary)

    def has(self, code: str) -> bool:
        return code in self.permissions


class AccessContext(BaseModel):
    """Request facts the restriction evaluator checks."""

    access_time: Optional[datetime] = None
    ip_address: Optional[str] = None
    requested_resource: Optional[str] = None
    requested_action: Optional[str] = None
    user_id: Optional[str] = None
    # Permission map checked for resource/action; the role's own when omitted
    permissions: Optional[Any] = None


class RoleDeletionResult(BaseModel):
    deleted: bool
    users_affected: int = 0
    transferred_to: Optional[str] = None


__all__ = [
    "AccessContext",
    "Application",
    "ApplicationModule",
    "AssignmentSource",
    "DataRestrictions",
    "EffectivePermissions",
    "FeatureRestrictions",
    "IPRestrictions",
    "InheritanceSpec",
    "PermissionSource",
    "PermissionSummary",
    "RestrictionSet",
    "Role",
    "RoleAssignment",
    "RoleDeletionResult",
    "TenantApplication",
    "TimeRestrictions",
    "UserPermissionOverride",
    "utcnow",
]
