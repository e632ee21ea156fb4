"""Restriction evaluation.

Provides:
- ``evaluate_access()`` — time → IP → resource/action checks, first failure wins.
- ``AccessDecision`` — allow/deny result with reason.
- ``RoleAccessValidator`` — evaluates a stored role's own restrictions and permissions.

Each check runs only when the context carries the facts it needs: no
``access_time`` skips the time check, no ``ip_address`` skips the IP check,
and the resource check needs both ``requested_resource`` and
``requested_action``.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from ..exceptions import PermissionDataError
from ..models import AccessContext, IPRestrictions, RestrictionSet, TimeRestrictions
from .constants import METADATA_KEY, infer_level, level_rank, required_level
from .normalizer import decode_permissions, find_resource, to_hierarchical
from .validation import check_restrictions

if TYPE_CHECKING:
    from ..store.protocol import PermissionStore

logger = logging.getLogger(__name__)

RestrictionInput = Union[RestrictionSet, Mapping[str, Any], str, None]
ContextInput = Union[AccessContext, Mapping[str, Any], None]


@dataclass(frozen=True)
class AccessDecision:
    """Result of a restriction evaluation."""

    allowed: bool = True
    reason: Optional[str] = None
    role_data: Optional[dict[str, Any]] = None

    @property
    def denied(self) -> bool:
        return not self.allowed

    @classmethod
    def deny(cls, reason: str) -> "AccessDecision":
        return cls(allowed=False, reason=reason)


_ALLOW = AccessDecision(allowed=True)


def coerce_restrictions(restrictions: RestrictionInput) -> RestrictionSet:
    """Lenient conversion of stored restriction data; invalid fields are dropped."""
    if isinstance(restrictions, RestrictionSet):
        return restrictions
    return check_restrictions(restrictions).value


# ── Individual checks ───────────────────────────────────


def _local_time(access_time: datetime, tz_name: str | None) -> datetime:
    """Convert an aware time into the restriction timezone. Naive times are already local."""
    if tz_name and access_time.tzinfo is not None:
        return access_time.astimezone(ZoneInfo(tz_name))
    return access_time


def check_time(time_restrictions: TimeRestrictions, access_time: datetime) -> AccessDecision:
    local = _local_time(access_time, time_restrictions.timezone)
    hour = local.hour
    day = (local.weekday() + 1) % 7  # 0 = Sunday

    if time_restrictions.allowed_hours is not None and hour not in time_restrictions.allowed_hours:
        return AccessDecision.deny(f"Access not allowed at hour {hour}")
    if time_restrictions.allowed_days is not None and day not in time_restrictions.allowed_days:
        return AccessDecision.deny(f"Access not allowed on day {day}")
    if time_restrictions.block_weekends and day in (0, 6):
        return AccessDecision.deny("Access blocked on weekends")
    # block_holidays needs a holiday calendar; accepted but not enforced
    return _ALLOW


def _ip_matches(ip: str, entries: Sequence[str]) -> bool:
    """Exact string match, or membership in a CIDR entry."""
    if ip in entries:
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for entry in entries:
        if "/" not in entry:
            continue
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def check_ip(ip_restrictions: IPRestrictions, ip_address: str) -> AccessDecision:
    if ip_restrictions.blocked_ips and _ip_matches(ip_address, ip_restrictions.blocked_ips):
        return AccessDecision.deny("IP address is blocked")
    if ip_restrictions.allowed_ips and not _ip_matches(ip_address, ip_restrictions.allowed_ips):
        return AccessDecision.deny("IP address not in allowed list")
    return _ALLOW


def check_resource(permissions: Any, resource: str, action: str) -> AccessDecision:
    """Check an action against the permission map entry of a resource."""
    try:
        data = to_hierarchical(decode_permissions(permissions))
    except PermissionDataError as e:
        logger.warning("Unreadable permissions while checking %s: %s", resource, e)
        data = {}

    entry = find_resource(data, resource)
    if entry is None:
        return AccessDecision.deny(f"No permissions for resource: {resource}")

    if isinstance(entry, (list, tuple)):
        operations: Optional[list[str]] = list(entry)
        level = infer_level(operations)
    elif isinstance(entry, Mapping):
        ops = entry.get("operations")
        operations = list(ops) if isinstance(ops, (list, tuple)) else None
        level = entry.get("level")
    else:
        operations, level = None, None

    if operations is not None and action not in operations:
        return AccessDecision.deny(f"Action '{action}' not allowed for resource '{resource}'")
    if level_rank(level) < level_rank(required_level(action)):
        return AccessDecision.deny(f"Insufficient permission level for action '{action}'")
    return _ALLOW


# ── Evaluation ──────────────────────────────────────────


def evaluate_access(restrictions: RestrictionInput, context: ContextInput) -> AccessDecision:
    """Evaluate restrictions against a request context.

    Example::

        evaluate_access(
            {"timeRestrictions": {"allowedHours": list(range(9, 18))}},
            AccessContext(access_time=datetime(2024, 1, 3, 20, 0)),
        )
        # AccessDecision(allowed=False, reason="Access not allowed at hour 20")
    """
    rules = coerce_restrictions(restrictions)
    ctx = context if isinstance(context, AccessContext) else AccessContext.model_validate(context or {})

    if ctx.access_time is not None:
        decision = check_time(rules.time_restrictions, ctx.access_time)
        if decision.denied:
            return decision

    if ctx.ip_address:
        decision = check_ip(rules.ip_restrictions, ctx.ip_address)
        if decision.denied:
            return decision

    if ctx.requested_resource and ctx.requested_action:
        decision = check_resource(ctx.permissions or {}, ctx.requested_resource, ctx.requested_action)
        if decision.denied:
            return decision

    return AccessDecision(allowed=True)


class RoleAccessValidator:
    """Evaluate a stored role against a request context."""

    def __init__(self, store: PermissionStore) -> None:
        self._store = store

    async def validate_role_access(self, tenant_id: str, role_id: str, context: ContextInput = None) -> AccessDecision:
        """Run :func:`evaluate_access` with the role's restrictions and permissions.

        The context's ``permissions``, when given, replace the role's own for
        the resource check. On success ``role_data`` carries the role's name,
        permissions, restrictions and metadata.
        """
        role = await self._store.get_role(tenant_id, role_id)
        if role is None:
            return AccessDecision.deny("Role not found")

        try:
            permissions = to_hierarchical(decode_permissions(role.permissions))
        except PermissionDataError as e:
            logger.warning("Role %s has unreadable permissions: %s", role_id, e)
            permissions = {}

        ctx = context if isinstance(context, AccessContext) else AccessContext.model_validate(context or {})
        if ctx.permissions is None:
            ctx = ctx.model_copy(update={"permissions": permissions})

        restrictions = coerce_restrictions(role.restrictions)
        decision = evaluate_access(restrictions, ctx)
        if decision.denied:
            logger.info("Role %s denied in tenant %s: %s", role_id, tenant_id, decision.reason)
            return decision

        metadata = permissions.get(METADATA_KEY)
        return AccessDecision(
            allowed=True,
            role_data={
                "name": role.name,
                "permissions": permissions,
                "restrictions": restrictions.to_wire(),
                "metadata": metadata if isinstance(metadata, dict) else {},
            },
        )


__all__ = [
    "AccessDecision",
    "RoleAccessValidator",
    "check_ip",
    "check_resource",
    "check_time",
    "coerce_restrictions",
    "evaluate_access",
]
