"""Structural validation of permission maps and restriction sets.

Every check collects its findings into a :class:`ValidationReport` instead
of stopping at the first problem:

- ``errors`` make the input unusable (bad ``level``/``scope``, undecodable data);
- ``warnings`` describe what was dropped or ignored (unknown operations,
  invalid restriction fields).

``check_*`` functions return the report. ``validate_*`` functions return the
cleaned value or raise one :class:`~contextaccess.exceptions.ValidationError`
carrying every error.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import PermissionDataError, ValidationError
from ..models import RestrictionSet
from .constants import LEVEL_HIERARCHY, NON_PERMISSION_KEYS, SCOPE_HIERARCHY, PermissionScope
from .normalizer import FlatList, decode_permissions, is_resource_entry, to_structured

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

KnownOperations = Optional[Union[Mapping[str, Iterable[str]], Iterable[str]]]


@dataclass
class ValidationReport(Generic[_T]):
    """Outcome of validating one unit of data."""

    value: _T
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning("%s", message)

    def raise_for_errors(self, strict: bool = False) -> _T:
        """Return the value, or raise ValidationError with all problems.

        With ``strict=True`` warnings count as errors too.
        """
        problems = self.errors + (self.warnings if strict else [])
        if problems:
            raise ValidationError(errors=problems)
        return self.value


# ── Permission structure ────────────────────────────────


def _known_for(known: KnownOperations, resource: str) -> set[str] | None:
    if known is None:
        return None
    if isinstance(known, Mapping):
        ops = known.get(resource)
        return set(ops) if ops is not None else None
    return set(known)


def _check_entry(
    report: ValidationReport[dict[str, Any]],
    resource: str,
    value: Any,
    known: KnownOperations,
) -> Any:
    """Validate one resource value and return its cleaned form."""
    if isinstance(value, (list, tuple)):
        operations = list(value)
        cleaned: Any = operations
    elif isinstance(value, dict):
        cleaned = dict(value)
        level = cleaned.get("level")
        if level is not None and level not in LEVEL_HIERARCHY:
            report.error(f"Invalid permission level '{level}' for resource '{resource}'")
        scope = cleaned.get("scope")
        if scope is None:
            cleaned["scope"] = PermissionScope.OWN.value
        elif scope not in SCOPE_HIERARCHY:
            report.error(f"Invalid permission scope '{scope}' for resource '{resource}'")
        ops_raw = cleaned.get("operations", [])
        if not isinstance(ops_raw, (list, tuple)):
            report.error(f"Operations for resource '{resource}' must be a list")
            ops_raw = []
        operations = list(ops_raw)
    else:
        report.error(f"Invalid permission entry for resource '{resource}'")
        return value

    allowed = _known_for(known, resource)
    if allowed is not None:
        for op in operations:
            if op not in allowed:
                report.warn(f"Unknown operation '{op}' for resource '{resource}'")
    return cleaned


def _check_node(
    report: ValidationReport[dict[str, Any]],
    resource: str,
    node: Any,
    known: KnownOperations,
) -> Any:
    """Validate a resource or a map of nested sub-objects holding resources."""
    if isinstance(node, (list, tuple)) or is_resource_entry(node):
        return _check_entry(report, resource, node, known)
    if isinstance(node, dict):
        return {str(k): _check_node(report, f"{resource}.{k}", v, known) for k, v in node.items()}
    report.error(f"Invalid permission entry for resource '{resource}'")
    return node


def check_permission_structure(permissions: Any, known_operations: KnownOperations = None) -> ValidationReport[dict[str, Any]]:
    """Validate a permission blob and return the cleaned map in a report.

    - Flat code lists become structured resource entries (inferred level,
      scope ``all``).
    - List-coerced maps are recovered the same way.
    - Map entries must use a known ``level`` and ``scope``; a missing scope
      defaults to ``own``.
    - ``metadata``, ``inheritance`` and ``restrictions`` keys pass through.
    """
    report: ValidationReport[dict[str, Any]] = ValidationReport(value={})
    try:
        decoded = decode_permissions(permissions)
    except PermissionDataError as e:
        report.error(e.message)
        return report

    if isinstance(decoded, FlatList):
        data = to_structured(decoded)
    else:
        data = decoded.data

    cleaned: dict[str, Any] = {}
    for key, node in data.items():
        if key in NON_PERMISSION_KEYS:
            cleaned[key] = node
            continue
        cleaned[key] = _check_node(report, str(key), node, known_operations)
    report.value = cleaned
    return report


def validate_permission_structure(permissions: Any, known_operations: KnownOperations = None) -> dict[str, Any]:
    """Return the cleaned permission map or raise ValidationError."""
    return check_permission_structure(permissions, known_operations).raise_for_errors()


# ── Restrictions ────────────────────────────────────────

_Section = dict[str, Any]
_FieldCheck = Callable[[Any], Any]

_DROP = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _int_range(low: int, high: int) -> _FieldCheck:
    def check(value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return _DROP
        kept = [v for v in value if isinstance(v, int) and not isinstance(v, bool) and low <= v <= high]
        return kept if kept else _DROP

    return check


def _boolean(value: Any) -> Any:
    return value if isinstance(value, bool) else _DROP


def _non_negative(value: Any) -> Any:
    return value if _is_number(value) and value >= 0 else _DROP


def _strings(value: Any) -> Any:
    if not isinstance(value, (list, tuple)):
        return _DROP
    return [v for v in value if isinstance(v, str) and v]


def _mapping(value: Any) -> Any:
    return dict(value) if isinstance(value, Mapping) else _DROP


def _timezone(value: Any) -> Any:
    if not isinstance(value, str) or not value:
        return _DROP
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        return _DROP
    return value


# section wire key → (snake key, {field wire key: (snake key, check)})
_RESTRICTION_FIELDS: dict[str, tuple[str, dict[str, tuple[str, _FieldCheck]]]] = {
    "timeRestrictions": (
        "time_restrictions",
        {
            "allowedHours": ("allowed_hours", _int_range(0, 23)),
            "allowedDays": ("allowed_days", _int_range(0, 6)),
            "timezone": ("timezone", _timezone),
            "blockWeekends": ("block_weekends", _boolean),
            "blockHolidays": ("block_holidays", _boolean),
        },
    ),
    "ipRestrictions": (
        "ip_restrictions",
        {
            "allowedIPs": ("allowed_ips", _strings),
            "blockedIPs": ("blocked_ips", _strings),
            "allowVPN": ("allow_vpn", _boolean),
        },
    ),
    "dataRestrictions": (
        "data_restrictions",
        {
            "maxRecordsPerDay": ("max_records_per_day", _non_negative),
            "maxExportsPerMonth": ("max_exports_per_month", _non_negative),
            "allowedFileTypes": ("allowed_file_types", _strings),
            "maxFileSize": ("max_file_size", _non_negative),
            "dataRetentionDays": ("data_retention_days", _non_negative),
            "customRules": ("custom_rules", _mapping),
        },
    ),
    "featureRestrictions": (
        "feature_restrictions",
        {
            "allowBulkOperations": ("allow_bulk_operations", _boolean),
            "allowAPIAccess": ("allow_api_access", _boolean),
            "allowIntegrations": ("allow_integrations", _boolean),
            "maxApiCalls": ("max_api_calls", _non_negative),
        },
    ),
}


def _pick(source: Mapping[str, Any], wire: str, snake: str) -> Any:
    if wire in source:
        return source[wire]
    return source.get(snake)


def _check_section(report: ValidationReport[Any], name: str, raw: Any, fields: dict[str, tuple[str, _FieldCheck]]) -> _Section:
    section: _Section = {}
    if raw is None:
        return section
    if not isinstance(raw, Mapping):
        report.warn(f"Dropped {name}: expected an object")
        return section
    for wire, (snake, check) in fields.items():
        value = _pick(raw, wire, snake)
        if value is None:
            continue
        cleaned = check(value)
        if cleaned is _DROP:
            report.warn(f"Dropped invalid {name}.{wire}: {value!r}")
            continue
        if isinstance(value, (list, tuple)) and len(cleaned) != len(value):
            report.warn(f"Dropped invalid entries from {name}.{wire}")
        section[wire] = cleaned
    return section


def check_restrictions(restrictions: Any) -> ValidationReport[RestrictionSet]:
    """Validate a restriction set and return the cleaned model in a report.

    Missing sections default to empty. Invalid fields are dropped with a
    warning, out-of-range hours and days included: the valid entries of a
    list are kept, a list with none left is dropped entirely.
    """
    report: ValidationReport[RestrictionSet] = ValidationReport(value=RestrictionSet())
    if isinstance(restrictions, RestrictionSet):
        restrictions = restrictions.to_wire()
    if isinstance(restrictions, (str, bytes)):
        try:
            restrictions = json.loads(restrictions) if restrictions else None
        except ValueError as e:
            report.error(f"Restrictions are not valid JSON: {e}")
            return report
    if restrictions is None:
        return report
    if not isinstance(restrictions, Mapping):
        report.error("Restrictions must be an object")
        return report

    cleaned: dict[str, _Section] = {}
    for wire, (snake, fields) in _RESTRICTION_FIELDS.items():
        cleaned[wire] = _check_section(report, wire, _pick(restrictions, wire, snake), fields)
    report.value = RestrictionSet.model_validate(cleaned)
    return report


def validate_restrictions(restrictions: Any, strict: bool = False) -> RestrictionSet:
    """Return the cleaned restriction set.

    Raises:
        ValidationError: If the input is not an object, or with
            ``strict=True`` if any field had to be dropped.
    """
    return check_restrictions(restrictions).raise_for_errors(strict=strict)


__all__ = [
    "KnownOperations",
    "ValidationReport",
    "check_permission_structure",
    "check_restrictions",
    "validate_permission_structure",
    "validate_restrictions",
]
