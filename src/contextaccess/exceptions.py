"""Exception hierarchy for the access engine.

All engine errors inherit from ContextAccessError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for mapping codes back to error classes

Error kinds:
    NotFoundError          — role/assignment/override absent
    ConflictError          — duplicate name, system role mutation, assigned role delete
    ValidationError        — invalid level/scope/restriction data
    DependencyFailureError — a collaborator (store) is unreachable
    PermissionDataError    — a stored permission blob cannot be decoded

Callers translate these into their own transport responses:
    try:
        await engine.roles.delete_role(tenant_id, role_id)
    except ConflictError as e:
        return respond(409, e.code, e.message)
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "ContextAccessError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "DependencyFailureError",
    "StoreUnavailableError",
    "PermissionDataError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
]


# ---- Exception Hierarchy ----------------------------------------------------


class ContextAccessError(Exception):
    """Base exception for the access engine.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "CONFLICT").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class NotFoundError(ContextAccessError):
    """Role, assignment, or override does not exist."""

    code: str = "NOT_FOUND"
    message: str = "Resource not found"


class ConflictError(ContextAccessError):
    """Operation conflicts with current state (system role, assignments, duplicates)."""

    code: str = "CONFLICT"
    message: str = "Operation conflicts with current state"


class ValidationError(ContextAccessError):
    """Permission or restriction data failed structural validation.

    ``errors`` carries every problem found in the validated unit, not only
    the first one.
    """

    code: str = "VALIDATION_ERROR"
    message: str = "Validation failed"

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        *,
        errors: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        self.errors = list(errors or [])
        if message is None and self.errors:
            message = "; ".join(self.errors)
        super().__init__(message, code, **kwargs)


class DependencyFailureError(ContextAccessError):
    """An external collaborator failed."""

    code: str = "DEPENDENCY_FAILURE"
    message: str = "External dependency failed"


class StoreUnavailableError(DependencyFailureError):
    """The permission store cannot be reached."""

    code: str = "STORE_UNAVAILABLE"
    message: str = "Permission store unavailable"


class PermissionDataError(ContextAccessError):
    """A stored permission blob could not be decoded."""

    code: str = "PERMISSION_DATA_ERROR"
    message: str = "Stored permission data is corrupt"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[ContextAccessError])


class ErrorRegistry:
    """Registry for mapping stable error codes to error classes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[ContextAccessError]] = {}

    def register(self, code: str, error_cls: type[ContextAccessError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[ContextAccessError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[ContextAccessError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("QUOTA_EXCEEDED")
        class QuotaExceededError(ContextAccessError):
            code = "QUOTA_EXCEEDED"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


# Register base errors
error_registry.register("INTERNAL_ERROR", ContextAccessError)
error_registry.register("NOT_FOUND", NotFoundError)
error_registry.register("CONFLICT", ConflictError)
error_registry.register("VALIDATION_ERROR", ValidationError)
error_registry.register("DEPENDENCY_FAILURE", DependencyFailureError)
error_registry.register("STORE_UNAVAILABLE", StoreUnavailableError)
error_registry.register("PERMISSION_DATA_ERROR", PermissionDataError)
