"""Structured form of ``app.module.operation`` permission codes.

The dot-joined string stays the wire and storage representation;
``PermissionCode`` is only used where the parts are needed.
"""

from __future__ import annotations

from typing import Iterable, NamedTuple


class PermissionCode(NamedTuple):
    """One atomic grantable action.

    Example::

        PermissionCode.parse("crm.leads.create")
        # PermissionCode(app='crm', module='leads', operation='create')

        PermissionCode.parse("crm.leads")  # None (fewer than 3 segments)
    """

    app: str
    module: str
    operation: str

    @classmethod
    def parse(cls, code: object) -> "PermissionCode | None":
        """Parse a code string. Returns None for anything that is not a valid code.

        Segments beyond the third belong to the operation, so
        ``crm.leads.export.csv`` has operation ``export.csv``.
        """
        if not isinstance(code, str):
            return None
        parts = code.split(".")
        if len(parts) < 3 or not all(parts[:2]):
            return None
        app, module, *rest = parts
        operation = ".".join(rest)
        if not operation:
            return None
        return cls(app, module, operation)

    @property
    def resource(self) -> str:
        """``app.module`` key the code belongs to."""
        return f"{self.app}.{self.module}"

    def __str__(self) -> str:
        return f"{self.app}.{self.module}.{self.operation}"


def parse_codes(codes: Iterable[object]) -> list[PermissionCode]:
    """Parse many codes, discarding the invalid ones."""
    parsed = []
    for code in codes:
        pc = PermissionCode.parse(code)
        if pc is not None:
            parsed.append(pc)
    return parsed


def qualify(app: str, module: str, operation: str) -> str:
    """Build the fully-qualified code string."""
    return f"{app}.{module}.{operation}"


__all__ = [
    "PermissionCode",
    "parse_codes",
    "qualify",
]
