"""Store collaborator: the contract and an in-memory implementation."""

from .memory import InMemoryPermissionStore
from .protocol import PermissionStore

__all__ = [
    "InMemoryPermissionStore",
    "PermissionStore",
]
