from .config import AccessEngineConfig, LogLevel, load_config_from_env
from .engine import AccessEngine
from .events import EventEmitter, EventPublisher, NullEventPublisher, RedisEventPublisher
from .exceptions import (
    ConflictError,
    ContextAccessError,
    DependencyFailureError,
    NotFoundError,
    PermissionDataError,
    StoreUnavailableError,
    ValidationError,
)
from .logging import (
    AccessLogFormatter,
    AccessLoggerAdapter,
    get_access_logger,
    safe_preview,
    setup_logging,
)
from .models import (
    AccessContext,
    Application,
    ApplicationModule,
    AssignmentSource,
    EffectivePermissions,
    PermissionSource,
    RestrictionSet,
    Role,
    RoleAssignment,
    RoleDeletionResult,
    TenantApplication,
    UserPermissionOverride,
)
from .permissions import AccessDecision, InheritanceMode, PermissionLevel, PermissionScope, SubscriptionTier
from .roles import RoleService
from .store import InMemoryPermissionStore, PermissionStore

__all__ = [
    'AccessEngine',
    'AccessEngineConfig',
    'LogLevel',
    'load_config_from_env',
    'EventEmitter',
    'EventPublisher',
    'NullEventPublisher',
    'RedisEventPublisher',
    'ContextAccessError',
    'ConflictError',
    'DependencyFailureError',
    'NotFoundError',
    'PermissionDataError',
    'StoreUnavailableError',
    'ValidationError',
    'AccessLogFormatter',
    'AccessLoggerAdapter',
    'get_access_logger',
    'safe_preview',
    'setup_logging',
    'AccessContext',
    'AccessDecision',
    'Application',
    'ApplicationModule',
    'AssignmentSource',
    'EffectivePermissions',
    'PermissionSource',
    'RestrictionSet',
    'Role',
    'RoleAssignment',
    'RoleDeletionResult',
    'TenantApplication',
    'UserPermissionOverride',
    'InheritanceMode',
    'PermissionLevel',
    'PermissionScope',
    'SubscriptionTier',
    'RoleService',
    'InMemoryPermissionStore',
    'PermissionStore',
]
