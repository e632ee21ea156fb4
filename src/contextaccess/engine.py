"""Access engine facade.

One ``AccessEngine`` per process wires the store, configuration and event
publisher into the resolver, aggregator, evaluator and role service, and
exposes the engine's operations in one place.

Example::

    engine = AccessEngine(store, AccessEngineConfig(redis_url="redis://localhost:6379/0"))
    if await engine.has_permission(user_id, tenant_id, "crm.leads.create"):
        ...
    decision = await engine.authorize(
        user_id, tenant_id, "crm.leads.create",
        tier="starter",
        restrictions=role.restrictions,
        context=AccessContext(access_time=now, ip_address=ip),
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional

from .config import AccessEngineConfig, load_config_from_env
from .events import EventEmitter, EventPublisher, NullEventPublisher, RedisEventPublisher
from .models import ApplicationModule, EffectivePermissions, RestrictionSet
from .permissions.aggregator import PermissionAggregator
from .permissions.codes import PermissionCode
from .permissions.constants import InheritanceMode
from .permissions.inheritance import RoleInheritanceResolver, merge_role_inheritance
from .permissions.normalizer import to_flat, to_hierarchical
from .permissions.restrictions import AccessDecision, ContextInput, RestrictionInput, RoleAccessValidator, evaluate_access
from .permissions.tiers import TierConfig, TierModules, accessible_modules, filter_accessible_modules, is_module_accessible
from .permissions.validation import KnownOperations, validate_permission_structure, validate_restrictions
from .roles import RoleService

if TYPE_CHECKING:
    from .store.protocol import PermissionStore

logger = logging.getLogger(__name__)


class AccessEngine:
    """Permission resolution, inheritance, tier gating and restriction checks."""

    def __init__(
        self,
        store: PermissionStore,
        config: AccessEngineConfig | None = None,
        publisher: EventPublisher | None = None,
        tier_config: TierConfig | None = None,
    ) -> None:
        self.config = config or AccessEngineConfig()
        self.store = store
        self.tier_config = tier_config

        self.resolver = RoleInheritanceResolver(store, default_mode=self.config.default_inheritance_mode)
        self.aggregator = PermissionAggregator(store, self.resolver)
        self.events = EventEmitter(publisher or self._default_publisher())
        self.roles = RoleService(
            store,
            events=self.events,
            resolver=self.resolver,
            super_admin_priority=self.config.super_admin_priority,
        )
        self._role_access = RoleAccessValidator(store)

    @classmethod
    def from_env(cls, store: PermissionStore) -> "AccessEngine":
        """Build an engine configured from environment variables."""
        return cls(store, load_config_from_env())

    def _default_publisher(self) -> EventPublisher:
        if self.config.redis_url:
            return RedisEventPublisher(self.config.redis_url, prefix=self.config.event_channel_prefix)
        logger.debug("REDIS_URL not set, role events are not published")
        return NullEventPublisher()

    async def close(self) -> None:
        """Wait for pending events and release the publisher."""
        await self.events.drain()
        close = getattr(self.events.publisher, "close", None)
        if close is not None:
            await close()

    # ── Effective permissions ──

    async def resolve_effective_permissions(self, user_id: str, tenant_id: str) -> EffectivePermissions:
        return await self.aggregator.resolve_effective_permissions(user_id, tenant_id)

    async def has_permission(self, user_id: str, tenant_id: str, code: str) -> bool:
        effective = await self.resolve_effective_permissions(user_id, tenant_id)
        return effective.has(code)

    async def has_any_permission(self, user_id: str, tenant_id: str, codes: Iterable[str]) -> bool:
        effective = await self.resolve_effective_permissions(user_id, tenant_id)
        return any(effective.has(code) for code in codes)

    async def has_all_permissions(self, user_id: str, tenant_id: str, codes: Iterable[str]) -> bool:
        effective = await self.resolve_effective_permissions(user_id, tenant_id)
        return all(effective.has(code) for code in codes)

    # ── Pure operations ──

    def merge_role_inheritance(
        self,
        base: Any,
        parents: Iterable[Any],
        mode: InheritanceMode | str | None = None,
    ) -> dict[str, Any]:
        """Fold parents into ``base``; ``mode`` defaults to the configured one."""
        return merge_role_inheritance(base, parents, mode or self.config.default_inheritance_mode)

    @staticmethod
    def normalize_hierarchy(permissions: Any) -> dict[str, Any]:
        return to_hierarchical(permissions)

    @staticmethod
    def flatten_hierarchy(permissions: Any) -> list[str]:
        return to_flat(permissions)

    @staticmethod
    def validate_permission_structure(permissions: Any, known_operations: KnownOperations = None) -> dict[str, Any]:
        return validate_permission_structure(permissions, known_operations)

    @staticmethod
    def validate_restrictions(restrictions: Any, strict: bool = False) -> RestrictionSet:
        return validate_restrictions(restrictions, strict=strict)

    @staticmethod
    def evaluate_access(restrictions: RestrictionInput, context: ContextInput) -> AccessDecision:
        return evaluate_access(restrictions, context)

    # ── Tier gate ──

    def accessible_modules(self, app_code: str, tier: str) -> TierModules:
        return accessible_modules(app_code, tier, self.tier_config)

    async def accessible_catalog_modules(self, tenant_id: str, app_id: str) -> list[ApplicationModule]:
        """Modules of an app the tenant's subscription allows.

        Uses the tenant's tier for the app, falling back to its enabled
        module list when the tier has no entry. Apps the tenant has not
        enabled yield nothing.
        """
        tenant_apps = await self.store.list_tenant_applications(tenant_id)
        tenant_app = next((ta for ta in tenant_apps if ta.app_id == app_id), None)
        app = await self.store.get_application(app_id)
        if tenant_app is None or app is None:
            return []
        catalog = await self.store.list_modules(app_id)
        return filter_accessible_modules(
            app.app_code,
            tenant_app.subscription_tier,
            catalog,
            fallback_enabled_modules=tenant_app.enabled_modules or None,
            tier_config=self.tier_config,
        )

    # ── Composed decisions ──

    async def authorize(
        self,
        user_id: str,
        tenant_id: str,
        code: str,
        tier: Optional[str] = None,
        restrictions: RestrictionInput = None,
        context: ContextInput = None,
    ) -> AccessDecision:
        """Full check of one permission code.

        Order: tier gate (when ``tier`` is given), effective permissions,
        then restrictions (when given). The first failure is returned.
        """
        parsed = PermissionCode.parse(code)
        if parsed is None:
            return AccessDecision.deny(f"Invalid permission code: {code}")

        if tier is not None and not is_module_accessible(parsed.app, parsed.module, tier, self.tier_config):
            return AccessDecision.deny(f"Module '{parsed.module}' is not available on the {tier} tier")

        effective = await self.resolve_effective_permissions(user_id, tenant_id)
        if not effective.has(code):
            return AccessDecision.deny(f"Missing permission: {code}")

        if restrictions is not None:
            return evaluate_access(restrictions, context)
        return AccessDecision(allowed=True)

    async def validate_role_access(
        self,
        tenant_id: str,
        role_id: str,
        context: ContextInput = None,
    ) -> AccessDecision:
        return await self._role_access.validate_role_access(tenant_id, role_id, context)


__all__ = ["AccessEngine"]
