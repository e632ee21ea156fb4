"""Event publication after role mutations.

Provides:
- ``EventPublisher`` — the collaborator contract: ``publish(event_type, tenant_id, entity_id, payload)``.
- ``RedisEventPublisher`` — JSON messages on ``{prefix}:{tenant_id}:{event_type}`` channels.
- ``NullEventPublisher`` — discards everything.
- ``EventEmitter`` — fire-and-forget scheduling: publish failures are logged, never raised.

A mutation is never rolled back because its event could not be published.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

from .models import utcnow

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_PREFIX = "contextaccess:events"

# Event types emitted by role administration
ROLE_CREATED = "role_created"
ROLE_UPDATED = "role_updated"
ROLE_DELETED = "role_deleted"


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, event_type: str, tenant_id: str, entity_id: str, payload: dict[str, Any]) -> None: ...


class NullEventPublisher:
    """Publisher that drops every event."""

    async def publish(self, event_type: str, tenant_id: str, entity_id: str, payload: dict[str, Any]) -> None:
        logger.debug("Dropped %s event for %s/%s", event_type, tenant_id, entity_id)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class RedisEventPublisher:
    """Publish events as JSON on Redis pub/sub channels.

    Args:
        redis_url: ``redis://``, ``rediss://`` or ``unix://`` URL. Ignored
            when ``client`` is given.
        prefix: Channel prefix; the channel is ``{prefix}:{tenant_id}:{event_type}``.
        client: An existing ``redis.asyncio.Redis`` client.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = DEFAULT_CHANNEL_PREFIX,
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        if client is None and not redis_url:
            raise ValueError("RedisEventPublisher needs a redis_url or a client")
        self._url = redis_url
        self._prefix = prefix
        self._client = client

    def channel(self, tenant_id: str, event_type: str) -> str:
        return f"{self._prefix}:{tenant_id}:{event_type}"

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(self._url, decode_responses=True)
        return self._client

    async def publish(self, event_type: str, tenant_id: str, entity_id: str, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {
                "event_type": event_type,
                "tenant_id": tenant_id,
                "entity_id": entity_id,
                "payload": payload,
                "published_at": utcnow().isoformat(),
            },
            default=_json_default,
        )
        channel = self.channel(tenant_id, event_type)
        receivers = await self._get_client().publish(channel, message)
        logger.debug("Published %s to %s (%s receivers)", event_type, channel, receivers)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class EventEmitter:
    """Schedule publications in the background and log their failures."""

    def __init__(self, publisher: EventPublisher | None = None) -> None:
        self._publisher: EventPublisher = publisher or NullEventPublisher()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def publisher(self) -> EventPublisher:
        return self._publisher

    def emit(self, event_type: str, tenant_id: str, entity_id: str, payload: dict[str, Any]) -> asyncio.Task[None]:
        """Start publishing and return immediately. Must be called from a running loop."""
        task = asyncio.create_task(self._publish(event_type, tenant_id, entity_id, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _publish(self, event_type: str, tenant_id: str, entity_id: str, payload: dict[str, Any]) -> None:
        try:
            await self._publisher.publish(event_type, tenant_id, entity_id, payload)
        except Exception as e:
            logger.warning("Failed to publish %s event for %s/%s: %s", event_type, tenant_id, entity_id, e)

    async def drain(self) -> None:
        """Wait for every pending publication (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))


__all__ = [
    "DEFAULT_CHANNEL_PREFIX",
    "EventEmitter",
    "EventPublisher",
    "NullEventPublisher",
    "ROLE_CREATED",
    "ROLE_DELETED",
    "ROLE_UPDATED",
    "RedisEventPublisher",
]
