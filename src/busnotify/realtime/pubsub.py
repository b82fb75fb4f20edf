"""Pub/sub — in-process EventBus plus the optional Redis mirror.

Learn: The EventBus is how code inside the process reacts to realtime
traffic without knowing about socket.io: every broadcast is published
here as a BroadcastEnvelope keyed by its OutboundEvent.

Redis pub/sub is fire-and-forget. If no one is listening, the message is
lost. That's fine for live updates (clients can always fetch their inbox
over HTTP). The mirror publishes each broadcast to
``busnotify:events:{route_id}`` for dashboards and other consumers; it is
not a membership backend, so it does not make the app multi-process.
"""

import json
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from busnotify.config import settings
from busnotify.events.types import OutboundEvent

logger = structlog.get_logger()


@dataclass(frozen=True)
class BroadcastEnvelope:
    """One route-channel broadcast, as seen by EventBus subscribers."""

    event: OutboundEvent
    route_ids: tuple[str, ...]
    payload: dict[str, Any]
    delivered: int = 0


Handler = Callable[[BroadcastEnvelope], Awaitable[None]]


class EventBus:
    """Typed async publish/subscribe, independent of the transport."""

    def __init__(self):
        self._handlers: dict[OutboundEvent, list[Handler]] = defaultdict(list)
        self._wildcard: list[Handler] = []

    def subscribe(
        self, handler: Handler, event: Optional[OutboundEvent] = None
    ) -> Callable[[], None]:
        """Register a handler for one event (or all when event is None).

        Returns a callable that removes the subscription.
        """
        handlers = self._wildcard if event is None else self._handlers[event]
        if handler not in handlers:
            handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def publish(self, envelope: BroadcastEnvelope) -> None:
        """Run every matching handler; a failing handler never stops the rest."""
        for handler in [*self._handlers.get(envelope.event, ()), *self._wildcard]:
            try:
                await handler(envelope)
            except Exception:
                logger.exception(
                    "event_bus.handler_failed",
                    event_name=envelope.event.value,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )


# ─── Redis ────────────────────────────────────────────────

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def route_channel(route_id: str) -> str:
    return f"{settings.redis_channel_prefix}:{route_id}"


def redis_mirror(redis: aioredis.Redis) -> Handler:
    """Build an EventBus handler that republishes broadcasts to Redis."""

    async def mirror(envelope: BroadcastEnvelope) -> None:
        message = json.dumps({"type": envelope.event.value, **envelope.payload})
        for route_id in envelope.route_ids:
            await redis.publish(route_channel(route_id), message)

    return mirror
