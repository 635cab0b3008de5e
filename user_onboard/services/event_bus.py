"""Fire-and-forget publication of user lifecycle events."""

import asyncio
import json
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Optional

import structlog

from user_onboard.models.user import UserView

logger = structlog.get_logger(__name__)

USER_REGISTERED = "user.registered"
USER_APPROVED = "user.approved"
USER_REJECTED = "user.rejected"

# Subscribing to this topic receives every event
ALL_TOPICS = "*"

# Flags the mail consumer keys off
MAIL_FLAGS = {
    USER_REGISTERED: {"requiresApproval": True},
    USER_APPROVED: {"sendWelcomeEmail": True},
    USER_REJECTED: {"sendNotificationEmail": True},
}

EventHandler = Callable[[str, dict], Awaitable[None]]


def user_event(event_type: str, user: UserView, **extra: Any) -> dict:
    """Build the JSON payload for a user lifecycle event.

    Args:
        event_type: Topic name, repeated in the payload as eventType
        user: User the event is about
        **extra: Topic-specific fields (approvedBy, rejectedBy, reason)

    Returns:
        Payload dict with an epoch-millisecond timestamp
    """
    payload = {
        "eventType": event_type,
        "userId": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "status": user.status.value,
        "timestamp": int(time.time() * 1000),
    }
    payload.update(MAIL_FLAGS.get(event_type, {}))
    payload.update(extra)
    return payload


class EventBus:
    """Delivers events to in-process subscribers and, optionally, Redis.

    ``publish`` never blocks and never raises: each delivery runs as its own
    background task and failures are logged. Delivery order across topics
    is not guaranteed.
    """

    def __init__(self, redis_client=None, channel_prefix: str = ""):
        self._redis = redis_client
        self._channel_prefix = channel_prefix
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._pending_tasks: set[asyncio.Task] = set()

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        """Register an async handler for a topic (or ALL_TOPICS)."""
        self._subscribers[topic].append(handler)
        logger.debug("event_subscriber_added", topic=topic)

    @property
    def pending(self) -> int:
        return len(self._pending_tasks)

    def publish(self, topic: str, payload: dict) -> None:
        """Schedule delivery of ``payload`` to everyone listening on ``topic``."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.error("event_publish_without_loop", topic=topic)
            return

        handlers = self._subscribers.get(topic, []) + self._subscribers.get(ALL_TOPICS, [])
        for handler in handlers:
            self._schedule(self._deliver(handler, topic, payload))

        if self._redis is not None:
            self._schedule(self._publish_to_redis(topic, payload))

        logger.info(
            "event_published",
            topic=topic,
            subscribers=len(handlers),
            redis=self._redis is not None,
        )

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)
        return task

    async def _deliver(self, handler: EventHandler, topic: str, payload: dict) -> None:
        try:
            await handler(topic, payload)
        except Exception as e:
            logger.error(
                "event_delivery_failed",
                topic=topic,
                handler=getattr(handler, "__name__", repr(handler)),
                error=str(e),
            )

    async def _publish_to_redis(self, topic: str, payload: dict) -> None:
        channel = f"{self._channel_prefix}{topic}"
        try:
            await self._redis.publish(channel, json.dumps(payload))
        except Exception as e:
            logger.warning("event_redis_publish_failed", channel=channel, error=str(e))

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for in-flight deliveries to finish.

        Called during application shutdown and by tests that assert on
        delivered events.

        Args:
            timeout: Maximum seconds to wait
        """
        if not self._pending_tasks:
            return

        logger.info("draining_pending_events", count=len(self._pending_tasks))
        _, still_pending = await asyncio.wait(set(self._pending_tasks), timeout=timeout)
        if still_pending:
            logger.warning(
                "pending_events_timeout",
                remaining=len(still_pending),
                timeout=timeout,
            )


async def log_event(topic: str, payload: dict) -> None:
    """Default subscriber: records each lifecycle event in the service log."""
    logger.info("lifecycle_event", topic=topic, user_id=payload.get("userId"))
