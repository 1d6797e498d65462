"""Outbound event fan-out to the UI layer.

Delivery is best effort: a failing subscriber or Redis outage is logged and
never reaches the code that emitted the event.
"""

import logging
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from thread_core.configs import settings
from thread_core.repositories.redis.redis_crud import RedisPublisher

logger = logging.getLogger(__name__)

CONVERSATION_ACTIVATED = "conversation:activated"
CONVERSATION_LIST_UPDATED = "conversation:list_updated"
STREAM_RESPONSE = "stream:response"
STREAM_END = "stream:end"
STREAM_ERROR = "stream:error"
MESSAGE_PARKED = "message:parked"
SEARCH_STARTED = "search:started"
SEARCH_FINISHED = "search:finished"

Handler = Callable[[Dict[str, Any]], None]


class EventBus:
    """
    In-process publish/subscribe with optional Redis mirroring.

    Mirroring runs on a single worker thread, in emit order, so a slow Redis
    never holds the caller.
    """

    def __init__(self, publisher: Optional[RedisPublisher] = None) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self.publisher = publisher
        self._mirror_pool: Optional[ThreadPoolExecutor] = None
        if publisher is not None:
            self._mirror_pool = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="redis-mirror"
            )

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Register ``handler`` for ``topic``."""
        self._handlers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        """Remove ``handler`` from ``topic``; unknown handlers are ignored."""
        if handler in self._handlers.get(topic, []):
            self._handlers[topic].remove(handler)

    def emit(self, topic: str, payload: Dict[str, Any]) -> None:
        """Deliver ``payload`` to every subscriber of ``topic``."""
        for handler in list(self._handlers.get(topic, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("Subscriber of %s failed", topic)

        if self.publisher is not None and self._mirror_pool is not None:
            future = self._mirror_pool.submit(self.publisher.publish, topic, payload)
            future.add_done_callback(lambda f: self._log_mirror(topic, f))

    def _log_mirror(self, topic: str, future: "Future[int]") -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Failed to mirror %s to Redis: %s", topic, exc)

    def close(self) -> None:
        """Wait for queued Redis mirrors and stop the mirror worker."""
        if self._mirror_pool is not None:
            self._mirror_pool.shutdown(wait=True)
            self._mirror_pool = None


def build_event_bus() -> EventBus:
    """Create the process event bus, mirrored to Redis when it is configured."""
    publisher = None
    if settings.REDIS_HOST:
        publisher = RedisPublisher(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD,
            ssl=settings.REDIS_SSL,
            channel=settings.REDIS_EVENTS_CHANNEL,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    return EventBus(publisher)
