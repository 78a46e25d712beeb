"""
In-process event channel.

Replaces ad-hoc listener registration with an explicit publish/subscribe
channel. Coroutine handlers are scheduled as tasks on the running loop and
tracked until they finish, so shutdown code (and tests) can drain them.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventTopic(str, Enum):
    """Topics carried by the channel."""

    # Triggers (no payload)
    INITIATE_AUTO_API_KEY_CLAIM = "initiateAutoApiKeyClaim"
    INITIATE_AUTO_VEO_KEY_CLAIM = "initiateAutoVeoKeyClaim"

    # Outcomes
    TEMP_KEY_CLAIMED = "tempKeyClaimed"          # payload: credential secret
    VEO_TOKENS_REFRESHED = "veoTokensRefreshed"  # payload: AuthTokenSet
    USER_USAGE_UPDATED = "userUsageUpdated"      # payload: UserRecord
    REPAIR_STATUS_CHANGED = "repairStatusChanged"  # payload: RepairStatus


Handler = Callable[[Any], Any]


class EventChannel:
    """
    Publish/subscribe channel keyed by EventTopic.

    Usage:
        events = EventChannel()
        unsubscribe = events.subscribe(EventTopic.TEMP_KEY_CLAIMED, on_key)

        events.publish(EventTopic.TEMP_KEY_CLAIMED, "new-key")
        await events.drain()
    """

    def __init__(self):
        self._subscribers: dict[EventTopic, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Future] = set()

    def subscribe(self, topic: EventTopic, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it again."""
        self._subscribers[topic].append(handler)

        def unsubscribe():
            self.unsubscribe(topic, handler)

        return unsubscribe

    def unsubscribe(self, topic: EventTopic, handler: Handler):
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, topic: EventTopic) -> int:
        return len(self._subscribers.get(topic, []))

    def publish(self, topic: EventTopic, payload: Any = None) -> list[asyncio.Future]:
        """
        Deliver payload to every handler of topic.

        Synchronous handlers run inline. Awaitable results are scheduled and
        returned so the caller may await them if it needs to.
        """
        scheduled = []
        for handler in list(self._subscribers.get(topic, [])):
            try:
                result = handler(payload)
            except Exception as e:
                logger.warning(f"Event handler for {topic.value} failed: {e}")
                continue

            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._on_handler_done)
                scheduled.append(future)

        return scheduled

    def _on_handler_done(self, future: asyncio.Future):
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(f"Async event handler failed: {type(error).__name__}: {error}")

    async def drain(self):
        """Wait for every scheduled handler to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
