"""In-process Change Notification Bus.

Delivery is to in-process subscribers only. A failing subscriber is logged
and does not stop delivery to the others.
"""

import inspect
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Union

from ..core.enums import ChangeTopic
from ..utils.logging_config import get_logger, log_exception
from .schemas import ChangeMessage

logger = get_logger('events')

ChangeHandler = Callable[[ChangeMessage], Union[None, Awaitable[None]]]


class ChangeNotificationBus:
    """Typed, payload-light broadcast of "something in domain X changed"."""

    def __init__(self):
        self._subscribers: Dict[ChangeTopic, List[ChangeHandler]] = defaultdict(list)

    def subscribe(self, topic: ChangeTopic, handler: ChangeHandler) -> Callable[[], None]:
        """Register a handler for one topic. Returns an unsubscribe callable."""
        self._subscribers[topic].append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)} to {topic.value}")

        def unsubscribe() -> None:
            handlers = self._subscribers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscriber_count(self, topic: ChangeTopic) -> int:
        return len(self._subscribers.get(topic, []))

    async def publish(self, message: ChangeMessage) -> int:
        """Deliver a message to every subscriber of its topic. Returns the number delivered."""
        handlers = list(self._subscribers.get(message.topic, []))
        delivered = 0

        for handler in handlers:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                log_exception(
                    'events',
                    e,
                    {
                        "topic": message.topic.value,
                        "group_id": str(message.group_id),
                        "handler": getattr(handler, '__qualname__', repr(handler)),
                    },
                )

        logger.debug(f"Published {message.topic.value} for group {message.group_id} to {delivered}/{len(handlers)} subscribers")
        return delivered


# Process-wide bus
change_bus = ChangeNotificationBus()
