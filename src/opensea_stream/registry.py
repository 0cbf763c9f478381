"""Topic to handler registry owned by the client's receive loop."""
from __future__ import annotations

import inspect
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from .errors import HandlerError
from .models import Event
from .observability import ClientStats
from .protocol import normalize_topic

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Event], Union[None, Awaitable[None]]]

_SERIALS = itertools.count(1)


@dataclass(frozen=True)
class SubscriptionId:
    topic: str
    serial: int

    @classmethod
    def new(cls, topic: str) -> "SubscriptionId":
        return cls(normalize_topic(topic), next(_SERIALS))


class DispatchResult(str, Enum):
    DELIVERED = "delivered"
    UNROUTED = "unrouted"
    FAILED = "failed"


class ChannelRegistry:
    """Single-writer map of topic -> (subscription id, handler).

    One handler per topic: subscribing again replaces the previous handler,
    which is never invoked afterwards. Not safe for concurrent mutation; the
    client only touches it from its receive-loop task.
    """

    def __init__(self, stats: Optional[ClientStats] = None) -> None:
        self._handlers: dict[str, tuple[SubscriptionId, Handler]] = {}
        self._confirmed: set[str] = set()
        self.stats = stats or ClientStats()
        self.last_handler_error: Optional[HandlerError] = None

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, topic: object) -> bool:
        return isinstance(topic, str) and topic in self._handlers

    def subscribe(
        self,
        topic: str,
        handler: Handler,
        subscription_id: Optional[SubscriptionId] = None,
    ) -> SubscriptionId:
        if not callable(handler):
            raise TypeError("handler must be callable")
        topic = normalize_topic(topic)
        if subscription_id is None:
            subscription_id = SubscriptionId.new(topic)
        elif subscription_id.topic != topic:
            raise ValueError(f"subscription id is for {subscription_id.topic!r}, not {topic!r}")
        previous = self._handlers.get(topic)
        self._handlers[topic] = (subscription_id, handler)
        if previous is not None:
            LOGGER.debug("Replaced handler for topic %s (%s -> %s)", topic, previous[0].serial, subscription_id.serial)
        return subscription_id

    def unsubscribe(self, subscription_id: SubscriptionId) -> bool:
        """Remove a registration; True when its topic is now unsubscribed."""

        current = self._handlers.get(subscription_id.topic)
        if current is None or current[0] != subscription_id:
            LOGGER.debug("Ignoring stale unsubscribe for %s", subscription_id)
            return False
        del self._handlers[subscription_id.topic]
        self._confirmed.discard(subscription_id.topic)
        return True

    async def dispatch(self, topic: str, event: Event) -> DispatchResult:
        entry = self._handlers.get(topic)
        if entry is None:
            self.stats.record_dispatch(DispatchResult.UNROUTED.value)
            LOGGER.debug("No handler for topic %s; dropping %s", topic, getattr(event, "event_type", event))
            return DispatchResult.UNROUTED
        handler = entry[1]
        try:
            result: Any = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            error = HandlerError(topic, event, exc)
            self.last_handler_error = error
            self.stats.record_dispatch(DispatchResult.FAILED.value)
            LOGGER.error("%s", error, exc_info=exc)
            return DispatchResult.FAILED
        self.stats.record_dispatch(DispatchResult.DELIVERED.value)
        return DispatchResult.DELIVERED

    def topics(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def confirm(self, topic: str) -> None:
        if topic in self._handlers:
            self._confirmed.add(topic)

    def unconfirm(self, topic: str) -> None:
        self._confirmed.discard(topic)

    def is_confirmed(self, topic: str) -> bool:
        return topic in self._confirmed

    def reset_confirmations(self) -> None:
        self._confirmed.clear()
