"""Topic to handler registrations for inbound broker messages."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

LOGGER = logging.getLogger("subscriptions")

Handler = Callable[["Subscription", str], None]


@dataclass(frozen=True)
class Subscription:
    topic: str
    handler: Handler
    args: Any = None
    qos: int = 1


class SubscriptionTable:
    """Exact-topic lookup table; one subscription per topic string.

    Adding a topic that is already registered replaces the previous
    subscription. Messages for unknown topics are ignored.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Subscription] = {}

    def add(self, topic: str, handler: Handler, args: Any = None, qos: int = 1) -> Subscription:
        subscription = Subscription(topic, handler, args, qos)
        self._subscriptions[topic] = subscription
        return subscription

    def remove(self, topic: str) -> Optional[Subscription]:
        return self._subscriptions.pop(topic, None)

    def get(self, topic: str) -> Optional[Subscription]:
        return self._subscriptions.get(topic)

    def dispatch(self, topic: str, payload: str) -> bool:
        """Run the handler registered for ``topic``; False when nothing matched."""
        subscription = self._subscriptions.get(topic)
        if subscription is None:
            return False
        try:
            subscription.handler(subscription, payload)
        except Exception:
            LOGGER.exception("Handler for %s failed", topic)
        return True

    def __contains__(self, topic: object) -> bool:
        return topic in self._subscriptions

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._subscriptions.values()))

    def __len__(self) -> int:
        return len(self._subscriptions)


__all__ = ["Handler", "Subscription", "SubscriptionTable"]
