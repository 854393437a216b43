"""
Subscription registry.

Maps canonical keys to subscriptions. The registry is the single source of
truth for what should be subscribed: replay after a reconnect iterates the
registry, never a history of sent frames.

The registry performs no I/O and no locking of its own. Every access goes
through the connection manager's reader/writer lock.
"""

from typing import Dict, Iterator, List, Optional

import structlog

from .subscriptions import Subscription

logger = structlog.get_logger(__name__)


class SubscriptionRegistry:
    """At most one subscription per canonical key."""

    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}

    def add(self, subscription: Subscription) -> Optional[Subscription]:
        """
        Insert a subscription, replacing any entry with the same key.

        Returns:
            The replaced subscription, or None
        """
        previous = self._subscriptions.get(subscription.key)
        self._subscriptions[subscription.key] = subscription
        if previous is not None:
            logger.warning("Replacing existing subscription", key=subscription.key)
        return previous

    def remove(self, key: str) -> Optional[Subscription]:
        return self._subscriptions.pop(key, None)

    def get(self, key: str) -> Optional[Subscription]:
        return self._subscriptions.get(key)

    def of_kind(self, kind: str) -> List[Subscription]:
        return [s for s in self._subscriptions.values() if s.kind == kind]

    def snapshot(self) -> List[Subscription]:
        """Point-in-time list of subscriptions, safe to use after the lock is released."""
        return list(self._subscriptions.values())

    def keys(self) -> List[str]:
        return list(self._subscriptions.keys())

    def clear(self) -> List[Subscription]:
        """Remove every subscription and return them so their targets can be released."""
        removed = list(self._subscriptions.values())
        self._subscriptions.clear()
        return removed

    def __contains__(self, key: str) -> bool:
        return key in self._subscriptions

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._subscriptions.values()))
