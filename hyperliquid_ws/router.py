"""
Inbound message routing.

An inbound frame is ``{"channel": <topic>, "data": <payload>}``. The topic is
resolved against the registry with the same key derivation used at subscribe
time, and the payload is handed to each matching target. A topic that matches
nothing is dropped; this is not an error.
"""

import json
from dataclasses import dataclass
from typing import Any, List, Optional

import structlog

from .exceptions import DecodeError
from .locks import ReadWriteLock
from .registry import SubscriptionRegistry
from .subscriptions import CONTROL_CHANNELS, Subscription, key_from_payload
from .targets import QueueTarget

logger = structlog.get_logger(__name__)


@dataclass
class Frame:
    """One decoded inbound message. Routed and discarded, never retained."""
    channel: str
    data: Any = None


def decode_frame(raw: Any) -> Frame:
    """
    Decode a text frame.

    Raises:
        DecodeError: If the frame is not JSON or has no string channel
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError(raw, "not utf-8") from e

    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise DecodeError(raw, "invalid json") from e

    if not isinstance(message, dict):
        raise DecodeError(raw, "not an object")

    channel = message.get('channel')
    if not isinstance(channel, str) or not channel:
        raise DecodeError(raw, "missing channel")

    return Frame(channel=channel, data=message.get('data'))


class MessageRouter:
    """Resolve inbound topics to subscriptions and deliver payloads."""

    def __init__(self, registry: SubscriptionRegistry, lock: ReadWriteLock):
        self.registry = registry
        self.lock = lock

        # Counters survive unsubscribe so drops stay observable
        self.dispatched = 0
        self.unrouted = 0
        self.dropped = 0
        self.handler_errors = 0

    def match(self, channel: str, data: Any = None) -> List[Subscription]:
        """
        Subscriptions satisfied by a topic. Caller must hold the lock.

        Args:
            channel: Inbound topic identifier
            data: Payload, used when the topic carries only the kind name

        Returns:
            Matching subscriptions (possibly empty)
        """
        if channel in CONTROL_CHANNELS:
            return []

        exact = self.registry.get(channel)
        if exact is not None:
            return [exact]

        of_kind = self.registry.of_kind(channel)
        if not of_kind:
            return []

        derived: Optional[str] = key_from_payload(channel, data)
        if derived is not None:
            subscription = self.registry.get(derived)
            return [subscription] if subscription is not None else []

        return of_kind

    async def dispatch(self, frame: Frame) -> int:
        """
        Deliver a frame to every matching subscription.

        Matching happens under the shared lock; delivery happens after it is
        released so a callback may subscribe or unsubscribe.

        Returns:
            Number of targets that accepted the payload
        """
        async with self.lock.read():
            matches = self.match(frame.channel, frame.data)

        if not matches:
            self.unrouted += 1
            logger.debug("No subscription for channel", channel=frame.channel)
            return 0

        accepted = 0
        for subscription in matches:
            target = subscription.target
            try:
                if await target.deliver(frame.data):
                    accepted += 1
                elif isinstance(target, QueueTarget) and not target.closed:
                    self.dropped += 1
                    logger.warning(
                        "Subscriber queue full, dropping message",
                        key=subscription.key,
                        dropped=target.dropped,
                    )
            except Exception as e:
                self.handler_errors += 1
                logger.error(
                    "Error in subscription handler",
                    key=subscription.key,
                    channel=frame.channel,
                    error=str(e),
                )

        self.dispatched += accepted
        return accepted
