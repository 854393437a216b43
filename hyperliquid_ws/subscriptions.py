"""
Subscription kinds, canonical keys and wire requests.

Based on: https://hyperliquid.gitbook.io/hyperliquid-docs/for-developers/api/websocket/subscriptions

The canonical key is the identity of a subscription. It is derived from the
kind and parameters only, so the same derivation is used at subscribe time,
for routing inbound channels, and when replaying after a reconnect.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from .exceptions import InvalidSubscriptionError
from .targets import CallbackTarget, QueueTarget


class SubscriptionKind:
    """Subscription types understood by the exchange."""
    ALL_MIDS = 'allMids'
    L2_BOOK = 'l2Book'
    TRADES = 'trades'
    CANDLE = 'candle'
    BBO = 'bbo'
    USER_EVENTS = 'userEvents'
    ORDER_UPDATES = 'orderUpdates'
    USER_FILLS = 'userFills'
    USER_FUNDINGS = 'userFundings'
    LIQUIDATIONS = 'liquidations'


# Kinds keyed by user address rather than coin
USER_KINDS = frozenset({
    SubscriptionKind.USER_EVENTS,
    SubscriptionKind.ORDER_UPDATES,
    SubscriptionKind.USER_FILLS,
    SubscriptionKind.USER_FUNDINGS,
})

# Parameters that may appear in a subscription request, in wire order
PARAM_FIELDS = ('coin', 'user', 'interval')

# Inbound channels that are never routed to subscribers
CONTROL_CHANNELS = frozenset({'pong', 'subscriptionResponse'})

DeliveryTarget = Union[CallbackTarget, QueueTarget]


def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Keep only known, non-empty parameters."""
    if not params:
        return {}
    return {
        name: str(params[name])
        for name in PARAM_FIELDS
        if params.get(name) not in (None, '')
    }


def subscription_key(kind: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Derive the canonical key for a subscription.

    Args:
        kind: Subscription type (e.g. 'trades', 'allMids')
        params: Optional parameters (coin, user, interval)

    Returns:
        Deterministic key string, e.g. 'trades:BTC' or 'candle:ETH:1h'
    """
    p = _clean_params(params)
    coin = p.get('coin', '')
    user = p.get('user', '')

    if kind == SubscriptionKind.ALL_MIDS:
        return 'allMids'
    elif kind == SubscriptionKind.L2_BOOK:
        return f"l2Book:{coin}"
    elif kind == SubscriptionKind.TRADES:
        return f"trades:{coin}"
    elif kind == SubscriptionKind.CANDLE:
        return f"candle:{coin}:{p.get('interval', '')}"
    elif kind in USER_KINDS:
        return f"{kind}:{user}"
    else:
        return f"{kind}:{coin}"


def validate_params(kind: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    """
    Check that a kind carries the parameters its key depends on.

    Raises:
        InvalidSubscriptionError: If a required parameter is missing
    """
    p = _clean_params(params)

    if kind in (SubscriptionKind.L2_BOOK, SubscriptionKind.TRADES,
                SubscriptionKind.BBO):
        required = ('coin',)
    elif kind == SubscriptionKind.CANDLE:
        required = ('coin', 'interval')
    elif kind in USER_KINDS:
        required = ('user',)
    else:
        required = ()

    for name in required:
        if name not in p:
            raise InvalidSubscriptionError(kind, name)

    return p


def build_subscription(kind: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    """Build the ``subscription`` object of a request: ``{"type": kind, ...params}``."""
    subscription = {'type': kind}
    subscription.update(_clean_params(params))
    return subscription


def build_request(method: str, kind: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build a subscribe/unsubscribe request frame.

    Args:
        method: 'subscribe' or 'unsubscribe'
        kind: Subscription type
        params: Subscription parameters
    """
    return {
        'method': method,
        'subscription': build_subscription(kind, params),
    }


def key_from_payload(kind: str, data: Any) -> Optional[str]:
    """
    Re-derive a canonical key from an inbound payload.

    Used for channels that carry only the kind name; the distinguishing
    parameters are read from the payload itself.
    """
    if kind == SubscriptionKind.ALL_MIDS:
        return 'allMids'

    sample = data
    if isinstance(sample, list):
        sample = sample[0] if sample else None
    if not isinstance(sample, dict):
        return None

    if kind == SubscriptionKind.CANDLE:
        params = {'coin': sample.get('s'), 'interval': sample.get('i')}
        if not params['coin'] or not params['interval']:
            return None
    elif kind in USER_KINDS:
        params = {'user': sample.get('user')}
        if not params['user']:
            return None
    else:
        params = {'coin': sample.get('coin')}
        if not params['coin']:
            return None

    return subscription_key(kind, params)


@dataclass
class Subscription:
    """A registered subscription and its delivery target."""
    key: str
    kind: str
    params: Dict[str, str] = field(default_factory=dict)
    target: DeliveryTarget = None

    @classmethod
    def create(cls, kind: str, params: Optional[Dict[str, Any]], target: DeliveryTarget) -> 'Subscription':
        clean = validate_params(kind, params)
        return cls(
            key=subscription_key(kind, clean),
            kind=kind,
            params=clean,
            target=target,
        )

    def subscribe_request(self) -> Dict[str, Any]:
        return build_request('subscribe', self.kind, self.params)

    def unsubscribe_request(self) -> Dict[str, Any]:
        return build_request('unsubscribe', self.kind, self.params)
