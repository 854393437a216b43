"""
Hyperliquid WebSocket client.

Provides a single multiplexed streaming connection with subscription
management, keepalive and automatic reconnection.
"""

from .exceptions import (
    WebSocketError,
    ConnectError,
    TransportError,
    NotConnectedError,
    AlreadyConnectedError,
    SubscriptionNotFoundError,
    InvalidSubscriptionError,
    DecodeError,
    ReconnectExhaustedError
)
from .keepalive import KeepaliveSupervisor
from .locks import ReadWriteLock
from .manager import (
    WebSocketManager,
    WebSocketConfig,
    ConnectionState,
    ConnectionStats,
    MAINNET_WS_URL,
    TESTNET_WS_URL
)
from .reconnection import ReconnectionConfig, ReconnectionManager
from .registry import SubscriptionRegistry
from .router import Frame, MessageRouter, decode_frame
from .subscriptions import (
    SubscriptionKind,
    Subscription,
    subscription_key,
    build_subscription,
    build_request
)
from .targets import CallbackTarget, QueueTarget, QueueClosed
from .transport import AiohttpTransport, AiohttpConnection

__all__ = [
    'WebSocketManager',
    'WebSocketConfig',
    'ConnectionState',
    'ConnectionStats',
    'MAINNET_WS_URL',
    'TESTNET_WS_URL',
    'SubscriptionKind',
    'Subscription',
    'subscription_key',
    'build_subscription',
    'build_request',
    'SubscriptionRegistry',
    'Frame',
    'MessageRouter',
    'decode_frame',
    'CallbackTarget',
    'QueueTarget',
    'QueueClosed',
    'KeepaliveSupervisor',
    'ReconnectionConfig',
    'ReconnectionManager',
    'ReadWriteLock',
    'AiohttpTransport',
    'AiohttpConnection',
    'WebSocketError',
    'ConnectError',
    'TransportError',
    'NotConnectedError',
    'AlreadyConnectedError',
    'SubscriptionNotFoundError',
    'InvalidSubscriptionError',
    'DecodeError',
    'ReconnectExhaustedError'
]
