"""
WebSocket connection manager for the Hyperliquid streaming API.

Provides one persistent connection multiplexing many subscriptions with:
- Subscription registry keyed by canonical subscription key
- Inbound routing to callback or queue targets
- Ping/pong keepalive with a strict acknowledgement window
- Automatic reconnection with registry replay
- Connection state tracking and stats snapshots
"""

import asyncio
import json
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from .exceptions import (
    AlreadyConnectedError,
    ConnectError,
    DecodeError,
    NotConnectedError,
    SubscriptionNotFoundError,
    TransportError,
)
from .keepalive import PING_MESSAGE, KeepaliveSupervisor
from .locks import ReadWriteLock
from .reconnection import ReconnectionManager
from .registry import SubscriptionRegistry
from .router import Frame, MessageRouter, decode_frame
from .subscriptions import Subscription, SubscriptionKind
from .targets import CallbackTarget, QueueTarget
from .transport import AiohttpTransport

logger = structlog.get_logger(__name__)

MAINNET_WS_URL = "wss://api.hyperliquid.xyz/ws"
TESTNET_WS_URL = "wss://api.hyperliquid-testnet.xyz/ws"


class ConnectionState(Enum):
    """WebSocket connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"
    FAILED = "failed"


@dataclass
class WebSocketConfig:
    """Configuration for the WebSocket connection."""
    ping_interval: float = 30.0          # Seconds between ping messages
    pong_timeout: float = 10.0           # Seconds to wait for pong response
    dial_timeout: float = 10.0           # Seconds allowed for the handshake
    reconnect_enabled: bool = True       # Enable automatic reconnection
    reconnect_delay: float = 5.0         # Seconds between reconnection attempts
    max_reconnect_attempts: int = 10     # Attempts before terminal failure
    reconnect_multiplier: float = 1.0    # 1.0 = fixed delay
    max_reconnect_delay: float = 60.0    # Cap when multiplier > 1.0
    reconnect_jitter: bool = False       # Randomise reconnection delays by +/-20%
    dispatch_queue_size: int = 1000      # Inbound frames buffered between read and dispatch
    max_message_size: int = 10485760     # 10MB max message size

    def __post_init__(self):
        for name in ('ping_interval', 'pong_timeout', 'dial_timeout'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.dispatch_queue_size <= 0:
            raise ValueError("dispatch_queue_size must be positive")


@dataclass(frozen=True)
class ConnectionStats:
    """Point-in-time copy of connection counters."""
    connected: bool
    state: str
    reconnect_attempts: int
    total_reconnects: int
    subscriptions: int
    messages_sent: int
    messages_received: int
    messages_dispatched: int
    unrouted_messages: int
    dropped_messages: int
    inbound_dropped: int
    decode_errors: int
    handler_errors: int
    probe_timeouts: int
    last_ping_sent: Optional[float]
    last_pong_received: Optional[float]
    terminal_failure: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


Target = Union[CallbackTarget, QueueTarget, Callable[[Any], Any]]


class WebSocketManager:
    """
    Connection lifecycle controller.

    Owns the socket, the subscription registry, the router, the keepalive
    supervisor and the reconnection manager. Connection state, the socket
    handle and the registry are guarded together by one reader/writer lock.

    Usage:
        manager = WebSocketManager(TESTNET_WS_URL)
        await manager.connect()
        key = await manager.subscribe_trades('BTC', on_trades)
        ...
        await manager.disconnect()
    """

    def __init__(
        self,
        url: str = MAINNET_WS_URL,
        config: Optional[Union[Dict[str, Any], WebSocketConfig]] = None,
        connect_function: Optional[Callable[[], Awaitable[Any]]] = None
    ):
        """
        Initialize WebSocket manager.

        Args:
            url: WebSocket endpoint URL
            config: Configuration dictionary or WebSocketConfig
            connect_function: Coroutine function returning an open connection
                (``send_str``, ``receive_str``, ``close``); defaults to aiohttp
        """
        if isinstance(config, WebSocketConfig):
            self.config = config
        else:
            self.config = WebSocketConfig(**(config or {}))

        self.url = url
        self._connect_function = connect_function or AiohttpTransport(
            url,
            dial_timeout=self.config.dial_timeout,
            max_message_size=self.config.max_message_size
        )

        self._lock = ReadWriteLock()
        self.registry = SubscriptionRegistry()
        self.router = MessageRouter(self.registry, self._lock)
        self.keepalive = KeepaliveSupervisor(
            send_probe=self._send_probe,
            on_unhealthy=self._on_unhealthy,
            interval=self.config.ping_interval,
            timeout=self.config.pong_timeout
        )
        self.reconnection = ReconnectionManager({
            'delay': self.config.reconnect_delay,
            'max_attempts': self.config.max_reconnect_attempts,
            'multiplier': self.config.reconnect_multiplier,
            'max_delay': self.config.max_reconnect_delay,
            'jitter': self.config.reconnect_jitter
        })

        # Connection state
        self.state = ConnectionState.DISCONNECTED
        self._connection = None
        self._generation = 0
        self._closing = False
        self._inbound: Optional[asyncio.Queue] = None
        self.terminal_failure = False
        self.last_connection_time: Optional[float] = None
        self.last_message_time: Optional[float] = None
        self.disconnect_reason: Optional[str] = None

        # Tasks
        self._read_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        # Callbacks
        self.on_connect_callback = None
        self.on_disconnect_callback = None
        self.on_reconnect_callback = None
        self.on_status_callback = None

        # Counters
        self.messages_sent = 0
        self.messages_received = 0
        self.decode_errors = 0
        self.inbound_dropped = 0

        self.logger = logger.bind(url=url)

    def set_callbacks(
        self,
        on_connect: Optional[Callable[[], Awaitable[None]]] = None,
        on_disconnect: Optional[Callable[[str], Awaitable[None]]] = None,
        on_reconnect: Optional[Callable[[int], Awaitable[None]]] = None,
        on_status: Optional[Callable[[ConnectionState, Optional[Exception]], Awaitable[None]]] = None
    ) -> None:
        """
        Set callbacks for connection events.

        Args:
            on_connect: Called after every successful connection (including reconnects)
            on_disconnect: Called with a reason when the connection is lost or closed
            on_reconnect: Called with the attempt number before each reconnection attempt
            on_status: Called with the new state and an optional error; reports
                RECONNECTING, CONNECTED after a reconnect, FAILED once when
                reconnection is exhausted, and DISCONNECTED after ``disconnect()``
        """
        self.on_connect_callback = on_connect
        self.on_disconnect_callback = on_disconnect
        self.on_reconnect_callback = on_reconnect
        self.on_status_callback = on_status

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Establish the connection and replay registered subscriptions.

        Raises:
            AlreadyConnectedError: If the manager is not disconnected
            ConnectError: If the socket cannot be established
        """
        async with self._lock.write():
            if self.state not in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
                raise AlreadyConnectedError(self.state.value)

            self._closing = False
            self.terminal_failure = False
            self.reconnection.reset()
            await self._open_locked(on_failure=ConnectionState.DISCONNECTED)

        await self._fire(self.on_connect_callback)

    async def disconnect(self, reason: str = "User requested") -> None:
        """
        Close the connection and stop all background tasks.

        Idempotent. Clears the registry; subscriptions do not survive an
        explicit disconnect. Queue targets are closed so blocked consumers
        are released.
        """
        async with self._lock.write():
            if (self.state == ConnectionState.DISCONNECTED and not len(self.registry)
                    and not self._tasks()):
                return

            self._closing = True
            self._generation += 1
            self.state = ConnectionState.CLOSING
            self.disconnect_reason = reason
            tasks = self._tasks()
            self._read_task = self._dispatch_task = None
            self._keepalive_task = self._reconnect_task = None
            connection, self._connection = self._connection, None

        self.logger.info("Disconnecting WebSocket", reason=reason)

        await self._cancel_tasks(tasks)
        if connection is not None:
            await connection.close()

        async with self._lock.write():
            removed = self.registry.clear()
            self.state = ConnectionState.DISCONNECTED
            self._inbound = None
            self._closing = False
            self.terminal_failure = False
            self.reconnection.reset()
            self.keepalive.reset()

        for subscription in removed:
            subscription.target.close()

        self.logger.info("WebSocket disconnected", reason=reason, released=len(removed))
        await self._fire(self.on_disconnect_callback, reason)
        await self._fire(self.on_status_callback, ConnectionState.DISCONNECTED, None)

    async def subscribe(
        self,
        kind: str,
        params: Optional[Dict[str, Any]] = None,
        target: Target = None
    ) -> str:
        """
        Subscribe to a channel.

        A second subscribe with the same key and parameters replaces the
        delivery target of the existing entry without sending another frame;
        the replaced target is closed. If the key is the same but the
        parameters differ (e.g. ``liquidations`` for another user), the old
        channel is unsubscribed and the new one subscribed; on failure the
        old entry is kept.

        Args:
            kind: Subscription type (see SubscriptionKind)
            params: coin / user / interval as required by the kind
            target: CallbackTarget, QueueTarget, or a plain callable

        Returns:
            Canonical subscription key

        Raises:
            InvalidSubscriptionError: If a required parameter is missing
            NotConnectedError: If not connected
            TransportError: If the subscribe frame cannot be sent
        """
        target = self._as_target(target)
        subscription = Subscription.create(kind, params, target)
        key = subscription.key

        async with self._lock.write():
            if self.state != ConnectionState.CONNECTED:
                raise NotConnectedError(self.state.value)

            previous = self.registry.get(key)
            if previous is None:
                self.registry.add(subscription)
                try:
                    await self._send_json(subscription.subscribe_request(), 'subscribe')
                except TransportError:
                    self.registry.remove(key)
                    raise
            elif previous.params != subscription.params:
                await self._swap_channel_locked(previous, subscription)
                self.registry.add(subscription)
            else:
                self.registry.add(subscription)

        if previous is not None:
            if previous.target is not target:
                previous.target.close()
            self.logger.info(
                "Replaced subscription",
                key=key,
                params_changed=previous.params != subscription.params
            )
        else:
            self.logger.info("Subscribed", key=key)

        return key

    async def unsubscribe(self, key: str) -> None:
        """
        Remove a subscription.

        The unsubscribe frame is best effort: local state is removed and the
        target released even if the frame cannot be sent.

        Raises:
            SubscriptionNotFoundError: If the key is not registered
        """
        async with self._lock.write():
            subscription = self.registry.get(key)
            if subscription is None:
                raise SubscriptionNotFoundError(key)

            if self.state == ConnectionState.CONNECTED and self._connection is not None:
                try:
                    await self._send_json(subscription.unsubscribe_request(), 'unsubscribe')
                except TransportError as e:
                    self.logger.warning("Unsubscribe frame not sent", key=key, error=str(e))

            self.registry.remove(key)

        subscription.target.close()
        self.logger.info("Unsubscribed", key=key)

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def get_stats(self) -> ConnectionStats:
        """Snapshot of connection counters."""
        return ConnectionStats(
            connected=self.state == ConnectionState.CONNECTED,
            state=self.state.value,
            reconnect_attempts=self.reconnection.attempt_count,
            total_reconnects=self.reconnection.total_reconnects,
            subscriptions=len(self.registry),
            messages_sent=self.messages_sent,
            messages_received=self.messages_received,
            messages_dispatched=self.router.dispatched,
            unrouted_messages=self.router.unrouted,
            dropped_messages=self.router.dropped + self.inbound_dropped,
            inbound_dropped=self.inbound_dropped,
            decode_errors=self.decode_errors,
            handler_errors=self.router.handler_errors,
            probe_timeouts=self.keepalive.probe_timeouts,
            last_ping_sent=self.keepalive.last_ping_sent,
            last_pong_received=self.keepalive.last_pong_received,
            terminal_failure=self.terminal_failure
        )

    def get_status(self) -> Dict[str, Any]:
        """Stats plus the registered keys, for logging and health endpoints."""
        uptime = None
        if self.last_connection_time and self.state == ConnectionState.CONNECTED:
            uptime = time.time() - self.last_connection_time

        status = self.get_stats().to_dict()
        status.update({
            'url': self.url,
            'uptime': uptime,
            'last_message_time': self.last_message_time,
            'disconnect_reason': self.disconnect_reason,
            'subscription_keys': sorted(self.registry.keys()),
            'reconnection': self.reconnection.get_stats()
        })
        return status

    async def __aenter__(self) -> 'WebSocketManager':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Typed subscriptions
    # ------------------------------------------------------------------

    async def subscribe_all_mids(self, target: Target) -> str:
        """Mid prices for all coins."""
        return await self.subscribe(SubscriptionKind.ALL_MIDS, None, target)

    async def subscribe_trades(self, coin: str, target: Target) -> str:
        return await self.subscribe(SubscriptionKind.TRADES, {'coin': coin}, target)

    async def subscribe_l2_book(self, coin: str, target: Target) -> str:
        """Order book snapshots for a coin."""
        return await self.subscribe(SubscriptionKind.L2_BOOK, {'coin': coin}, target)

    async def subscribe_bbo(self, coin: str, target: Target) -> str:
        return await self.subscribe(SubscriptionKind.BBO, {'coin': coin}, target)

    async def subscribe_candles(self, coin: str, interval: str, target: Target) -> str:
        """Candles for a coin; interval is one of 1m, 5m, 15m, 1h, 4h, 1d, ..."""
        return await self.subscribe(
            SubscriptionKind.CANDLE, {'coin': coin, 'interval': interval}, target
        )

    async def subscribe_order_updates(self, user: str, target: Target) -> str:
        return await self.subscribe(SubscriptionKind.ORDER_UPDATES, {'user': user}, target)

    async def subscribe_user_events(self, user: str, target: Target) -> str:
        """Fills, fundings and liquidations for a user address."""
        return await self.subscribe(SubscriptionKind.USER_EVENTS, {'user': user}, target)

    async def subscribe_user_fills(self, user: str, target: Target) -> str:
        return await self.subscribe(SubscriptionKind.USER_FILLS, {'user': user}, target)

    async def subscribe_user_fundings(self, user: str, target: Target) -> str:
        return await self.subscribe(SubscriptionKind.USER_FUNDINGS, {'user': user}, target)

    async def subscribe_liquidations(self, target: Target, user: Optional[str] = None) -> str:
        params = {'user': user} if user else None
        return await self.subscribe(SubscriptionKind.LIQUIDATIONS, params, target)

    # ------------------------------------------------------------------
    # Connection internals
    # ------------------------------------------------------------------

    async def _swap_channel_locked(self, previous: Subscription, subscription: Subscription) -> None:
        """
        Move a key to new parameters on the wire. Caller holds the write lock.

        Raises:
            TransportError: If either frame fails; the server is left on the
                previous channel where possible
        """
        await self._send_json(previous.unsubscribe_request(), 'unsubscribe')
        try:
            await self._send_json(subscription.subscribe_request(), 'subscribe')
        except TransportError:
            try:
                await self._send_json(previous.subscribe_request(), 'resubscribe')
            except TransportError as e:
                self.logger.warning(
                    "Previous subscription not restored", key=previous.key, error=str(e)
                )
            raise

    async def _open_locked(self, on_failure: ConnectionState) -> None:
        """Dial, replay the registry and start loops. Caller holds the write lock."""
        self.state = ConnectionState.CONNECTING
        self.logger.info("Connecting to WebSocket")

        try:
            connection = await asyncio.wait_for(
                self._connect_function(), timeout=self.config.dial_timeout
            )
        except asyncio.CancelledError:
            self.state = on_failure
            raise
        except asyncio.TimeoutError as e:
            self.state = on_failure
            raise ConnectError(self.url, f"timed out after {self.config.dial_timeout}s") from e
        except Exception as e:
            self.state = on_failure
            raise ConnectError(self.url, str(e)) from e

        try:
            await self._replay_locked(connection)
        except asyncio.CancelledError:
            self.state = on_failure
            await connection.close()
            raise
        except TransportError as e:
            self.state = on_failure
            await connection.close()
            raise ConnectError(self.url, f"resubscription failed: {e.reason}") from e

        self._generation += 1
        generation = self._generation
        self._connection = connection
        self._inbound = asyncio.Queue(maxsize=self.config.dispatch_queue_size)
        self.state = ConnectionState.CONNECTED
        self.last_connection_time = time.time()
        self.disconnect_reason = None
        self.keepalive.reset()

        self._read_task = asyncio.create_task(self._read_loop(connection, generation))
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(self._inbound, generation))
        self._keepalive_task = asyncio.create_task(self.keepalive.run())

        self.logger.info("WebSocket connected", subscriptions=len(self.registry))

    async def _replay_locked(self, connection) -> None:
        """
        Re-send every registered subscription on a freshly dialled socket.

        Runs before any loop is started on the socket. Caller holds the write lock.

        Raises:
            TransportError: On the first frame that cannot be sent
        """
        subscriptions = self.registry.snapshot()
        if not subscriptions:
            return

        for subscription in subscriptions:
            try:
                await self._send_json(subscription.subscribe_request(), 'resubscribe', connection)
            except TransportError as e:
                self.logger.error("Resubscription failed", key=subscription.key, error=str(e))
                raise

        self.logger.info("Resubscribed", count=len(subscriptions))

    async def _send_json(self, message: Dict[str, Any], operation: str, connection=None) -> None:
        connection = connection or self._connection
        if connection is None:
            raise TransportError(operation, "no socket")

        try:
            await connection.send_str(json.dumps(message))
        except Exception as e:
            raise TransportError(operation, str(e)) from e

        self.messages_sent += 1

    async def _send_probe(self) -> None:
        async with self._lock.read():
            if self.state != ConnectionState.CONNECTED:
                raise NotConnectedError(self.state.value)
            await self._send_json(PING_MESSAGE, 'ping')

    async def _on_unhealthy(self, reason: str) -> None:
        """Tear down the socket so the read loop exits and reconnection starts."""
        connection = self._connection
        if connection is None or self.state != ConnectionState.CONNECTED:
            return
        self.disconnect_reason = reason
        self.logger.warning("Connection unhealthy, closing socket", reason=reason)
        await connection.close()

    async def _read_loop(self, connection, generation: int) -> None:
        """Read frames until the socket closes; pong is consumed here."""
        reason = "connection closed"
        try:
            while True:
                raw = await connection.receive_str()
                if raw is None:
                    break

                self.messages_received += 1
                self.last_message_time = time.time()

                try:
                    frame = decode_frame(raw)
                except DecodeError as e:
                    self.decode_errors += 1
                    self.logger.warning("Dropping malformed frame", error=str(e))
                    continue

                if frame.channel == 'pong':
                    self.keepalive.acknowledge()
                    continue

                self._inbound_put(generation, frame)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"read error: {e}"
            self.logger.error("WebSocket read error", error=str(e))

        await self._handle_connection_lost(generation, self.disconnect_reason or reason)

    def _inbound_put(self, generation: int, frame: Frame) -> None:
        """Hand a frame to the dispatch loop; never blocks the read loop."""
        inbound = self._inbound
        if inbound is None or generation != self._generation:
            return
        try:
            inbound.put_nowait(frame)
        except asyncio.QueueFull:
            self.inbound_dropped += 1
            self.logger.warning(
                "Dispatch queue full, dropping frame",
                channel=frame.channel,
                dropped=self.inbound_dropped
            )

    async def _dispatch_loop(self, inbound: asyncio.Queue, generation: int) -> None:
        """Drain inbound frames so socket reads are decoupled from handlers."""
        while generation == self._generation and not self._closing:
            frame = await inbound.get()
            try:
                await self.router.dispatch(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Error dispatching frame", channel=frame.channel, error=str(e))

    async def _handle_connection_lost(self, generation: int, reason: str) -> None:
        """Called by the read loop when the socket closes without ``disconnect()``."""
        async with self._lock.write():
            if (self._closing or generation != self._generation
                    or self.state != ConnectionState.CONNECTED):
                return

            self._generation += 1
            reconnect = self.config.reconnect_enabled
            self.state = ConnectionState.RECONNECTING if reconnect else ConnectionState.DISCONNECTED
            self.disconnect_reason = reason
            tasks = [t for t in (self._keepalive_task, self._dispatch_task) if t]
            self._keepalive_task = self._dispatch_task = self._read_task = None
            connection, self._connection = self._connection, None
            self._inbound = None

        self.logger.warning("WebSocket connection lost", reason=reason, reconnect=reconnect)

        await self._cancel_tasks(tasks)
        if connection is not None:
            await connection.close()

        await self._fire(self.on_disconnect_callback, reason)

        # The disconnect callback may have called disconnect()
        if reconnect and self.state == ConnectionState.RECONNECTING:
            await self._fire(self.on_status_callback, ConnectionState.RECONNECTING, None)
            self._start_reconnection()

    def _start_reconnection(self) -> None:
        """Start the reconnection task unless one is already active."""
        if self._reconnect_task and not self._reconnect_task.done():
            self.logger.debug("Reconnection already in progress")
            return
        self._reconnect_task = asyncio.create_task(self._reconnection_loop())

    async def _reconnection_loop(self) -> None:
        while True:
            connected = await self.reconnection.run(
                self._reconnect_once,
                on_attempt=self._on_reconnect_attempt
            )
            if not connected:
                break

            await self._fire(self.on_connect_callback)
            await self._fire(self.on_status_callback, ConnectionState.CONNECTED, None)

            # A loss detected while the callbacks ran is handled by this task
            if self.state != ConnectionState.RECONNECTING:
                return

        async with self._lock.write():
            if self.state != ConnectionState.RECONNECTING:
                return
            self.state = ConnectionState.FAILED
            self.terminal_failure = True

        error = self.reconnection.exhausted_error()
        self.logger.error("Reconnection exhausted", error=str(error))
        await self._fire(self.on_status_callback, ConnectionState.FAILED, error)

    async def _reconnect_once(self) -> None:
        async with self._lock.write():
            if self._closing or self.state != ConnectionState.RECONNECTING:
                raise NotConnectedError(self.state.value)
            await self._open_locked(on_failure=ConnectionState.RECONNECTING)

    async def _on_reconnect_attempt(self, attempt: int) -> None:
        await self._fire(self.on_reconnect_callback, attempt)

    def _tasks(self) -> List[asyncio.Task]:
        return [
            t for t in (self._read_task, self._dispatch_task,
                        self._keepalive_task, self._reconnect_task)
            if t is not None and not t.done()
        ]

    async def _cancel_tasks(self, tasks: List[asyncio.Task]) -> None:
        current = asyncio.current_task()
        for task in tasks:
            if task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self.logger.debug("Task ended with error during shutdown", error=str(e))

    @staticmethod
    def _as_target(target: Target):
        if isinstance(target, (CallbackTarget, QueueTarget)):
            return target
        if callable(target):
            return CallbackTarget(target)
        raise TypeError("target must be a CallbackTarget, QueueTarget or callable")

    async def _fire(self, callback, *args) -> None:
        if not callback:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.logger.error("Error in connection callback", error=str(e))
