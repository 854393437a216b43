"""
Pytest configuration and shared fixtures for WebSocket client tests.

Provides a scripted in-memory connection that stands in for the exchange
socket, a dialer that hands out such connections (or fails on demand), and a
manager wired to it with short timings.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

# Import test modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from hyperliquid_ws import WebSocketConfig, WebSocketManager


class FakeConnection:
    """In-memory duplex socket with the shape the manager expects."""

    def __init__(self, auto_pong: bool = True):
        self.auto_pong = auto_pong
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.fail_sends = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send_str(self, data: str) -> None:
        if self.closed or self.fail_sends:
            raise ConnectionResetError("socket closed")
        message = json.loads(data)
        self.sent.append(message)
        if self.auto_pong and message.get('method') == 'ping':
            self.feed({'channel': 'pong'})

    async def receive_str(self) -> Optional[str]:
        if self.closed and self._incoming.empty():
            return None
        return await self._incoming.get()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def feed(self, message: Any) -> None:
        """Queue an inbound frame (dict encoded as JSON, str sent as-is)."""
        if not isinstance(message, str):
            message = json.dumps(message)
        self._incoming.put_nowait(message)

    def drop(self) -> None:
        """Simulate the server closing the socket."""
        self._incoming.put_nowait(None)

    def requests(self, method: str = 'subscribe') -> List[Dict[str, Any]]:
        return [m['subscription'] for m in self.sent if m.get('method') == method]

    @property
    def pings(self) -> int:
        return sum(1 for m in self.sent if m.get('method') == 'ping')


class FakeDialer:
    """Connect function returning FakeConnections; can be told to fail."""

    def __init__(self):
        self.connections: List[FakeConnection] = []
        self.attempts = 0
        self.fail = False
        self.silent_connections = 0  # next N connections never answer pings
        self.fail_sends = False      # new connections reject every write

    async def __call__(self) -> FakeConnection:
        self.attempts += 1
        if self.fail:
            raise ConnectionRefusedError("connection refused")

        auto_pong = True
        if self.silent_connections > 0:
            self.silent_connections -= 1
            auto_pong = False

        connection = FakeConnection(auto_pong=auto_pong)
        connection.fail_sends = self.fail_sends
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met within timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def fast_config():
    """Timings short enough for unit tests; keepalive idle unless overridden."""
    return WebSocketConfig(
        ping_interval=60.0,
        pong_timeout=1.0,
        dial_timeout=1.0,
        reconnect_delay=0.01,
        max_reconnect_attempts=10
    )


@pytest.fixture
def dialer():
    return FakeDialer()


@pytest_asyncio.fixture
async def ws_manager(dialer, fast_config):
    """Unconnected manager; always disconnected on teardown."""
    manager = WebSocketManager("wss://test.invalid/ws", config=fast_config, connect_function=dialer)
    yield manager
    await manager.disconnect()


@pytest_asyncio.fixture
async def connected_manager(ws_manager):
    await ws_manager.connect()
    return ws_manager


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    return wait_until
