"""
Keepalive supervisor.

Sends ``{"method": "ping"}`` on a fixed interval and waits a bounded window
for the ``pong`` channel. A missing acknowledgement or a failed probe send
declares the connection unhealthy; the manager then tears down the read loop
and reconnection takes over.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

PING_MESSAGE = {'method': 'ping'}


class KeepaliveSupervisor:
    """
    Periodic liveness probe with a strict acknowledgement window.

    Args:
        send_probe: Coroutine function that writes the probe frame
        on_unhealthy: Coroutine function called once with a reason when the
            probe times out or cannot be sent
        interval: Seconds between probes
        timeout: Seconds to wait for the acknowledgement
    """

    def __init__(
        self,
        send_probe: Callable[[], Awaitable[None]],
        on_unhealthy: Callable[[str], Awaitable[None]],
        interval: float = 30.0,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.send_probe = send_probe
        self.on_unhealthy = on_unhealthy
        self.interval = interval
        self.timeout = timeout
        self.clock = clock

        self.last_ping_sent: Optional[float] = None
        self.last_pong_received: Optional[float] = None
        self.probes_sent = 0
        self.probe_timeouts = 0

        self._ack = asyncio.Event()

    def acknowledge(self) -> None:
        """Record a ``pong``. Called by the read loop, never routed to subscribers."""
        self.last_pong_received = self.clock()
        self._ack.set()

    def reset(self) -> None:
        """Forget the outstanding probe (new connection)."""
        self._ack = asyncio.Event()

    async def probe(self) -> bool:
        """
        Send one probe and wait for its acknowledgement.

        Returns:
            True if acknowledged within the window
        """
        self._ack.clear()

        try:
            await self.send_probe()
        except Exception as e:
            logger.warning("Failed to send ping", error=str(e))
            await self.on_unhealthy(f"ping send failed: {e}")
            return False

        self.last_ping_sent = self.clock()
        self.probes_sent += 1
        logger.debug("Sent ping", probes_sent=self.probes_sent)

        try:
            await asyncio.wait_for(self._ack.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.probe_timeouts += 1
            logger.warning("Pong timeout, connection unhealthy", timeout=self.timeout)
            await self.on_unhealthy(f"no pong within {self.timeout}s")
            return False

        return True

    async def run(self) -> None:
        """Probe until cancelled or until the connection is declared unhealthy."""
        logger.debug("Starting keepalive loop", interval=self.interval, timeout=self.timeout)
        try:
            while True:
                await asyncio.sleep(self.interval)
                if not await self.probe():
                    break
        except asyncio.CancelledError:
            logger.debug("Keepalive loop cancelled")
            raise
