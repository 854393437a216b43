"""
Duplex socket transport built on aiohttp.

The connection manager only needs three things from a socket: send a text
frame, receive the next text frame (None once closed), and close. Any object
with that shape can be supplied through ``connect_function``; this module
provides the default aiohttp implementation.
"""

import asyncio
from typing import Optional

import aiohttp
import structlog

logger = structlog.get_logger(__name__)


class AiohttpConnection:
    """An open WebSocket and the session that owns it."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self.session = session
        self.ws = ws

    @property
    def closed(self) -> bool:
        return self.ws.closed

    async def send_str(self, data: str) -> None:
        await self.ws.send_str(data)

    async def receive_str(self) -> Optional[str]:
        """
        Wait for the next text frame.

        Returns:
            Frame text, or None when the socket closed
        """
        while True:
            message = await self.ws.receive()

            if message.type == aiohttp.WSMsgType.TEXT:
                return message.data
            elif message.type == aiohttp.WSMsgType.BINARY:
                return message.data.decode('utf-8', errors='replace')
            elif message.type == aiohttp.WSMsgType.ERROR:
                logger.error("WebSocket error", error=str(self.ws.exception()))
                return None
            elif message.type in (aiohttp.WSMsgType.CLOSE,
                                  aiohttp.WSMsgType.CLOSING,
                                  aiohttp.WSMsgType.CLOSED):
                return None
            # PING/PONG control frames are answered by aiohttp

    async def close(self) -> None:
        try:
            if not self.ws.closed:
                await self.ws.close(code=1000, message=b"Connection closed by client")
        except Exception as e:
            logger.debug("Error closing WebSocket", error=str(e))
        finally:
            try:
                await self.session.close()
            except Exception as e:
                logger.debug("Error closing session", error=str(e))


class AiohttpTransport:
    """Dial a WebSocket endpoint with a bounded timeout."""

    def __init__(
        self,
        url: str,
        dial_timeout: float = 10.0,
        max_message_size: int = 10485760,
        headers: Optional[dict] = None
    ):
        self.url = url
        self.dial_timeout = dial_timeout
        self.max_message_size = max_message_size
        self.headers = headers or {}

    async def connect(self) -> AiohttpConnection:
        """
        Open a new connection.

        Raises:
            asyncio.TimeoutError: If the handshake exceeds dial_timeout
            aiohttp.ClientError: On handshake failure
        """
        session = aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(
                    self.url,
                    headers=self.headers,
                    max_msg_size=self.max_message_size,
                    autoping=True
                ),
                timeout=self.dial_timeout
            )
        except BaseException:
            await session.close()
            raise

        logger.info("WebSocket connected", url=self.url)
        return AiohttpConnection(session, ws)

    async def __call__(self) -> AiohttpConnection:
        return await self.connect()
