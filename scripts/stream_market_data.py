#!/usr/bin/env python
"""
Stream Hyperliquid market data.

Connects to the WebSocket API, subscribes to mids, trades, book and candles
for the requested coins, and logs payload summaries and connection stats.
"""

import sys
import asyncio
import signal
import argparse
from pathlib import Path
from typing import Any, List

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import structlog

from config.settings import load_config, build_websocket_config, resolve_url
from hyperliquid_ws import ConnectionState, QueueTarget, WebSocketManager
from utils.logging_setup import configure_logging

logger = structlog.get_logger(__name__)


class MarketDataStreamer:
    """Subscribe to a set of coins and log what arrives."""

    def __init__(self, manager: WebSocketManager, coins: List[str], interval: str,
                 stats_interval: float, queue_size: int):
        self.manager = manager
        self.coins = coins
        self.interval = interval
        self.stats_interval = stats_interval
        self.queue_size = queue_size
        self.running = False
        self._stop = asyncio.Event()
        self._consumers: List[asyncio.Task] = []

    async def on_mids(self, data: Any) -> None:
        mids = (data or {}).get('mids', {})
        logger.info("allMids", **{coin: mids.get(coin) for coin in self.coins if coin in mids})

    async def on_trades(self, data: Any) -> None:
        for trade in data or []:
            logger.info(
                "trade",
                coin=trade.get('coin'),
                side=trade.get('side'),
                px=trade.get('px'),
                sz=trade.get('sz')
            )

    async def on_candle(self, data: Any) -> None:
        logger.info("candle", coin=data.get('s'), interval=data.get('i'), close=data.get('c'))

    async def consume_book(self, coin: str, target: QueueTarget) -> None:
        async for book in target:
            levels = book.get('levels') or [[], []]
            bids, asks = levels[0], levels[1]
            logger.info(
                "l2Book",
                coin=coin,
                best_bid=bids[0]['px'] if bids else None,
                best_ask=asks[0]['px'] if asks else None
            )

    async def on_status(self, state: ConnectionState, error: Exception = None) -> None:
        logger.info("Connection status", state=state.value, error=str(error) if error else None)
        if state == ConnectionState.FAILED:
            self._stop.set()

    async def start(self) -> None:
        self.running = True
        self.manager.set_callbacks(on_status=self.on_status)
        await self.manager.connect()

        await self.manager.subscribe_all_mids(self.on_mids)
        for coin in self.coins:
            await self.manager.subscribe_trades(coin, self.on_trades)
            await self.manager.subscribe_candles(coin, self.interval, self.on_candle)

            book = QueueTarget(maxsize=self.queue_size)
            await self.manager.subscribe_l2_book(coin, book)
            self._consumers.append(asyncio.create_task(self.consume_book(coin, book)))

        while self.running and not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.stats_interval)
            except asyncio.TimeoutError:
                logger.info("Connection stats", **self.manager.get_stats().to_dict())

    def request_stop(self) -> None:
        self._stop.set()

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self._stop.set()
        await self.manager.disconnect("Stream stopped")
        # Queue targets are closed by disconnect, so consumers finish on their own
        await asyncio.gather(*self._consumers, return_exceptions=True)
        logger.info("Final stats", **self.manager.get_stats().to_dict())


async def main():
    """Main function."""
    config = load_config()

    parser = argparse.ArgumentParser(description='Stream Hyperliquid market data')
    parser.add_argument('--coins', type=str, default="BTC,ETH",
                        help='Comma-separated list of coins (default: BTC,ETH)')
    parser.add_argument('--interval', type=str, default="1m",
                        help='Candle interval (default: 1m)')
    parser.add_argument('--testnet', action='store_true',
                        help='Use the testnet endpoint')
    parser.add_argument('--stats-interval', type=float, default=10.0,
                        help='Seconds between stats logs (default: 10.0)')
    parser.add_argument('--log-level', type=str, default=config['logging']['level'],
                        help='Log level (default: INFO or $LOG_LEVEL)')
    parser.add_argument('--json', action='store_true',
                        help='Render logs as JSON lines')

    args = parser.parse_args()

    configure_logging(args.log_level, json=args.json or config['logging'].get('json', False))

    if args.testnet:
        config['websocket']['network'] = 'testnet'
        config['websocket']['url'] = None

    url = resolve_url(config['websocket'])
    manager = WebSocketManager(url, config=build_websocket_config(config))
    coins = [c.strip().upper() for c in args.coins.split(",") if c.strip()]

    streamer = MarketDataStreamer(
        manager,
        coins=coins,
        interval=args.interval,
        stats_interval=args.stats_interval,
        queue_size=config['subscriber_queue_size']
    )

    # Handle signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received stop signal, shutting down...")
        streamer.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await streamer.start()
    except Exception as e:
        logger.error("Error in market data stream", error=str(e))
    finally:
        await streamer.stop()


if __name__ == "__main__":
    asyncio.run(main())
