"""
Reconnection manager for the WebSocket connection.

Retries connection establishment after an unexpected loss with a bounded
number of attempts. The default policy is a fixed delay between attempts;
a multiplier above 1.0 turns it into exponential backoff capped at max_delay.
Exhausting the attempt bound is a terminal failure that is reported, not
raised.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from .exceptions import ReconnectExhaustedError

logger = structlog.get_logger(__name__)


@dataclass
class ReconnectionConfig:
    """Configuration for reconnection behavior."""
    delay: float = 5.0              # Delay before each attempt in seconds
    max_attempts: int = 10          # Attempts before giving up (must be positive)
    multiplier: float = 1.0         # Backoff multiplier (1.0 = fixed delay)
    max_delay: float = 60.0         # Upper bound when multiplier > 1.0
    jitter: bool = False            # Randomise delays by +/-20%

    def __post_init__(self):
        if self.delay < 0:
            raise ValueError("delay must not be negative")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be at least 1.0")


class ReconnectionManager:
    """
    Drives reconnection attempts for one connection.

    Features:
    - Fixed delay (or capped exponential backoff) between attempts
    - Bounded attempt count with a single terminal failure report
    - Attempt count reset on any successful connection
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize reconnection manager.

        Args:
            config: Reconnection configuration dictionary
        """
        default_config = {
            'delay': 5.0,
            'max_attempts': 10,
            'multiplier': 1.0,
            'max_delay': 60.0,
            'jitter': False
        }

        if config:
            default_config.update(config)

        self.config = ReconnectionConfig(**default_config)

        self.attempt_count = 0
        self.total_reconnects = 0
        self.last_success: Optional[float] = None
        self.last_error: Optional[Exception] = None
        self.exhausted = False
        self._current_delay: Optional[float] = None

        self.logger = logger.bind(component="reconnection")

    def get_delay(self) -> float:
        """
        Get the delay before the next attempt.

        Returns:
            Delay in seconds
        """
        if self._current_delay is None:
            self._current_delay = self.config.delay
        else:
            self._current_delay = min(
                self._current_delay * self.config.multiplier,
                max(self.config.max_delay, self.config.delay)
            )

        delay = self._current_delay
        if self.config.jitter:
            delay *= random.uniform(0.8, 1.2)

        return delay

    def should_reconnect(self) -> bool:
        return self.attempt_count < self.config.max_attempts

    def mark_success(self) -> None:
        """Record a successful connection and reset the attempt streak."""
        if self.attempt_count:
            self.logger.info(
                "Reconnected",
                attempts=self.attempt_count
            )
            self.total_reconnects += 1
        self.attempt_count = 0
        self._current_delay = None
        self.last_success = time.time()
        self.last_error = None
        self.exhausted = False

    def mark_failure(self, error: Optional[Exception] = None) -> None:
        self.last_error = error
        self.logger.warning(
            "Reconnection attempt failed",
            attempt=self.attempt_count,
            max_attempts=self.config.max_attempts,
            error=str(error) if error else None
        )

    def reset(self) -> None:
        """Reset all state (explicit disconnect or explicit connect)."""
        self.attempt_count = 0
        self._current_delay = None
        self.last_error = None
        self.exhausted = False

    async def run(
        self,
        connect_once: Callable[[], Awaitable[Any]],
        on_attempt: Optional[Callable[[int], Awaitable[None]]] = None
    ) -> bool:
        """
        Retry until connected or the attempt bound is reached.

        Args:
            connect_once: Coroutine function performing one connection attempt;
                it raises on failure
            on_attempt: Optional coroutine called with the attempt number
                before each attempt

        Returns:
            True if a connection was established, False on terminal failure
        """
        while self.should_reconnect():
            delay = self.get_delay()
            self.logger.info(
                "Reconnecting after delay",
                delay=round(delay, 2),
                attempt=self.attempt_count + 1,
                max_attempts=self.config.max_attempts
            )
            await asyncio.sleep(delay)

            self.attempt_count += 1
            if on_attempt:
                try:
                    await on_attempt(self.attempt_count)
                except Exception as e:
                    self.logger.error("Error in reconnect callback", error=str(e))

            try:
                await connect_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.mark_failure(e)
                continue

            self.mark_success()
            return True

        self.exhausted = True
        self.logger.error(
            "Maximum reconnection attempts reached, giving up",
            max_attempts=self.config.max_attempts,
            error=str(self.last_error) if self.last_error else None
        )
        return False

    def exhausted_error(self) -> ReconnectExhaustedError:
        return ReconnectExhaustedError(self.attempt_count, self.last_error)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'attempt_count': self.attempt_count,
            'total_reconnects': self.total_reconnects,
            'current_delay': self._current_delay or 0,
            'last_success': self.last_success,
            'should_reconnect': self.should_reconnect(),
            'exhausted': self.exhausted
        }
