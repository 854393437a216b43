"""
Unit tests for the reconnection manager.
"""

from unittest.mock import AsyncMock, patch

import pytest

from hyperliquid_ws import ReconnectExhaustedError, ReconnectionConfig, ReconnectionManager


class TestReconnectionConfig:

    def test_defaults(self):
        config = ReconnectionConfig()
        assert config.delay == 5.0
        assert config.max_attempts == 10
        assert config.multiplier == 1.0

    def test_validation(self):
        with pytest.raises(ValueError, match="max_attempts must be positive"):
            ReconnectionConfig(max_attempts=0)
        with pytest.raises(ValueError, match="delay must not be negative"):
            ReconnectionConfig(delay=-1)
        with pytest.raises(ValueError, match="multiplier must be at least 1.0"):
            ReconnectionConfig(multiplier=0.5)


class TestReconnectionManager:

    @pytest.fixture
    def manager(self):
        return ReconnectionManager({'delay': 0.0, 'max_attempts': 3})

    def test_fixed_delay(self):
        manager = ReconnectionManager()
        assert [manager.get_delay() for _ in range(3)] == [5.0, 5.0, 5.0]

    def test_backoff_capped(self):
        manager = ReconnectionManager({'delay': 1.0, 'multiplier': 2.0, 'max_delay': 5.0})
        assert [manager.get_delay() for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_stays_within_bounds(self):
        manager = ReconnectionManager({'delay': 5.0, 'jitter': True})
        delays = [manager.get_delay() for _ in range(20)]
        assert all(4.0 <= d <= 6.0 for d in delays)

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, manager):
        connect_once = AsyncMock()
        on_attempt = AsyncMock()

        assert await manager.run(connect_once, on_attempt) is True

        on_attempt.assert_awaited_once_with(1)
        assert manager.attempt_count == 0
        assert manager.total_reconnects == 1
        assert manager.last_success is not None

    @pytest.mark.asyncio
    async def test_success_after_failures(self, manager):
        connect_once = AsyncMock(side_effect=[OSError("down"), OSError("down"), None])

        assert await manager.run(connect_once) is True

        assert connect_once.await_count == 3
        assert manager.attempt_count == 0
        assert manager.total_reconnects == 1

    @pytest.mark.asyncio
    async def test_exhaustion_is_reported_not_raised(self, manager):
        error = OSError("down")
        connect_once = AsyncMock(side_effect=error)

        assert await manager.run(connect_once) is False

        assert connect_once.await_count == 3
        assert manager.exhausted is True
        assert manager.should_reconnect() is False

        exhausted = manager.exhausted_error()
        assert isinstance(exhausted, ReconnectExhaustedError)
        assert exhausted.attempts == 3
        assert exhausted.last_error is error

    @pytest.mark.asyncio
    async def test_waits_configured_delay(self):
        manager = ReconnectionManager({'delay': 5.0, 'max_attempts': 2})

        with patch('hyperliquid_ws.reconnection.asyncio.sleep', new=AsyncMock()) as sleep:
            await manager.run(AsyncMock(side_effect=OSError("down")))

        assert [c.args[0] for c in sleep.await_args_list] == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_attempt_callback_errors_ignored(self, manager):
        on_attempt = AsyncMock(side_effect=RuntimeError("callback"))

        assert await manager.run(AsyncMock(), on_attempt) is True

    def test_reset(self, manager):
        manager.attempt_count = 2
        manager.exhausted = True

        manager.reset()

        assert manager.attempt_count == 0
        assert manager.exhausted is False
        assert manager.get_stats()['should_reconnect'] is True
