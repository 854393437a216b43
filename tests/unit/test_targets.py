"""
Unit tests for delivery targets.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from hyperliquid_ws import CallbackTarget, QueueClosed, QueueTarget


class TestCallbackTarget:

    @pytest.mark.asyncio
    async def test_plain_function(self):
        handler = Mock()
        target = CallbackTarget(handler)

        assert await target.deliver({'a': 1}) is True
        handler.assert_called_once_with({'a': 1})

    @pytest.mark.asyncio
    async def test_coroutine_function_awaited(self):
        handler = AsyncMock()
        target = CallbackTarget(handler)

        await target.deliver('payload')

        handler.assert_awaited_once_with('payload')

    @pytest.mark.asyncio
    async def test_closed_target_skips_handler(self):
        handler = Mock()
        target = CallbackTarget(handler)
        target.close()

        assert await target.deliver('payload') is False
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_handler_error_propagates(self):
        target = CallbackTarget(Mock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            await target.deliver('payload')

    def test_requires_callable(self):
        with pytest.raises(TypeError):
            CallbackTarget(None)


class TestQueueTarget:

    def test_size_validation(self):
        with pytest.raises(ValueError, match="maxsize must be positive"):
            QueueTarget(maxsize=0)

    @pytest.mark.asyncio
    async def test_push_and_get(self):
        target = QueueTarget(maxsize=2)

        assert target.push('a') is True
        assert await target.get() == 'a'
        assert target.delivered == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops_newest(self):
        target = QueueTarget(maxsize=2)

        target.push(1)
        target.push(2)
        assert target.push(3) is False

        assert target.dropped == 1
        assert target.get_nowait() == 1
        assert target.get_nowait() == 2
        assert target.qsize() == 0

    @pytest.mark.asyncio
    async def test_get_waits_for_payload(self):
        target = QueueTarget()

        getter = asyncio.create_task(target.get())
        await asyncio.sleep(0)
        assert not getter.done()

        await target.deliver('late')
        assert await asyncio.wait_for(getter, timeout=1.0) == 'late'

    @pytest.mark.asyncio
    async def test_close_releases_waiting_consumer(self):
        target = QueueTarget()

        getter = asyncio.create_task(target.get())
        await asyncio.sleep(0)
        target.close()

        with pytest.raises(QueueClosed):
            await asyncio.wait_for(getter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_buffered_items_drained_after_close(self):
        target = QueueTarget()
        target.push('a')
        target.push('b')
        target.close()

        assert target.push('c') is False
        assert [item async for item in target] == ['a', 'b']
