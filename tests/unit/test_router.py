"""
Unit tests for the subscription registry and message router.
"""

import asyncio
from unittest.mock import Mock

import pytest

from hyperliquid_ws import (
    CallbackTarget,
    DecodeError,
    MessageRouter,
    QueueTarget,
    ReadWriteLock,
    Subscription,
    SubscriptionRegistry,
    decode_frame,
)
from hyperliquid_ws.router import Frame


def make_sub(kind, params=None, target=None):
    return Subscription.create(kind, params, target or CallbackTarget(Mock()))


class TestSubscriptionRegistry:

    def test_add_and_get(self):
        registry = SubscriptionRegistry()
        sub = make_sub('trades', {'coin': 'BTC'})

        assert registry.add(sub) is None
        assert registry.get('trades:BTC') is sub
        assert 'trades:BTC' in registry
        assert len(registry) == 1

    def test_add_same_key_replaces(self):
        registry = SubscriptionRegistry()
        first = make_sub('trades', {'coin': 'BTC'})
        second = make_sub('trades', {'coin': 'BTC'})

        registry.add(first)
        assert registry.add(second) is first
        assert len(registry) == 1
        assert registry.get('trades:BTC') is second

    def test_remove(self):
        registry = SubscriptionRegistry()
        sub = make_sub('allMids')
        registry.add(sub)

        assert registry.remove('allMids') is sub
        assert registry.remove('allMids') is None
        assert len(registry) == 0

    def test_of_kind(self):
        registry = SubscriptionRegistry()
        registry.add(make_sub('trades', {'coin': 'BTC'}))
        registry.add(make_sub('trades', {'coin': 'ETH'}))
        registry.add(make_sub('l2Book', {'coin': 'BTC'}))

        assert sorted(s.key for s in registry.of_kind('trades')) == ['trades:BTC', 'trades:ETH']

    def test_clear_returns_removed(self):
        registry = SubscriptionRegistry()
        registry.add(make_sub('allMids'))
        registry.add(make_sub('trades', {'coin': 'BTC'}))

        removed = registry.clear()

        assert len(removed) == 2
        assert len(registry) == 0

    def test_iteration_is_a_snapshot(self):
        registry = SubscriptionRegistry()
        registry.add(make_sub('allMids'))

        for sub in registry:
            registry.remove(sub.key)

        assert len(registry) == 0


class TestDecodeFrame:

    def test_valid_frame(self):
        frame = decode_frame('{"channel": "trades", "data": [1]}')
        assert frame == Frame(channel='trades', data=[1])

    def test_bytes_frame(self):
        assert decode_frame(b'{"channel": "pong"}').channel == 'pong'

    @pytest.mark.parametrize("raw", [
        'not json',
        '[1, 2]',
        '{"data": {}}',
        '{"channel": ""}',
        '{"channel": 5}',
    ])
    def test_malformed(self, raw):
        with pytest.raises(DecodeError):
            decode_frame(raw)


class TestMessageRouter:

    @pytest.fixture
    def registry(self):
        return SubscriptionRegistry()

    @pytest.fixture
    def router(self, registry):
        return MessageRouter(registry, ReadWriteLock())

    def test_control_channels_never_match(self, router, registry):
        registry.add(make_sub('allMids'))

        assert router.match('pong') == []
        assert router.match('subscriptionResponse', {'method': 'subscribe'}) == []

    def test_exact_key_match(self, router, registry):
        sub = make_sub('candle', {'coin': 'BTC', 'interval': '1m'})
        registry.add(sub)

        assert router.match('candle:BTC:1m') == [sub]

    def test_kind_channel_derives_key(self, router, registry):
        btc = make_sub('trades', {'coin': 'BTC'})
        eth = make_sub('trades', {'coin': 'ETH'})
        registry.add(btc)
        registry.add(eth)

        assert router.match('trades', [{'coin': 'ETH'}]) == [eth]

    def test_unregistered_derived_key_dropped(self, router, registry):
        registry.add(make_sub('trades', {'coin': 'BTC'}))

        assert router.match('trades', [{'coin': 'SOL'}]) == []

    def test_underivable_payload_fans_out_to_kind(self, router, registry):
        registry.add(make_sub('trades', {'coin': 'BTC'}))
        registry.add(make_sub('trades', {'coin': 'ETH'}))
        registry.add(make_sub('allMids'))

        assert len(router.match('trades', [])) == 2

    @pytest.mark.asyncio
    async def test_dispatch_delivers(self, router, registry):
        handler = Mock()
        registry.add(make_sub('allMids', target=CallbackTarget(handler)))

        accepted = await router.dispatch(Frame('allMids', {'mids': {}}))

        assert accepted == 1
        handler.assert_called_once_with({'mids': {}})
        assert router.dispatched == 1

    @pytest.mark.asyncio
    async def test_dispatch_unrouted(self, router):
        assert await router.dispatch(Frame('trades', [{'coin': 'BTC'}])) == 0
        assert router.unrouted == 1

    @pytest.mark.asyncio
    async def test_dispatch_counts_queue_drops(self, router, registry):
        target = QueueTarget(maxsize=1)
        registry.add(make_sub('l2Book', {'coin': 'BTC'}, target))
        frame = Frame('l2Book', {'coin': 'BTC'})

        await router.dispatch(frame)
        await router.dispatch(frame)

        assert router.dropped == 1
        assert target.qsize() == 1

    @pytest.mark.asyncio
    async def test_dispatch_isolates_handler_errors(self, router, registry):
        registry.add(make_sub('trades', {'coin': 'BTC'}, CallbackTarget(Mock(side_effect=ValueError("bad")))))

        assert await router.dispatch(Frame('trades:BTC', [])) == 0
        assert router.handler_errors == 1

    @pytest.mark.asyncio
    async def test_delivery_happens_outside_lock(self, registry):
        lock = ReadWriteLock()
        router = MessageRouter(registry, lock)
        observed = []

        async def handler(data):
            observed.append(lock.locked)
            # A writer must be able to run from inside a handler
            async with lock.write():
                registry.remove('allMids')

        registry.add(make_sub('allMids', target=CallbackTarget(handler)))
        await asyncio.wait_for(router.dispatch(Frame('allMids', {})), timeout=1.0)

        assert observed == [False]
        assert len(registry) == 0
