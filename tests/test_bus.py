"""Tests for the bounded message bus."""

import asyncio

import pytest

from helpers import inbound
from nene.bus.events import OutboundMessage, StreamEvent
from nene.bus.queue import MessageBus
from nene.errors import BusClosedError


class TestBackpressure:
    """Publishing blocks once a queue is full."""

    @pytest.mark.asyncio
    async def test_only_capacity_publishes_complete_without_consumer(self):
        bus = MessageBus(capacity=3)
        tasks = [asyncio.create_task(bus.publish_inbound(inbound(str(i)))) for i in range(5)]
        await asyncio.sleep(0.05)

        done = [t for t in tasks if t.done()]
        assert len(done) == 3
        assert bus.inbound_size == 3

        bus.close()
        await asyncio.gather(*tasks, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_blocked_publisher_resumes_after_consume(self):
        bus = MessageBus(capacity=1)
        await bus.publish_outbound(OutboundMessage(channel="telegram", chat_id="1", content="first"))
        blocked = asyncio.create_task(
            bus.publish_outbound(OutboundMessage(channel="telegram", chat_id="1", content="second"))
        )
        await asyncio.sleep(0.02)
        assert not blocked.done()

        first = await bus.consume_outbound(timeout=1)
        await asyncio.wait_for(blocked, timeout=1)
        second = await bus.consume_outbound(timeout=1)

        assert first.content == "first"
        assert second.content == "second"

    @pytest.mark.asyncio
    async def test_fifo_order_per_queue(self):
        bus = MessageBus()
        for i in range(10):
            await bus.publish_inbound(inbound(str(i)))

        received = [(await bus.consume_inbound(timeout=1)).content for _ in range(10)]

        assert received == [str(i) for i in range(10)]


class TestConsume:
    """Consumption with cancellation, timeout and close."""

    @pytest.mark.asyncio
    async def test_cancel_returns_none_promptly(self):
        bus = MessageBus()
        cancel = asyncio.Event()
        consumer = asyncio.create_task(bus.consume_inbound(cancel))
        await asyncio.sleep(0.01)

        cancel.set()
        result = await asyncio.wait_for(consumer, timeout=0.5)

        assert result is None

    @pytest.mark.asyncio
    async def test_already_cancelled_returns_none_even_with_messages(self):
        bus = MessageBus()
        await bus.publish_inbound(inbound())
        cancel = asyncio.Event()
        cancel.set()

        assert await bus.consume_inbound(cancel) is None
        assert bus.inbound_size == 1

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        bus = MessageBus()
        assert await bus.consume_stream(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_close_wakes_blocked_consumers(self):
        bus = MessageBus()
        consumers = [asyncio.create_task(bus.consume_outbound()) for _ in range(3)]
        await asyncio.sleep(0.01)

        bus.close()
        results = await asyncio.wait_for(asyncio.gather(*consumers), timeout=0.5)

        assert results == [None, None, None]

    @pytest.mark.asyncio
    async def test_closed_bus_drains_remaining_messages(self):
        bus = MessageBus()
        await bus.publish_inbound(inbound("left over"))
        bus.close()

        msg = await bus.consume_inbound()
        assert msg.content == "left over"
        assert await bus.consume_inbound() is None

    @pytest.mark.asyncio
    async def test_task_cancellation_does_not_lose_messages(self):
        bus = MessageBus()
        consumer = asyncio.create_task(bus.consume_inbound())
        await asyncio.sleep(0.01)
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer

        await bus.publish_inbound(inbound("kept"))
        msg = await bus.consume_inbound(timeout=1)
        assert msg.content == "kept"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        bus = MessageBus()
        bus.close()
        bus.close()
        assert bus.closed

    @pytest.mark.asyncio
    async def test_publish_after_close_raises(self):
        bus = MessageBus()
        bus.close()
        with pytest.raises(BusClosedError):
            await bus.publish_inbound(inbound())

    @pytest.mark.asyncio
    async def test_blocked_publisher_fails_when_bus_closes(self):
        bus = MessageBus(capacity=1)
        await bus.publish_inbound(inbound("a"))
        blocked = asyncio.create_task(bus.publish_inbound(inbound("b")))
        await asyncio.sleep(0.01)

        bus.close()
        with pytest.raises(BusClosedError):
            await asyncio.wait_for(blocked, timeout=0.5)

    @pytest.mark.asyncio
    async def test_publish_stream_stamps_timestamp(self):
        bus = MessageBus()
        event = StreamEvent.text_delta("telegram", "1", "telegram:1", "main", "hi")
        assert event.timestamp is None

        await bus.publish_stream(event)
        received = await bus.consume_stream(timeout=1)

        assert received.timestamp is not None


class TestHandlersAndDispatch:

    def test_handler_registration(self):
        bus = MessageBus()

        async def handler(msg):
            return None

        bus.register_handler("telegram", handler)
        assert bus.get_handler("telegram") is handler

        bus.unregister_handler("telegram")
        assert bus.get_handler("telegram") is None

    @pytest.mark.asyncio
    async def test_dispatch_outbound_routes_by_channel_and_survives_errors(self):
        bus = MessageBus()
        delivered = []

        async def broken(msg):
            raise RuntimeError("boom")

        async def recorder(msg):
            delivered.append(msg.content)

        bus.subscribe_outbound("telegram", broken)
        bus.subscribe_outbound("telegram", recorder)
        cancel = asyncio.Event()
        dispatcher = asyncio.create_task(bus.dispatch_outbound(cancel))

        await bus.publish_outbound(OutboundMessage(channel="telegram", chat_id="1", content="one"))
        await bus.publish_outbound(OutboundMessage(channel="cli", chat_id="1", content="ignored"))
        await bus.publish_outbound(OutboundMessage(channel="telegram", chat_id="1", content="two"))
        await asyncio.sleep(0.05)

        cancel.set()
        await asyncio.wait_for(dispatcher, timeout=0.5)
        assert delivered == ["one", "two"]
