"""Tests for the subscriber registry and queue channels."""

import asyncio
import pytest

from statesync.exceptions import SubscriberDeliveryFailure, SubscriberLimitReached
from statesync.store import StateDocument
from statesync.sync import QueueChannel, SubscriberRegistry


class RecordingChannel:
    """Channel that records everything sent to it."""

    def __init__(self):
        self.received: list[StateDocument] = []

    def send(self, doc: StateDocument) -> None:
        self.received.append(doc)


class FailingChannel:
    """Channel whose listener has gone away."""

    def send(self, doc: StateDocument) -> None:
        raise BrokenPipeError("connection reset")


@pytest.fixture
def registry():
    return SubscriberRegistry()


@pytest.fixture
def doc():
    return StateDocument.create([{"id": 1}], [], "T1")


class TestQueueChannel:
    """Tests for QueueChannel."""

    @pytest.mark.asyncio
    async def test_send_then_get(self, doc):
        """Test documents come out in send order."""
        channel = QueueChannel()
        second = StateDocument.create([], [], "T2")

        channel.send(doc)
        channel.send(second)

        assert await channel.get() is doc
        assert await channel.get() is second

    def test_send_after_close_fails(self, doc):
        """Test a closed channel refuses documents."""
        channel = QueueChannel()
        channel.close()

        assert channel.closed
        with pytest.raises(SubscriberDeliveryFailure):
            channel.send(doc)

    def test_send_to_full_channel_fails(self, doc):
        """Test a bounded channel refuses documents once full."""
        channel = QueueChannel(maxsize=1)
        channel.send(doc)

        with pytest.raises(SubscriberDeliveryFailure):
            channel.send(doc)


class TestRegistration:
    """Tests for register and unregister."""

    def test_register_returns_unique_ids(self, registry):
        """Test each subscriber gets its own id."""
        first = registry.register(RecordingChannel())
        second = registry.register(RecordingChannel())

        assert first != second
        assert len(registry) == 2
        assert set(registry.subscriber_ids) == {first, second}

    def test_unregister_is_idempotent(self, registry, doc):
        """Test removing twice is a no-op and stops delivery."""
        channel = RecordingChannel()
        subscriber_id = registry.register(channel)

        registry.unregister(subscriber_id)
        registry.unregister(subscriber_id)
        registry.broadcast(doc)

        assert len(registry) == 0
        assert channel.received == []

    def test_unregister_unknown_id(self, registry):
        """Test removing an id that was never registered."""
        registry.unregister("no-such-subscriber")

        assert len(registry) == 0

    def test_unbounded_by_default(self, registry):
        """Test no cap applies without configuration."""
        for _ in range(500):
            registry.register(RecordingChannel())

        assert len(registry) == 500

    def test_max_subscribers(self):
        """Test the optional bound rejects extra subscribers."""
        registry = SubscriberRegistry(max_subscribers=2)
        registry.register(RecordingChannel())
        registry.register(RecordingChannel())

        with pytest.raises(SubscriberLimitReached):
            registry.register(RecordingChannel())


class TestBroadcast:
    """Tests for broadcast delivery."""

    def test_broadcast_reaches_all(self, registry, doc):
        """Test every subscriber receives the document."""
        channels = [RecordingChannel() for _ in range(3)]
        for channel in channels:
            registry.register(channel)

        delivered = registry.broadcast(doc)

        assert delivered == 3
        assert all(channel.received == [doc] for channel in channels)

    def test_broadcast_order(self, registry):
        """Test sequential broadcasts arrive in order."""
        channel = RecordingChannel()
        registry.register(channel)
        docs = [StateDocument.create([], [], f"T{i}") for i in range(5)]

        for d in docs:
            registry.broadcast(d)

        assert [d.sig for d in channel.received] == ["T0", "T1", "T2", "T3", "T4"]

    def test_failed_delivery_is_swallowed(self, registry, doc):
        """Test one dead subscriber does not affect the others."""
        healthy = RecordingChannel()
        dead_id = registry.register(FailingChannel())
        healthy_id = registry.register(healthy)

        delivered = registry.broadcast(doc)

        assert delivered == 1
        assert healthy.received == [doc]
        assert dead_id not in registry.subscriber_ids
        assert healthy_id in registry.subscriber_ids

    def test_unregister_during_broadcast(self, registry, doc):
        """Test mutation from inside a delivery does not break iteration."""
        ids: list[str] = []
        late = RecordingChannel()

        class Leaver:
            def send(self, d):
                registry.unregister(ids[0])
                registry.register(late)

        ids.append(registry.register(Leaver()))
        others = [RecordingChannel() for _ in range(2)]
        for channel in others:
            registry.register(channel)

        registry.broadcast(doc)

        assert all(channel.received == [doc] for channel in others)
        assert ids[0] not in registry.subscriber_ids

    def test_broadcast_with_no_subscribers(self, registry, doc):
        """Test broadcasting to nobody is fine."""
        assert registry.broadcast(doc) == 0

    def test_deliver_to_single_subscriber(self, registry, doc):
        """Test deliver targets only the given subscriber."""
        target = RecordingChannel()
        other = RecordingChannel()
        target_id = registry.register(target)
        registry.register(other)

        assert registry.deliver(target_id, doc) is True
        assert target.received == [doc]
        assert other.received == []

    def test_deliver_unknown(self, registry, doc):
        """Test deliver to an unregistered id reports failure."""
        assert registry.deliver("missing", doc) is False

    @pytest.mark.asyncio
    async def test_broadcast_into_queue_channel(self, registry, doc):
        """Test broadcast wakes a waiting queue consumer."""
        channel = QueueChannel()
        registry.register(channel)

        waiter = asyncio.create_task(channel.get())
        await asyncio.sleep(0)
        registry.broadcast(doc)

        assert await asyncio.wait_for(waiter, timeout=1.0) is doc
