"""Tests for session event fan-out."""

import asyncio
from datetime import datetime

import pytest

from tether_mcp.devices import EventChannel, SessionEvent, SessionEventKind


def event(n: int, kind: SessionEventKind = SessionEventKind.PARAMS) -> SessionEvent:
    return SessionEvent(kind, {"n": n}, generation=1)


class TestSessionEvent:
    def test_to_dict(self):
        stamp = datetime(2024, 5, 1, 12, 0, 0)
        data = SessionEvent(
            SessionEventKind.STATUS, {"state": "CONNECTED"}, 3, stamp
        ).to_dict()

        assert data == {
            "kind": "status",
            "payload": {"state": "CONNECTED"},
            "generation": 3,
            "timestamp": "2024-05-01T12:00:00",
        }

    def test_timestamp_is_utc(self):
        assert event(0).timestamp.tzinfo is not None


class TestEventChannel:
    """Tests for subscribe/publish/close."""

    @pytest.mark.asyncio
    async def test_every_subscriber_receives(self):
        channel = EventChannel()
        first = channel.subscribe()
        second = channel.subscribe()

        channel.publish(event(1))

        assert (await first.get()).payload == {"n": 1}
        assert (await second.get()).payload == {"n": 1}
        assert channel.subscriber_count == 2

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        EventChannel().publish(event(1))

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        channel = EventChannel(queue_size=2)
        sub = channel.subscribe()

        for n in range(4):
            channel.publish(event(n))

        assert sub.dropped == 2
        assert sub.pending() == 2
        assert [(await sub.get()).payload["n"] for _ in range(2)] == [2, 3]

    @pytest.mark.asyncio
    async def test_get_nowait(self):
        channel = EventChannel()
        sub = channel.subscribe()

        assert sub.get_nowait() is None
        channel.publish(event(7))
        assert sub.get_nowait().payload == {"n": 7}

    @pytest.mark.asyncio
    async def test_close_unsubscribes_and_stops_iteration(self):
        channel = EventChannel()
        sub = channel.subscribe()
        channel.publish(event(1))

        sub.close()
        channel.publish(event(2))

        assert sub.closed
        assert channel.subscriber_count == 0
        received = [e.payload["n"] async for e in sub]
        assert received == [1]

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_reader(self):
        channel = EventChannel()
        sub = channel.subscribe()
        reader = asyncio.create_task(sub.get())
        await asyncio.sleep(0)

        channel.close()

        with pytest.raises(StopAsyncIteration):
            await reader

    @pytest.mark.asyncio
    async def test_close_with_full_queue(self):
        channel = EventChannel(queue_size=1)
        sub = channel.subscribe()
        channel.publish(event(1))

        sub.close()
        sub.close()

        with pytest.raises(StopAsyncIteration):
            await sub.get()

    @pytest.mark.asyncio
    async def test_context_manager_closes(self):
        channel = EventChannel()
        async with channel.subscribe() as sub:
            channel.publish(event(1))
            async for received in sub:
                assert received.payload == {"n": 1}
                break

        assert sub.closed
        assert channel.subscriber_count == 0
