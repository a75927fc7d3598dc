"""Tests for the event broadcaster and queue sinks."""

import pytest

from levered_agent.broadcaster import EventBroadcaster, QueueSink
from levered_agent.errors import SinkClosedError
from levered_agent.events import CompletedEvent, ConnectedEvent, MessageEvent, StatusEvent


class ListSink:
    def __init__(self, fail: bool = False) -> None:
        self.events = []
        self.fail = fail
        self.closed = 0

    def push(self, event) -> None:
        if self.fail:
            raise ConnectionResetError("client went away")
        self.events.append(event)

    def close(self) -> None:
        self.closed += 1


class TestEventBroadcaster:
    """Tests for subscriber registration and fan-out."""

    def test_connected_sent_to_new_subscriber_only(self):
        """Test the connection acknowledgement is not broadcast."""
        broadcaster = EventBroadcaster()
        first, second = ListSink(), ListSink()

        broadcaster.add_subscriber("a", first)
        broadcaster.add_subscriber("b", second)

        assert len(first.events) == 1
        assert isinstance(second.events[0], ConnectedEvent)
        assert second.events[0].client_id == "b"
        assert broadcaster.subscriber_count == 2

    def test_broadcast_reaches_everyone_in_order(self):
        broadcaster = EventBroadcaster()
        sinks = {name: ListSink() for name in "abc"}
        for name, sink in sinks.items():
            broadcaster.add_subscriber(name, sink)

        broadcaster.broadcast(MessageEvent(content="1"))
        broadcaster.broadcast(MessageEvent(content="2"))

        for sink in sinks.values():
            assert [e.content for e in sink.events[1:]] == ["1", "2"]

    def test_failing_subscriber_removed(self):
        """Test a dead sink is dropped and the others still receive the event."""
        broadcaster = EventBroadcaster()
        healthy_a, healthy_b = ListSink(), ListSink()
        broadcaster.add_subscriber("a", healthy_a)
        broadcaster.add_subscriber("b", ListSink())
        broadcaster.add_subscriber("c", healthy_b)
        broadcaster._subscribers["b"].sink.fail = True

        broadcaster.broadcast(MessageEvent(content="hello"))

        assert broadcaster.subscriber_ids() == ["a", "c"]
        assert healthy_a.events[-1].content == "hello"
        assert healthy_b.events[-1].content == "hello"

        broadcaster.broadcast(MessageEvent(content="again"))
        assert healthy_b.events[-1].content == "again"

    def test_failing_on_connect_removed(self):
        broadcaster = EventBroadcaster()

        broadcaster.add_subscriber("x", ListSink(fail=True))

        assert not broadcaster.has_subscriber("x")

    def test_remove_is_idempotent(self):
        """Test removing twice or removing an unknown id is harmless."""
        broadcaster = EventBroadcaster()
        sink = ListSink()
        broadcaster.add_subscriber("a", sink)

        broadcaster.remove_subscriber("a")
        broadcaster.remove_subscriber("a")
        broadcaster.remove_subscriber("never-added")

        assert broadcaster.subscriber_count == 0
        assert sink.closed == 1

    def test_send_to_one(self):
        broadcaster = EventBroadcaster()
        a, b = ListSink(), ListSink()
        broadcaster.add_subscriber("a", a)
        broadcaster.add_subscriber("b", b)

        broadcaster.send_to_one("b", StatusEvent(status="only-b"))
        broadcaster.send_to_one("missing", StatusEvent(status="nobody"))

        assert len(a.events) == 1
        assert b.events[-1].status == "only-b"

    def test_close_all(self):
        broadcaster = EventBroadcaster()
        sinks = [ListSink(), ListSink()]
        for i, sink in enumerate(sinks):
            broadcaster.add_subscriber(str(i), sink)

        broadcaster.close_all()

        assert broadcaster.subscriber_count == 0
        assert all(sink.closed == 1 for sink in sinks)

    def test_push_is_broadcast(self):
        """Test the broadcaster can be used directly as an event sink."""
        broadcaster = EventBroadcaster()
        sink = ListSink()
        broadcaster.add_subscriber("a", sink)

        broadcaster.push(CompletedEvent())

        assert isinstance(sink.events[-1], CompletedEvent)


class TestQueueSink:
    """Tests for the per-connection queue sink."""

    @pytest.mark.asyncio
    async def test_stream_ends_after_terminal_event(self):
        """Test the stream stops on completion even if more is queued."""
        sink = QueueSink()
        sink.push(MessageEvent(content="hi"))
        sink.push(CompletedEvent())
        sink.push(MessageEvent(content="late"))

        events = [event async for event in sink.events()]

        assert [e.type.value for e in events] == ["message", "completed"]
        assert sink.closed

    @pytest.mark.asyncio
    async def test_close_ends_stream(self):
        sink = QueueSink()
        sink.push(MessageEvent(content="hi"))
        sink.close()
        sink.close()

        events = [event async for event in sink.events()]

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_keeps_open_when_configured(self):
        sink = QueueSink(close_on_terminal=False)
        sink.push(CompletedEvent())
        sink.push(StatusEvent(status="reset"))
        sink.close()

        events = [event async for event in sink.events()]

        assert len(events) == 2

    def test_push_after_close_raises(self):
        sink = QueueSink()
        sink.close()

        with pytest.raises(SinkClosedError):
            sink.push(MessageEvent(content="x"))

    @pytest.mark.asyncio
    async def test_stream_yields_sse_frames(self):
        sink = QueueSink()
        sink.push(CompletedEvent(timestamp=5))

        frames = [frame async for frame in sink.stream()]

        assert frames == ['event: completed\ndata: {"type": "completed", "timestamp": 5}\n\n']
