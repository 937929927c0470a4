"""
Unit tests for EventBus / Subscription
"""

import asyncio

import pytest

from aster.bus import (
    Channel,
    EventBus,
    MonitorStateChangedEvent,
    ProgressTextChunkEvent,
    ProgressToolStartEvent,
)
from aster.types import AgentState, ToolCall


def _chunk(i: int) -> ProgressTextChunkEvent:
    return ProgressTextChunkEvent(step=1, delta=str(i))


@pytest.mark.asyncio
async def test_publish_assigns_increasing_seq():
    bus = EventBus()
    sub = bus.subscribe([Channel.PROGRESS])

    first = bus.publish(_chunk(1))
    second = bus.publish(_chunk(2))

    assert first.seq == 1 and second.seq == 2
    assert bus.cursor == 2
    got = [await sub.get(), await sub.get()]
    assert [e.event.delta for e in got] == ["1", "2"]
    assert all(e.channel == Channel.PROGRESS for e in got)


@pytest.mark.asyncio
async def test_channel_filters_are_disjoint_and_cover_stream():
    bus = EventBus()
    progress = bus.subscribe([Channel.PROGRESS])
    monitor = bus.subscribe([Channel.MONITOR])

    published = []
    for i in range(5):
        published.append(bus.publish(_chunk(i)))
        published.append(bus.publish(MonitorStateChangedEvent(state=AgentState.RUNNING)))
    bus.close()

    p = [env async for env in progress]
    m = [env async for env in monitor]

    assert all(env.channel == Channel.PROGRESS for env in p)
    assert all(env.channel == Channel.MONITOR for env in m)
    assert not {e.seq for e in p} & {e.seq for e in m}
    assert sorted(e.seq for e in p + m) == [e.seq for e in published]


@pytest.mark.asyncio
async def test_event_filter_predicate():
    bus = EventBus()
    call = ToolCall(id="call_1", name="Echo")
    sub = bus.subscribe(
        [Channel.PROGRESS],
        event_filter=lambda e: isinstance(e, ProgressToolStartEvent) and e.call.id == "call_1",
    )

    bus.publish(_chunk(1))
    bus.publish(ProgressToolStartEvent(call=ToolCall(id="call_2", name="Echo")))
    bus.publish(ProgressToolStartEvent(call=call))

    items = sub.drain()
    assert len(items) == 1
    assert items[0].event.call.id == "call_1"


@pytest.mark.asyncio
async def test_raising_filter_is_treated_as_no_match():
    bus = EventBus()

    def broken(event):
        raise RuntimeError("boom")

    bad = bus.subscribe([Channel.PROGRESS], event_filter=broken)
    good = bus.subscribe([Channel.PROGRESS])

    bus.publish(_chunk(1))

    assert bad.drain() == []
    assert len(good.drain()) == 1


@pytest.mark.asyncio
async def test_slow_subscriber_drops_oldest_without_blocking():
    bus = EventBus()
    slow = bus.subscribe([Channel.PROGRESS], buffer_size=3)
    fast = bus.subscribe([Channel.PROGRESS], buffer_size=100)

    for i in range(10):
        bus.publish(_chunk(i))

    assert slow.dropped == 7
    assert [e.event.delta for e in slow.drain()] == ["7", "8", "9"]
    assert [e.event.delta for e in fast.drain()] == [str(i) for i in range(10)]
    assert fast.dropped == 0


@pytest.mark.asyncio
async def test_close_unblocks_waiting_subscriber():
    bus = EventBus()
    sub = bus.subscribe([Channel.MONITOR])

    waiter = asyncio.create_task(sub.get())
    await asyncio.sleep(0)
    bus.close()

    assert await asyncio.wait_for(waiter, timeout=1) is None
    assert sub.closed


@pytest.mark.asyncio
async def test_close_delivers_buffered_events_before_end():
    bus = EventBus()
    sub = bus.subscribe([Channel.PROGRESS])
    bus.publish(_chunk(1))
    bus.publish(_chunk(2))
    bus.close()
    bus.close()

    assert [e.event.delta async for e in sub] == ["1", "2"]
    assert await sub.get() is None


@pytest.mark.asyncio
async def test_publish_and_subscribe_after_close():
    bus = EventBus()
    bus.close()

    assert bus.publish(_chunk(1)) is None
    late = bus.subscribe([Channel.PROGRESS])
    assert await asyncio.wait_for(late.get(), timeout=1) is None
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    bus = EventBus()
    async with bus.subscribe([Channel.PROGRESS]) as sub:
        bus.publish(_chunk(1))
        assert bus.subscriber_count == 1
    assert bus.subscriber_count == 0

    bus.publish(_chunk(2))
    assert [e.event.delta for e in sub.drain()] == ["1"]


def test_invalid_buffer_size():
    bus = EventBus()
    with pytest.raises(ValueError):
        bus.subscribe([Channel.PROGRESS], buffer_size=0)
