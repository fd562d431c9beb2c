import asyncio

import pytest

from factoryplus_client.channel import ChannelClosed, EventChannel, OverflowPolicy


@pytest.mark.asyncio
async def test_unbounded_channel_preserves_order():
    channel: EventChannel[int] = EventChannel()
    for item in range(100):
        assert channel.put(item)

    received = [await channel.get() for _ in range(100)]

    assert received == list(range(100))
    assert channel.dropped == 0


@pytest.mark.asyncio
async def test_drop_oldest_keeps_newest_items():
    channel: EventChannel[int] = EventChannel(3, OverflowPolicy.DROP_OLDEST)
    for item in range(5):
        assert channel.put(item)

    assert [channel.get_nowait() for _ in range(3)] == [2, 3, 4]
    assert channel.dropped == 2


@pytest.mark.asyncio
async def test_drop_newest_rejects_incoming_items():
    channel: EventChannel[int] = EventChannel(2, OverflowPolicy.DROP_NEWEST)
    results = [channel.put(item) for item in range(4)]

    assert results == [True, True, False, False]
    assert [channel.get_nowait() for _ in range(2)] == [0, 1]
    assert channel.dropped == 2


@pytest.mark.asyncio
async def test_get_waits_for_put():
    channel: EventChannel[str] = EventChannel()

    waiter = asyncio.create_task(channel.get())
    await asyncio.sleep(0)
    assert not waiter.done()

    channel.put("hello")

    assert await asyncio.wait_for(waiter, timeout=1.0) == "hello"


@pytest.mark.asyncio
async def test_close_drains_then_stops_iteration():
    channel: EventChannel[int] = EventChannel()
    channel.put(1)
    channel.put(2)
    channel.close()

    assert not channel.put(3)
    assert [item async for item in channel] == [1, 2]
    with pytest.raises(ChannelClosed):
        await channel.get()


@pytest.mark.asyncio
async def test_close_wakes_blocked_consumer():
    channel: EventChannel[int] = EventChannel()

    waiter = asyncio.create_task(channel.get())
    await asyncio.sleep(0)
    channel.close()

    with pytest.raises(ChannelClosed):
        await asyncio.wait_for(waiter, timeout=1.0)


@pytest.mark.asyncio
async def test_get_nowait_on_empty_channel():
    channel: EventChannel[int] = EventChannel()

    with pytest.raises(asyncio.QueueEmpty):
        channel.get_nowait()


def test_negative_size_is_rejected():
    with pytest.raises(ValueError):
        EventChannel(-1)
