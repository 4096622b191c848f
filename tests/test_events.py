"""Tests for the bounded event channel."""

import asyncio

import pytest

from berth.events import EventChannel, EventType, StreamEvent


def output(n):
    return StreamEvent(type=EventType.OUTPUT, bead_id="bt-1", content=str(n))


@pytest.mark.asyncio
async def test_events_arrive_in_order_and_iteration_ends_on_close():
    channel = EventChannel(maxsize=4)

    async def produce():
        for i in range(10):
            await channel.send(output(i))
        channel.close()

    producer = asyncio.create_task(produce())
    received = [e.content async for e in channel]
    await producer

    assert received == [str(i) for i in range(10)]


@pytest.mark.asyncio
async def test_full_channel_blocks_sender_instead_of_dropping():
    channel = EventChannel(maxsize=2)
    await channel.send(output(0))
    await channel.send(output(1))

    blocked = asyncio.create_task(channel.send(output(2)))
    await asyncio.sleep(0.01)
    assert not blocked.done()

    assert (await channel.receive()).content == "0"
    await asyncio.wait_for(blocked, timeout=1)
    assert (await channel.receive()).content == "1"
    assert (await channel.receive()).content == "2"


@pytest.mark.asyncio
async def test_send_after_close_raises():
    channel = EventChannel()
    channel.close()
    with pytest.raises(RuntimeError):
        await channel.send(output(0))
    assert await channel.receive() is None
    assert await channel.receive() is None


def test_terminal_flag():
    assert StreamEvent(type=EventType.BEAD_COMPLETE, bead_id="x").terminal
    assert StreamEvent(type=EventType.ERROR, bead_id="x").terminal
    assert not StreamEvent(type=EventType.TOKEN_UPDATE, bead_id="x").terminal


@pytest.mark.asyncio
async def test_close_does_not_block_on_full_channel():
    channel = EventChannel(maxsize=1)
    await channel.send(output(0))

    channel.close()

    assert channel.closed
    assert (await channel.receive()).content == "0"
    assert await channel.receive() is None


@pytest.mark.asyncio
async def test_close_releases_blocked_sender():
    channel = EventChannel(maxsize=1)
    await channel.send(output(0))
    blocked = asyncio.create_task(channel.send(output(1)))
    await asyncio.sleep(0.01)

    channel.close()

    with pytest.raises(RuntimeError):
        await asyncio.wait_for(blocked, timeout=1)
    assert [e.content async for e in channel] == ["0"]


@pytest.mark.asyncio
async def test_close_wakes_waiting_receiver():
    channel = EventChannel()
    waiting = asyncio.create_task(channel.receive())
    await asyncio.sleep(0.01)

    channel.close()

    assert await asyncio.wait_for(waiting, timeout=1) is None
