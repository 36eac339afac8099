"""Tests for the single-subscriber progress channel."""

import pytest

from pingone_bulk.batch.channel import ProgressChannel
from pingone_bulk.batch.jobs import EventKind
from pingone_bulk.core.errors import ChannelError


@pytest.mark.asyncio
async def test_events_are_numbered_and_closed_after_terminal():
    channel = ProgressChannel("import-1")
    channel.emit(EventKind.STEP_START, {"recordId": "a"})
    channel.emit("step-success", {"recordId": "a"})
    channel.emit(EventKind.COMPLETED, {"successCount": 1})

    events = [e async for e in channel.subscribe()]

    assert [e.sequence for e in events] == [0, 1, 2]
    assert events[1].kind == EventKind.STEP_SUCCESS
    assert all(e.job_id == "import-1" for e in events)
    assert channel.closed
    assert not channel.detached


@pytest.mark.asyncio
async def test_emit_after_terminal_is_rejected():
    channel = ProgressChannel("import-1")
    channel.emit(EventKind.CANCELLED)

    with pytest.raises(ChannelError):
        channel.emit(EventKind.STEP_START)
    assert channel.last_sequence == 0


def test_second_subscriber_is_rejected():
    channel = ProgressChannel("import-1")
    channel.subscribe()

    assert channel.subscribed
    with pytest.raises(ChannelError):
        channel.subscribe()


@pytest.mark.asyncio
async def test_detach_drops_buffered_and_future_events():
    channel = ProgressChannel("delete-1")
    stream = channel.subscribe()
    channel.emit(EventKind.STEP_START)
    channel.emit(EventKind.STEP_SUCCESS)

    first = await stream.__anext__()
    assert first.sequence == 0
    await stream.aclose()

    assert channel.detached
    assert not channel.closed

    # The producer keeps going; numbering continues
    event = channel.emit(EventKind.COMPLETED)
    assert event.sequence == 2
    assert channel.terminal_emitted


def test_unknown_event_kind():
    channel = ProgressChannel("import-1")
    with pytest.raises(ValueError):
        channel.emit("progress")
