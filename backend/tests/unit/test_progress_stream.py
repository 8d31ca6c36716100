"""Unit tests for ProgressStream — SSE formatting and lifecycle."""

import json
from datetime import datetime

import pytest

from hoprag.application.services.progress_stream import ProgressStream


async def _drain(stream: ProgressStream) -> list[str]:
    return [event async for event in stream.events()]


@pytest.mark.asyncio
async def test_events_are_formatted_as_sse():
    stream = ProgressStream()
    await stream.publish("progress", {"event": "step_started", "step_id": "s1"})
    await stream.close()

    events = await _drain(stream)

    assert len(events) == 1
    header, data, _ = events[0].split("\n", 2)
    assert header == "event: progress"
    assert json.loads(data.removeprefix("data: ")) == {"event": "step_started", "step_id": "s1"}
    assert events[0].endswith("\n\n")


@pytest.mark.asyncio
async def test_publish_after_close_is_ignored():
    stream = ProgressStream()
    await stream.close()
    await stream.publish("progress", {"late": True})
    await stream.close()

    assert stream.closed
    assert await _drain(stream) == []


@pytest.mark.asyncio
async def test_full_queue_drops_events():
    stream = ProgressStream(maxsize=2)
    await stream.publish("progress", {"n": 1})
    await stream.publish("progress", {"n": 2})
    await stream.publish("progress", {"n": 3})

    assert stream._queue.qsize() == 2


@pytest.mark.asyncio
async def test_non_json_values_are_stringified():
    stream = ProgressStream()
    await stream.publish("result", {"at": datetime(2024, 5, 1, 12, 30)})
    await stream.close()

    events = await _drain(stream)
    assert "2024-05-01 12:30:00" in events[0]
