import asyncio
import json

import pytest

from notedraft.progress import HEARTBEAT_LINE, ProgressNotifier, encode_event


def test_encode_event_is_one_line() -> None:
    line = encode_event({"last_step": "S01: ブラウザ"})
    assert line.endswith("\n")
    assert line.count("\n") == 1
    assert json.loads(line) == {"last_step": "S01: ブラウザ"}


@pytest.mark.anyio
async def test_events_are_delivered_in_order_with_single_terminal() -> None:
    notifier = ProgressNotifier("job-1")
    notifier.step("S00: precheck")
    notifier.step("S01: browser init")
    notifier.succeed("https://note.com/notes/nabcdef1")
    notifier.fail("late failure")
    notifier.step("late step")

    lines = [line async for line in notifier.stream()]

    assert [json.loads(line) for line in lines] == [
        {"last_step": "S00: precheck"},
        {"last_step": "S01: browser init"},
        {"status": "success", "job_id": "job-1", "note_url": "https://note.com/notes/nabcdef1"},
    ]
    assert notifier.terminated


@pytest.mark.anyio
async def test_idle_stream_emits_heartbeats() -> None:
    notifier = ProgressNotifier("job-2", heartbeat_seconds=0.01)
    lines: list[str] = []

    async def consume() -> None:
        async for line in notifier.stream():
            lines.append(line)

    consumer = asyncio.ensure_future(consume())
    await asyncio.sleep(0.08)
    notifier.fail("boom")
    await asyncio.wait_for(consumer, timeout=1)

    assert HEARTBEAT_LINE in lines
    assert json.loads(lines[-1]) == {"error": "boom"}


@pytest.mark.anyio
async def test_detach_closes_stream_silently() -> None:
    notifier = ProgressNotifier("job-3")
    notifier.step("S05: editor hydration")
    notifier.detach()
    notifier.fail("ignored")

    lines = [line async for line in notifier.stream()]

    assert [json.loads(line) for line in lines] == [{"last_step": "S05: editor hydration"}]
