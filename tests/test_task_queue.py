"""Tests for paperdesk.utils.task_queue."""

import asyncio

import pytest

from paperdesk.utils.task_queue import SerialTaskQueue


@pytest.mark.asyncio
async def test_runs_in_submission_order_without_overlap():
    queue = SerialTaskQueue("test")
    events: list[str] = []

    def make(name: str, delay: float):
        async def op():
            events.append(f"start {name}")
            await asyncio.sleep(delay)
            events.append(f"end {name}")
            return name
        return op

    results = await asyncio.gather(
        queue.submit(make("a", 0.02)),
        queue.submit(make("b", 0.0)),
        queue.submit(make("c", 0.01)),
    )
    assert results == ["a", "b", "c"]
    assert events == ["start a", "end a", "start b", "end b", "start c", "end c"]


@pytest.mark.asyncio
async def test_failure_goes_to_its_submitter_only():
    queue = SerialTaskQueue("test")

    async def boom():
        raise RuntimeError("boom")

    async def fine():
        return 42

    results = await asyncio.gather(queue.submit(boom), queue.submit(fine), return_exceptions=True)
    assert isinstance(results[0], RuntimeError)
    assert results[1] == 42
    # The queue is still usable afterwards.
    assert await queue.submit(fine) == 42


@pytest.mark.asyncio
async def test_cancelled_submitter_does_not_stop_operation():
    queue = SerialTaskQueue("test")
    finished = asyncio.Event()

    async def slow():
        await asyncio.sleep(0.02)
        finished.set()
        return "done"

    task = asyncio.create_task(queue.submit(slow))
    await asyncio.sleep(0.005)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await queue.join()
    assert finished.is_set()


@pytest.mark.asyncio
async def test_len_and_draining():
    queue = SerialTaskQueue("test")
    assert len(queue) == 0
    assert not queue.is_draining

    async def op():
        return 1

    await queue.submit(op)
    await queue.join()
    assert not queue.is_draining
