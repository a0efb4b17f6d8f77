from __future__ import annotations

import asyncio

import pytest

from core.errors import SchedulerInvariantViolation
from core.execution_queue import ExecutionQueue, QueuedTask
from core.models import ResourceClass


def _recorder(events: list, name: str, gate: asyncio.Event | None = None, fail: bool = False):
    async def on_position_changed(position: int) -> None:
        events.append((name, "position", position))

    async def on_run() -> None:
        events.append((name, "run"))
        if gate is not None:
            await gate.wait()
        if fail:
            raise RuntimeError("boom")
        events.append((name, "done"))

    return on_position_changed, on_run


def test_tasks_run_in_fifo_order_with_position_updates() -> None:
    async def scenario() -> list:
        queue = ExecutionQueue()
        events: list = []
        gate = asyncio.Event()
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "A", gate))
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "B"))
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "C"))
        await asyncio.sleep(0)
        assert len(queue) == 3
        gate.set()
        await queue.wait_idle()
        await asyncio.sleep(0)
        return events

    events = asyncio.run(scenario())

    assert events == [
        ("A", "position", 0),
        ("B", "position", 1),
        ("C", "position", 2),
        ("A", "run"),
        ("A", "done"),
        ("B", "position", 0),
        ("C", "position", 1),
        ("B", "run"),
        ("B", "done"),
        ("C", "position", 0),
        ("C", "run"),
        ("C", "done"),
    ]


def test_position_zero_is_reported_before_run() -> None:
    async def scenario() -> list:
        queue = ExecutionQueue()
        events: list = []
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "A"))
        await queue.wait_idle()
        return events

    assert asyncio.run(scenario()) == [("A", "position", 0), ("A", "run"), ("A", "done")]


def test_only_one_task_runs_at_a_time() -> None:
    async def scenario() -> int:
        queue = ExecutionQueue()
        running = 0
        peak = 0

        async def on_position_changed(position: int) -> None:
            return None

        async def on_run() -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for _ in range(5):
            await queue.register(ResourceClass.IMAGE, on_position_changed, on_run)
        await queue.wait_idle()
        return peak

    assert asyncio.run(scenario()) == 1


def test_failing_task_does_not_stall_the_queue() -> None:
    async def scenario() -> list:
        queue = ExecutionQueue()
        events: list = []
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "A", fail=True))
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "B"))
        await queue.wait_idle()
        await asyncio.sleep(0)
        return events

    events = asyncio.run(scenario())

    assert ("A", "done") not in events
    assert events[-2:] == [("B", "run"), ("B", "done")]


def test_failing_position_callback_is_swallowed() -> None:
    async def scenario() -> bool:
        queue = ExecutionQueue()
        ran = asyncio.Event()

        async def on_position_changed(position: int) -> None:
            raise RuntimeError("chat is gone")

        async def on_run() -> None:
            ran.set()

        await queue.register(ResourceClass.IMAGE, on_position_changed, on_run)
        await queue.wait_idle()
        return ran.is_set()

    assert asyncio.run(scenario()) is True


def test_cancel_removes_waiting_task_only() -> None:
    async def scenario() -> tuple[list, list[bool]]:
        queue = ExecutionQueue()
        events: list = []
        gate = asyncio.Event()
        head = await queue.register(ResourceClass.IMAGE, *_recorder(events, "A", gate))
        middle = await queue.register(ResourceClass.IMAGE, *_recorder(events, "B"))
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "C"))
        await asyncio.sleep(0)

        results = [await queue.cancel(middle), await queue.cancel(head), await queue.cancel(middle)]
        assert queue.position_of(middle) is None
        gate.set()
        await queue.wait_idle()
        await asyncio.sleep(0)
        return events, results

    events, results = asyncio.run(scenario())

    assert results == [True, False, False]
    assert ("C", "position", 1) in events
    assert not any(name == "B" and kind == "run" for name, kind, *_ in events)
    assert ("C", "done") in events


def test_last_active_class_follows_finished_task() -> None:
    async def scenario() -> list[ResourceClass]:
        queue = ExecutionQueue()
        seen = [queue.last_active_class]
        events: list = []
        await queue.register(ResourceClass.TEXT, *_recorder(events, "T"))
        await queue.wait_idle()
        seen.append(queue.last_active_class)
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "I"))
        await queue.wait_idle()
        seen.append(queue.last_active_class)
        return seen

    assert asyncio.run(scenario()) == [ResourceClass.IMAGE, ResourceClass.TEXT, ResourceClass.IMAGE]


def test_completion_of_unknown_task_is_an_invariant_violation() -> None:
    async def noop_position(position: int) -> None:
        return None

    async def noop_run() -> None:
        return None

    async def empty_queue() -> None:
        queue = ExecutionQueue()
        await queue._complete(QueuedTask(ResourceClass.IMAGE, noop_position, noop_run))

    async def not_head() -> None:
        queue = ExecutionQueue()
        gate = asyncio.Event()
        events: list = []
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "A", gate))
        second = await queue.register(ResourceClass.IMAGE, noop_position, noop_run)
        try:
            await queue._complete(second)
        finally:
            gate.set()
            await queue.wait_idle()

    with pytest.raises(SchedulerInvariantViolation):
        asyncio.run(empty_queue())
    with pytest.raises(SchedulerInvariantViolation):
        asyncio.run(not_head())


def test_queue_moves_are_reported_to_waiting_tasks_concurrently() -> None:
    async def scenario() -> list:
        queue = ExecutionQueue()
        events: list = []
        gate = asyncio.Event()

        async def slow_position(position: int) -> None:
            if position == 0:
                events.append(("B", "notify start"))
                await asyncio.sleep(0.05)
                events.append(("B", "notify end"))

        async def noop_run() -> None:
            return None

        await queue.register(ResourceClass.IMAGE, *_recorder(events, "A", gate))
        await queue.register(ResourceClass.IMAGE, slow_position, noop_run)
        await queue.register(ResourceClass.IMAGE, *_recorder(events, "C"))
        gate.set()
        await queue.wait_idle()
        return events

    events = asyncio.run(scenario())

    start = events.index(("B", "notify start"))
    end = events.index(("B", "notify end"))
    assert start < events.index(("C", "position", 1)) < end


def test_running_task_may_register_follow_up_work() -> None:
    async def scenario() -> tuple[list[str], ResourceClass]:
        queue = ExecutionQueue()
        ran: list[str] = []

        async def noop_position(position: int) -> None:
            return None

        async def follow_up() -> None:
            ran.append("follow")

        async def first() -> None:
            ran.append("first")
            await queue.register(ResourceClass.TEXT, noop_position, follow_up)

        await queue.register(ResourceClass.IMAGE, noop_position, first)
        await asyncio.wait_for(queue.wait_idle(), timeout=1)
        return ran, queue.last_active_class

    assert asyncio.run(scenario()) == (["first", "follow"], ResourceClass.TEXT)


def test_enqueued_task_can_be_cancelled_during_its_first_notification() -> None:
    async def scenario() -> tuple[bool, list]:
        queue = ExecutionQueue()
        events: list = []
        gate = asyncio.Event()
        reached = asyncio.Event()
        release = asyncio.Event()

        async def stalled_position(position: int) -> None:
            reached.set()
            await release.wait()

        async def never_run() -> None:
            events.append(("B", "run"))

        await queue.register(ResourceClass.IMAGE, *_recorder(events, "A", gate))
        task = QueuedTask(ResourceClass.IMAGE, stalled_position, never_run)
        admission = asyncio.create_task(queue.enqueue(task))
        await reached.wait()
        cancelled = await queue.cancel(task)
        release.set()
        await admission
        gate.set()
        await queue.wait_idle()
        return cancelled, events

    cancelled, events = asyncio.run(scenario())

    assert cancelled is True
    assert ("B", "run") not in events
    assert ("A", "done") in events
