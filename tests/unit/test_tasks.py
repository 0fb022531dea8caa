"""Unit tests for fleur.tasks."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

from fleur.tasks import BackgroundTasks


async def test_spawned_task_runs_to_completion() -> None:
    tasks = BackgroundTasks()
    done: list[str] = []

    async def work() -> None:
        done.append("ran")

    tasks.spawn(work(), name="work")
    await tasks.join()

    assert done == ["ran"]
    assert len(tasks) == 0


async def test_failure_is_logged_not_raised() -> None:
    tasks = BackgroundTasks()

    async def explode() -> None:
        raise RuntimeError("kaboom")

    with patch("fleur.tasks.log") as mock_log:
        tasks.spawn(explode(), name="explode")
        await tasks.join()

    mock_log.warning.assert_called_once()
    event = mock_log.warning.call_args.args[0]
    assert event == "background_task_failed"
    assert mock_log.warning.call_args.kwargs["task"] == "explode"


async def test_join_waits_for_tasks_spawned_by_tasks() -> None:
    tasks = BackgroundTasks()
    order: list[str] = []

    async def child() -> None:
        await asyncio.sleep(0)
        order.append("child")

    async def parent() -> None:
        order.append("parent")
        tasks.spawn(child(), name="child")

    tasks.spawn(parent(), name="parent")
    await tasks.join()

    assert order == ["parent", "child"]


async def test_cancel_all_stops_pending_work() -> None:
    tasks = BackgroundTasks()
    started = asyncio.Event()

    async def forever() -> None:
        started.set()
        await asyncio.sleep(3600)

    task = tasks.spawn(forever(), name="forever")
    await started.wait()
    await tasks.cancel_all()

    assert task.cancelled()
    assert len(tasks) == 0
