"""Unit tests for webhook_service.worker.BackgroundWorker.

Pure async tests: no database or aiohttp test server required.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from aiohttp import web

from webhook_service.worker import BackgroundWorker, WorkerTask


@pytest.mark.asyncio
async def test_worker_runs_tasks():
    called_with: list[datetime] = []

    async def task_fn(now: datetime) -> str | None:
        called_with.append(now)
        return "ok"

    worker = BackgroundWorker(
        interval_seconds=0.05,
        tasks=[WorkerTask(name="test_task", fn=task_fn)],
    )

    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.2)
    await worker.stop(app)

    assert len(called_with) >= 2
    for dt in called_with:
        assert dt.tzinfo is not None


@pytest.mark.asyncio
async def test_run_once_collects_summaries():
    worker = BackgroundWorker(
        tasks=[
            WorkerTask(name="a", fn=AsyncMock(return_value="released=2")),
            WorkerTask(name="b", fn=AsyncMock(return_value=None)),
        ],
    )
    assert await worker.run_once() == {"a": "released=2", "b": None}


@pytest.mark.asyncio
async def test_task_failure_does_not_stop_others():
    good = AsyncMock(return_value=None)

    async def bad_task(now: datetime) -> str | None:
        raise RuntimeError("boom")

    worker = BackgroundWorker(
        interval_seconds=0.05,
        tasks=[WorkerTask(name="bad", fn=bad_task), WorkerTask(name="good", fn=good)],
    )

    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.2)
    await worker.stop(app)

    assert good.await_count >= 2, "good task should keep running despite bad task failures"


@pytest.mark.asyncio
async def test_stop_is_clean():
    fn = AsyncMock(return_value=None)
    worker = BackgroundWorker(interval_seconds=0.05, tasks=[WorkerTask(name="t", fn=fn)])

    app = web.Application()
    await worker.start(app)
    await asyncio.sleep(0.12)
    await worker.stop(app)

    count_at_stop = fn.await_count
    await asyncio.sleep(0.1)
    assert fn.await_count == count_at_stop


@pytest.mark.asyncio
async def test_stop_without_start():
    worker = BackgroundWorker(interval_seconds=1.0, tasks=[])
    await worker.stop(web.Application())
