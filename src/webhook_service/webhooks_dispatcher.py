"""Background webhook dispatcher: claims due deliveries and runs attempts."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from aiohttp import ClientSession, web

from webhook_service.db.pool import get_pool
from webhook_service.domain.webhooks import DeliveryTask
from webhook_service.repositories.webhooks import WebhookDeliveryRepository
from webhook_service.services.delivery import DeliveryWorker
from webhook_service.services.retry import RetryPolicy
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

DELIVERY_LOOP_KEY = "webhook_delivery_loop"
_WEBHOOK_SESSION_KEY = "webhook_http_session"
_WEBHOOK_TASK_KEY = "webhook_dispatcher_task"


class DeliveryLoop:
    """Polls the outbox, claims due deliveries and hands them to a worker.

    Several loops (in one process or many) may run against the same database;
    the claim step guarantees each attempt is executed by exactly one of them.
    """

    def __init__(
        self,
        repository: WebhookDeliveryRepository,
        worker: DeliveryWorker,
        *,
        interval_seconds: float = 1.0,
        batch_size: int = 50,
        max_concurrency: int = 10,
    ):
        self._repository = repository
        self._worker = worker
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._wake = asyncio.Event()

    def notify(self) -> None:
        """Wake the loop early; new deliveries were just enqueued."""
        self._wake.set()

    async def run_once(self, now: datetime | None = None) -> int:
        """Claim and process one batch. Returns the number of claimed deliveries."""
        now = now or datetime.now(timezone.utc)
        tasks = await self._repository.claim_due(now, limit=self._batch_size)
        if not tasks:
            return 0
        logger.debug("webhook_deliveries_claimed", count=len(tasks))
        await asyncio.gather(*(self._process(task) for task in tasks))
        return len(tasks)

    async def run_forever(self) -> None:
        logger.info(
            "webhook_dispatcher_started",
            interval_seconds=self._interval,
            batch_size=self._batch_size,
        )
        while True:
            try:
                claimed = await self.run_once()
            except asyncio.CancelledError:
                logger.info("webhook_dispatcher_stopped")
                raise
            except Exception:
                logger.exception("webhook_dispatcher_sweep_failed")
                claimed = 0
            # a full batch means more work is probably waiting
            if claimed < self._batch_size:
                await self._wait()

    async def _wait(self) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def _process(self, task: DeliveryTask) -> None:
        async with self._semaphore:
            try:
                await self._worker.process(task)
            except Exception:
                # the claim stays in place until the reclaim task releases it
                logger.exception(
                    "webhook_delivery_processing_failed",
                    delivery_id=task.delivery.id,
                    webhook_id=task.delivery.webhook_id,
                )


async def start_webhook_dispatcher(app: web.Application) -> None:
    pool = await get_pool()
    repository = WebhookDeliveryRepository(pool)
    session = ClientSession()
    worker = DeliveryWorker(
        session,
        repository,
        RetryPolicy.from_settings(settings),
        timeout_seconds=settings.webhook_request_timeout_seconds,
        response_body_limit=settings.webhook_response_body_limit,
    )
    loop = DeliveryLoop(
        repository,
        worker,
        interval_seconds=settings.webhook_dispatch_interval_seconds,
        batch_size=settings.webhook_dispatch_batch_size,
        max_concurrency=settings.webhook_dispatch_max_concurrency,
    )
    app[_WEBHOOK_SESSION_KEY] = session
    app[DELIVERY_LOOP_KEY] = loop
    app[_WEBHOOK_TASK_KEY] = asyncio.create_task(loop.run_forever())


async def stop_webhook_dispatcher(app: web.Application) -> None:
    task = app.get(_WEBHOOK_TASK_KEY)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    session = app.get(_WEBHOOK_SESSION_KEY)
    if session is not None:
        await session.close()
