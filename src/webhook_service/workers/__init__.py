"""Background housekeeping for webhook deliveries.

Each worker module exports a single async task function compatible with
:class:`webhook_service.worker.WorkerTask`.
"""
from __future__ import annotations

from webhook_service.settings import settings
from webhook_service.worker import BackgroundWorker, WorkerTask
from webhook_service.workers.webhook_purge import webhook_purge_succeeded
from webhook_service.workers.webhook_reclaim import webhook_reclaim_stale_claims

worker = BackgroundWorker(
    interval_seconds=settings.worker_interval_seconds,
    tasks=[
        WorkerTask(name="webhook_reclaim_stale_claims", fn=webhook_reclaim_stale_claims),
        WorkerTask(name="webhook_purge_succeeded", fn=webhook_purge_succeeded),
    ],
)

start_background_worker = worker.start
stop_background_worker = worker.stop

__all__ = [
    "worker",
    "start_background_worker",
    "stop_background_worker",
]
