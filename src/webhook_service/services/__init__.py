"""Domain services exports."""

from webhook_service.services.delivery import DeliveryWorker
from webhook_service.services.dispatcher import Dispatcher
from webhook_service.services.events import WebhookEventBridge
from webhook_service.services.retry import RetryPolicy
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "DeliveryWorker",
    "Dispatcher",
    "RetryPolicy",
    "WebhookEventBridge",
    "WebhookService",
]
