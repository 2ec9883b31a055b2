"""Repository package exports."""

from webhook_service.repositories.webhooks import (
    DeliveryDraft,
    WebhookDeliveryRepository,
    WebhookRepository,
)

__all__ = [
    "DeliveryDraft",
    "WebhookRepository",
    "WebhookDeliveryRepository",
]
