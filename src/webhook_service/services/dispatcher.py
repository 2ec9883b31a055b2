"""Fans organization events out into pending webhook deliveries."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, List

import structlog
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError

from webhook_service.core.exceptions import InvalidStatusTransitionError, ValidationError
from webhook_service.domain.enums import WebhookEvent
from webhook_service.domain.webhooks import DeliveryEnvelope, Webhook, WebhookDelivery
from webhook_service.repositories.webhooks import DeliveryDraft, WebhookDeliveryRepository
from webhook_service.services.webhooks import WebhookService

logger = structlog.get_logger(__name__)

TEST_MESSAGE = "This is a test webhook delivery"


class Dispatcher:
    """Persists one pending delivery per matching subscription.

    Dispatch never touches the network. After the rows are committed the
    ``notify`` callback (normally :meth:`DeliveryLoop.notify`) wakes the
    asynchronous execution layer.
    """

    def __init__(
        self,
        webhook_service: WebhookService,
        delivery_repository: WebhookDeliveryRepository,
        *,
        notify: Callable[[], None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._webhooks = webhook_service
        self._deliveries = delivery_repository
        self._notify = notify
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def dispatch(
        self, event_name: str, data: dict[str, Any], organization_id: int
    ) -> List[WebhookDelivery]:
        if not WebhookEvent.is_known(event_name):
            logger.warning(
                "webhook_event_unknown",
                webhook_event=event_name,
                organization_id=organization_id,
            )

        webhooks = await self._webhooks.list_active_for_event(organization_id, event_name)
        if not webhooks:
            logger.debug(
                "webhook_dispatch_no_subscribers",
                webhook_event=event_name,
                organization_id=organization_id,
            )
            return []

        now = self._clock()
        drafts = [
            self._draft(webhook, event_name, data, organization_id, now) for webhook in webhooks
        ]
        return await self._enqueue(drafts, event_name, organization_id)

    async def send_test(self, webhook: Webhook) -> WebhookDelivery:
        """Queue a test delivery for this one webhook only."""
        event_name = webhook.events[0] if webhook.events else "test"
        now = self._clock()
        data = {
            "test": True,
            "message": TEST_MESSAGE,
            "timestamp": now.isoformat(timespec="seconds"),
        }
        draft = self._draft(webhook, event_name, data, webhook.organization_id, now)
        created = await self._enqueue([draft], event_name, webhook.organization_id)
        return created[0]

    async def redeliver(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Queue a new delivery carrying the exact same payload.

        The original row keeps its terminal state; the envelope id is reused so
        receivers can recognise the duplicate.
        """
        if not delivery.is_terminal:
            raise InvalidStatusTransitionError(
                f"Delivery {delivery.id} is still pending and will be retried"
            )
        draft = DeliveryDraft(
            webhook_id=delivery.webhook_id,
            organization_id=delivery.organization_id,
            event=delivery.event,
            payload=delivery.payload,
        )
        created = await self._enqueue([draft], delivery.event, delivery.organization_id)
        logger.info(
            "webhook_redelivery_queued",
            original_delivery_id=delivery.id,
            delivery_id=created[0].id,
        )
        return created[0]

    @staticmethod
    def _draft(
        webhook: Webhook,
        event_name: str,
        data: dict[str, Any],
        organization_id: int,
        now: datetime,
    ) -> DeliveryDraft:
        try:
            envelope = DeliveryEnvelope.build(event_name, organization_id, data, now=now)
            payload = envelope.to_json()
        except (PydanticValidationError, PydanticSerializationError, TypeError, ValueError) as exc:
            raise ValidationError(
                [{"field": "data", "message": f"event data is not JSON-serializable: {exc}"}]
            ) from exc
        return DeliveryDraft(
            webhook_id=webhook.id,
            organization_id=organization_id,
            event=event_name,
            payload=payload,
        )

    async def _enqueue(
        self, drafts: list[DeliveryDraft], event_name: str, organization_id: int
    ) -> List[WebhookDelivery]:
        deliveries = await self._deliveries.create_many(drafts)
        logger.info(
            "webhook_dispatched",
            webhook_event=event_name,
            organization_id=organization_id,
            deliveries=len(deliveries),
        )
        if self._notify is not None:
            self._notify()
        return deliveries
