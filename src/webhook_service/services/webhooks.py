"""Webhook registry service (subscriptions per organization)."""
from __future__ import annotations

from typing import Any, List

import structlog
from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from webhook_service.core.exceptions import ValidationError
from webhook_service.domain.enums import DeliveryStatus, WebhookEvent
from webhook_service.domain.webhooks import SECRET_LENGTH, Webhook, WebhookDelivery, generate_secret
from webhook_service.repositories.webhooks import (
    WebhookDeliveryRepository,
    WebhookRepository,
)

logger = structlog.get_logger(__name__)

NAME_MAX_LENGTH = 255
URL_MAX_LENGTH = 2048
SECRET_MIN_LENGTH = SECRET_LENGTH

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


def _validate_name(name: Any, errors: list[dict[str, Any]]) -> str:
    if not isinstance(name, str) or not name.strip():
        errors.append({"field": "name", "message": "name is required"})
        return ""
    name = name.strip()
    if len(name) > NAME_MAX_LENGTH:
        errors.append({"field": "name", "message": f"name must be at most {NAME_MAX_LENGTH} characters"})
    return name


def _validate_url(url: Any, errors: list[dict[str, Any]]) -> str:
    if not isinstance(url, str) or not url.strip():
        errors.append({"field": "url", "message": "url is required"})
        return ""
    url = url.strip()
    if len(url) > URL_MAX_LENGTH:
        errors.append({"field": "url", "message": f"url must be at most {URL_MAX_LENGTH} characters"})
        return url
    try:
        parsed = _URL_ADAPTER.validate_python(url)
    except PydanticValidationError:
        errors.append({"field": "url", "message": "url must be an absolute http(s) URL"})
        return url
    if not parsed.host:
        errors.append({"field": "url", "message": "url must include a host"})
    return url


def _validate_events(events: Any, errors: list[dict[str, Any]]) -> list[str]:
    if not isinstance(events, (list, tuple)) or not events:
        errors.append({"field": "events", "message": "events must be a non-empty list"})
        return []
    normalized: list[str] = []
    for event in events:
        name = event.value if isinstance(event, WebhookEvent) else event
        if not isinstance(name, str) or not WebhookEvent.is_known(name.strip()):
            errors.append({"field": "events", "message": f"unknown event: {event!r}"})
            continue
        normalized.append(name.strip())
    # drop duplicates, keep order
    return list(dict.fromkeys(normalized))


def _validate_secret(secret: Any, errors: list[dict[str, Any]]) -> str:
    if secret is None or secret == "":
        return generate_secret()
    if not isinstance(secret, str) or len(secret) < SECRET_MIN_LENGTH:
        errors.append(
            {"field": "secret", "message": f"secret must be at least {SECRET_MIN_LENGTH} characters"}
        )
        return ""
    return secret


class WebhookService:
    """Registry of webhook subscriptions, strictly scoped per organization."""

    def __init__(
        self,
        webhook_repository: WebhookRepository,
        delivery_repository: WebhookDeliveryRepository,
    ):
        self._webhooks = webhook_repository
        self._deliveries = delivery_repository

    async def subscribe(
        self,
        organization_id: int,
        name: str,
        url: str,
        events: list[str],
        *,
        active: bool = True,
        secret: str | None = None,
        created_by: int | None = None,
    ) -> Webhook:
        errors: list[dict[str, Any]] = []
        name = _validate_name(name, errors)
        url = _validate_url(url, errors)
        events = _validate_events(events, errors)
        secret = _validate_secret(secret, errors)
        if errors:
            raise ValidationError(errors)

        webhook = await self._webhooks.create(
            organization_id=organization_id,
            name=name,
            url=url,
            secret=secret,
            events=events,
            is_active=active,
            created_by=created_by,
        )
        logger.info(
            "webhook_subscribed",
            webhook_id=webhook.id,
            organization_id=organization_id,
            events=events,
        )
        return webhook

    async def list_active_for_event(self, organization_id: int, event_name: str) -> List[Webhook]:
        webhooks = await self._webhooks.list_active_matching(organization_id, event_name)
        # rows must match tenant, active flag and event even if the query drifts
        return [
            w
            for w in webhooks
            if w.organization_id == organization_id and w.is_active and w.is_subscribed_to(event_name)
        ]

    async def get(self, webhook_id: int, *, organization_id: int | None = None) -> Webhook:
        return await self._webhooks.get(webhook_id, organization_id=organization_id)

    async def list_for_organization(
        self, organization_id: int, *, limit: int = 50, offset: int = 0
    ) -> tuple[List[Webhook], int]:
        return await self._webhooks.list_by_organization(organization_id, limit=limit, offset=offset)

    async def update(
        self,
        webhook_id: int,
        *,
        organization_id: int | None = None,
        name: str | None = None,
        url: str | None = None,
        events: list[str] | None = None,
        active: bool | None = None,
    ) -> Webhook:
        errors: list[dict[str, Any]] = []
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = _validate_name(name, errors)
        if url is not None:
            changes["url"] = _validate_url(url, errors)
        if events is not None:
            changes["events"] = _validate_events(events, errors)
        if active is not None:
            changes["is_active"] = bool(active)
        if errors:
            raise ValidationError(errors)

        webhook = await self._webhooks.update(webhook_id, changes, organization_id=organization_id)
        logger.info("webhook_updated", webhook_id=webhook_id, fields=sorted(changes))
        return webhook

    async def deactivate(self, webhook_id: int, *, organization_id: int | None = None) -> Webhook:
        webhook = await self._webhooks.get(webhook_id, organization_id=organization_id)
        if not webhook.is_active:
            return webhook
        webhook = await self._webhooks.update(
            webhook_id, {"is_active": False}, organization_id=organization_id
        )
        logger.info("webhook_deactivated", webhook_id=webhook_id)
        return webhook

    async def delete(self, webhook_id: int, *, organization_id: int | None = None) -> None:
        await self._webhooks.delete(webhook_id, organization_id=organization_id)
        logger.info("webhook_deleted", webhook_id=webhook_id)

    async def list_deliveries(
        self,
        webhook_id: int,
        *,
        organization_id: int | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[WebhookDelivery], int]:
        # resolves tenancy, raises NotFoundError for foreign webhooks
        await self._webhooks.get(webhook_id, organization_id=organization_id)
        return await self._deliveries.list_by_webhook(
            webhook_id, status=status, limit=limit, offset=offset
        )

    async def get_delivery(
        self, delivery_id: int, *, organization_id: int | None = None
    ) -> WebhookDelivery:
        return await self._deliveries.get(delivery_id, organization_id=organization_id)
