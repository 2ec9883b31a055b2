"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from aiohttp import web

from webhook_service.db.pool import get_pool
from webhook_service.repositories import WebhookDeliveryRepository, WebhookRepository
from webhook_service.services import Dispatcher, WebhookEventBridge, WebhookService
from webhook_service.webhooks_dispatcher import DELIVERY_LOOP_KEY

TService = TypeVar("TService")

_WEBHOOK_SERVICE_KEY = "webhook_service"
_DISPATCHER_KEY = "webhook_dispatcher"
_EVENT_BRIDGE_KEY = "webhook_event_bridge"

ORGANIZATION_ID_HEADER = "X-Organization-Id"
USER_ID_HEADER = "X-User-Id"


def require_organization_id(request: web.Request) -> int:
    """Tenant context; set by the API gateway after authentication."""
    raw = request.headers.get(ORGANIZATION_ID_HEADER)
    if raw is None:
        raise web.HTTPUnauthorized(reason=f"Header {ORGANIZATION_ID_HEADER} is required")
    try:
        organization_id = int(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {ORGANIZATION_ID_HEADER}") from exc
    if organization_id <= 0:
        raise web.HTTPBadRequest(text=f"Invalid {ORGANIZATION_ID_HEADER}")
    return organization_id


def optional_user_id(request: web.Request) -> int | None:
    raw = request.headers.get(USER_ID_HEADER)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {USER_ID_HEADER}") from exc


async def _get_or_create_service(
    request: web.Request,
    cache_key: str,
    builder: Callable[[web.Request], Awaitable[TService]],
) -> TService:
    service = request.get(cache_key)
    if service is None:
        service = await builder(request)
        request[cache_key] = service
    return service


async def get_webhook_service(request: web.Request) -> WebhookService:
    async def builder(_: web.Request) -> WebhookService:
        pool = await get_pool()
        return WebhookService(WebhookRepository(pool), WebhookDeliveryRepository(pool))

    return await _get_or_create_service(request, _WEBHOOK_SERVICE_KEY, builder)


async def get_dispatcher(request: web.Request) -> Dispatcher:
    async def builder(req: web.Request) -> Dispatcher:
        pool = await get_pool()
        webhook_service = await get_webhook_service(req)
        loop = req.app.get(DELIVERY_LOOP_KEY)
        return Dispatcher(
            webhook_service,
            WebhookDeliveryRepository(pool),
            notify=loop.notify if loop is not None else None,
        )

    return await _get_or_create_service(request, _DISPATCHER_KEY, builder)


async def get_event_bridge(request: web.Request) -> WebhookEventBridge:
    async def builder(req: web.Request) -> WebhookEventBridge:
        return WebhookEventBridge(await get_dispatcher(req))

    return await _get_or_create_service(request, _EVENT_BRIDGE_KEY, builder)
