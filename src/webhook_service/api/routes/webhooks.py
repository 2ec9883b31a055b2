"""Webhook subscription management and delivery history endpoints."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError as PydanticValidationError

from webhook_service.api.utils import (
    paginated_response,
    pagination_params,
    parse_id,
    read_json,
    unprocessable,
)
from webhook_service.core.exceptions import (
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from webhook_service.domain.dto import WebhookCreateDTO, WebhookUpdateDTO
from webhook_service.domain.enums import EVENT_GROUPS, DeliveryStatus, WebhookEvent
from webhook_service.services.dependencies import (
    get_dispatcher,
    get_webhook_service,
    optional_user_id,
    require_organization_id,
)

routes = web.RouteTableDef()


@routes.get("/api/v1/webhooks/events")
async def list_events(request: web.Request):
    groups = {
        group: [{"event": event.value, "description": description} for event, description in events.items()]
        for group, events in EVENT_GROUPS.items()
    }
    return web.json_response({"events": WebhookEvent.values(), "groups": groups})


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    organization_id = require_organization_id(request)
    service = await get_webhook_service(request)
    limit, offset = pagination_params(request)
    items, total = await service.list_for_organization(organization_id, limit=limit, offset=offset)
    payload = paginated_response(
        [item.public_dict() for item in items],
        limit=limit,
        offset=offset,
        key="webhooks",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    organization_id = require_organization_id(request)
    body = await read_json(request)
    try:
        dto = WebhookCreateDTO.model_validate(body)
    except PydanticValidationError as exc:
        raise unprocessable(exc) from exc

    service = await get_webhook_service(request)
    try:
        webhook = await service.subscribe(
            organization_id,
            dto.name,
            dto.url,
            dto.events,
            active=dto.is_active,
            secret=dto.secret,
            created_by=dto.created_by if dto.created_by is not None else optional_user_id(request),
        )
    except ValidationError as exc:
        raise unprocessable(exc) from exc
    # the only response that ever carries the secret
    payload = webhook.public_dict()
    payload["secret"] = webhook.secret
    return web.json_response(payload, status=201)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    organization_id = require_organization_id(request)
    webhook_id = parse_id(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        webhook = await service.get(webhook_id, organization_id=organization_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.public_dict())


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    organization_id = require_organization_id(request)
    webhook_id = parse_id(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request)
    try:
        dto = WebhookUpdateDTO.model_validate(body)
    except PydanticValidationError as exc:
        raise unprocessable(exc) from exc

    service = await get_webhook_service(request)
    try:
        webhook = await service.update(
            webhook_id,
            organization_id=organization_id,
            name=dto.name,
            url=dto.url,
            events=dto.events,
            active=dto.is_active,
        )
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ValidationError as exc:
        raise unprocessable(exc) from exc
    return web.json_response(webhook.public_dict())


@routes.post("/api/v1/webhooks/{webhook_id}/deactivate")
async def deactivate_webhook(request: web.Request):
    organization_id = require_organization_id(request)
    webhook_id = parse_id(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        webhook = await service.deactivate(webhook_id, organization_id=organization_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.public_dict())


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    organization_id = require_organization_id(request)
    webhook_id = parse_id(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        await service.delete(webhook_id, organization_id=organization_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def test_webhook(request: web.Request):
    organization_id = require_organization_id(request)
    webhook_id = parse_id(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    try:
        webhook = await service.get(webhook_id, organization_id=organization_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    dispatcher = await get_dispatcher(request)
    delivery = await dispatcher.send_test(webhook)
    return web.json_response(delivery.public_dict(), status=202)


@routes.get("/api/v1/webhooks/{webhook_id}/deliveries")
async def list_deliveries(request: web.Request):
    organization_id = require_organization_id(request)
    webhook_id = parse_id(request.match_info["webhook_id"], "webhook_id")
    raw_status = request.rel_url.query.get("status")
    status: DeliveryStatus | None = None
    if raw_status:
        try:
            status = DeliveryStatus(raw_status)
        except ValueError as exc:
            raise web.HTTPBadRequest(text="Invalid status filter") from exc
    limit, offset = pagination_params(request)
    service = await get_webhook_service(request)
    try:
        items, total = await service.list_deliveries(
            webhook_id,
            organization_id=organization_id,
            status=status,
            limit=limit,
            offset=offset,
        )
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    payload = paginated_response(
        [item.public_dict() for item in items],
        limit=limit,
        offset=offset,
        key="deliveries",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/webhook-deliveries/{delivery_id}/redeliver")
async def redeliver(request: web.Request):
    organization_id = require_organization_id(request)
    delivery_id = parse_id(request.match_info["delivery_id"], "delivery_id")
    service = await get_webhook_service(request)
    try:
        delivery = await service.get_delivery(delivery_id, organization_id=organization_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    dispatcher = await get_dispatcher(request)
    try:
        created = await dispatcher.redeliver(delivery)
    except InvalidStatusTransitionError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    return web.json_response(created.public_dict(), status=202)
