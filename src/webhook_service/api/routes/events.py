"""Domain event intake: the inventory application reports what happened."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError as PydanticValidationError

from webhook_service.api.utils import read_json, unprocessable
from webhook_service.core.exceptions import NotFoundError, ValidationError
from webhook_service.domain.dto import EventEmitDTO, HookDTO
from webhook_service.services.dependencies import (
    get_dispatcher,
    get_event_bridge,
    require_organization_id,
)

routes = web.RouteTableDef()


@routes.post("/api/v1/events")
async def emit_event(request: web.Request):
    organization_id = require_organization_id(request)
    body = await read_json(request)
    try:
        dto = EventEmitDTO.model_validate(body)
    except PydanticValidationError as exc:
        raise unprocessable(exc) from exc
    dispatcher = await get_dispatcher(request)
    try:
        deliveries = await dispatcher.dispatch(dto.event, dto.data, organization_id)
    except ValidationError as exc:
        raise unprocessable(exc) from exc
    return web.json_response(
        {
            "event": dto.event,
            "deliveries": [delivery.public_dict() for delivery in deliveries],
        },
        status=202,
    )


@routes.post("/api/v1/hooks/{hook}")
async def receive_hook(request: web.Request):
    organization_id = require_organization_id(request)
    hook = request.match_info["hook"]
    body = await read_json(request)
    try:
        dto = HookDTO.model_validate(body)
    except PydanticValidationError as exc:
        raise unprocessable(exc) from exc
    bridge = await get_event_bridge(request)
    try:
        event, deliveries = await bridge.emit(hook, organization_id, dto.context)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ValidationError as exc:
        raise unprocessable(exc) from exc
    return web.json_response(
        {
            "hook": hook,
            "event": event.value,
            "deliveries": [delivery.public_dict() for delivery in deliveries],
        },
        status=202,
    )
