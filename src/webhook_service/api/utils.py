"""Helper utilities for API handlers."""
from __future__ import annotations

import json
from typing import Any

from aiohttp import web
from pydantic import ValidationError as PydanticValidationError

from webhook_service.core.exceptions import ValidationError


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse JSON body from request, raising HTTPBadRequest on invalid input."""
    try:
        data = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data


def parse_id(value: str, label: str) -> int:
    try:
        parsed = int(value)
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc
    if parsed <= 0:
        raise web.HTTPBadRequest(text=f"Invalid {label}")
    return parsed


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    if offset < 0:
        offset = 0
    return limit, offset


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    page = offset // limit + 1 if limit else 1
    return {
        key: items,
        "total": total,
        "page": page,
        "page_size": limit,
    }


def unprocessable(exc: ValidationError | PydanticValidationError) -> web.HTTPUnprocessableEntity:
    """422 carrying ``{"errors": [{"field": ..., "message": ...}]}``."""
    if isinstance(exc, PydanticValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or None,
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
    else:
        errors = exc.errors
    return web.HTTPUnprocessableEntity(
        text=json.dumps({"errors": errors}),
        content_type="application/json",
    )
