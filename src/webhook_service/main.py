"""aiohttp application entrypoint."""
from __future__ import annotations

from aiohttp import web
from aiohttp_cors import ResourceOptions, setup as cors_setup

from webhook_service.api.router import setup_routes
from webhook_service.db.migrations import create_migration_runner
from webhook_service.db.pool import close_pool, init_pool
from webhook_service.logging_config import configure_logging
from webhook_service.middleware.trace import REQUEST_ID_HEADER, TRACE_ID_HEADER, create_trace_middleware
from webhook_service.services.dependencies import ORGANIZATION_ID_HEADER, USER_ID_HEADER
from webhook_service.settings import settings
from webhook_service.webhooks_dispatcher import start_webhook_dispatcher, stop_webhook_dispatcher
from webhook_service.workers import start_background_worker, stop_background_worker

_ALLOWED_HEADERS = (
    "Accept",
    "Content-Type",
    "Authorization",
    TRACE_ID_HEADER,
    REQUEST_ID_HEADER,
    ORGANIZATION_ID_HEADER,
    USER_ID_HEADER,
)

_ALLOWED_METHODS = ("GET", "POST", "PATCH", "DELETE", "OPTIONS")


async def healthcheck(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})


def create_app() -> web.Application:
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=(TRACE_ID_HEADER, REQUEST_ID_HEADER),
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )

    app.router.add_get("/health", healthcheck)
    setup_routes(app)

    app.on_startup.append(init_pool)
    if settings.run_migrations_on_startup:
        app.on_startup.append(create_migration_runner(settings))
    if settings.webhook_dispatcher_enabled:
        app.on_startup.append(start_webhook_dispatcher)
        app.on_cleanup.append(stop_webhook_dispatcher)
    if settings.background_worker_enabled:
        app.on_startup.append(start_background_worker)
        app.on_cleanup.append(stop_background_worker)
    app.on_cleanup.append(close_pool)

    for route in list(app.router.routes()):
        cors.add(route)

    return app


def main() -> None:
    configure_logging(settings.log_level, settings.log_format)
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
