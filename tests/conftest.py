from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from unittest.mock import AsyncMock

import pytest
from aiohttp import ClientSession, web

from fakes import FakeDeliveryRepository, FakeWebhookRepository, InMemoryStore
from webhook_service.services.dispatcher import Dispatcher
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import settings


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def webhook_repo(store) -> FakeWebhookRepository:
    return FakeWebhookRepository(store)


@pytest.fixture
def delivery_repo(store) -> FakeDeliveryRepository:
    return FakeDeliveryRepository(store)


@pytest.fixture
def webhook_service(webhook_repo, delivery_repo) -> WebhookService:
    return WebhookService(webhook_repo, delivery_repo)


@pytest.fixture
def dispatcher(webhook_service, delivery_repo) -> Dispatcher:
    return Dispatcher(webhook_service, delivery_repo)


@dataclass
class ReceivedRequest:
    headers: dict[str, str]
    body: bytes


@dataclass
class Receiver:
    """Local HTTP endpoint standing in for a customer's webhook URL."""

    url: str = ""
    requests: list[ReceivedRequest] = field(default_factory=list)
    responses: list[tuple[int, str]] = field(default_factory=list)
    default_status: int = 200
    default_body: str = "ok"
    delay: float = 0.0

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.read()
        self.requests.append(ReceivedRequest(headers=dict(request.headers), body=body))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responses:
            status, text = self.responses.pop(0)
        else:
            status, text = self.default_status, self.default_body
        return web.Response(status=status, text=text)


@pytest.fixture
async def receiver(aiohttp_server) -> Receiver:
    recv = Receiver()
    app = web.Application()
    app.router.add_post("/hook", recv.handle)
    server = await aiohttp_server(app)
    recv.url = str(server.make_url("/hook"))
    return recv


@pytest.fixture
async def http_session():
    session = ClientSession()
    yield session
    await session.close()


@pytest.fixture
async def api_client(aiohttp_client, store, monkeypatch):
    """Full application wired to the in-memory store; no database, no background tasks."""
    monkeypatch.setattr(settings, "run_migrations_on_startup", False)
    monkeypatch.setattr(settings, "webhook_dispatcher_enabled", False)
    monkeypatch.setattr(settings, "background_worker_enabled", False)
    monkeypatch.setattr("webhook_service.main.init_pool", AsyncMock())
    monkeypatch.setattr("webhook_service.services.dependencies.get_pool", AsyncMock())
    monkeypatch.setattr(
        "webhook_service.services.dependencies.WebhookRepository",
        lambda pool: FakeWebhookRepository(store),
    )
    monkeypatch.setattr(
        "webhook_service.services.dependencies.WebhookDeliveryRepository",
        lambda pool: FakeDeliveryRepository(store),
    )

    from webhook_service.main import create_app

    return await aiohttp_client(create_app())
