"""Domain hook bridge: hook names, payload formatters, failure isolation."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from webhook_service.core.exceptions import NotFoundError, ValidationError
from webhook_service.domain.enums import WebhookEvent
from webhook_service.services.events import (
    HOOK_EVENTS,
    WebhookEventBridge,
    build_event,
    order_payload,
    product_payload,
    purchase_order_payload,
    stock_adjustment_payload,
)

ORG = 42
CREATED = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

PRODUCT = {
    "id": 1,
    "name": "Widget",
    "sku": "W-1",
    "price": Decimal("19.99"),
    "purchase_price": Decimal("7.50"),
    "stock": 3,
    "min_stock": 5,
    "is_active": True,
    "category_id": 2,
    "location_id": None,
    "created_at": CREATED,
    "updated_at": CREATED,
    "internal_cost_notes": "never leaves the building",
}

USER = {"id": 9, "name": "Ada", "email": "ada@example.com", "password": "hash"}

ORDER = {
    "id": 100,
    "order_number": "ORD-100",
    "status": "processing",
    "total": Decimal("42.00"),
    "approved_at": CREATED,
    "approval_notes": "ok",
    "items": [{"id": 1, "product_id": 1, "quantity": 2, "unit_price": "21.00", "secret": "x"}],
}


def test_every_hook_maps_to_a_vocabulary_event():
    assert set(HOOK_EVENTS.values()) == set(WebhookEvent)
    assert HOOK_EVENTS["low_stock_alert"] is WebhookEvent.PRODUCT_LOW_STOCK


def test_product_payload_whitelists_fields():
    data = product_payload(PRODUCT, USER)
    assert "internal_cost_notes" not in data["product"]
    assert data["product"]["price"] == "19.99"
    assert data["product"]["created_at"] == CREATED.isoformat()
    assert data["user"] == {"id": 9, "name": "Ada", "email": "ada@example.com"}


def test_product_payload_without_user():
    assert "user" not in product_payload(PRODUCT)


def test_order_payload_items():
    data = order_payload(ORDER)
    [item] = data["order"]["items"]
    assert item["quantity"] == 2
    assert "secret" not in item
    assert data["order"]["customer_email"] is None


def test_purchase_order_payload_supplier():
    data = purchase_order_payload({"id": 5, "po_number": "PO-5", "supplier": {"id": 3, "name": "Acme", "iban": "x"}})
    assert data["purchase_order"]["supplier"] == {"id": 3, "name": "Acme"}
    assert data["purchase_order"]["items"] == []
    assert purchase_order_payload({"id": 6})["purchase_order"]["supplier"] is None


def test_stock_adjustment_payload_uses_embedded_product():
    adjustment = {"id": 8, "type": "add", "quantity": 4, "product": PRODUCT, "user": USER}
    data = stock_adjustment_payload(adjustment)
    assert data["adjustment"]["quantity"] == 4
    assert data["product"]["product"]["sku"] == "W-1"
    assert data["user"]["email"] == "ada@example.com"


def test_low_stock_event_data():
    event, data = build_event("low_stock_alert", {"product": PRODUCT})
    assert event is WebhookEvent.PRODUCT_LOW_STOCK
    assert data["current_stock"] == 3
    assert data["min_stock"] == 5


def test_out_of_stock_event_data():
    _, data = build_event("out_of_stock_alert", {"product": PRODUCT})
    assert data["current_stock"] == 0


def test_order_status_change_event_data():
    _, data = build_event(
        "order_status_changed", {"order": ORDER, "old_status": "pending", "new_status": "shipped"}
    )
    assert data["status_change"] == {"from": "pending", "to": "shipped"}


def test_order_rejected_event_data():
    _, data = build_event("order_rejected", {"order": ORDER, "rejector": USER})
    approval = data["approval"]
    assert approval["status"] == "rejected"
    assert approval["rejected_at"] == CREATED.isoformat()
    assert approval["rejector"]["id"] == 9


@pytest.mark.asyncio
async def test_handle_dispatches_mapped_event(webhook_service, dispatcher):
    webhook = await webhook_service.subscribe(ORG, "hook", "https://example.com/h", ["product.created"])
    bridge = WebhookEventBridge(dispatcher)

    [delivery] = await bridge.handle("product_created", ORG, {"product": PRODUCT, "user": USER})

    assert delivery.webhook_id == webhook.id
    assert delivery.event == "product.created"
    assert delivery.envelope["data"]["product"]["name"] == "Widget"


@pytest.mark.asyncio
async def test_handle_unknown_hook_returns_nothing():
    dispatcher = AsyncMock()
    bridge = WebhookEventBridge(dispatcher)
    assert await bridge.handle("user_logged_in", ORG, {}) == []
    dispatcher.dispatch.assert_not_awaited()


@pytest.mark.asyncio
async def test_handle_swallows_dispatch_errors():
    dispatcher = AsyncMock()
    dispatcher.dispatch.side_effect = RuntimeError("database unavailable")
    bridge = WebhookEventBridge(dispatcher)
    assert await bridge.handle("product_deleted", ORG, {"product": PRODUCT}) == []


@pytest.mark.asyncio
async def test_handle_swallows_incomplete_context():
    dispatcher = AsyncMock()
    bridge = WebhookEventBridge(dispatcher)
    assert await bridge.handle("order_created", ORG, {}) == []
    dispatcher.dispatch.assert_not_awaited()


@pytest.mark.asyncio
async def test_emit_returns_event_and_deliveries(webhook_service, dispatcher):
    await webhook_service.subscribe(ORG, "hook", "https://example.com/h", ["order.created"])
    bridge = WebhookEventBridge(dispatcher)

    event, [delivery] = await bridge.emit("order_created", ORG, {"order": ORDER})

    assert event is WebhookEvent.ORDER_CREATED
    assert delivery.event == "order.created"


@pytest.mark.asyncio
async def test_emit_rejects_unknown_hook():
    bridge = WebhookEventBridge(AsyncMock())
    with pytest.raises(NotFoundError):
        await bridge.emit("user_logged_in", ORG, {})


@pytest.mark.asyncio
async def test_emit_rejects_missing_record():
    dispatcher = AsyncMock()
    bridge = WebhookEventBridge(dispatcher)
    with pytest.raises(ValidationError) as exc_info:
        await bridge.emit("product_created", ORG, {"user": USER})
    assert exc_info.value.errors[0]["field"] == "context"
    dispatcher.dispatch.assert_not_awaited()
