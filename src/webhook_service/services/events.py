"""Bridge from inventory domain hooks to webhook events.

The inventory application fires hooks such as ``product_created`` or
``order_status_changed`` with plain mappings describing the records involved.
:class:`WebhookEventBridge` turns them into vocabulary events with a stable,
whitelisted payload and hands them to the :class:`Dispatcher`.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, List, Mapping

import structlog

from webhook_service.core.exceptions import NotFoundError, ValidationError
from webhook_service.domain.enums import WebhookEvent
from webhook_service.domain.webhooks import WebhookDelivery
from webhook_service.services.dispatcher import Dispatcher

logger = structlog.get_logger(__name__)

HOOK_EVENTS: dict[str, WebhookEvent] = {
    "product_created": WebhookEvent.PRODUCT_CREATED,
    "product_updated": WebhookEvent.PRODUCT_UPDATED,
    "product_deleted": WebhookEvent.PRODUCT_DELETED,
    "low_stock_alert": WebhookEvent.PRODUCT_LOW_STOCK,
    "out_of_stock_alert": WebhookEvent.PRODUCT_OUT_OF_STOCK,
    "stock_adjusted": WebhookEvent.STOCK_ADJUSTED,
    "order_created": WebhookEvent.ORDER_CREATED,
    "order_updated": WebhookEvent.ORDER_UPDATED,
    "order_status_changed": WebhookEvent.ORDER_STATUS_CHANGED,
    "order_approved": WebhookEvent.ORDER_APPROVED,
    "order_rejected": WebhookEvent.ORDER_REJECTED,
    "purchase_order_created": WebhookEvent.PURCHASE_ORDER_CREATED,
    "purchase_order_received": WebhookEvent.PURCHASE_ORDER_RECEIVED,
    "purchase_order_cancelled": WebhookEvent.PURCHASE_ORDER_CANCELLED,
}

PRODUCT_FIELDS = (
    "id",
    "name",
    "sku",
    "price",
    "purchase_price",
    "stock",
    "min_stock",
    "is_active",
    "category_id",
    "location_id",
    "created_at",
    "updated_at",
)

ORDER_FIELDS = (
    "id",
    "order_number",
    "status",
    "approval_status",
    "source",
    "customer_name",
    "customer_email",
    "customer_address",
    "subtotal",
    "tax",
    "shipping",
    "total",
    "order_date",
    "shipped_at",
    "delivered_at",
    "created_at",
    "updated_at",
)

ORDER_ITEM_FIELDS = (
    "id",
    "product_id",
    "product_name",
    "sku",
    "quantity",
    "unit_price",
    "subtotal",
    "total",
)

PURCHASE_ORDER_FIELDS = (
    "id",
    "po_number",
    "status",
    "order_date",
    "expected_date",
    "received_date",
    "subtotal",
    "tax",
    "shipping",
    "total",
    "currency",
    "created_at",
    "updated_at",
)

PURCHASE_ORDER_ITEM_FIELDS = (
    "id",
    "product_id",
    "product_name",
    "sku",
    "quantity_ordered",
    "quantity_received",
    "unit_cost",
    "subtotal",
    "total",
)

ADJUSTMENT_FIELDS = (
    "id",
    "type",
    "quantity",
    "quantity_before",
    "quantity_after",
    "reason",
    "notes",
    "created_at",
)


def _scalar(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _pick(record: Mapping[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    return {field: _scalar(record.get(field)) for field in fields}


def user_summary(user: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not user:
        return None
    return {"id": user.get("id"), "name": user.get("name"), "email": user.get("email")}


def _with_user(data: dict[str, Any], user: Mapping[str, Any] | None) -> dict[str, Any]:
    summary = user_summary(user)
    if summary is not None:
        data["user"] = summary
    return data


def product_payload(
    product: Mapping[str, Any], user: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    return _with_user({"product": _pick(product, PRODUCT_FIELDS)}, user)


def order_payload(
    order: Mapping[str, Any], user: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    body = _pick(order, ORDER_FIELDS)
    body["items"] = [_pick(item, ORDER_ITEM_FIELDS) for item in order.get("items") or []]
    return _with_user({"order": body}, user)


def purchase_order_payload(
    purchase_order: Mapping[str, Any], user: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    body = _pick(purchase_order, PURCHASE_ORDER_FIELDS)
    supplier = purchase_order.get("supplier")
    body["supplier"] = (
        {"id": supplier.get("id"), "name": supplier.get("name")} if supplier else None
    )
    body["items"] = [
        _pick(item, PURCHASE_ORDER_ITEM_FIELDS) for item in purchase_order.get("items") or []
    ]
    return _with_user({"purchase_order": body}, user)


def stock_adjustment_payload(
    adjustment: Mapping[str, Any], product: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    product = product or adjustment.get("product")
    return {
        "adjustment": _pick(adjustment, ADJUSTMENT_FIELDS),
        "product": product_payload(product) if product else None,
        "user": user_summary(adjustment.get("user")),
    }


def _low_stock(ctx: Mapping[str, Any]) -> dict[str, Any]:
    product = ctx["product"]
    return {
        "product": product_payload(product),
        "current_stock": product.get("stock"),
        "min_stock": product.get("min_stock"),
    }


def _out_of_stock(ctx: Mapping[str, Any]) -> dict[str, Any]:
    return {"product": product_payload(ctx["product"]), "current_stock": 0}


def _order_status_changed(ctx: Mapping[str, Any]) -> dict[str, Any]:
    data = order_payload(ctx["order"], ctx.get("user"))
    data["status_change"] = {"from": ctx.get("old_status"), "to": ctx.get("new_status")}
    return data


def _order_decision(status: str, actor_key: str, at_key: str) -> Callable[[Mapping[str, Any]], dict[str, Any]]:
    def build(ctx: Mapping[str, Any]) -> dict[str, Any]:
        order = ctx["order"]
        data = order_payload(order)
        data["approval"] = {
            "status": status,
            at_key: _scalar(order.get("approved_at")),
            "notes": order.get("approval_notes"),
            actor_key: user_summary(ctx.get(actor_key)),
        }
        return data

    return build


PayloadBuilder = Callable[[Mapping[str, Any]], dict[str, Any]]

_PAYLOAD_BUILDERS: dict[WebhookEvent, PayloadBuilder] = {
    WebhookEvent.PRODUCT_CREATED: lambda ctx: product_payload(ctx["product"], ctx.get("user")),
    WebhookEvent.PRODUCT_UPDATED: lambda ctx: product_payload(ctx["product"], ctx.get("user")),
    WebhookEvent.PRODUCT_DELETED: lambda ctx: product_payload(ctx["product"], ctx.get("user")),
    WebhookEvent.PRODUCT_LOW_STOCK: _low_stock,
    WebhookEvent.PRODUCT_OUT_OF_STOCK: _out_of_stock,
    WebhookEvent.STOCK_ADJUSTED: lambda ctx: stock_adjustment_payload(
        ctx["adjustment"], ctx.get("product")
    ),
    WebhookEvent.ORDER_CREATED: lambda ctx: order_payload(ctx["order"], ctx.get("user")),
    WebhookEvent.ORDER_UPDATED: lambda ctx: order_payload(ctx["order"], ctx.get("user")),
    WebhookEvent.ORDER_STATUS_CHANGED: _order_status_changed,
    WebhookEvent.ORDER_APPROVED: _order_decision("approved", "approver", "approved_at"),
    WebhookEvent.ORDER_REJECTED: _order_decision("rejected", "rejector", "rejected_at"),
    WebhookEvent.PURCHASE_ORDER_CREATED: lambda ctx: purchase_order_payload(
        ctx["purchase_order"], ctx.get("user")
    ),
    WebhookEvent.PURCHASE_ORDER_RECEIVED: lambda ctx: purchase_order_payload(
        ctx["purchase_order"], ctx.get("user")
    ),
    WebhookEvent.PURCHASE_ORDER_CANCELLED: lambda ctx: purchase_order_payload(
        ctx["purchase_order"], ctx.get("user")
    ),
}


def build_event(hook: str, context: Mapping[str, Any]) -> tuple[WebhookEvent, dict[str, Any]]:
    """Map a hook and its context to ``(event, data)``.

    Raises ``KeyError`` for an unknown hook or a context missing its record.
    """
    event = HOOK_EVENTS[hook]
    return event, _PAYLOAD_BUILDERS[event](context)


class WebhookEventBridge:
    """Entry point for inventory hooks.

    :meth:`emit` serves the HTTP intake and raises on bad input. :meth:`handle`
    is for in-process callers: failures are logged and swallowed so a webhook
    problem never breaks the product/order operation that fired the hook.
    """

    def __init__(self, dispatcher: Dispatcher):
        self._dispatcher = dispatcher

    async def emit(
        self, hook: str, organization_id: int, context: Mapping[str, Any]
    ) -> tuple[WebhookEvent, List[WebhookDelivery]]:
        """Translate and dispatch one hook.

        Raises ``NotFoundError`` for an unmapped hook and ``ValidationError``
        when the context lacks the record the event is built from.
        """
        if hook not in HOOK_EVENTS:
            raise NotFoundError(f"Unknown hook: {hook}")
        try:
            event, data = build_event(hook, context)
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValidationError(
                [{"field": "context", "message": f"missing or malformed record: {exc}"}]
            ) from exc
        deliveries = await self._dispatcher.dispatch(event.value, data, organization_id)
        return event, deliveries

    async def handle(
        self, hook: str, organization_id: int, context: Mapping[str, Any]
    ) -> List[WebhookDelivery]:
        if hook not in HOOK_EVENTS:
            logger.warning("webhook_hook_unmapped", hook=hook, organization_id=organization_id)
            return []
        try:
            _, deliveries = await self.emit(hook, organization_id, context)
            return deliveries
        except Exception:
            logger.exception(
                "webhook_hook_dispatch_failed",
                hook=hook,
                organization_id=organization_id,
            )
            return []
