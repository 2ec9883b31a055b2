"""Domain enums for webhook subscriptions and deliveries."""
from __future__ import annotations

from enum import Enum


class WebhookEvent(str, Enum):
    """Events an organization can subscribe a webhook to."""

    PRODUCT_CREATED = "product.created"
    PRODUCT_UPDATED = "product.updated"
    PRODUCT_DELETED = "product.deleted"
    PRODUCT_LOW_STOCK = "product.low_stock"
    PRODUCT_OUT_OF_STOCK = "product.out_of_stock"

    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_APPROVED = "order.approved"
    ORDER_REJECTED = "order.rejected"

    STOCK_ADJUSTED = "stock.adjusted"

    PURCHASE_ORDER_CREATED = "purchase_order.created"
    PURCHASE_ORDER_RECEIVED = "purchase_order.received"
    PURCHASE_ORDER_CANCELLED = "purchase_order.cancelled"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]

    @classmethod
    def is_known(cls, name: str) -> bool:
        return name in _KNOWN_EVENTS


_KNOWN_EVENTS = frozenset(WebhookEvent.values())

EVENT_GROUPS: dict[str, dict[WebhookEvent, str]] = {
    "Product": {
        WebhookEvent.PRODUCT_CREATED: "When a new product is created",
        WebhookEvent.PRODUCT_UPDATED: "When a product is updated",
        WebhookEvent.PRODUCT_DELETED: "When a product is deleted",
        WebhookEvent.PRODUCT_LOW_STOCK: "When product stock falls below minimum",
        WebhookEvent.PRODUCT_OUT_OF_STOCK: "When product stock reaches zero",
    },
    "Order": {
        WebhookEvent.ORDER_CREATED: "When a new order is created",
        WebhookEvent.ORDER_UPDATED: "When an order is updated",
        WebhookEvent.ORDER_STATUS_CHANGED: "When order status changes",
        WebhookEvent.ORDER_APPROVED: "When an order is approved",
        WebhookEvent.ORDER_REJECTED: "When an order is rejected",
    },
    "Stock": {
        WebhookEvent.STOCK_ADJUSTED: "When stock is manually adjusted",
    },
    "Purchase Order": {
        WebhookEvent.PURCHASE_ORDER_CREATED: "When a purchase order is created",
        WebhookEvent.PURCHASE_ORDER_RECEIVED: "When a purchase order is received",
        WebhookEvent.PURCHASE_ORDER_CANCELLED: "When a purchase order is cancelled",
    },
}


class DeliveryStatus(str, Enum):
    """Delivery lifecycle states."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not DeliveryStatus.PENDING
