"""
Order lifecycle rules.

    open ──complete──▶ completed ──cancel (restock first)──▶ canceled
      └──────────────cancel──────────────────────────────▶ canceled

Returns and later payments keep a completed order completed. Delete is legal
from any state and is handled by the fulfillment coordinator.
"""

from dataclasses import dataclass

from backoffice.core.errors import ValidationError
from backoffice.models.order import Order

ALLOWED_ORDER_TRANSITIONS: dict[str, set[str]] = {
    "open": {"completed", "canceled"},
    "completed": {"canceled"},
    "canceled": set(),
}


@dataclass(frozen=True)
class CancelPlan:
    from_status: str
    restore_stock: bool


def _ensure_transition_allowed(order: Order, next_status: str) -> None:
    allowed_next = ALLOWED_ORDER_TRANSITIONS.get(order.status, set())
    if next_status not in allowed_next:
        raise ValidationError(
            f"Cannot transition order from '{order.status}' to '{next_status}'",
            field="status",
            order_id=order.id,
        )


def ensure_can_complete(order: Order, *, line_count: int) -> None:
    _ensure_transition_allowed(order, "completed")
    if line_count == 0:
        raise ValidationError("Cannot complete an order with no lines", field="lines", order_id=order.id)


def plan_cancel(order: Order) -> CancelPlan:
    _ensure_transition_allowed(order, "canceled")
    # Only a completed order ever had stock deducted.
    return CancelPlan(from_status=order.status, restore_stock=order.status == "completed")


def ensure_can_return(order: Order) -> None:
    if order.status != "completed":
        raise ValidationError(
            f"Returns are only accepted on completed orders (order is '{order.status}')",
            field="status",
            order_id=order.id,
        )


def ensure_can_register_payment(order: Order) -> None:
    if order.status != "completed":
        raise ValidationError(
            f"Payments can only be registered on completed orders (order is '{order.status}')",
            field="status",
            order_id=order.id,
        )
    if not order.debt_flag:
        raise ValidationError("Order has no outstanding debt", field="amount", order_id=order.id)
