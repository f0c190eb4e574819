from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.core.money import ZERO_MONEY, line_amount, to_money
from backoffice.models.company import Company, Warehouse
from backoffice.models.order import Order, OrderLine
from backoffice.models.product import Product
from backoffice.schemas.order import OrderCreate


@dataclass(frozen=True)
class PaymentState:
    payment_status: str
    debt_flag: bool
    remaining_debt: Decimal
    overpaid_amount: Decimal


def derive_payment_state(
    *,
    status: str,
    total_amount: Decimal | int | float | str,
    payment_received_amount: Decimal | int | float | str,
) -> PaymentState:
    """
    Classify an order's payment position from its amounts alone.

    Debt only exists on completed orders. A partial payment reads as 'unpaid'
    unless REPORT_PARTIAL_PAYMENTS is enabled.
    """
    total = to_money(total_amount)
    received = to_money(payment_received_amount)
    remaining = max(ZERO_MONEY, to_money(total - received))
    overpaid = max(ZERO_MONEY, to_money(received - total))

    if remaining == ZERO_MONEY:
        payment_status = "paid"
    elif received > ZERO_MONEY and settings.report_partial_payments:
        payment_status = "partially_paid"
    else:
        payment_status = "unpaid"

    return PaymentState(
        payment_status=payment_status,
        debt_flag=status == "completed" and remaining > ZERO_MONEY,
        remaining_debt=remaining,
        overpaid_amount=overpaid,
    )


def apply_payment_state(order: Order) -> PaymentState:
    state = derive_payment_state(
        status=order.status,
        total_amount=order.total_amount,
        payment_received_amount=order.payment_received_amount,
    )
    order.payment_status = state.payment_status
    order.debt_flag = state.debt_flag
    return state


def recompute_order_totals(order: Order, lines: list[OrderLine]) -> None:
    order.total_quantity = sum(line.quantity for line in lines)
    order.total_amount = to_money(sum((to_money(line.line_total) for line in lines), ZERO_MONEY))


def get_order(db: Session, order_id: str) -> Order:
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found", order_id=order_id)
    return order


def get_order_lines(db: Session, order_id: str) -> list[OrderLine]:
    return list(
        db.execute(
            select(OrderLine).where(OrderLine.order_id == order_id).order_by(OrderLine.id)
        ).scalars().all()
    )


def company_display_name(order: Order, company_names: dict[str, str]) -> str:
    if order.manual_company_name:
        return order.manual_company_name
    if order.company_id and order.company_id in company_names:
        return company_names[order.company_id]
    return "Unknown"


def _resolve_company(db: Session, payload: OrderCreate) -> tuple[str | None, str | None]:
    manual_name = (payload.manual_company_name or "").strip() or None
    company_id = (payload.company_id or "").strip() or None
    if company_id and manual_name:
        raise ValidationError("Use either company_id or manual_company_name, not both", field="company_id")
    if not company_id and not manual_name:
        raise ValidationError("A company or a manual company name is required", field="company_id")
    if company_id:
        exists = db.execute(select(Company.id).where(Company.id == company_id)).scalar_one_or_none()
        if not exists:
            raise NotFoundError(f"Company not found: {company_id}")
    return company_id, manual_name


def create_order(db: Session, payload: OrderCreate, *, actor_id: str | None) -> tuple[Order, list[OrderLine]]:
    company_id, manual_name = _resolve_company(db, payload)

    if payload.warehouse_id:
        warehouse = db.execute(
            select(Warehouse.id).where(Warehouse.id == payload.warehouse_id)
        ).scalar_one_or_none()
        if not warehouse:
            raise NotFoundError(f"Warehouse not found: {payload.warehouse_id}")

    order_id = str(uuid.uuid4())
    order = Order(
        id=order_id,
        company_id=company_id,
        manual_company_name=manual_name,
        status="open",
        payment_status="unpaid",
        debt_flag=False,
        payment_received_amount=ZERO_MONEY,
        notes=payload.notes,
        created_by=actor_id,
    )

    seen_products: set[str] = set()
    lines: list[OrderLine] = []
    for index, item in enumerate(payload.lines):
        if item.product_id:
            if item.product_id in seen_products:
                raise ValidationError(
                    "Product is already in the order",
                    field=f"lines.{index}.product_id",
                )
            product = db.execute(select(Product).where(Product.id == item.product_id)).scalar_one_or_none()
            if not product:
                raise NotFoundError(f"Product not found: {item.product_id}")
            unit_price = to_money(item.unit_price) if item.unit_price is not None else to_money(product.unit_price)
            product_id = product.id
        else:
            # Manual entries become catalogue products without stock.
            unit_price = to_money(item.unit_price)
            product_id = str(uuid.uuid4())
            db.add(
                Product(
                    id=product_id,
                    name=item.product_name.strip(),
                    unit_price=unit_price,
                    current_stock=0,
                    warehouse_id=payload.warehouse_id,
                )
            )
        seen_products.add(product_id)
        lines.append(
            OrderLine(
                id=str(uuid.uuid4()),
                order_id=order_id,
                product_id=product_id,
                quantity=item.quantity,
                unit_price=unit_price,
                line_total=line_amount(item.quantity, unit_price),
            )
        )

    recompute_order_totals(order, lines)
    apply_payment_state(order)
    db.add(order)
    db.flush()
    db.add_all(lines)
    return order, lines
