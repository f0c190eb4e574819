from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.core.money import ZERO_MONEY, to_money
from backoffice.models.company import Company
from backoffice.models.inventory import InventoryTransaction
from backoffice.models.order import Order, OrderLine
from backoffice.models.product import Product
from backoffice.services.order_service import company_display_name


@dataclass
class ProductStat:
    product_id: str
    product_name: str
    sold_quantity: int = 0
    returned_quantity: int = 0
    revenue: Decimal = ZERO_MONEY


@dataclass
class CompanyStat:
    company_id: str | None
    company_name: str
    orders_count: int = 0
    total_amount: Decimal = ZERO_MONEY
    received_amount: Decimal = ZERO_MONEY
    outstanding_debt: Decimal = ZERO_MONEY


def _completed_orders_stmt(start_date: date | None, end_date: date | None):
    stmt = select(Order.id).where(Order.status == "completed")
    if start_date:
        stmt = stmt.where(func.date(Order.completed_at) >= start_date)
    if end_date:
        stmt = stmt.where(func.date(Order.completed_at) <= end_date)
    return stmt


def sold_product_stats(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[ProductStat]:
    """
    Per-product totals over completed orders.

    Lines are already reduced by returns, so sold_quantity and revenue are net
    figures; returned_quantity comes from the order-linked correction rows.
    """
    order_ids = _completed_orders_stmt(start_date, end_date)

    line_rows = db.execute(
        select(
            OrderLine.product_id,
            Product.name,
            func.coalesce(func.sum(OrderLine.quantity), 0),
            func.coalesce(func.sum(OrderLine.line_total), 0),
        )
        .join(Product, Product.id == OrderLine.product_id)
        .where(OrderLine.order_id.in_(order_ids))
        .group_by(OrderLine.product_id, Product.name)
    ).all()

    stats: dict[str, ProductStat] = {}
    for product_id, name, quantity, revenue in line_rows:
        stats[product_id] = ProductStat(
            product_id=product_id,
            product_name=name,
            sold_quantity=int(quantity),
            revenue=to_money(revenue),
        )

    return_rows = db.execute(
        select(
            InventoryTransaction.product_id,
            Product.name,
            func.coalesce(func.sum(InventoryTransaction.change_quantity), 0),
        )
        .join(Product, Product.id == InventoryTransaction.product_id)
        .where(
            InventoryTransaction.reason == "correction",
            InventoryTransaction.change_quantity > 0,
            InventoryTransaction.related_order_id.in_(order_ids),
        )
        .group_by(InventoryTransaction.product_id, Product.name)
    ).all()
    for product_id, name, quantity in return_rows:
        stat = stats.setdefault(product_id, ProductStat(product_id=product_id, product_name=name))
        stat.returned_quantity = int(quantity)

    return sorted(stats.values(), key=lambda item: (-item.revenue, item.product_name))


def company_stats(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[CompanyStat]:
    order_ids = _completed_orders_stmt(start_date, end_date)
    orders = db.execute(select(Order).where(Order.id.in_(order_ids))).scalars().all()
    company_names = dict(db.execute(select(Company.id, Company.name)).all())

    stats: dict[str, CompanyStat] = {}
    for order in orders:
        name = company_display_name(order, company_names)
        key = order.company_id or f"manual:{name}"
        stat = stats.setdefault(key, CompanyStat(company_id=order.company_id, company_name=name))
        total = to_money(order.total_amount)
        received = to_money(order.payment_received_amount)
        stat.orders_count += 1
        stat.total_amount += total
        stat.received_amount += received
        stat.outstanding_debt += max(ZERO_MONEY, total - received)

    return sorted(stats.values(), key=lambda item: (-item.total_amount, item.company_name))
