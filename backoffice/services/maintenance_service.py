"""Batch clean-up jobs. They run outside the per-order lease."""

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from backoffice.core.errors import NotFoundError
from backoffice.models.company import Company
from backoffice.models.finance import FinanceEntry
from backoffice.models.inventory import InventoryTransaction
from backoffice.models.order import Order, OrderLine
from backoffice.models.product import Product


def clear_company_orders(db: Session, company_id: str) -> int:
    """
    Delete every order of a company together with its lines and stock rows.

    Ledger entries and stock counters are left as they are. Returns the number of deleted orders.
    """
    exists = db.execute(select(Company.id).where(Company.id == company_id)).scalar_one_or_none()
    if not exists:
        raise NotFoundError(f"Company not found: {company_id}")

    order_ids = list(db.execute(select(Order.id).where(Order.company_id == company_id)).scalars().all())
    if not order_ids:
        return 0

    db.execute(delete(OrderLine).where(OrderLine.order_id.in_(order_ids)))
    db.execute(delete(InventoryTransaction).where(InventoryTransaction.related_order_id.in_(order_ids)))
    result = db.execute(
        delete(Order).where(Order.id.in_(order_ids)).execution_options(synchronize_session=False)
    )
    return int(result.rowcount)


def clear_automated_finance_entries(db: Session) -> int:
    """Delete the ledger entries that fulfillment commands posted for orders."""
    result = db.execute(
        delete(FinanceEntry)
        .where(FinanceEntry.related_order_id.is_not(None))
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount)


def reset_all_data(db: Session) -> tuple[int, int]:
    """
    Wipe orders, ledger entries and stock movements.

    Stock still held by completed orders is put back on the shelf first, so
    product counters survive the reset. Returns (deleted orders, deleted ledger entries).
    """
    sold = db.execute(
        select(OrderLine.product_id, func.sum(OrderLine.quantity))
        .join(Order, Order.id == OrderLine.order_id)
        .where(Order.status == "completed")
        .group_by(OrderLine.product_id)
    ).all()
    for product_id, quantity in sold:
        db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(current_stock=Product.current_stock + int(quantity))
            .execution_options(synchronize_session=False)
        )

    db.execute(delete(OrderLine).execution_options(synchronize_session=False))
    deleted_entries = db.execute(delete(FinanceEntry).execution_options(synchronize_session=False)).rowcount
    db.execute(delete(InventoryTransaction).execution_options(synchronize_session=False))
    deleted_orders = db.execute(delete(Order).execution_options(synchronize_session=False)).rowcount
    return int(deleted_orders), int(deleted_entries)
