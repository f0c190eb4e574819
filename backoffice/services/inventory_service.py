import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.core.money import line_amount, to_money
from backoffice.models.company import Warehouse
from backoffice.models.finance import FinanceEntry
from backoffice.models.inventory import InventoryTransaction
from backoffice.models.product import Product
from backoffice.services.finance_service import post_entry


def get_product_stock(db: Session, product_id: str) -> int:
    stock = db.execute(select(Product.current_stock).where(Product.id == product_id)).scalar_one_or_none()
    if stock is None:
        raise NotFoundError(f"Product not found: {product_id}")
    return int(stock)


def get_stock_levels(db: Session, product_ids: list[str]) -> dict[str, int]:
    if not product_ids:
        return {}
    rows = db.execute(
        select(Product.id, Product.current_stock).where(Product.id.in_(product_ids))
    ).all()
    return {product_id: int(stock) for product_id, stock in rows}


def add_inventory_transaction(
    db: Session,
    *,
    product_id: str,
    change_quantity: int,
    reason: str,
    related_order_id: str | None = None,
    warehouse_id: str | None = None,
    comment: str | None = None,
    created_by: str | None = None,
) -> InventoryTransaction:
    entry = InventoryTransaction(
        id=str(uuid.uuid4()),
        product_id=product_id,
        warehouse_id=warehouse_id,
        change_quantity=change_quantity,
        reason=reason,
        related_order_id=related_order_id,
        comment=comment,
        created_by=created_by,
    )
    db.add(entry)
    return entry


def apply_stock_change(
    db: Session,
    *,
    product_id: str,
    change_quantity: int,
    reason: str,
    related_order_id: str | None = None,
    comment: str | None = None,
    created_by: str | None = None,
) -> InventoryTransaction:
    """
    Move the stock counter and append the matching transaction row.

    The counter is bumped in place (current_stock = current_stock + delta) so two
    writers never overwrite each other's read. Nothing is committed here; the
    caller owns the unit of work.
    """
    result = db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(current_stock=Product.current_stock + change_quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Product not found: {product_id}")

    warehouse_id = db.execute(
        select(Product.warehouse_id).where(Product.id == product_id)
    ).scalar_one_or_none()
    return add_inventory_transaction(
        db,
        product_id=product_id,
        change_quantity=change_quantity,
        reason=reason,
        related_order_id=related_order_id,
        warehouse_id=warehouse_id,
        comment=comment,
        created_by=created_by,
    )


@dataclass
class RestockResult:
    product: Product
    transaction: InventoryTransaction
    created: bool
    finance_entry: FinanceEntry | None = None


@dataclass
class ReduceResult:
    product: Product
    transaction: InventoryTransaction
    finance_entry: FinanceEntry


def _get_warehouse(db: Session, warehouse_id: str) -> Warehouse:
    warehouse = db.execute(select(Warehouse).where(Warehouse.id == warehouse_id)).scalar_one_or_none()
    if not warehouse:
        raise NotFoundError(f"Warehouse not found: {warehouse_id}")
    return warehouse


def restock(
    db: Session,
    *,
    warehouse_id: str,
    name: str,
    quantity: int,
    unit_price: Decimal | None = None,
    sku: str | None = None,
    created_by: str | None = None,
) -> RestockResult:
    """
    Add stock to a warehouse product, matched by name.

    An unknown name creates the product and books the purchase
    (quantity x unit_price) as a warehouse expense.
    """
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than zero", field="quantity")
    normalized_name = name.strip()
    if not normalized_name:
        raise ValidationError("Product name is required", field="name")
    _get_warehouse(db, warehouse_id)

    product = db.execute(
        select(Product)
        .where(Product.warehouse_id == warehouse_id, Product.name == normalized_name)
        .order_by(Product.created_at)
    ).scalars().first()

    if product:
        txn = apply_stock_change(
            db,
            product_id=product.id,
            change_quantity=quantity,
            reason="restock",
            comment="Warehouse restock",
            created_by=created_by,
        )
        return RestockResult(product=product, transaction=txn, created=False)

    if unit_price is None:
        raise ValidationError("Unit price is required for a new product", field="unit_price")
    price = to_money(unit_price)
    product = Product(
        id=str(uuid.uuid4()),
        warehouse_id=warehouse_id,
        name=normalized_name,
        sku=(sku or "").strip() or None,
        unit_price=price,
        current_stock=0,
    )
    db.add(product)
    db.flush()
    txn = apply_stock_change(
        db,
        product_id=product.id,
        change_quantity=quantity,
        reason="restock",
        comment="Initial warehouse stock",
        created_by=created_by,
    )
    entry = post_entry(
        db,
        entry_type="expense",
        amount=line_amount(quantity, price),
        warehouse_id=warehouse_id,
        comment=f"Initial stock - {normalized_name} ({quantity} x {price})",
        created_by=created_by,
    )
    return RestockResult(product=product, transaction=txn, created=True, finance_entry=entry)


def reduce_stock(
    db: Session,
    *,
    product_id: str,
    quantity: int,
    comment: str | None = None,
    created_by: str | None = None,
) -> ReduceResult:
    """Write off damaged or returned-to-supplier stock and credit its value back to the warehouse."""
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than zero", field="quantity")
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if not product:
        raise NotFoundError(f"Product not found: {product_id}")
    if quantity > product.current_stock:
        raise ValidationError(
            f"Only {product.current_stock} unit(s) in stock",
            field="quantity",
        )

    txn = apply_stock_change(
        db,
        product_id=product.id,
        change_quantity=-quantity,
        reason="correction",
        comment=comment or "Manual reduction",
        created_by=created_by,
    )
    price = to_money(product.unit_price)
    entry = post_entry(
        db,
        entry_type="income",
        amount=line_amount(quantity, price),
        warehouse_id=product.warehouse_id,
        comment=f"Stock reduction - {product.name} (-{quantity} x {price})",
        created_by=created_by,
    )
    return ReduceResult(product=product, transaction=txn, finance_entry=entry)
