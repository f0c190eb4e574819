from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.core.api_docs import error_responses
from backoffice.core.deps import get_db
from backoffice.core.errors import ValidationError
from backoffice.core.money import money_out
from backoffice.core.permissions import ANY_STAFF, require_roles
from backoffice.core.security import CallerIdentity
from backoffice.models.inventory import INVENTORY_REASONS, InventoryTransaction
from backoffice.schemas.common import PaginationMeta
from backoffice.schemas.inventory import (
    InventoryTransactionListOut,
    InventoryTransactionOut,
    ReduceStockIn,
    ReduceStockOut,
    RestockIn,
    RestockOut,
)
from backoffice.services.audit_service import log_audit_event
from backoffice.services.inventory_service import reduce_stock, restock

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.post(
    "/restock",
    response_model=RestockOut,
    summary="Add stock to a warehouse product (creates the product if new)",
    responses=error_responses(400, 401, 403, 404, 422, 500, 503),
)
def restock_product(
    payload: RestockIn,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    result = restock(
        db,
        warehouse_id=payload.warehouse_id,
        name=payload.name,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        sku=payload.sku,
        created_by=actor.user_id,
    )
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="inventory.restock",
        target_type="product",
        target_id=result.product.id,
        metadata_json={
            "warehouse_id": payload.warehouse_id,
            "quantity": payload.quantity,
            "created": result.created,
        },
    )
    db.commit()
    db.refresh(result.product)
    return RestockOut(
        product_id=result.product.id,
        created=result.created,
        current_stock=result.product.current_stock,
        transaction_id=result.transaction.id,
        finance_entry_id=result.finance_entry.id if result.finance_entry else None,
    )


@router.post(
    "/reduce",
    response_model=ReduceStockOut,
    summary="Manual stock reduction (damage, supplier return)",
    responses=error_responses(400, 401, 403, 404, 422, 500, 503),
)
def reduce_product_stock(
    payload: ReduceStockIn,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    result = reduce_stock(
        db,
        product_id=payload.product_id,
        quantity=payload.quantity,
        comment=payload.comment,
        created_by=actor.user_id,
    )
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="inventory.reduce",
        target_type="product",
        target_id=payload.product_id,
        metadata_json={"quantity": payload.quantity, "comment": payload.comment},
    )
    db.commit()
    db.refresh(result.product)
    return ReduceStockOut(
        product_id=result.product.id,
        current_stock=result.product.current_stock,
        transaction_id=result.transaction.id,
        finance_entry_id=result.finance_entry.id,
        credited_amount=money_out(result.finance_entry.amount),
    )


@router.get(
    "/transactions",
    response_model=InventoryTransactionListOut,
    summary="List stock movements",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_transactions(
    product_id: str | None = Query(default=None),
    warehouse_id: str | None = Query(default=None),
    related_order_id: str | None = Query(default=None),
    reason: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    if reason and reason not in INVENTORY_REASONS:
        allowed = ", ".join(INVENTORY_REASONS)
        raise ValidationError(f"Invalid reason. Allowed: {allowed}", field="reason")

    filters = []
    if product_id:
        filters.append(InventoryTransaction.product_id == product_id)
    if warehouse_id:
        filters.append(InventoryTransaction.warehouse_id == warehouse_id)
    if related_order_id:
        filters.append(InventoryTransaction.related_order_id == related_order_id)
    if reason:
        filters.append(InventoryTransaction.reason == reason)

    total = int(db.execute(select(func.count(InventoryTransaction.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(InventoryTransaction)
        .where(*filters)
        .order_by(InventoryTransaction.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [
        InventoryTransactionOut(
            id=row.id,
            product_id=row.product_id,
            warehouse_id=row.warehouse_id,
            change_quantity=row.change_quantity,
            reason=row.reason,
            related_order_id=row.related_order_id,
            comment=row.comment,
            created_by=row.created_by,
            created_at=row.created_at,
        )
        for row in rows
    ]
    count = len(items)
    return InventoryTransactionListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )
