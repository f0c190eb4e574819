from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from backoffice.core.api_docs import error_responses
from backoffice.core.deps import get_db
from backoffice.core.errors import ValidationError
from backoffice.core.money import money_out
from backoffice.core.permissions import ADMIN_ONLY, ANY_STAFF, require_roles
from backoffice.core.security import CallerIdentity
from backoffice.models.company import Company
from backoffice.models.order import ORDER_STATUSES, Order, OrderLine
from backoffice.models.product import Product
from backoffice.schemas.common import PaginationMeta
from backoffice.schemas.order import (
    CompanyStatOut,
    CompleteOrderIn,
    FulfillmentOut,
    LaterPaymentIn,
    OrderCommandIn,
    OrderCreate,
    OrderDeleteOut,
    OrderLineOut,
    OrderListOut,
    OrderOut,
    ProductStatOut,
    ReconciliationResolveIn,
    ReturnItemsIn,
    StockChangeOut,
)
from backoffice.services import fulfillment_service, stats_service
from backoffice.services.audit_service import log_audit_event
from backoffice.services.fulfillment_service import FulfillmentResult
from backoffice.services.order_service import (
    company_display_name,
    create_order as create_order_record,
    derive_payment_state,
    get_order,
    get_order_lines,
)

router = APIRouter(prefix="/orders", tags=["orders"])


def _normalize_order_status(status: str) -> str:
    normalized = status.strip().lower()
    if normalized not in ORDER_STATUSES:
        allowed = ", ".join(ORDER_STATUSES)
        raise ValidationError(f"Invalid order status. Allowed: {allowed}", field="status")
    return normalized


def _company_names(db: Session, orders: list[Order]) -> dict[str, str]:
    company_ids = {order.company_id for order in orders if order.company_id}
    if not company_ids:
        return {}
    rows = db.execute(select(Company.id, Company.name).where(Company.id.in_(company_ids))).all()
    return {company_id: name for company_id, name in rows}


def _line_outs(db: Session, lines: list[OrderLine]) -> list[OrderLineOut]:
    product_ids = {line.product_id for line in lines}
    names = {}
    if product_ids:
        names = dict(db.execute(select(Product.id, Product.name).where(Product.id.in_(product_ids))).all())
    return [
        OrderLineOut(
            id=line.id,
            product_id=line.product_id,
            product_name=names.get(line.product_id),
            quantity=line.quantity,
            unit_price=money_out(line.unit_price),
            line_total=money_out(line.line_total),
        )
        for line in lines
    ]


def _order_out(
    db: Session,
    order: Order,
    *,
    company_names: dict[str, str] | None = None,
    lines: list[OrderLine] | None = None,
) -> OrderOut:
    if company_names is None:
        company_names = _company_names(db, [order])
    payment = derive_payment_state(
        status=order.status,
        total_amount=order.total_amount,
        payment_received_amount=order.payment_received_amount,
    )
    return OrderOut(
        id=order.id,
        company_id=order.company_id,
        company_name=company_display_name(order, company_names),
        manual_company_name=order.manual_company_name,
        status=order.status,
        payment_status=order.payment_status,
        debt_flag=order.debt_flag,
        total_quantity=order.total_quantity,
        total_amount=money_out(order.total_amount),
        payment_received_amount=money_out(order.payment_received_amount),
        remaining_debt=money_out(payment.remaining_debt),
        notes=order.notes,
        created_by=order.created_by,
        needs_reconciliation=order.needs_reconciliation,
        reconciliation_note=order.reconciliation_note,
        version=order.version_id,
        created_at=order.created_at,
        completed_at=order.completed_at,
        lines=_line_outs(db, lines) if lines is not None else [],
    )


def _fulfillment_out(db: Session, result: FulfillmentResult) -> FulfillmentOut:
    return FulfillmentOut(
        order=_order_out(db, result.order, lines=result.lines),
        stock_changes=[
            StockChangeOut(
                line_id=change.line_id,
                product_id=change.product_id,
                quantity_delta=change.quantity_delta,
                transaction_id=change.transaction_id,
            )
            for change in result.stock_changes
        ],
        finance_entry_id=result.finance_entry.id if result.finance_entry else None,
        return_total=money_out(result.return_total) if result.return_total is not None else None,
        remaining_debt=money_out(result.payment.remaining_debt),
        overpaid_amount=money_out(result.payment.overpaid_amount),
    )


@router.post(
    "",
    response_model=OrderOut,
    status_code=201,
    summary="Create order",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    order, lines = create_order_record(db, payload, actor_id=actor.user_id)
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="order.create",
        target_type="order",
        target_id=order.id,
        metadata_json={
            "company_id": order.company_id,
            "manual_company_name": order.manual_company_name,
            "lines_count": len(lines),
            "total": money_out(order.total_amount),
        },
    )
    db.commit()
    db.refresh(order)
    return _order_out(db, order, lines=get_order_lines(db, order.id))


@router.get(
    "",
    response_model=OrderListOut,
    summary="List orders",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_orders(
    status: str | None = Query(default=None),
    company_id: str | None = Query(default=None),
    search: str | None = Query(default=None, description="Matches company or manual company name"),
    needs_reconciliation: bool | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")

    normalized_status = _normalize_order_status(status) if status else None
    normalized_company_id = company_id.strip() if company_id and company_id.strip() else None
    normalized_search = search.strip() if search and search.strip() else None

    filters = []
    if normalized_status:
        filters.append(Order.status == normalized_status)
    if normalized_company_id:
        filters.append(Order.company_id == normalized_company_id)
    if normalized_search:
        pattern = f"%{normalized_search.lower()}%"
        matching_companies = select(Company.id).where(func.lower(Company.name).like(pattern))
        filters.append(
            or_(
                func.lower(Order.manual_company_name).like(pattern),
                Order.company_id.in_(matching_companies),
            )
        )
    if needs_reconciliation is not None:
        filters.append(Order.needs_reconciliation == needs_reconciliation)
    if start_date:
        filters.append(func.date(Order.created_at) >= start_date)
    if end_date:
        filters.append(func.date(Order.created_at) <= end_date)

    total_count = int(db.execute(select(func.count(Order.id)).where(*filters)).scalar_one())
    rows = list(
        db.execute(
            select(Order).where(*filters).order_by(Order.created_at.desc()).offset(offset).limit(limit)
        ).scalars().all()
    )
    company_names = _company_names(db, rows)
    items = [_order_out(db, row, company_names=company_names) for row in rows]
    count = len(items)

    return OrderListOut(
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        status=normalized_status,
        company_id=normalized_company_id,
        search=normalized_search,
        start_date=start_date,
        end_date=end_date,
        items=items,
    )


@router.get(
    "/stats/products",
    response_model=list[ProductStatOut],
    summary="Sold product statistics",
    responses=error_responses(400, 401, 403, 422, 500),
)
def sold_products(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    stats = stats_service.sold_product_stats(db, start_date=start_date, end_date=end_date)
    return [
        ProductStatOut(
            product_id=item.product_id,
            product_name=item.product_name,
            sold_quantity=item.sold_quantity,
            returned_quantity=item.returned_quantity,
            revenue=money_out(item.revenue),
        )
        for item in stats
    ]


@router.get(
    "/stats/companies",
    response_model=list[CompanyStatOut],
    summary="Company order statistics",
    responses=error_responses(400, 401, 403, 422, 500),
)
def company_statistics(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    stats = stats_service.company_stats(db, start_date=start_date, end_date=end_date)
    return [
        CompanyStatOut(
            company_id=item.company_id,
            company_name=item.company_name,
            orders_count=item.orders_count,
            total_amount=money_out(item.total_amount),
            received_amount=money_out(item.received_amount),
            outstanding_debt=money_out(item.outstanding_debt),
        )
        for item in stats
    ]


@router.get(
    "/{order_id}",
    response_model=OrderOut,
    summary="Get order with lines",
    responses=error_responses(401, 403, 404, 422, 500),
)
def get_order_detail(
    order_id: str,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    order = get_order(db, order_id)
    return _order_out(db, order, lines=get_order_lines(db, order_id))


@router.post(
    "/{order_id}/complete",
    response_model=FulfillmentOut,
    summary="Complete order with a payment decision",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def complete_order(
    order_id: str,
    payload: CompleteOrderIn,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    result = fulfillment_service.complete_order(
        db,
        order_id,
        received=payload.received,
        payment_amount=payload.payment_amount,
        payment_method=payload.payment_method,
        actor_id=actor.user_id,
        expected_version=payload.expected_version,
    )
    return _fulfillment_out(db, result)


@router.post(
    "/{order_id}/cancel",
    response_model=FulfillmentOut,
    summary="Cancel order (restores stock of a completed order)",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def cancel_order(
    order_id: str,
    payload: OrderCommandIn | None = None,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    result = fulfillment_service.cancel_order(
        db,
        order_id,
        actor_id=actor.user_id,
        expected_version=payload.expected_version if payload else None,
    )
    return _fulfillment_out(db, result)


@router.delete(
    "/{order_id}",
    response_model=OrderDeleteOut,
    summary="Delete order and its lines, ledger entries and stock history",
    responses=error_responses(401, 403, 404, 409, 422, 500, 503),
)
def delete_order(
    order_id: str,
    expected_version: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ADMIN_ONLY)),
):
    result = fulfillment_service.delete_order(
        db,
        order_id,
        actor_id=actor.user_id,
        expected_version=expected_version,
    )
    return OrderDeleteOut(
        id=result.order_id,
        deleted_lines=result.deleted_lines,
        deleted_finance_entries=result.deleted_finance_entries,
        deleted_inventory_transactions=result.deleted_inventory_transactions,
    )


@router.post(
    "/{order_id}/returns",
    response_model=FulfillmentOut,
    summary="Return items from a completed order",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def return_items(
    order_id: str,
    payload: ReturnItemsIn,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    result = fulfillment_service.return_items(
        db,
        order_id,
        lines=payload.lines,
        actor_id=actor.user_id,
        expected_version=payload.expected_version,
    )
    return _fulfillment_out(db, result)


@router.post(
    "/{order_id}/payments",
    response_model=FulfillmentOut,
    summary="Register a later payment against order debt",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def register_payment(
    order_id: str,
    payload: LaterPaymentIn,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    result = fulfillment_service.register_later_payment(
        db,
        order_id,
        amount=payload.amount,
        method=payload.method,
        actor_id=actor.user_id,
        expected_version=payload.expected_version,
    )
    return _fulfillment_out(db, result)


@router.post(
    "/{order_id}/reconciliation/resolve",
    response_model=OrderOut,
    summary="Clear the pending-reconciliation marker",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500, 503),
)
def resolve_reconciliation(
    order_id: str,
    payload: ReconciliationResolveIn,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ADMIN_ONLY)),
):
    result = fulfillment_service.resolve_reconciliation(
        db,
        order_id,
        note=payload.note,
        actor_id=actor.user_id,
        expected_version=payload.expected_version,
    )
    return _order_out(db, result.order, lines=get_order_lines(db, order_id))
