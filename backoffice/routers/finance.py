from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.core.api_docs import error_responses
from backoffice.core.deps import get_db
from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.core.money import money_out
from backoffice.core.permissions import ADMIN_ONLY, ANY_STAFF, require_roles
from backoffice.core.security import CallerIdentity
from backoffice.models.company import Company, Warehouse
from backoffice.models.finance import FinanceEntry
from backoffice.schemas.common import PaginationMeta
from backoffice.schemas.finance import (
    FinanceEntryIn,
    FinanceEntryListOut,
    FinanceEntryOut,
    LedgerSummaryOut,
    LedgerTotalsOut,
    PeriodTotalsOut,
    WithdrawalIn,
)
from backoffice.services.audit_service import log_audit_event
from backoffice.services.finance_service import LedgerTotals, PeriodTotals, post_entry, summarize_ledger, withdraw

router = APIRouter(prefix="/finance", tags=["finance"])


def _entry_out(entry: FinanceEntry) -> FinanceEntryOut:
    return FinanceEntryOut(
        id=entry.id,
        type=entry.type,
        amount=money_out(entry.amount),
        company_id=entry.company_id,
        warehouse_id=entry.warehouse_id,
        related_order_id=entry.related_order_id,
        comment=entry.comment,
        created_by=entry.created_by,
        created_at=entry.created_at,
    )


def _totals_out(totals: LedgerTotals) -> LedgerTotalsOut:
    return LedgerTotalsOut(
        income=money_out(totals.income),
        expense=money_out(totals.expense),
        direct_expense=money_out(totals.direct_expense),
        debt=money_out(totals.debt),
        balance=money_out(totals.balance),
        entries_count=totals.entries_count,
    )


def _period_out(period: PeriodTotals | None) -> PeriodTotalsOut | None:
    if period is None:
        return None
    return PeriodTotalsOut(period=period.period, totals=_totals_out(period.totals))


@router.post(
    "/entries",
    response_model=FinanceEntryOut,
    status_code=201,
    summary="Add a manual ledger entry",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_entry(
    payload: FinanceEntryIn,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    if payload.company_id and payload.warehouse_id:
        raise ValidationError("An entry belongs to a company or a warehouse, not both", field="company_id")
    if payload.company_id and not db.get(Company, payload.company_id):
        raise NotFoundError(f"Company not found: {payload.company_id}")
    if payload.warehouse_id and not db.get(Warehouse, payload.warehouse_id):
        raise NotFoundError(f"Warehouse not found: {payload.warehouse_id}")

    entry = post_entry(
        db,
        entry_type=payload.type,
        amount=payload.amount,
        company_id=payload.company_id,
        warehouse_id=payload.warehouse_id,
        comment=payload.comment,
        created_by=actor.user_id,
    )
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="finance.entry.create",
        target_type="finance_entry",
        target_id=entry.id,
        metadata_json={"type": payload.type, "amount": money_out(payload.amount)},
    )
    db.commit()
    db.refresh(entry)
    return _entry_out(entry)


@router.get(
    "/entries",
    response_model=FinanceEntryListOut,
    summary="List ledger entries",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_entries(
    company_id: str | None = Query(default=None),
    warehouse_id: str | None = Query(default=None),
    related_order_id: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")

    filters = []
    if company_id:
        filters.append(FinanceEntry.company_id == company_id)
    if warehouse_id:
        filters.append(FinanceEntry.warehouse_id == warehouse_id)
    if related_order_id:
        filters.append(FinanceEntry.related_order_id == related_order_id)
    if start_date:
        filters.append(func.date(FinanceEntry.created_at) >= start_date)
    if end_date:
        filters.append(func.date(FinanceEntry.created_at) <= end_date)

    total = int(db.execute(select(func.count(FinanceEntry.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(FinanceEntry)
        .where(*filters)
        .order_by(FinanceEntry.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_entry_out(row) for row in rows]
    count = len(items)
    return FinanceEntryListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/withdrawals",
    response_model=FinanceEntryOut,
    status_code=201,
    summary="Withdraw from the overall balance",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create_withdrawal(
    payload: WithdrawalIn,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ADMIN_ONLY)),
):
    entry = withdraw(db, amount=payload.amount, note=payload.note, created_by=actor.user_id)
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="finance.withdrawal",
        target_type="finance_entry",
        target_id=entry.id,
        metadata_json={"amount": money_out(payload.amount), "note": payload.note},
    )
    db.commit()
    db.refresh(entry)
    return _entry_out(entry)


@router.get(
    "/summary",
    response_model=LedgerSummaryOut,
    summary="Balance and period summaries for a scope",
    responses=error_responses(400, 401, 403, 422, 500),
)
def ledger_summary(
    company_id: str | None = Query(default=None),
    warehouse_id: str | None = Query(default=None),
    month: str | None = Query(default=None, description="YYYY-MM; also returns the previous month"),
    year: int | None = Query(default=None, ge=1970, le=9999),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    if company_id and warehouse_id:
        raise ValidationError("Choose a company or a warehouse scope, not both", field="company_id")
    summary = summarize_ledger(
        db,
        company_id=company_id,
        warehouse_id=warehouse_id,
        month=month,
        year=year,
        start_date=start_date,
        end_date=end_date,
    )
    return LedgerSummaryOut(
        scope=summary.scope,
        scope_id=summary.scope_id,
        start_date=start_date,
        end_date=end_date,
        overall=_totals_out(summary.overall),
        month=_period_out(summary.month),
        previous_month=_period_out(summary.previous_month),
        year=_period_out(summary.year),
    )
