from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Protocol
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice.core.errors import ValidationError
from backoffice.core.money import ZERO_MONEY, to_money
from backoffice.models.finance import FINANCE_TYPES, FinanceEntry


class _EntryLike(Protocol):
    type: str
    amount: Any
    related_order_id: str | None
    created_at: datetime


@dataclass
class LedgerTotals:
    income: Decimal = ZERO_MONEY
    expense: Decimal = ZERO_MONEY
    direct_expense: Decimal = ZERO_MONEY
    debt: Decimal = ZERO_MONEY
    entries_count: int = 0

    @property
    def balance(self) -> Decimal:
        return to_money(self.income - self.expense)


@dataclass
class PeriodTotals:
    period: str
    totals: LedgerTotals


@dataclass
class LedgerSummary:
    scope: str
    scope_id: str | None
    overall: LedgerTotals
    month: PeriodTotals | None
    previous_month: PeriodTotals | None
    year: PeriodTotals | None


def post_entry(
    db: Session,
    *,
    entry_type: str,
    amount: Decimal | int | float | str,
    company_id: str | None = None,
    warehouse_id: str | None = None,
    related_order_id: str | None = None,
    comment: str | None = None,
    created_by: str | None = None,
) -> FinanceEntry:
    if entry_type not in FINANCE_TYPES:
        raise ValidationError(f"Unknown finance entry type: {entry_type}", field="type")
    entry = FinanceEntry(
        id=str(uuid.uuid4()),
        type=entry_type,
        amount=to_money(amount),
        company_id=company_id,
        warehouse_id=warehouse_id,
        related_order_id=related_order_id,
        comment=comment,
        created_by=created_by,
    )
    db.add(entry)
    return entry


def fold_entries(entries: Iterable[_EntryLike]) -> LedgerTotals:
    """Sum income and expense over an already filtered set of entries.

    Expenses tagged with an order are debt; untagged expenses are direct spending.
    Amounts keep their sign, so a return's negative expense reduces debt.
    """
    totals = LedgerTotals()
    for entry in entries:
        amount = to_money(entry.amount)
        totals.entries_count += 1
        if entry.type == "income":
            totals.income += amount
        elif entry.type == "expense":
            totals.expense += amount
            if entry.related_order_id:
                totals.debt += amount
            else:
                totals.direct_expense += amount
    return totals


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_key(value: datetime) -> str:
    return _as_utc(value).strftime("%Y-%m")


def previous_month(month: str) -> str:
    year, month_num = (int(part) for part in month.split("-"))
    if month_num == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{month_num - 1:02d}"


def parse_month(value: str) -> str:
    try:
        parsed = datetime.strptime(value.strip(), "%Y-%m")
    except ValueError as exc:
        raise ValidationError("Month must use the YYYY-MM format", field="month") from exc
    return parsed.strftime("%Y-%m")


def filter_by_month(entries: Iterable[_EntryLike], month: str) -> list[_EntryLike]:
    return [entry for entry in entries if month_key(entry.created_at) == month]


def filter_by_year(entries: Iterable[_EntryLike], year: int) -> list[_EntryLike]:
    return [entry for entry in entries if _as_utc(entry.created_at).year == year]


def filter_by_date_range(
    entries: Iterable[_EntryLike],
    start_date: date | None,
    end_date: date | None,
) -> list[_EntryLike]:
    selected = []
    for entry in entries:
        entry_date = _as_utc(entry.created_at).date()
        if start_date and entry_date < start_date:
            continue
        if end_date and entry_date > end_date:
            continue
        selected.append(entry)
    return selected


def list_scope_entries(
    db: Session,
    *,
    company_id: str | None = None,
    warehouse_id: str | None = None,
) -> list[FinanceEntry]:
    stmt = select(FinanceEntry)
    if company_id:
        stmt = stmt.where(FinanceEntry.company_id == company_id)
    if warehouse_id:
        stmt = stmt.where(FinanceEntry.warehouse_id == warehouse_id)
    return list(db.execute(stmt.order_by(FinanceEntry.created_at.desc())).scalars().all())


def get_balance(
    db: Session,
    *,
    company_id: str | None = None,
    warehouse_id: str | None = None,
) -> Decimal:
    return fold_entries(list_scope_entries(db, company_id=company_id, warehouse_id=warehouse_id)).balance


def summarize_ledger(
    db: Session,
    *,
    company_id: str | None = None,
    warehouse_id: str | None = None,
    month: str | None = None,
    year: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> LedgerSummary:
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date", field="end_date")

    entries = list_scope_entries(db, company_id=company_id, warehouse_id=warehouse_id)
    if start_date or end_date:
        entries = filter_by_date_range(entries, start_date, end_date)

    month_totals = None
    previous_totals = None
    if month:
        normalized = parse_month(month)
        prior = previous_month(normalized)
        month_totals = PeriodTotals(period=normalized, totals=fold_entries(filter_by_month(entries, normalized)))
        previous_totals = PeriodTotals(period=prior, totals=fold_entries(filter_by_month(entries, prior)))

    year_totals = None
    if year is not None:
        year_totals = PeriodTotals(period=str(year), totals=fold_entries(filter_by_year(entries, year)))

    if company_id:
        scope, scope_id = "company", company_id
    elif warehouse_id:
        scope, scope_id = "warehouse", warehouse_id
    else:
        scope, scope_id = "overall", None

    return LedgerSummary(
        scope=scope,
        scope_id=scope_id,
        overall=fold_entries(entries),
        month=month_totals,
        previous_month=previous_totals,
        year=year_totals,
    )


def withdraw(
    db: Session,
    *,
    amount: Decimal,
    note: str | None,
    created_by: str | None,
) -> FinanceEntry:
    normalized = to_money(amount)
    if normalized <= ZERO_MONEY:
        raise ValidationError("Withdrawal amount must be positive", field="amount")
    balance = get_balance(db)
    if normalized > balance:
        raise ValidationError("Insufficient balance for this withdrawal", field="amount")
    return post_entry(
        db,
        entry_type="expense",
        amount=normalized,
        comment=f"Withdrawal: {note or 'no comment'}",
        created_by=created_by,
    )
