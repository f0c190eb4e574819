from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from backoffice.schemas.common import PaginationMeta

FinanceType = Literal["income", "expense"]


class FinanceEntryIn(BaseModel):
    type: FinanceType
    amount: Decimal = Field(gt=0)
    company_id: str | None = None
    warehouse_id: str | None = None
    comment: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "expense",
                "amount": 250.0,
                "warehouse_id": "warehouse-id-here",
                "comment": "Forklift repair",
            }
        }
    )


class FinanceEntryOut(BaseModel):
    id: str
    type: str
    amount: float
    company_id: str | None = None
    warehouse_id: str | None = None
    related_order_id: str | None = None
    comment: str | None = None
    created_by: str | None = None
    created_at: datetime


class FinanceEntryListOut(BaseModel):
    items: list[FinanceEntryOut]
    pagination: PaginationMeta


class WithdrawalIn(BaseModel):
    amount: Decimal = Field(gt=0)
    note: str | None = Field(default=None, max_length=400)


class LedgerTotalsOut(BaseModel):
    income: float
    expense: float
    direct_expense: float
    debt: float
    balance: float
    entries_count: int


class PeriodTotalsOut(BaseModel):
    period: str
    totals: LedgerTotalsOut


class LedgerSummaryOut(BaseModel):
    scope: str
    scope_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    overall: LedgerTotalsOut
    month: PeriodTotalsOut | None = None
    previous_month: PeriodTotalsOut | None = None
    year: PeriodTotalsOut | None = None
