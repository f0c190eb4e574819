from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backoffice.schemas.common import PaginationMeta


class OrderLineIn(BaseModel):
    product_id: Optional[str] = None
    product_name: Optional[str] = Field(default=None, max_length=255)
    quantity: int = Field(gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _product_or_manual_entry(self):
        if self.product_id:
            return self
        if not self.product_name or not self.product_name.strip():
            raise ValueError("product_id or product_name is required")
        if self.unit_price is None:
            raise ValueError("unit_price is required for a manual product")
        return self


class OrderCreate(BaseModel):
    company_id: Optional[str] = None
    manual_company_name: Optional[str] = Field(default=None, max_length=255)
    warehouse_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    lines: list[OrderLineIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "company_id": "company-id-here",
                "notes": "Deliver before Friday",
                "lines": [
                    {"product_id": "product-id-here", "quantity": 5},
                    {"product_name": "Pallet wrap", "quantity": 3, "unit_price": 20.0},
                ],
            }
        }
    )


class OrderLineOut(BaseModel):
    id: str
    product_id: str
    product_name: str | None = None
    quantity: int
    unit_price: float
    line_total: float


class OrderOut(BaseModel):
    id: str
    company_id: str | None = None
    company_name: str
    manual_company_name: str | None = None
    status: str
    payment_status: str
    debt_flag: bool
    total_quantity: int
    total_amount: float
    payment_received_amount: float
    remaining_debt: float
    notes: str | None = None
    created_by: str | None = None
    needs_reconciliation: bool
    reconciliation_note: str | None = None
    version: int
    created_at: datetime
    completed_at: datetime | None = None
    lines: list[OrderLineOut] = Field(default_factory=list)


class OrderListOut(BaseModel):
    pagination: PaginationMeta
    status: str | None = None
    company_id: str | None = None
    search: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    items: list[OrderOut]


class CompleteOrderIn(BaseModel):
    received: bool
    payment_amount: Optional[Decimal] = None
    payment_method: Optional[str] = Field(default=None, max_length=100)
    expected_version: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "received": True,
                "payment_amount": 110.0,
                "payment_method": "bank transfer",
                "expected_version": 1,
            }
        }
    )


class OrderCommandIn(BaseModel):
    expected_version: Optional[int] = Field(default=None, ge=1)


class ReturnLineIn(BaseModel):
    line_id: str
    quantity: int = Field(ge=0)


class ReturnItemsIn(BaseModel):
    lines: list[ReturnLineIn] = Field(min_length=1)
    expected_version: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "lines": [{"line_id": "line-id-here", "quantity": 2}],
                "expected_version": 2,
            }
        }
    )


class LaterPaymentIn(BaseModel):
    amount: Decimal
    method: str = Field(max_length=100)
    expected_version: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "amount": 60.0,
                "method": "cash",
                "expected_version": 2,
            }
        }
    )


class ReconciliationResolveIn(BaseModel):
    note: Optional[str] = Field(default=None, max_length=1000)
    expected_version: Optional[int] = Field(default=None, ge=1)


class StockChangeOut(BaseModel):
    line_id: str | None = None
    product_id: str
    quantity_delta: int
    transaction_id: str


class FulfillmentOut(BaseModel):
    order: OrderOut
    stock_changes: list[StockChangeOut]
    finance_entry_id: str | None = None
    return_total: float | None = None
    remaining_debt: float
    overpaid_amount: float


class OrderDeleteOut(BaseModel):
    id: str
    deleted_lines: int
    deleted_finance_entries: int
    deleted_inventory_transactions: int


class ProductStatOut(BaseModel):
    product_id: str
    product_name: str
    sold_quantity: int
    returned_quantity: int
    revenue: float


class CompanyStatOut(BaseModel):
    company_id: str | None = None
    company_name: str
    orders_count: int
    total_amount: float
    received_amount: float
    outstanding_debt: float
