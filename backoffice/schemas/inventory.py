from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from backoffice.schemas.common import PaginationMeta


class RestockIn(BaseModel):
    warehouse_id: str
    name: str = Field(min_length=1, max_length=255)
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    sku: str | None = Field(default=None, max_length=100)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "warehouse_id": "warehouse-id-here",
                "name": "Pallet wrap",
                "quantity": 20,
                "unit_price": 20.0,
                "sku": "PW-500",
            }
        }
    )


class RestockOut(BaseModel):
    product_id: str
    created: bool
    current_stock: int
    transaction_id: str
    finance_entry_id: str | None = None


class ReduceStockIn(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    comment: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id-here",
                "quantity": 2,
                "comment": "Damaged in transit",
            }
        }
    )


class ReduceStockOut(BaseModel):
    product_id: str
    current_stock: int
    transaction_id: str
    finance_entry_id: str
    credited_amount: float


class InventoryTransactionOut(BaseModel):
    id: str
    product_id: str
    warehouse_id: str | None = None
    change_quantity: int
    reason: str
    related_order_id: str | None = None
    comment: str | None = None
    created_by: str | None = None
    created_at: datetime


class InventoryTransactionListOut(BaseModel):
    items: list[InventoryTransactionOut]
    pagination: PaginationMeta
