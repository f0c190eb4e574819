from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from backoffice.schemas.common import PaginationMeta


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    registration_number: str | None = Field(default=None, max_length=100)
    contact_phone: str | None = Field(default=None, max_length=50)
    contact_email: str | None = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Northwind Traders",
                "registration_number": "404871235",
                "contact_phone": "+995 555 123 456",
                "contact_email": "orders@northwind.example",
            }
        }
    )


class CompanyOut(BaseModel):
    id: str
    name: str
    registration_number: str | None = None
    contact_phone: str | None = None
    contact_email: str | None = None
    created_at: datetime


class CompanyListOut(BaseModel):
    items: list[CompanyOut]
    pagination: PaginationMeta


class WarehouseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class WarehouseOut(BaseModel):
    id: str
    name: str
    created_at: datetime


class WarehouseListOut(BaseModel):
    items: list[WarehouseOut]
    pagination: PaginationMeta


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    warehouse_id: str | None = None
    sku: str | None = Field(default=None, max_length=100)
    unit_price: Decimal = Field(ge=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Pallet wrap",
                "warehouse_id": "warehouse-id-here",
                "sku": "PW-500",
                "unit_price": 20.0,
            }
        }
    )


class ProductOut(BaseModel):
    id: str
    name: str
    warehouse_id: str | None = None
    sku: str | None = None
    unit_price: float
    current_stock: int
    created_at: datetime


class ProductListOut(BaseModel):
    items: list[ProductOut]
    pagination: PaginationMeta
