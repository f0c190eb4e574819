from pydantic import BaseModel


class ClearOrdersOut(BaseModel):
    company_id: str
    deleted_count: int


class ClearAutomatedFinanceOut(BaseModel):
    deleted_count: int


class ResetAllDataOut(BaseModel):
    deleted_orders: int
    deleted_finance_entries: int
