from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db.base import Base

FINANCE_TYPES = ("income", "expense")


class FinanceEntry(Base):
    __tablename__ = "finance_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # income / expense
    # Signed: returns post a negative expense against the order's earlier entry.
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    company_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=True, index=True
    )
    warehouse_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("warehouses.id"), nullable=True, index=True
    )
    related_order_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    comment: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_finance_entries_company_created_at", "company_id", "created_at"),
        Index("ix_finance_entries_warehouse_created_at", "warehouse_id", "created_at"),
    )
