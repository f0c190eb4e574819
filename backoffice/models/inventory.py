from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db.base import Base

INVENTORY_REASONS = ("order", "restock", "correction")


class InventoryTransaction(Base):
    """
    One row per stock movement. Positive = stock in. Negative = stock out (order/correction).
    """
    __tablename__ = "inventory_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), index=True)
    warehouse_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("warehouses.id"), nullable=True, index=True
    )

    change_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)  # "order", "restock", "correction"
    # Weak reference: no FK so order deletion controls when these rows go away.
    related_order_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    comment: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_inventory_transactions_product_created_at", "product_id", "created_at"),
        Index("ix_inventory_transactions_reason_created_at", "reason", "created_at"),
    )
