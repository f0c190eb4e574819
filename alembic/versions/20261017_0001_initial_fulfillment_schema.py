"""initial fulfillment schema

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
    ]


def _create_indexes(bind, table_name: str, indexes: list[tuple[str, list[str]]]) -> None:
    inspector = sa.inspect(bind)
    if not _table_exists(inspector, table_name):
        return
    for index_name, columns in indexes:
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=False)


_INDEXES: dict[str, list[tuple[str, list[str]]]] = {
    "companies": [("ix_companies_name", ["name"])],
    "products": [
        ("ix_products_warehouse_id", ["warehouse_id"]),
        ("ix_products_warehouse_name", ["warehouse_id", "name"]),
    ],
    "orders": [
        ("ix_orders_company_id", ["company_id"]),
        ("ix_orders_status_created_at", ["status", "created_at"]),
        ("ix_orders_company_created_at", ["company_id", "created_at"]),
    ],
    "order_lines": [
        ("ix_order_lines_order_id", ["order_id"]),
        ("ix_order_lines_product_id", ["product_id"]),
    ],
    "inventory_transactions": [
        ("ix_inventory_transactions_product_id", ["product_id"]),
        ("ix_inventory_transactions_warehouse_id", ["warehouse_id"]),
        ("ix_inventory_transactions_related_order_id", ["related_order_id"]),
        ("ix_inventory_transactions_product_created_at", ["product_id", "created_at"]),
        ("ix_inventory_transactions_reason_created_at", ["reason", "created_at"]),
    ],
    "finance_entries": [
        ("ix_finance_entries_company_id", ["company_id"]),
        ("ix_finance_entries_warehouse_id", ["warehouse_id"]),
        ("ix_finance_entries_related_order_id", ["related_order_id"]),
        ("ix_finance_entries_company_created_at", ["company_id", "created_at"]),
        ("ix_finance_entries_warehouse_created_at", ["warehouse_id", "created_at"]),
    ],
    "audit_logs": [
        ("ix_audit_logs_actor_id", ["actor_id"]),
        ("ix_audit_logs_target_id", ["target_id"]),
        ("ix_audit_logs_action_created_at", ["action", "created_at"]),
        ("ix_audit_logs_target_created_at", ["target_type", "target_id", "created_at"]),
    ],
}


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "companies"):
        op.create_table(
            "companies",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("registration_number", sa.String(length=100), nullable=True),
            sa.Column("contact_phone", sa.String(length=50), nullable=True),
            sa.Column("contact_email", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "warehouses"):
        op.create_table(
            "warehouses",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("sku", sa.String(length=100), nullable=True),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=True),
            sa.Column("manual_company_name", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="unpaid"),
            sa.Column("debt_flag", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("total_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("payment_received_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("notes", sa.String(length=1000), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("needs_reconciliation", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("reconciliation_note", sa.String(length=1000), nullable=True),
            sa.Column("lock_token", sa.String(length=36), nullable=True),
            sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "company_id IS NOT NULL OR manual_company_name IS NOT NULL",
                name="ck_orders_company_specified",
            ),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "order_lines"):
        op.create_table(
            "order_lines",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
            sa.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    # related_order_id is a weak reference on both append-only tables.
    if not _table_exists(inspector, "inventory_transactions"):
        op.create_table(
            "inventory_transactions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), nullable=True),
            sa.Column("change_quantity", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(length=20), nullable=False),
            sa.Column("related_order_id", sa.String(length=36), nullable=True),
            sa.Column("comment", sa.String(length=500), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "finance_entries"):
        op.create_table(
            "finance_entries",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=True),
            sa.Column("warehouse_id", sa.String(length=36), nullable=True),
            sa.Column("related_order_id", sa.String(length=36), nullable=True),
            sa.Column("comment", sa.String(length=500), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("actor_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("outcome", sa.String(length=30), nullable=False, server_default="ok"),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    for table_name, indexes in _INDEXES.items():
        _create_indexes(bind, table_name, indexes)


def downgrade() -> None:
    bind = op.get_bind()

    for table_name in (
        "audit_logs",
        "finance_entries",
        "inventory_transactions",
        "order_lines",
        "orders",
        "products",
        "warehouses",
        "companies",
    ):
        inspector = sa.inspect(bind)
        if not _table_exists(inspector, table_name):
            continue
        for index_name, _ in _INDEXES.get(table_name, []):
            if _index_exists(inspector, table_name, index_name):
                op.drop_index(index_name, table_name=table_name)
        op.drop_table(table_name)
