"""payment core schema

Revision ID: 20261001_01
Revises:
Create Date: 2026-10-01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261001_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _column_exists(inspector: sa.Inspector, table_name: str, column_name: str) -> bool:
    return any(column["name"] == column_name for column in inspector.get_columns(table_name))


def _ensure_users(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "users"):
        return
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_id", "users", ["id"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)


def _ensure_catalog_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("price", sa.Numeric(12, 3), nullable=False),
            sa.Column("available_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("in_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_products_id", "products", ["id"], unique=False)

    if not _table_exists(inspector, "product_combinations"):
        op.create_table(
            "product_combinations",
            sa.Column(
                "product_id",
                sa.Integer(),
                sa.ForeignKey("products.id", ondelete="CASCADE"),
                primary_key=True,
                nullable=False,
            ),
            sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
            sa.Column("label", sa.String(length=255), nullable=True),
            sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        )


def _ensure_order_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=64), nullable=True),
            sa.Column("address", sa.String(length=512), nullable=True),
            sa.Column("total", sa.Numeric(12, 3), nullable=False),
            sa.Column("payment_method", sa.String(length=50), nullable=True),
            sa.Column("payment_status", sa.String(length=32), nullable=False, server_default="pending_payment"),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending_payment"),
            sa.Column("stock_consumed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("provider_payment_id", sa.String(length=255), nullable=True),
            sa.Column("cancel_reason", sa.String(length=255), nullable=True),
            sa.Column("canceled_by", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_orders_id", "orders", ["id"], unique=False)
        op.create_index("ix_orders_email", "orders", ["email"], unique=False)
        op.create_index("ix_orders_payment_status", "orders", ["payment_status"], unique=False)
        op.create_index("ix_orders_status", "orders", ["status"], unique=False)
        op.create_index("ix_orders_provider_payment_id", "orders", ["provider_payment_id"], unique=False)
        op.create_index("ix_orders_created_at", "orders", ["created_at"], unique=False)
    elif not _column_exists(inspector, "orders", "stock_consumed"):
        # Orders created before the flag existed always reserved stock at placement.
        op.add_column(
            "orders",
            sa.Column("stock_consumed", sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        with op.batch_alter_table("orders") as batch_op:
            batch_op.alter_column(
                "stock_consumed",
                existing_type=sa.Boolean(),
                nullable=False,
                server_default=sa.false(),
            )

    if not _table_exists(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column(
                "order_id",
                sa.Integer(),
                sa.ForeignKey("orders.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("price", sa.Numeric(12, 3), nullable=False),
            sa.Column("combination_id", sa.String(length=64), nullable=True),
        )
        op.create_index("ix_order_items_id", "order_items", ["id"], unique=False)
        op.create_index("ix_order_items_order_id", "order_items", ["order_id"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    _ensure_users(inspector)
    inspector = sa.inspect(bind)
    _ensure_catalog_tables(inspector)
    inspector = sa.inspect(bind)
    _ensure_order_tables(inspector)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in ("order_items", "orders", "product_combinations", "products", "users"):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
