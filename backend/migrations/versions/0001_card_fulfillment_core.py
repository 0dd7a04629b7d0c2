"""Card fulfillment core: products, card units, batches, wallets, orders

Revision ID: 0001_card_fulfillment_core
Revises:
Create Date: 2026-03-02
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_card_fulfillment_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    op.create_table(
        "card_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("name_ar", sa.String(255), nullable=True),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(6, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default="SAR"),
        sa.Column("min_quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("max_quantity", sa.Integer(), nullable=False, server_default=sa.text("1000")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("stock_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("card_products", schema=None) as batch_op:
        batch_op.create_index("ix_card_products_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_card_products_tenant_active", ["tenant_id", "is_active"], unique=False)

    op.create_table(
        "card_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("buyer_id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("payment_method", sa.String(16), nullable=False, server_default="WALLET"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_total", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default="SAR"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("request_fingerprint", sa.String(64), nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        _timestamp("created_at"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "order_number", name="uq_card_orders_tenant_number"),
        sa.UniqueConstraint("tenant_id", "buyer_id", "idempotency_key", name="uq_card_orders_idempotency"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("card_orders", schema=None) as batch_op:
        batch_op.create_index("ix_card_orders_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_card_orders_buyer_id", ["buyer_id"], unique=False)
        batch_op.create_index("ix_card_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_card_orders_payment_status", ["payment_status"], unique=False)
        batch_op.create_index(
            "ix_card_orders_tenant_status_created", ["tenant_id", "status", "created_at"], unique=False
        )

    op.create_table(
        "card_order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("line_subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("line_tax", sa.Numeric(12, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("delivered_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["order_id"], ["card_orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["card_products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("card_order_items", schema=None) as batch_op:
        batch_op.create_index("ix_card_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_card_order_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "card_units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(255), nullable=False),
        sa.Column("pin", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="AVAILABLE"),
        sa.Column("batch_number", sa.String(64), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("buyer_id", sa.Integer(), nullable=True),
        _timestamp("imported_at"),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["product_id"], ["card_products.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["card_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_card_units_tenant_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("card_units", schema=None) as batch_op:
        batch_op.create_index("ix_card_units_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_card_units_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_card_units_status", ["status"], unique=False)
        batch_op.create_index("ix_card_units_batch_number", ["batch_number"], unique=False)
        batch_op.create_index("ix_card_units_order_id", ["order_id"], unique=False)
        batch_op.create_index(
            "ix_card_units_product_status_imported", ["product_id", "status", "imported_at"], unique=False
        )
        batch_op.create_index("ix_card_units_buyer_status", ["buyer_id", "status"], unique=False)

    op.create_table(
        "card_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(64), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("total_cards", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_cards", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("invalid_cards", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("imported_by_id", sa.Integer(), nullable=True),
        _timestamp("imported_at"),
        sa.ForeignKeyConstraint(["product_id"], ["card_products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "batch_number", name="uq_card_batches_tenant_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("card_batches", schema=None) as batch_op:
        batch_op.create_index("ix_card_batches_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_card_batches_product_id", ["product_id"], unique=False)

    op.create_table(
        "card_deliveries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_item_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(255), nullable=False),
        sa.Column("pin", sa.String(255), nullable=True),
        _timestamp("delivered_at"),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["order_item_id"], ["card_order_items.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["card_units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("unit_id", name="uq_card_deliveries_unit"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("card_deliveries", schema=None) as batch_op:
        batch_op.create_index("ix_card_deliveries_order_item_id", ["order_item_id"], unique=False)

    op.create_table(
        "card_order_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=True),
        sa.Column("message", sa.String(255), nullable=True),
        sa.Column("actor_type", sa.String(16), nullable=False, server_default="SYSTEM"),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["order_id"], ["card_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("card_order_events", schema=None) as batch_op:
        batch_op.create_index("ix_card_order_events_order_created", ["order_id", "created_at"], unique=False)

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default="SAR"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_wallets_tenant_user"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("wallets", schema=None) as batch_op:
        batch_op.create_index("ix_wallets_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_wallets_user_id", ["user_id"], unique=False)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("description_ar", sa.String(255), nullable=True),
        sa.Column("reference", sa.String(64), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="COMPLETED"),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["wallet_id"], ["wallets.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["card_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("wallet_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_wallet_transactions_wallet_id", ["wallet_id"], unique=False)
        batch_op.create_index("ix_wallet_transactions_type", ["type"], unique=False)
        batch_op.create_index("ix_wallet_transactions_reference", ["reference"], unique=False)
        batch_op.create_index("ix_wallet_tx_wallet_created", ["wallet_id", "created_at"], unique=False)
        batch_op.create_index("ix_wallet_tx_order_type", ["order_id", "type"], unique=False)


def downgrade():
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_table("card_order_events")
    op.drop_table("card_deliveries")
    op.drop_table("card_batches")
    op.drop_table("card_units")
    op.drop_table("card_order_items")
    op.drop_table("card_orders")
    op.drop_table("card_products")
