"""Add wallet top-up requests and link ledger entries to them

Revision ID: 0002_wallet_topup_requests
Revises: 0001_card_fulfillment_core
Create Date: 2026-03-09
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_wallet_topup_requests"
down_revision = "0001_card_fulfillment_core"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "wallet_topup_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="SAR"),
        sa.Column("payment_method", sa.String(32), nullable=False),
        sa.Column("sender_name", sa.String(255), nullable=True),
        sa.Column("transfer_reference", sa.String(128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("rejection_reason", sa.String(255), nullable=True),
        sa.Column("processed_by_id", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("wallet_topup_requests", schema=None) as batch_op:
        batch_op.create_index("ix_wallet_topup_requests_tenant_id", ["tenant_id"], unique=False)
        batch_op.create_index("ix_wallet_topup_requests_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_topup_requests_tenant_status", ["tenant_id", "status"], unique=False)

    with op.batch_alter_table("wallet_transactions", schema=None) as batch_op:
        batch_op.add_column(sa.Column("topup_request_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_wallet_transactions_topup_request",
            "wallet_topup_requests",
            ["topup_request_id"],
            ["id"],
        )
        batch_op.create_index("ix_wallet_transactions_topup_request_id", ["topup_request_id"], unique=False)


def downgrade():
    with op.batch_alter_table("wallet_transactions", schema=None) as batch_op:
        batch_op.drop_index("ix_wallet_transactions_topup_request_id")
        batch_op.drop_constraint("fk_wallet_transactions_topup_request", type_="foreignkey")
        batch_op.drop_column("topup_request_id")

    with op.batch_alter_table("wallet_topup_requests", schema=None) as batch_op:
        batch_op.drop_index("ix_topup_requests_tenant_status")
        batch_op.drop_index("ix_wallet_topup_requests_user_id")
        batch_op.drop_index("ix_wallet_topup_requests_tenant_id")

    op.drop_table("wallet_topup_requests")
