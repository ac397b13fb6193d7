"""create credit ledger and usage request tables

Revision ID: 8c1f2a7d4e90
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "8c1f2a7d4e90"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "credit_balances",
        sa.Column("identity_key", sa.String(length=128), primary_key=True),
        sa.Column("free_used_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("free_reset_date", sa.Date(), nullable=False),
        sa.Column("bonus_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("paid_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("free_used_today >= 0", name="ck_balance_free_used"),
        sa.CheckConstraint("bonus_credits >= 0", name="ck_balance_bonus"),
        sa.CheckConstraint("paid_credits >= 0", name="ck_balance_paid"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("identity_key", sa.String(length=128), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(length=255), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_credit_transactions_identity_created",
        "credit_transactions",
        ["identity_key", "created_at"],
    )
    op.create_index(
        "ix_credit_transactions_kind_created",
        "credit_transactions",
        ["kind", "created_at"],
    )

    op.create_table(
        "credit_reservations",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("identity_key", sa.String(length=128), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("bonus_drawn", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("free_drawn", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("paid_drawn", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("free_date", sa.Date(), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False, server_default="held"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_credit_reservations_state_created",
        "credit_reservations",
        ["state", "created_at"],
    )

    op.create_table(
        "credit_receipts",
        sa.Column("reference", sa.String(length=255), primary_key=True),
        sa.Column("identity_key", sa.String(length=128), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "usage_requests",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("identity_key", sa.String(length=128), nullable=False),
        sa.Column("resource", sa.String(length=32), nullable=False),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="reserved"
        ),
        sa.Column("credits_reserved", sa.Integer(), nullable=False),
        sa.Column("requested_count", sa.Integer(), nullable=False),
        sa.Column("prompt_hash", sa.String(length=64), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_usage_requests_status_created",
        "usage_requests",
        ["status", "created_at"],
    )
    op.create_index(
        "ix_usage_requests_identity_created",
        "usage_requests",
        ["identity_key", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_usage_requests_identity_created", table_name="usage_requests")
    op.drop_index("ix_usage_requests_status_created", table_name="usage_requests")
    op.drop_table("usage_requests")
    op.drop_table("credit_receipts")
    op.drop_index(
        "ix_credit_reservations_state_created", table_name="credit_reservations"
    )
    op.drop_table("credit_reservations")
    op.drop_index("ix_credit_transactions_kind_created", table_name="credit_transactions")
    op.drop_index(
        "ix_credit_transactions_identity_created", table_name="credit_transactions"
    )
    op.drop_table("credit_transactions")
    op.drop_table("credit_balances")
