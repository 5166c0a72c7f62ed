"""ledger schema with settlement tracking

Revision ID: 3f9a1c7d2e10
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "3f9a1c7d2e10"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade():
    op.create_table(
        "expense_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100)),
        sa.Column("email", sa.String(120), unique=True),
        sa.Column("upi_id", sa.String(100), nullable=True),
    )
    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("expense_users.id")),
    )
    op.create_table(
        "group_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id")),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("expense_users.id")),
    )
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id")),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("description", sa.String(255)),
        sa.Column("category", sa.String(20), nullable=False, server_default="expense"),
        sa.Column("date", sa.DateTime(timezone=True)),
        sa.Column("paid_by", sa.Integer(), sa.ForeignKey("expense_users.id")),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("expense_users.id"), nullable=True),
        sa.Column("last_edited_by", sa.Integer(), sa.ForeignKey("expense_users.id"), nullable=True),
        sa.Column("last_edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "expense_splits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("expense_id", sa.Integer(), sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("expense_users.id"), nullable=False),
        sa.Column("owe_amount", MONEY, nullable=False),
    )
    op.create_table(
        "settlement_details",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("expense_id", sa.Integer(), sa.ForeignKey("expenses.id", ondelete="CASCADE"),
                  nullable=False, unique=True),
        sa.Column("payment_method", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("settlement_status", sa.String(30), nullable=False),
        sa.Column("utr_reference", sa.String(16), nullable=True),
        sa.Column("initiated_by", sa.Integer(), sa.ForeignKey("expense_users.id")),
        sa.Column("confirmed_by", sa.Integer(), sa.ForeignKey("expense_users.id"), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )


def downgrade():
    op.drop_table("settlement_details")
    op.drop_table("expense_splits")
    op.drop_table("expenses")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("expense_users")
