"""Add the stock_lot_payments journal.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-17
"""

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    op.create_table(
        "stock_lot_payments",
        sa.Column("id", sa.String(36), primary_key=True),
        # Caller-chosen, one row per payment however often it is resubmitted
        sa.Column("payment_id", sa.String(64), nullable=False),
        sa.Column("stock_id", sa.String(36), sa.ForeignKey("stock_lots.id"), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(30), nullable=False),
        sa.Column("reference", sa.String(100)),
        sa.Column("notes", sa.Text()),
        # Invoice side, empty until the payment is recorded there
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id")),
        sa.Column("recorded_on_invoice_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_stock_lot_payments_payment_id", "stock_lot_payments", ["payment_id"], unique=True)
    op.create_index("ix_stock_lot_payments_stock_id", "stock_lot_payments", ["stock_id"])
    op.create_index("ix_stock_lot_payments_invoice_id", "stock_lot_payments", ["invoice_id"])


def downgrade() -> None:
    op.drop_table("stock_lot_payments")
