"""Stock lots, price catalog, invoices, payment history, reconciliation alerts.

Revision ID: 0001
Revises:
Create Date: 2026-10-17
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Stock lots (rows owned by the stock registry) ────────
    op.create_table(
        "stock_lots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("stock_number", sa.String(50), nullable=False),
        sa.Column("producer_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("original_quantity", sa.Float()),
        sa.Column("quality", sa.String(1), nullable=False),
        sa.Column("price_per_ton", sa.Integer(), server_default="0"),
        sa.Column("total_cost", sa.Integer(), server_default="0"),
        sa.Column("amount_paid", sa.Integer(), server_default="0"),
        sa.Column("payment_status", sa.String(20), server_default="pending"),
        sa.Column("is_combined", sa.Boolean(), server_default="false"),
        sa.Column("combined_into_stock", sa.String(36)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_stock_lots_stock_number", "stock_lots", ["stock_number"], unique=True)
    op.create_index("ix_stock_lots_producer_id", "stock_lots", ["producer_id"])
    op.create_index("ix_stock_lots_payment_status", "stock_lots", ["payment_status"])

    # ── Price catalog ────────────────────────────────────────
    op.create_table(
        "price_catalog_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("base_price", sa.Float(), nullable=False),
        sa.Column("quality_premiums", sa.JSON()),
        sa.Column("certifications", sa.JSON()),
        sa.Column("effective_date", sa.Date()),
        sa.Column("status", sa.String(20), server_default="inactive"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_price_catalog_entries_status", "price_catalog_entries", ["status"])

    op.create_table(
        "price_catalog_register",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "active_entry_id", sa.String(36),
            sa.ForeignKey("price_catalog_entries.id"),
        ),
        sa.Column("activated_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Invoices ─────────────────────────────────────────────
    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("stock_id", sa.String(36), sa.ForeignKey("stock_lots.id"), nullable=False),
        sa.Column("stock_number", sa.String(50)),
        sa.Column("producer_id", sa.String(36), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        # Frozen terms
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("quality", sa.String(1), nullable=False),
        sa.Column("base_price", sa.Float(), nullable=False),
        sa.Column("quality_premium", sa.Float(), server_default="0"),
        sa.Column("certification_premiums", sa.Float(), server_default="0"),
        sa.Column("price_per_ton", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("price_catalog_entry_id", sa.String(36)),
        # Payment
        sa.Column("amount_paid", sa.Integer(), server_default="0"),
        sa.Column("payment_status", sa.String(20), server_default="pending"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix_invoices_stock_id", "invoices", ["stock_id"], unique=True)
    op.create_index("ix_invoices_producer_id", "invoices", ["producer_id"])
    op.create_index("ix_invoices_payment_status", "invoices", ["payment_status"])

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(30), nullable=False),
        sa.Column("reference", sa.String(100)),
        sa.Column("notes", sa.Text()),
        sa.Column("recorded_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("invoice_id", "sequence", name="uq_invoice_payments_sequence"),
    )
    op.create_index("ix_invoice_payments_invoice_id", "invoice_payments", ["invoice_id"])

    # ── Reconciliation alerts ────────────────────────────────
    op.create_table(
        "reconciliation_alerts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("expected_value", sa.Float()),
        sa.Column("actual_value", sa.Float()),
        sa.Column("variance", sa.Float()),
        sa.Column("variance_pct", sa.Float()),
        sa.Column("unit", sa.String(20)),
        sa.Column("entity_refs", sa.JSON()),
        sa.Column("status", sa.String(20), server_default="open"),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("resolution_note", sa.Text()),
        sa.Column("run_id", sa.String(36)),
        sa.Column("is_deleted", sa.Boolean(), server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_reconciliation_alerts_alert_type", "reconciliation_alerts", ["alert_type"])
    op.create_index("ix_reconciliation_alerts_severity", "reconciliation_alerts", ["severity"])
    op.create_index("ix_reconciliation_alerts_status", "reconciliation_alerts", ["status"])
    op.create_index("ix_reconciliation_alerts_run_id", "reconciliation_alerts", ["run_id"])


def downgrade() -> None:
    op.drop_table("reconciliation_alerts")
    op.drop_table("invoice_payments")
    op.drop_table("invoices")
    op.drop_table("price_catalog_register")
    op.drop_table("price_catalog_entries")
    op.drop_table("stock_lots")
