"""Add invoice_type and quote_id to invoices for proforma invoices

Revision ID: hl002
Revises: hl001
Create Date: 2026-10-17 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "hl002"
down_revision = "hl001"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("invoices", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("invoice_type", sa.String(length=16), nullable=False, server_default="TAX_INVOICE")
        )
        batch_op.add_column(sa.Column("quote_id", sa.Integer(), nullable=True))
        batch_op.alter_column("order_id", existing_type=sa.Integer(), nullable=True)
        batch_op.create_foreign_key("fk_invoices_quote", "quotes", ["quote_id"], ["id"])
        batch_op.create_unique_constraint("uq_invoices_quote", ["quote_id"])
        batch_op.create_index("ix_invoices_type_issued", ["invoice_type", "issued_at"], unique=False)


def downgrade():
    with op.batch_alter_table("invoices", schema=None) as batch_op:
        batch_op.drop_index("ix_invoices_type_issued")
        batch_op.drop_constraint("uq_invoices_quote", type_="unique")
        batch_op.drop_constraint("fk_invoices_quote", type_="foreignkey")
        batch_op.alter_column("order_id", existing_type=sa.Integer(), nullable=False)
        batch_op.drop_column("quote_id")
        batch_op.drop_column("invoice_type")
