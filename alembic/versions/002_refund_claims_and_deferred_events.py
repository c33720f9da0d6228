"""Add refund claims on orders and deferred payment events.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add refund claim and deferred event columns."""
    op.add_column(
        "orders",
        sa.Column("refund_requested_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.add_column(
        "payment_events",
        sa.Column("transaction_id", sa.String(255), nullable=True),
    )
    op.add_column(
        "payment_events",
        sa.Column("payload", postgresql.JSONB, nullable=True),
    )
    op.create_index(
        "ix_payment_events_transaction_id", "payment_events", ["transaction_id"]
    )


def downgrade() -> None:
    """Drop refund claim and deferred event columns."""
    op.drop_index("ix_payment_events_transaction_id", table_name="payment_events")
    op.drop_column("payment_events", "payload")
    op.drop_column("payment_events", "transaction_id")
    op.drop_column("orders", "refund_requested_at")
