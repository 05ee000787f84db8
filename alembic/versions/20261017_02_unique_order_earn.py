"""Allow at most one EARN ledger row per order.

Revision ID: 20261017_02
Revises: 20261001_01
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261017_02"
down_revision: Union[str, None] = "20261001_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_index(
        "uq_loyalty_transactions_order_earn",
        "loyalty_transactions",
        ["reference_id"],
        unique=True,
        postgresql_where=sa.text("type = 'EARN'"),
    )


def downgrade() -> None:
    op.drop_index("uq_loyalty_transactions_order_earn", table_name="loyalty_transactions")
