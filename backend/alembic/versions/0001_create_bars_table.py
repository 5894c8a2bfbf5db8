"""Create bars table

Revision ID: 0001_create_bars
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_create_bars"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "bars",
        sa.Column("symbol", sa.String(length=50), nullable=False),
        sa.Column("trading_day", sa.Date(), nullable=False),
        sa.Column(
            "timestamp",
            sa.TIMESTAMP(timezone=False),
            nullable=False,
            server_default=sa.text("'1970-01-01 00:00:00'"),
        ),
        sa.Column("granularity", sa.String(length=10), nullable=False, server_default="daily"),
        sa.Column("open", sa.Numeric(precision=18, scale=8), nullable=False),
        sa.Column("high", sa.Numeric(precision=18, scale=8), nullable=False),
        sa.Column("low", sa.Numeric(precision=18, scale=8), nullable=False),
        sa.Column("close", sa.Numeric(precision=18, scale=8), nullable=False),
        sa.Column("adjusted_close", sa.Numeric(precision=18, scale=8), nullable=False),
        sa.Column("volume", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("symbol", "trading_day", "timestamp"),
    )
    op.create_index(
        "ix_bars_symbol_granularity_day",
        "bars",
        ["symbol", "granularity", "trading_day"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_bars_symbol_granularity_day", table_name="bars")
    op.drop_table("bars")
