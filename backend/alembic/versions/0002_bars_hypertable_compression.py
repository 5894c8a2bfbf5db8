"""Convert bars to a TimescaleDB hypertable with a compression policy

Revision ID: 0002_bars_hypertable
Revises: 0001_create_bars
Create Date: 2026-10-19 00:00:00.000000

No-op on servers without the timescaledb extension; the table stays flat.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002_bars_hypertable"
down_revision: Union[str, None] = "0001_create_bars"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CHUNK_INTERVAL = "30 days"
COMPRESS_AFTER = "7 days"


def _timescale_available() -> bool:
    bind = op.get_bind()
    if bind.dialect.name != "postgresql":
        return False
    found = bind.execute(
        sa.text("SELECT 1 FROM pg_available_extensions WHERE name = 'timescaledb'")
    ).scalar()
    return found is not None


def upgrade() -> None:
    if not _timescale_available():
        return

    op.execute("CREATE EXTENSION IF NOT EXISTS timescaledb CASCADE")
    op.execute(
        "SELECT create_hypertable('bars', 'trading_day', "
        f"chunk_time_interval => INTERVAL '{CHUNK_INTERVAL}', "
        "migrate_data => true, if_not_exists => true)"
    )
    op.execute(
        "ALTER TABLE bars SET ("
        "timescaledb.compress, "
        "timescaledb.compress_segmentby = 'symbol', "
        "timescaledb.compress_orderby = 'trading_day, timestamp')"
    )
    op.execute(
        f"SELECT add_compression_policy('bars', INTERVAL '{COMPRESS_AFTER}', if_not_exists => true)"
    )


def downgrade() -> None:
    if not _timescale_available():
        return

    # Hypertables cannot be turned back into plain tables; only the policy is reversible.
    op.execute("SELECT remove_compression_policy('bars', if_exists => true)")
