from datetime import datetime
from sqlalchemy import TIMESTAMP, BigInteger, Column, Date, Index, Numeric, String
from marketsim.core.config import settings
from marketsim.core.database import Base
from marketsim.models.base import TimestampMixin

# Daily rows carry this timestamp so the time dimension can sit in the primary key.
DAILY_TIMESTAMP_SENTINEL = datetime(1970, 1, 1, 0, 0, 0)


class PriceBar(Base, TimestampMixin):
    """
    Daily and hourly OHLCV bars.
    Primary key includes the partitioning column so the table can become a hypertable.
    """
    __tablename__ = settings.BARS_TABLE
    __table_args__ = (
        Index("ix_bars_symbol_granularity_day", "symbol", "granularity", "trading_day"),
    )

    symbol = Column(String(50), primary_key=True)
    trading_day = Column(Date, primary_key=True)
    timestamp = Column(TIMESTAMP(timezone=False), primary_key=True, default=DAILY_TIMESTAMP_SENTINEL)
    granularity = Column(String(10), nullable=False, default="daily")  # 'daily' | 'hourly'
    open = Column(Numeric(18, 8), nullable=False)
    high = Column(Numeric(18, 8), nullable=False)
    low = Column(Numeric(18, 8), nullable=False)
    close = Column(Numeric(18, 8), nullable=False)
    adjusted_close = Column(Numeric(18, 8), nullable=False)
    volume = Column(BigInteger, nullable=False, default=0)
