from sqlalchemy import Column, String, Float, DateTime, Integer, JSON, UniqueConstraint
from mf_data.database import Base
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FundRecord(Base):
    """Latest fund list snapshot. Replaced wholesale on every refresh."""
    __tablename__ = "funds"

    scheme_code = Column(String, primary_key=True)
    scheme_name = Column(String, nullable=False, index=True)

    # Fund metadata
    fund_house = Column(String, nullable=True)         # e.g., Axis Mutual Fund
    scheme_category = Column(String, nullable=True)    # e.g., Equity Scheme - Large Cap Fund
    scheme_type = Column(String, nullable=True)        # e.g., Open Ended Schemes

    cached_at = Column(DateTime(timezone=True), default=utcnow)


class NavHistoryRecord(Base):
    __tablename__ = "nav_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scheme_code = Column(String, nullable=False, index=True)
    nav_date = Column(String, nullable=False)          # YYYY-MM-DD
    nav_value = Column(Float, nullable=False)
    cached_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("scheme_code", "nav_date", name="uq_nav_history_scheme_date"),
    )


class CacheMetaRecord(Base):
    __tablename__ = "cache_meta"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow)


class PortfolioHoldingRecord(Base):
    __tablename__ = "portfolio_holdings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scheme_code = Column(String, nullable=False, unique=True)
    scheme_name = Column(String, nullable=False, index=True)
    fund_house = Column(String, nullable=True)
    units = Column(Float, nullable=False)
    avg_nav = Column(Float, nullable=False)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)


class WatchlistRecord(Base):
    __tablename__ = "watchlist"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scheme_code = Column(String, nullable=False, unique=True)
    scheme_name = Column(String, nullable=False)
    fund_house = Column(String, nullable=True)
    scheme_category = Column(String, nullable=True)
    added_at = Column(DateTime(timezone=True), default=utcnow, index=True)
