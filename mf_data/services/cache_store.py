# mf_data/services/cache_store.py

import logging
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from mf_data.database import Base, create_cache_engine, create_session_factory
from mf_data.models.mutual_fund import (
    CacheMetaRecord,
    FundRecord,
    NavHistoryRecord,
    PortfolioHoldingRecord,
    WatchlistRecord,
    utcnow,
)
from mf_data.models.portfolio import (
    CachedNavRecord,
    FundPreview,
    FundsSnapshot,
    FundsSnapshotMeta,
    NavPoint,
    PortfolioHolding,
    PortfolioHoldingInput,
    PortfolioSummary,
    WatchlistItem,
    WatchlistItemInput,
)
from mf_data.utils.dates import DateLike, parse_nav_date, to_iso_date, try_parse_nav_date

logger = logging.getLogger(__name__)

RawNavPoint = Union[NavPoint, Dict[str, object]]


class CacheMetaKey(str, Enum):
    FUNDS = "funds"


# Every meta key has exactly one record type
META_MODELS: Dict[CacheMetaKey, Type[BaseModel]] = {
    CacheMetaKey.FUNDS: FundsSnapshotMeta,
}


class LocalCacheStore:
    """
    Durable local store for the fund list snapshot, NAV history rows,
    portfolio holdings, the watchlist and typed metadata.

    Constructed with an engine, or with None when no persistence is
    available. In the latter case reads return empty results and writes
    do nothing; errors from a working database are not swallowed.
    """

    def __init__(self, engine: Optional[Engine]):
        self.engine = engine
        self._session_factory = None
        if engine is not None:
            Base.metadata.create_all(engine)
            self._session_factory = create_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: Optional[str], echo: bool = False) -> "LocalCacheStore":
        try:
            engine = create_cache_engine(database_url, echo=echo)
            return cls(engine)
        except OperationalError as e:
            logger.warning(f"⚠️ Cache database unavailable ({e}); continuing without persistence")
            return cls(None)

    @property
    def available(self) -> bool:
        return self._session_factory is not None

    def _session(self) -> Session:
        return self._session_factory()

    def ping(self) -> bool:
        if not self.available:
            return False
        with self._session() as session:
            session.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Typed metadata
    # ------------------------------------------------------------------

    def _write_meta(self, session: Session, key: CacheMetaKey, value: BaseModel) -> None:
        expected = META_MODELS[key]
        if not isinstance(value, expected):
            raise TypeError(f"Meta '{key.value}' expects {expected.__name__}, got {type(value).__name__}")
        session.merge(CacheMetaRecord(key=key.value, value=value.model_dump(), updated_at=utcnow()))

    def _read_meta(self, session: Session, key: CacheMetaKey) -> Optional[BaseModel]:
        row = session.get(CacheMetaRecord, key.value)
        if row is None or row.value is None:
            return None
        try:
            return META_MODELS[key].model_validate(row.value)
        except ValidationError as e:
            logger.warning(f"⚠️ Ignoring malformed '{key.value}' metadata: {e}")
            return None

    # ------------------------------------------------------------------
    # Funds snapshot
    # ------------------------------------------------------------------

    def store_funds_snapshot(self, snapshot: FundsSnapshot) -> int:
        """Replace the cached fund list and its metadata in one transaction."""
        if not self.available or not snapshot.funds:
            return 0

        now = utcnow()
        # duplicate codes in one payload collapse to the last occurrence
        unique = {fund.scheme_code: fund for fund in snapshot.funds}
        with self._session() as session, session.begin():
            session.execute(delete(FundRecord))
            session.add_all([
                FundRecord(
                    scheme_code=fund.scheme_code,
                    scheme_name=fund.scheme_name,
                    fund_house=fund.fund_house,
                    scheme_category=fund.scheme_category,
                    scheme_type=fund.scheme_type,
                    cached_at=now,
                )
                for fund in unique.values()
            ])
            self._write_meta(session, CacheMetaKey.FUNDS, snapshot.meta or FundsSnapshotMeta())

        logger.info(f"Cached funds snapshot with {len(unique)} funds")
        return len(unique)

    def read_funds_snapshot(self, limit: Optional[int] = None) -> FundsSnapshot:
        if not self.available:
            return FundsSnapshot()

        with self._session() as session:
            query = select(FundRecord).order_by(FundRecord.scheme_name, FundRecord.scheme_code)
            if limit is not None:
                query = query.limit(max(limit, 0))
            rows = session.scalars(query).all()
            meta = self._read_meta(session, CacheMetaKey.FUNDS)

        return FundsSnapshot(
            funds=[FundPreview.model_validate(row) for row in rows],
            meta=meta,
        )

    # ------------------------------------------------------------------
    # NAV history
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_point(point: RawNavPoint):
        if isinstance(point, NavPoint):
            return point.date, point.nav
        nav_date = try_parse_nav_date(point.get("date"))
        try:
            nav_value = float(str(point.get("nav")).replace(",", ""))
        except (TypeError, ValueError):
            nav_value = None
        return nav_date, nav_value

    def store_nav_history(self, scheme_code: str, points: Iterable[RawNavPoint]) -> int:
        """
        Upsert NAV rows keyed by (scheme_code, date).

        Points with an unparseable date or NAV are skipped. Within one
        call the last point for a date wins.
        """
        if not self.available:
            return 0

        batch: Dict[str, float] = {}
        skipped = 0
        for point in points:
            nav_date, nav_value = self._coerce_point(point)
            if nav_date is None or nav_value is None or nav_value < 0:
                skipped += 1
                continue
            batch[to_iso_date(nav_date)] = nav_value

        if skipped:
            logger.warning(f"⚠️ Skipped {skipped} unusable NAV points for scheme {scheme_code}")
        if not batch:
            return 0

        now = utcnow()
        with self._session() as session, session.begin():
            existing = {
                row.nav_date: row
                for row in session.scalars(
                    select(NavHistoryRecord).where(
                        NavHistoryRecord.scheme_code == scheme_code,
                        NavHistoryRecord.nav_date.in_(list(batch)),
                    )
                )
            }
            for nav_date, nav_value in batch.items():
                row = existing.get(nav_date)
                if row:
                    row.nav_value = nav_value
                    row.cached_at = now
                else:
                    session.add(NavHistoryRecord(
                        scheme_code=scheme_code,
                        nav_date=nav_date,
                        nav_value=nav_value,
                        cached_at=now,
                    ))

        logger.debug(f"Cached {len(batch)} NAV rows for scheme {scheme_code}")
        return len(batch)

    def read_nav_history(
        self,
        scheme_code: str,
        start_date: Optional[DateLike] = None,
        end_date: Optional[DateLike] = None,
    ) -> List[CachedNavRecord]:
        """
        Rows for one scheme, ascending by date, inclusive bounds.
        A bound that is given but cannot be parsed raises InvalidNavDateError;
        stored rows with unparseable dates are left out.
        """
        start = parse_nav_date(start_date) if start_date is not None else None
        end = parse_nav_date(end_date) if end_date is not None else None
        if not self.available:
            return []

        with self._session() as session:
            rows = session.scalars(
                select(NavHistoryRecord).where(NavHistoryRecord.scheme_code == scheme_code)
            ).all()

        matched = []
        for row in rows:
            row_date: Optional[date] = try_parse_nav_date(row.nav_date)
            if row_date is None:
                continue
            if start and row_date < start:
                continue
            if end and row_date > end:
                continue
            matched.append((row_date, CachedNavRecord.model_validate(row)))

        matched.sort(key=lambda item: item[0])
        return [record for _, record in matched]

    # ------------------------------------------------------------------
    # Portfolio
    # ------------------------------------------------------------------

    def list_portfolio_holdings(self) -> List[PortfolioHolding]:
        if not self.available:
            return []
        with self._session() as session:
            rows = session.scalars(
                select(PortfolioHoldingRecord).order_by(PortfolioHoldingRecord.scheme_name)
            ).all()
            return [PortfolioHolding.model_validate(row) for row in rows]

    def upsert_portfolio_holding(self, payload: PortfolioHoldingInput) -> Optional[int]:
        """Insert, or overwrite the holding with the same scheme code. Returns the row id."""
        if not self.available:
            return None

        now = utcnow()
        with self._session() as session, session.begin():
            holding = session.scalars(
                select(PortfolioHoldingRecord).where(PortfolioHoldingRecord.scheme_code == payload.scheme_code)
            ).first()

            if holding:
                # Update existing, keeping id and created_at
                holding.scheme_name = payload.scheme_name
                holding.fund_house = payload.fund_house
                holding.units = payload.units
                holding.avg_nav = payload.avg_nav
                holding.notes = payload.notes
                holding.updated_at = now
            else:
                # Insert new
                holding = PortfolioHoldingRecord(**payload.model_dump(), created_at=now, updated_at=now)
                session.add(holding)
            session.flush()
            holding_id = holding.id

        return holding_id

    def delete_portfolio_holding(self, scheme_code: str) -> int:
        if not self.available:
            return 0
        with self._session() as session, session.begin():
            result = session.execute(
                delete(PortfolioHoldingRecord).where(PortfolioHoldingRecord.scheme_code == scheme_code)
            )
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Watchlist
    # ------------------------------------------------------------------

    def list_watchlist(self) -> List[WatchlistItem]:
        if not self.available:
            return []
        with self._session() as session:
            rows = session.scalars(
                select(WatchlistRecord).order_by(WatchlistRecord.added_at.desc(), WatchlistRecord.id.desc())
            ).all()
            return [WatchlistItem.model_validate(row) for row in rows]

    def add_to_watchlist(self, item: WatchlistItemInput) -> Optional[int]:
        """Adding a fund that is already watched keeps the original entry."""
        if not self.available:
            return None
        with self._session() as session, session.begin():
            existing = session.scalars(
                select(WatchlistRecord).where(WatchlistRecord.scheme_code == item.scheme_code)
            ).first()
            if existing:
                return existing.id
            record = WatchlistRecord(**item.model_dump(), added_at=utcnow())
            session.add(record)
            session.flush()
            return record.id

    def remove_from_watchlist(self, scheme_code: str) -> int:
        if not self.available:
            return 0
        with self._session() as session, session.begin():
            result = session.execute(delete(WatchlistRecord).where(WatchlistRecord.scheme_code == scheme_code))
            return result.rowcount or 0

    def is_in_watchlist(self, scheme_code: str) -> bool:
        if not self.available:
            return False
        with self._session() as session:
            return session.scalars(
                select(WatchlistRecord.id).where(WatchlistRecord.scheme_code == scheme_code)
            ).first() is not None

    def clear_watchlist(self) -> int:
        if not self.available:
            return 0
        with self._session() as session, session.begin():
            return session.execute(delete(WatchlistRecord)).rowcount or 0


def summarize_holdings(holdings: List[PortfolioHolding]) -> PortfolioSummary:
    if not holdings:
        return PortfolioSummary()

    total_units = sum(h.units for h in holdings)
    total_invested = sum(h.units * h.avg_nav for h in holdings)
    return PortfolioSummary(
        total_holdings=len(holdings),
        total_units=total_units,
        total_invested=total_invested,
        average_cost=total_invested / total_units if total_units else 0.0,
    )
