from datetime import date

import pytest

from mf_data.core.exceptions import InvalidNavDateError
from mf_data.models.mutual_fund import CacheMetaRecord, NavHistoryRecord
from mf_data.models.portfolio import (
    FundPreview,
    FundsSnapshot,
    FundsSnapshotMeta,
    NavPoint,
    PortfolioHolding,
    PortfolioHoldingInput,
    WatchlistItemInput,
)
from mf_data.services.cache_store import CacheMetaKey, LocalCacheStore, summarize_holdings


def make_snapshot(*names):
    return FundsSnapshot(
        funds=[FundPreview(scheme_code=str(100 + i), scheme_name=name) for i, name in enumerate(names)],
        meta=FundsSnapshotMeta(source="MFapi.in", disclaimer="risk", fetched_at="2024-06-01T00:00:00+00:00"),
    )


def test_funds_snapshot_round_trip(store):
    assert store.store_funds_snapshot(make_snapshot("Zeta Fund", "Alpha Fund", "Mid Fund")) == 3

    snapshot = store.read_funds_snapshot()
    assert [f.scheme_name for f in snapshot.funds] == ["Alpha Fund", "Mid Fund", "Zeta Fund"]
    assert snapshot.meta.source == "MFapi.in"

    limited = store.read_funds_snapshot(limit=2)
    assert [f.scheme_name for f in limited.funds] == ["Alpha Fund", "Mid Fund"]


def test_funds_snapshot_replaces_previous(store):
    store.store_funds_snapshot(make_snapshot("Old A", "Old B"))
    store.store_funds_snapshot(make_snapshot("New"))
    assert [f.scheme_name for f in store.read_funds_snapshot().funds] == ["New"]


def test_empty_snapshot_is_not_written(store):
    store.store_funds_snapshot(make_snapshot("Kept"))
    assert store.store_funds_snapshot(FundsSnapshot()) == 0
    assert len(store.read_funds_snapshot().funds) == 1


def test_malformed_meta_reads_as_none(store):
    store.store_funds_snapshot(make_snapshot("A"))
    with store._session() as session, session.begin():
        session.merge(CacheMetaRecord(key=CacheMetaKey.FUNDS.value, value={"fetchedAt": ["not", "a", "string"]}))

    snapshot = store.read_funds_snapshot()
    assert snapshot.meta is None
    assert len(snapshot.funds) == 1


def test_meta_type_is_checked(store):
    with pytest.raises(TypeError):
        with store._session() as session, session.begin():
            store._write_meta(session, CacheMetaKey.FUNDS, FundPreview(scheme_code="1", scheme_name="x"))


def test_nav_history_upsert_is_idempotent(store):
    store.store_nav_history("120503", [NavPoint(date=date(2024, 1, 1), nav=10.0)])
    store.store_nav_history("120503", [NavPoint(date=date(2024, 1, 1), nav=11.0)])

    rows = store.read_nav_history("120503")
    assert len(rows) == 1
    assert rows[0].nav_value == 11.0
    assert rows[0].nav_date == "2024-01-01"


def test_nav_history_accepts_provider_rows(store):
    written = store.store_nav_history("1", [
        {"date": "03-01-2024", "nav": "12.5"},
        {"date": "02-01-2024", "nav": "12.0"},
        {"date": "bad", "nav": "1"},
        {"date": "04-01-2024", "nav": "N.A."},
        {"date": "02-01-2024", "nav": "12.25"},
    ])
    assert written == 2

    rows = store.read_nav_history("1")
    assert [(r.nav_date, r.nav_value) for r in rows] == [("2024-01-02", 12.25), ("2024-01-03", 12.5)]


def test_nav_history_range_is_inclusive(store):
    store.store_nav_history("1", [NavPoint(date=date(2024, 1, d), nav=float(d)) for d in range(1, 6)])

    rows = store.read_nav_history("1", start_date=date(2024, 1, 2), end_date="04-01-2024")
    assert [r.nav_value for r in rows] == [2.0, 3.0, 4.0]
    assert rows[0].to_point() == NavPoint(date=date(2024, 1, 2), nav=2.0)
    assert store.read_nav_history("other") == []


def test_portfolio_upsert_keeps_identity(store):
    first_id = store.upsert_portfolio_holding(
        PortfolioHoldingInput(scheme_code="1", scheme_name="Fund", units=10, avg_nav=50)
    )
    created_at = store.list_portfolio_holdings()[0].created_at

    second_id = store.upsert_portfolio_holding(
        PortfolioHoldingInput(scheme_code="1", scheme_name="Fund", units=20, avg_nav=55, notes="topped up")
    )
    holdings = store.list_portfolio_holdings()

    assert first_id == second_id
    assert len(holdings) == 1
    assert holdings[0].units == 20
    assert holdings[0].notes == "topped up"
    assert holdings[0].created_at == created_at


def test_delete_portfolio_holding(store):
    store.upsert_portfolio_holding(PortfolioHoldingInput(scheme_code="1", scheme_name="Fund", units=1, avg_nav=1))
    assert store.delete_portfolio_holding("1") == 1
    assert store.delete_portfolio_holding("1") == 0
    assert store.list_portfolio_holdings() == []


def test_summarize_holdings():
    empty = summarize_holdings([])
    assert (empty.total_holdings, empty.total_units, empty.total_invested, empty.average_cost) == (0, 0, 0, 0)

    summary = summarize_holdings([
        PortfolioHolding(scheme_code="1", scheme_name="A", units=10, avg_nav=10),
        PortfolioHolding(scheme_code="2", scheme_name="B", units=30, avg_nav=20),
    ])
    assert summary.total_holdings == 2
    assert summary.total_units == 40
    assert summary.total_invested == 700
    assert summary.average_cost == pytest.approx(17.5)


def test_summarize_zero_units_does_not_divide():
    summary = summarize_holdings([PortfolioHolding(scheme_code="1", scheme_name="A", units=0, avg_nav=10)])
    assert summary.average_cost == 0


def test_watchlist(store):
    store.add_to_watchlist(WatchlistItemInput(scheme_code="1", scheme_name="A"))
    store.add_to_watchlist(WatchlistItemInput(scheme_code="2", scheme_name="B"))
    # adding again keeps a single entry
    store.add_to_watchlist(WatchlistItemInput(scheme_code="1", scheme_name="A again"))

    items = store.list_watchlist()
    assert [i.scheme_code for i in items] == ["2", "1"]
    assert items[1].scheme_name == "A"
    assert store.is_in_watchlist("1")

    assert store.remove_from_watchlist("1") == 1
    assert not store.is_in_watchlist("1")
    assert store.clear_watchlist() == 1
    assert store.list_watchlist() == []


def test_unavailable_store_never_raises(unavailable_store):
    assert not unavailable_store.available
    assert not unavailable_store.ping()
    assert unavailable_store.store_funds_snapshot(make_snapshot("A")) == 0
    assert unavailable_store.read_funds_snapshot().funds == []
    assert unavailable_store.store_nav_history("1", [NavPoint(date=date(2024, 1, 1), nav=1)]) == 0
    assert unavailable_store.read_nav_history("1") == []
    assert unavailable_store.upsert_portfolio_holding(
        PortfolioHoldingInput(scheme_code="1", scheme_name="A", units=1, avg_nav=1)
    ) is None
    assert unavailable_store.list_watchlist() == []
    assert not unavailable_store.is_in_watchlist("1")


def test_from_url_without_database():
    assert not LocalCacheStore.from_url("").available


def test_ping(store):
    assert store.ping()


def test_failed_snapshot_write_keeps_previous_snapshot(store, monkeypatch):
    old = make_snapshot("Old")
    old.meta.fetched_at = "2024-05-01T00:00:00+00:00"
    store.store_funds_snapshot(old)

    def broken_meta(session, key, value):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "_write_meta", broken_meta)
    with pytest.raises(RuntimeError):
        store.store_funds_snapshot(make_snapshot("New A", "New B"))

    snapshot = store.read_funds_snapshot()
    assert [f.scheme_name for f in snapshot.funds] == ["Old"]
    assert snapshot.meta == old.meta


def test_stored_rows_with_bad_dates_are_skipped(store):
    store.store_nav_history("1", [NavPoint(date=date(2024, 1, 1), nav=10.0)])
    with store._session() as session, session.begin():
        session.add(NavHistoryRecord(scheme_code="1", nav_date="not-a-date", nav_value=99.0))

    assert [r.nav_date for r in store.read_nav_history("1")] == ["2024-01-01"]
    assert [r.nav_date for r in store.read_nav_history("1", start_date="2023-01-01")] == ["2024-01-01"]
    assert [r.nav_date for r in store.read_nav_history("1", end_date=date(2024, 12, 31))] == ["2024-01-01"]


@pytest.mark.parametrize("bounds", [{"start_date": "2024-13-01"}, {"end_date": "tomorrow"}])
def test_unparseable_bound_is_rejected(store, bounds):
    store.store_nav_history("1", [NavPoint(date=date(2024, 1, 1), nav=10.0)])
    with pytest.raises(InvalidNavDateError):
        store.read_nav_history("1", **bounds)


def test_nav_dates_are_stored_in_iso_form(store):
    store.store_nav_history("1", [
        {"date": "05-Jan-2024", "nav": "10"},
        {"date": "2024-01-06T15:30:00", "nav": "11"},
    ])
    assert [r.nav_date for r in store.read_nav_history("1")] == ["2024-01-05", "2024-01-06"]
