import logging
from datetime import date
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from mf_data.core.config import Settings
from mf_data.core.exceptions import InvalidNavDateError, ProviderError, ProviderNotFoundError
from mf_data.models.portfolio import (
    CompareRequest,
    FundChartSeries,
    FundsSnapshot,
    FundsSnapshotMeta,
)
from mf_data.services.cache_store import LocalCacheStore
from mf_data.services.chart_data import compare_funds, create_chart_dataset, filter_by_date_range, get_date_range_preset
from mf_data.services.fetch_orchestrator import provider_rows_to_points
from mf_data.services.mfapi_client import MfApiClient, clamp_limit
from mf_data.services.performance_stats import calculate_performance_metrics, calculate_period_returns
from mf_data.utils.dates import parse_nav_date
from mf_data.utils.utils import envelope, get_app_settings, get_client, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


def _parse_range(start: Optional[str], end: Optional[str]) -> Tuple[Optional[date], Optional[date]]:
    try:
        start_date = parse_nav_date(start) if start else None
        end_date = parse_nav_date(end) if end else None
    except InvalidNavDateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start must not be after end")
    return start_date, end_date


def _dump(models) -> list:
    return [m.model_dump(by_alias=True, mode="json") for m in models]


@router.get("")
async def list_funds(
    limit: int = Query(10, description="Number of funds to return (1-100)"),
    q: str = Query("", description="Search by scheme name, code or fund house"),
    client: MfApiClient = Depends(get_client),
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    query = q.strip()
    try:
        funds = await client.search_funds(query, limit) if query else await client.fetch_funds(limit)
    except ProviderError as e:
        logger.warning(f"⚠️ Fund list unavailable from provider, trying cache: {e}")
        snapshot = store.read_funds_snapshot()
        cached = snapshot.funds
        if query:
            needle = query.lower()
            cached = [
                f for f in cached
                if needle in f"{f.scheme_name} {f.scheme_code} {f.fund_house or ''}".lower()
            ]
        cached = cached[:clamp_limit(limit)]
        if not cached:
            raise HTTPException(status_code=502, detail=f"Unable to fetch funds: {e}")
        return envelope(
            settings,
            count=len(cached),
            funds=_dump(cached),
            stale=True,
            cachedFetchedAt=snapshot.meta.fetched_at if snapshot.meta else None,
            error=str(e),
        )

    response = envelope(settings, count=len(funds), funds=_dump(funds), stale=False)
    if not query:
        try:
            store.store_funds_snapshot(FundsSnapshot(
                funds=funds,
                meta=FundsSnapshotMeta(
                    disclaimer=response["disclaimer"],
                    source=response["source"],
                    fetched_at=response["fetchedAt"],
                ),
            ))
        except SQLAlchemyError as e:
            logger.error(f"❌ Could not cache funds snapshot: {e}")
    return response


@router.post("/compare")
async def compare(
    payload: CompareRequest,
    client: MfApiClient = Depends(get_client),
    settings: Settings = Depends(get_app_settings),
):
    try:
        histories = await client.fetch_many(payload.scheme_codes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderError as e:
        logger.error(f"❌ Comparison fetch failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to compare funds: {e}")

    window = get_date_range_preset(payload.preset) if payload.preset else None
    series = []
    for code, history in zip(payload.scheme_codes, histories):
        points = provider_rows_to_points(history.data)
        if window:
            points = filter_by_date_range(points, window["start_date"], window["end_date"])
        series.append(FundChartSeries(
            scheme_code=code,
            scheme_name=str(history.meta.get("scheme_name", code)),
            nav_history=points,
        ))

    return envelope(
        settings,
        count=len(series),
        funds=[h.model_dump(by_alias=True, mode="json") for h in histories],
        chart=create_chart_dataset(series, payload.view_mode),
        ranking=_dump(compare_funds(series)),
        viewMode=payload.view_mode.value,
    )


@router.get("/{scheme_code}")
async def fund_details(
    scheme_code: str,
    client: MfApiClient = Depends(get_client),
    settings: Settings = Depends(get_app_settings),
):
    try:
        history = await client.fetch_fund_details(scheme_code)
    except ProviderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderError as e:
        logger.warning(f"⚠️ Fund details unavailable for {scheme_code}: {e}")
        raise HTTPException(status_code=502, detail=f"Fund details unavailable: {e}")

    return envelope(
        settings,
        fund={"meta": history.meta, "latestNav": history.data[0] if history.data else None},
    )


async def _load_points(
    scheme_code: str,
    start: Optional[date],
    end: Optional[date],
    client: MfApiClient,
    store: LocalCacheStore,
):
    """
    Fresh points from the provider, or cached rows when it fails. Returns (meta, points, error).

    A request needs one answer, so this is a single fetch-or-fallback rather
    than a ResourceLoader, whose background refresh suits long-lived consumers.
    """
    try:
        history = await client.fetch_historical_nav(scheme_code, start, end)
    except ProviderError as e:
        logger.warning(f"⚠️ NAV history unavailable for {scheme_code}, trying cache: {e}")
        cached = store.read_nav_history(scheme_code, start, end)
        return None, [row.to_point() for row in cached], e

    points = provider_rows_to_points(history.data)
    try:
        store.store_nav_history(scheme_code, points)
    except SQLAlchemyError as e:
        logger.error(f"❌ Could not cache NAV history for {scheme_code}: {e}")
    return history, points, None


@router.get("/{scheme_code}/nav")
async def nav_history(
    scheme_code: str,
    start: Optional[str] = Query(None, description="Inclusive start date"),
    end: Optional[str] = Query(None, description="Inclusive end date"),
    client: MfApiClient = Depends(get_client),
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    start_date, end_date = _parse_range(start, end)
    history, points, error = await _load_points(scheme_code, start_date, end_date, client, store)

    if history is not None:
        return envelope(settings, navHistory=history.model_dump(by_alias=True, mode="json"), stale=False)

    if not points:
        status = 404 if isinstance(error, ProviderNotFoundError) else 502
        raise HTTPException(status_code=status, detail=f"NAV history not found: {error}")

    return envelope(
        settings,
        navHistory={
            "meta": {"scheme_code": scheme_code},
            "data": [{"date": p.date.isoformat(), "nav": p.nav} for p in points],
            "status": "CACHED",
        },
        stale=True,
        error=str(error),
    )


@router.get("/{scheme_code}/metrics")
async def nav_metrics(
    scheme_code: str,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    client: MfApiClient = Depends(get_client),
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    start_date, end_date = _parse_range(start, end)
    history, points, error = await _load_points(scheme_code, start_date, end_date, client, store)
    if history is None and not points:
        status = 404 if isinstance(error, ProviderNotFoundError) else 502
        raise HTTPException(status_code=status, detail=f"NAV history not found: {error}")

    metrics = calculate_performance_metrics(points)
    return envelope(
        settings,
        schemeCode=scheme_code,
        metrics=metrics.model_dump(by_alias=True, mode="json") if metrics else None,
        insufficientData=metrics is None,
        periodReturns=_dump(calculate_period_returns(points)),
        stale=history is None,
    )
