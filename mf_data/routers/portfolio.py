# portfolio.py

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from mf_data.core.config import Settings
from mf_data.models.portfolio import PortfolioHoldingInput, SipInput
from mf_data.services.cache_store import LocalCacheStore, summarize_holdings
from mf_data.services.sip_calculator import calculate_sip_projection, project_sip_schedule
from mf_data.utils.utils import envelope, get_app_settings, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/sip-calculator")
def sip_calculator(payload: SipInput, settings: Settings = Depends(get_app_settings)):
    projection = calculate_sip_projection(payload)
    schedule = project_sip_schedule(payload)
    return envelope(
        settings,
        input=payload.model_dump(by_alias=True),
        projection=projection.model_dump(by_alias=True),
        schedule=[row.model_dump(by_alias=True) for row in schedule],
    )


@router.get("/holdings")
def list_holdings(
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    holdings = store.list_portfolio_holdings()
    return envelope(
        settings,
        count=len(holdings),
        holdings=[h.model_dump(by_alias=True, mode="json") for h in holdings],
    )


@router.put("/holdings")
def upsert_holding(
    payload: PortfolioHoldingInput,
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    if not store.available:
        raise HTTPException(status_code=503, detail="Local storage is not configured")
    try:
        holding_id = store.upsert_portfolio_holding(payload)
    except SQLAlchemyError as e:
        logger.error(f"❌ Failed to save holding {payload.scheme_code}: {e}")
        raise HTTPException(status_code=500, detail=f"❌ Failed to save holding: {e}")

    logger.info(f"✅ Saved holding {payload.scheme_code} (id={holding_id})")
    return envelope(settings, id=holding_id, schemeCode=payload.scheme_code)


@router.delete("/holdings/{scheme_code}")
def delete_holding(
    scheme_code: str,
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    if not store.delete_portfolio_holding(scheme_code):
        raise HTTPException(status_code=404, detail=f"No holding for scheme {scheme_code}")
    return envelope(settings, schemeCode=scheme_code, deleted=True)


@router.get("/summary")
def portfolio_summary(
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    summary = summarize_holdings(store.list_portfolio_holdings())
    return envelope(settings, summary=summary.model_dump(by_alias=True))
