# watchlist.py

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from mf_data.core.config import Settings
from mf_data.models.portfolio import WatchlistItemInput
from mf_data.services.cache_store import LocalCacheStore
from mf_data.utils.utils import envelope, get_app_settings, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
def list_watchlist(
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    items = store.list_watchlist()
    return envelope(
        settings,
        count=len(items),
        items=[item.model_dump(by_alias=True, mode="json") for item in items],
    )


@router.post("")
def add_to_watchlist(
    payload: WatchlistItemInput,
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    if not store.available:
        raise HTTPException(status_code=503, detail="Local storage is not configured")
    try:
        item_id = store.add_to_watchlist(payload)
    except SQLAlchemyError as e:
        logger.error(f"❌ Failed to add {payload.scheme_code} to watchlist: {e}")
        raise HTTPException(status_code=500, detail=f"❌ Failed to update watchlist: {e}")
    return envelope(settings, id=item_id, schemeCode=payload.scheme_code)


@router.delete("")
def clear_watchlist(
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    removed = store.clear_watchlist()
    logger.info(f"Cleared watchlist ({removed} entries)")
    return envelope(settings, removed=removed)


@router.get("/{scheme_code}")
def watchlist_status(
    scheme_code: str,
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    return envelope(settings, schemeCode=scheme_code, inWatchlist=store.is_in_watchlist(scheme_code))


@router.delete("/{scheme_code}")
def remove_from_watchlist(
    scheme_code: str,
    store: LocalCacheStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    if not store.remove_from_watchlist(scheme_code):
        raise HTTPException(status_code=404, detail=f"{scheme_code} is not in the watchlist")
    return envelope(settings, schemeCode=scheme_code, removed=True)
