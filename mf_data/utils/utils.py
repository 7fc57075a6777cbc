# Shared FastAPI dependencies and response helpers

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Request

from mf_data.core.config import Settings
from mf_data.services.cache_store import LocalCacheStore
from mf_data.services.mfapi_client import MfApiClient


def get_store(request: Request) -> LocalCacheStore:
    return request.app.state.store


def get_client(request: Request) -> MfApiClient:
    return request.app.state.client


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def envelope(settings: Settings, **payload: Any) -> Dict[str, Any]:
    """Wrap a payload with the disclaimer and provenance every response carries."""
    return {
        "success": True,
        **payload,
        "disclaimer": settings.SEBI_DISCLAIMER,
        "source": settings.DATA_SOURCE_NAME,
        "fetchedAt": datetime.now(timezone.utc).isoformat(),
    }
