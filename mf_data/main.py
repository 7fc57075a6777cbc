import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware  # ✅ Import CORS middleware
from sqlalchemy.exc import SQLAlchemyError

from mf_data.core.config import Settings, get_settings
from mf_data.core.logging import configure_logging
from mf_data.routers import funds, portfolio, watchlist
from mf_data.services.cache_store import LocalCacheStore
from mf_data.services.mfapi_client import MfApiClient
from mf_data.services.response_cache import ResponseCache
from mf_data.utils.utils import envelope, get_app_settings, get_store

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[LocalCacheStore] = None,
    client: Optional[MfApiClient] = None,
) -> FastAPI:
    """Build the API. Store and client are created at startup unless passed in."""
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if store is None:
            app.state.store = LocalCacheStore.from_url(settings.CACHE_DATABASE_URL, echo=settings.DEBUG)
        if client is None:
            app.state.client = MfApiClient.from_settings(settings, ResponseCache.from_settings(settings))
        logger.info(f"✅ {settings.APP_NAME} started (cache={'on' if app.state.store.available else 'off'})")
        yield

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.client = client

    # ✅ Enable CORS for the frontend origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root():
        return {
            "message": f"{settings.APP_NAME} is live!",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    @app.get("/api/health")
    def health(
        store: LocalCacheStore = Depends(get_store),
        settings: Settings = Depends(get_app_settings),
    ):
        if not store.available:
            return envelope(settings, status="ok", cache="disabled")
        try:
            store.ping()
        except SQLAlchemyError as e:
            logger.error(f"❌ Cache database health check failed: {e}")
            raise HTTPException(status_code=500, detail=f"❌ Cache database unreachable: {e}")
        return envelope(settings, status="ok", cache="ok")

    # ✅ Register the routers under clean prefixes
    app.include_router(funds.router, prefix="/api/funds", tags=["funds"])
    app.include_router(portfolio.router, prefix="/api/portfolio", tags=["portfolio"])
    app.include_router(watchlist.router, prefix="/api/watchlist", tags=["watchlist"])
    return app


app = create_app()
