# Engine and session factories for the local cache store
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all cache tables."""
    pass


def create_cache_engine(database_url: Optional[str], echo: bool = False) -> Optional[Engine]:
    """
    Build an engine for the cache database.
    Returns None when no URL is configured, which callers treat as
    "persistence unavailable".
    """
    if not database_url:
        logger.info("No cache database configured; running without local persistence")
        return None

    kwargs = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # a single shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
