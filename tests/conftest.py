import pytest

from mf_data.database import create_cache_engine
from mf_data.services.cache_store import LocalCacheStore


@pytest.fixture
def store() -> LocalCacheStore:
    return LocalCacheStore(create_cache_engine("sqlite://"))


@pytest.fixture
def unavailable_store() -> LocalCacheStore:
    return LocalCacheStore(None)
