import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from mf_data.core.config import Settings
from mf_data.core.exceptions import (
    ProviderError,
    ProviderNotFoundError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from mf_data.models.portfolio import FundPreview, NavHistory
from mf_data.services.response_cache import ResponseCache
from mf_data.utils.dates import DateLike, parse_nav_date, try_parse_nav_date

logger = logging.getLogger(__name__)

MAX_LIMIT = 100
MAX_COMPARE = 3
USER_AGENT = "india-mf-data/1.0"


def clamp_limit(limit: int) -> int:
    return min(max(limit, 1), MAX_LIMIT)


def normalize_fund(item: Dict[str, Any]) -> FundPreview:
    return FundPreview(
        scheme_code=str(item.get("schemeCode")),
        scheme_name=item.get("schemeName") or "",
        fund_house=item.get("fund_house") or item.get("fundHouse"),
        scheme_type=item.get("schemeType"),
        scheme_category=item.get("schemeCategory"),
    )


class MfApiClient:
    """
    Async client for MFapi.in.

    Every request is bounded by ``timeout_seconds`` and retried at most
    ``max_attempts - 1`` times on transport errors, timeouts and 5xx.
    Shaping of the payload is kept minimal; callers get provider JSON
    or light pydantic wrappers around it.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        max_attempts: int = 2,
        retry_wait_seconds: float = 0.5,
        response_cache: Optional[ResponseCache] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_wait_seconds = retry_wait_seconds
        self.response_cache = response_cache

    @classmethod
    def from_settings(cls, settings: Settings, response_cache: Optional[ResponseCache] = None) -> "MfApiClient":
        return cls(
            base_url=settings.MFAPI_BASE_URL,
            timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
            max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
            retry_wait_seconds=settings.PROVIDER_RETRY_WAIT_SECONDS,
            response_cache=response_cache,
        )

    async def _fetch(self, url: str) -> Any:
        """One HTTP round trip, no retries."""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": USER_AGENT}) as session:
                async with session.get(url) as response:
                    if response.status == 404:
                        raise ProviderNotFoundError(f"MFapi returned 404 for {url}", status=404)
                    if response.status >= 500:
                        raise ProviderUnavailableError(
                            f"MFapi request failed with status {response.status}", status=response.status
                        )
                    if response.status != 200:
                        raise ProviderError(f"MFapi request failed with status {response.status}", status=response.status)
                    return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"MFapi did not respond within {self.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            raise ProviderUnavailableError(f"MFapi request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"MFapi returned a body that is not JSON: {e}") from e

    async def _get_json(self, url: str) -> Any:
        if self.response_cache:
            cached = self.response_cache.get(url)
            if cached is not None:
                return cached

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_wait_seconds),
            retry=retry_if_exception_type(ProviderUnavailableError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"⚠️ Retrying MFapi request {url} (attempt {attempt.retry_state.attempt_number})")
                data = await self._fetch(url)

        if self.response_cache:
            self.response_cache.set(url, data)
        return data

    async def _fetch_all_funds(self) -> List[Dict[str, Any]]:
        data = await self._get_json(self.base_url)
        if not isinstance(data, list):
            raise ProviderError("Unexpected fund list payload from MFapi")
        return data

    async def fetch_funds(self, limit: int = 10) -> List[FundPreview]:
        raw = await self._fetch_all_funds()
        return [normalize_fund(item) for item in raw[:clamp_limit(limit)]]

    async def search_funds(self, query: str, limit: int = 20) -> List[FundPreview]:
        normalized = (query or "").strip().lower()
        if not normalized:
            return await self.fetch_funds(limit)

        raw = await self._fetch_all_funds()
        matches = [
            item for item in raw
            if normalized in f"{item.get('schemeName', '')} {item.get('schemeCode', '')} {item.get('fund_house') or ''}".lower()
        ]
        return [normalize_fund(item) for item in matches[:clamp_limit(limit)]]

    async def fetch_fund_details(self, scheme_code: str) -> NavHistory:
        data = await self._get_json(f"{self.base_url}/{scheme_code}")
        if not isinstance(data, dict) or not data.get("meta"):
            raise ProviderNotFoundError(f"No fund found for scheme code {scheme_code}")
        return NavHistory.model_validate(data)

    async def fetch_historical_nav(
        self,
        scheme_code: str,
        start_date: Optional[DateLike] = None,
        end_date: Optional[DateLike] = None,
    ) -> NavHistory:
        """Full history from the provider, trimmed to the inclusive date range.

        Bounds are validated before any request; an unparseable one raises
        InvalidNavDateError.
        """
        start: Optional[date] = parse_nav_date(start_date) if start_date is not None else None
        end: Optional[date] = parse_nav_date(end_date) if end_date is not None else None
        history = await self.fetch_fund_details(scheme_code)
        if start is None and end is None:
            return history

        rows = []
        for row in history.data:
            row_date = try_parse_nav_date(row.get("date"))
            if row_date is None:
                continue
            if (start and row_date < start) or (end and row_date > end):
                continue
            rows.append(row)
        return history.model_copy(update={"data": rows})

    async def fetch_many(self, scheme_codes: List[str]) -> List[NavHistory]:
        if not 1 <= len(scheme_codes) <= MAX_COMPARE:
            raise ValueError(f"Select between 1 and {MAX_COMPARE} funds to compare")
        return list(await asyncio.gather(*(self.fetch_fund_details(code) for code in scheme_codes)))
