# mf_data/services/fetch_orchestrator.py
"""
Stale-while-revalidate loading for fund lists and NAV history.

Each resource moves through an explicit state machine:

    Idle -> Fetching(cached) -> Success(data)
                             -> Failed(error, last_known_good)

Transitions are computed by ``transition`` from events. ``ResourceLoader``
feeds events through an asyncio queue. Each ``load`` call gets a new
generation number; events carrying an older generation are dropped, so
a slow response for a superseded request can never overwrite newer
state.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Generic, Hashable, List, Optional, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError

from mf_data.core.config import SEBI_DISCLAIMER
from mf_data.core.exceptions import ProviderTimeoutError
from mf_data.models.portfolio import FundsSnapshot, FundsSnapshotMeta, NavPoint
from mf_data.services.cache_store import LocalCacheStore
from mf_data.services.mfapi_client import MfApiClient
from mf_data.utils.dates import try_parse_nav_date

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Idle:
    generation: int = 0


@dataclass(frozen=True)
class Fetching(Generic[T]):
    generation: int
    cached: Optional[T] = None


@dataclass(frozen=True)
class Success(Generic[T]):
    generation: int
    data: T


@dataclass(frozen=True)
class Failed(Generic[T]):
    generation: int
    error: str
    last_known_good: Optional[T] = None


ResourceState = Union[Idle, Fetching, Success, Failed]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RequestStarted(Generic[T]):
    generation: int
    cached: Optional[T] = None


@dataclass(frozen=True)
class FetchSucceeded(Generic[T]):
    generation: int
    data: T


@dataclass(frozen=True)
class FetchFailed:
    generation: int
    error: str


ResourceEvent = Union[RequestStarted, FetchSucceeded, FetchFailed]


def transition(state: ResourceState, event: ResourceEvent) -> ResourceState:
    """Pure reducer. Events from an older generation leave the state unchanged."""
    if isinstance(event, RequestStarted):
        if event.generation <= state.generation:
            return state
        return Fetching(generation=event.generation, cached=event.cached)

    if event.generation != state.generation or not isinstance(state, Fetching):
        return state

    if isinstance(event, FetchSucceeded):
        return Success(generation=event.generation, data=event.data)
    if isinstance(event, FetchFailed):
        return Failed(generation=event.generation, error=event.error, last_known_good=state.cached)
    return state


def visible_data(state: ResourceState) -> Optional[Any]:
    """What a consumer should display for a state, stale or fresh."""
    if isinstance(state, Success):
        return state.data
    if isinstance(state, Fetching):
        return state.cached
    if isinstance(state, Failed):
        return state.last_known_good
    return None


def is_stale(state: ResourceState) -> bool:
    return isinstance(state, (Fetching, Failed)) and visible_data(state) is not None


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

Listener = Callable[[ResourceState], None]


class ResourceLoader(Generic[T]):
    """
    Runs the state machine for one resource.

    ``read_cached(key)`` returns cached data or None, ``fetch(key)`` gets
    fresh data from the network and ``persist(key, data)`` writes fresh
    data back to the cache.
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[Hashable], Awaitable[T]],
        read_cached: Optional[Callable[[Hashable], Optional[T]]] = None,
        persist: Optional[Callable[[Hashable, T], Any]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.name = name
        self._fetch = fetch
        self._read_cached = read_cached
        self._persist = persist
        self.timeout_seconds = timeout_seconds

        self.state: ResourceState = Idle()
        self._generation = 0
        self._listeners: List[Listener] = []
        self._queue: Optional[asyncio.Queue] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    @property
    def data(self) -> Optional[T]:
        return visible_data(self.state)

    @property
    def error(self) -> Optional[str]:
        return self.state.error if isinstance(self.state, Failed) else None

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None or self._dispatcher.done():
            self._queue = asyncio.Queue()
            self._dispatcher = asyncio.get_running_loop().create_task(self._dispatch_loop())

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                new_state = transition(self.state, event)
                if new_state is not self.state:
                    self.state = new_state
                    for listener in list(self._listeners):
                        listener(new_state)
            except Exception as e:
                logger.error(f"❌ Listener failed for {self.name}: {e}")
            finally:
                self._queue.task_done()

    async def load(self, key: Hashable) -> int:
        """
        Start loading ``key``. Returns immediately after emitting cached
        data; the network fetch continues in the background.
        """
        self._ensure_dispatcher()
        self._generation += 1
        generation = self._generation

        if self._inflight and not self._inflight.done():
            logger.debug(f"Cancelling superseded {self.name} request")
            self._inflight.cancel()

        cached = self._read_cached(key) if self._read_cached else None
        await self._queue.put(RequestStarted(generation=generation, cached=cached))

        self._inflight = asyncio.get_running_loop().create_task(self._run_fetch(generation, key))
        return generation

    async def _run_fetch(self, generation: int, key: Hashable) -> None:
        try:
            if self.timeout_seconds:
                try:
                    data = await asyncio.wait_for(self._fetch(key), timeout=self.timeout_seconds)
                except asyncio.TimeoutError as e:
                    raise ProviderTimeoutError(f"{self.name} fetch timed out after {self.timeout_seconds}s") from e
            else:
                data = await self._fetch(key)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"⚠️ {self.name} fetch failed for {key!r}: {e}")
            await self._queue.put(FetchFailed(generation=generation, error=str(e) or type(e).__name__))
            return

        if generation != self._generation:
            logger.debug(f"Discarding stale {self.name} response for {key!r}")
            return

        if self._persist:
            try:
                self._persist(key, data)
            except SQLAlchemyError as e:
                logger.error(f"❌ Could not cache {self.name} for {key!r}: {e}")

        await self._queue.put(FetchSucceeded(generation=generation, data=data))

    async def settle(self) -> ResourceState:
        """Wait for the current fetch and all queued events to be applied."""
        # a newer request may start while we wait, so loop until nothing is in flight
        while self._inflight and not self._inflight.done():
            await asyncio.wait({self._inflight})
        if self._queue is not None:
            await self._queue.join()
        return self.state

    async def close(self) -> None:
        for task in (self._inflight, self._dispatcher):
            if task and not task.done():
                task.cancel()
        for task in (self._inflight, self._dispatcher):
            if task:
                try:
                    await task
                except asyncio.CancelledError:
                    pass


# ---------------------------------------------------------------------------
# Wiring to the cache store and MFapi client
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NavHistoryKey:
    scheme_code: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None


def provider_rows_to_points(rows: List[dict]) -> List[NavPoint]:
    points = []
    for row in rows:
        nav_date = try_parse_nav_date(row.get("date"))
        try:
            nav = float(str(row.get("nav")).replace(",", ""))
        except (TypeError, ValueError):
            continue
        if nav_date is None or nav < 0:
            continue
        points.append(NavPoint(date=nav_date, nav=nav))
    return points


def funds_loader(
    store: LocalCacheStore,
    client: MfApiClient,
    source: str = "MFapi.in",
    disclaimer: str = SEBI_DISCLAIMER,
) -> "ResourceLoader[FundsSnapshot]":
    """Loader keyed by the number of funds wanted."""

    def read_cached(limit: int) -> Optional[FundsSnapshot]:
        snapshot = store.read_funds_snapshot(limit)
        return snapshot if snapshot.funds else None

    async def fetch(limit: int) -> FundsSnapshot:
        funds = await client.fetch_funds(limit)
        return FundsSnapshot(
            funds=funds,
            meta=FundsSnapshotMeta(
                disclaimer=disclaimer,
                source=source,
                fetched_at=datetime.now(timezone.utc).isoformat(),
            ),
        )

    def persist(limit: int, snapshot: FundsSnapshot) -> None:
        store.store_funds_snapshot(snapshot)

    return ResourceLoader("funds", fetch=fetch, read_cached=read_cached, persist=persist)


def nav_history_loader(store: LocalCacheStore, client: MfApiClient) -> "ResourceLoader[List[NavPoint]]":
    """Loader keyed by NavHistoryKey."""

    def read_cached(key: NavHistoryKey) -> Optional[List[NavPoint]]:
        rows = store.read_nav_history(key.scheme_code, key.start_date, key.end_date)
        return [row.to_point() for row in rows] or None

    async def fetch(key: NavHistoryKey) -> List[NavPoint]:
        history = await client.fetch_historical_nav(key.scheme_code, key.start_date, key.end_date)
        return provider_rows_to_points(history.data)

    def persist(key: NavHistoryKey, points: List[NavPoint]) -> None:
        store.store_nav_history(key.scheme_code, points)

    return ResourceLoader("nav_history", fetch=fetch, read_cached=read_cached, persist=persist)
