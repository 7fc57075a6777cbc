import asyncio
from datetime import date

from mf_data.core.exceptions import ProviderUnavailableError
from mf_data.models.portfolio import FundPreview, NavHistory, NavPoint
from mf_data.services.fetch_orchestrator import (
    Failed,
    FetchFailed,
    FetchSucceeded,
    Fetching,
    Idle,
    NavHistoryKey,
    RequestStarted,
    ResourceLoader,
    Success,
    funds_loader,
    is_stale,
    nav_history_loader,
    provider_rows_to_points,
    transition,
    visible_data,
)


def test_transition_happy_path():
    state = transition(Idle(), RequestStarted(generation=1, cached="v1"))
    assert state == Fetching(generation=1, cached="v1")
    assert visible_data(state) == "v1"
    assert is_stale(state)

    state = transition(state, FetchSucceeded(generation=1, data="v2"))
    assert state == Success(generation=1, data="v2")
    assert not is_stale(state)


def test_failure_keeps_last_known_good():
    state = transition(Idle(), RequestStarted(generation=1, cached="v1"))
    state = transition(state, FetchFailed(generation=1, error="boom"))
    assert state == Failed(generation=1, error="boom", last_known_good="v1")
    assert visible_data(state) == "v1"


def test_events_from_older_generation_are_ignored():
    state = Fetching(generation=2, cached="v1")
    assert transition(state, FetchSucceeded(generation=1, data="old")) is state
    assert transition(state, FetchFailed(generation=1, error="old")) is state
    assert transition(state, RequestStarted(generation=1)) is state


def test_newer_fast_fetch_wins_over_older_slow_fetch():
    async def scenario():
        release_slow = asyncio.Event()
        calls = []

        async def fetch(key):
            calls.append(key)
            if key == "slow":
                await release_slow.wait()
                return "V2"
            return "V3"

        loader = ResourceLoader("test", fetch=fetch, read_cached=lambda key: "V1")
        seen = []
        loader.subscribe(seen.append)

        await loader.load("slow")
        await asyncio.sleep(0)
        await loader.load("fast")
        release_slow.set()
        state = await loader.settle()
        await loader.close()
        return state, seen, calls

    state, seen, calls = asyncio.run(scenario())
    assert state == Success(generation=2, data="V3")
    assert calls == ["slow", "fast"]
    assert all(getattr(s, "data", None) != "V2" for s in seen)


def test_loader_emits_cached_then_fresh_and_persists():
    async def scenario():
        persisted = {}

        async def fetch(key):
            return f"fresh-{key}"

        loader = ResourceLoader(
            "test",
            fetch=fetch,
            read_cached=lambda key: f"cached-{key}",
            persist=lambda key, data: persisted.update({key: data}),
        )
        seen = []
        loader.subscribe(seen.append)
        await loader.load("a")
        await loader.settle()
        await loader.close()
        return seen, persisted, loader

    seen, persisted, loader = asyncio.run(scenario())
    assert seen == [Fetching(generation=1, cached="cached-a"), Success(generation=1, data="fresh-a")]
    assert persisted == {"a": "fresh-a"}
    assert loader.data == "fresh-a"
    assert loader.error is None


def test_loader_failure_surfaces_error_and_cached_data():
    async def scenario():
        async def fetch(key):
            raise ProviderUnavailableError("provider down")

        loader = ResourceLoader("test", fetch=fetch, read_cached=lambda key: "cached")
        await loader.load("a")
        state = await loader.settle()
        await loader.close()
        return state, loader

    state, loader = asyncio.run(scenario())
    assert isinstance(state, Failed)
    assert loader.error == "provider down"
    assert loader.data == "cached"


def test_loader_timeout_becomes_failure():
    async def scenario():
        async def fetch(key):
            await asyncio.sleep(5)

        loader = ResourceLoader("test", fetch=fetch, timeout_seconds=0.01)
        await loader.load("a")
        state = await loader.settle()
        await loader.close()
        return state

    state = asyncio.run(scenario())
    assert isinstance(state, Failed)
    assert "timed out" in state.error
    assert state.last_known_good is None


def test_unsubscribe():
    async def scenario():
        async def fetch(key):
            return 1

        loader = ResourceLoader("test", fetch=fetch)
        seen = []
        unsubscribe = loader.subscribe(seen.append)
        unsubscribe()
        await loader.load("a")
        await loader.settle()
        await loader.close()
        return seen

    assert asyncio.run(scenario()) == []


def test_provider_rows_to_points_skips_bad_rows():
    points = provider_rows_to_points([
        {"date": "02-01-2024", "nav": "10.5"},
        {"date": "nope", "nav": "1"},
        {"date": "03-01-2024", "nav": None},
    ])
    assert points == [NavPoint(date=date(2024, 1, 2), nav=10.5)]


class FakeClient:
    def __init__(self, funds=None, history=None, error=None):
        self.funds = funds or []
        self.history = history
        self.error = error

    async def fetch_funds(self, limit):
        if self.error:
            raise self.error
        return self.funds[:limit]

    async def fetch_historical_nav(self, scheme_code, start_date=None, end_date=None):
        if self.error:
            raise self.error
        return self.history


def test_funds_loader_persists_snapshot(store):
    client = FakeClient(funds=[FundPreview(scheme_code="1", scheme_name="Alpha")])

    async def scenario():
        loader = funds_loader(store, client)
        await loader.load(10)
        state = await loader.settle()
        await loader.close()
        return state

    state = asyncio.run(scenario())
    assert isinstance(state, Success)
    assert [f.scheme_name for f in store.read_funds_snapshot().funds] == ["Alpha"]
    assert store.read_funds_snapshot().meta.source == "MFapi.in"


def test_nav_history_loader_falls_back_to_cache(store):
    store.store_nav_history("1", [NavPoint(date=date(2024, 1, 1), nav=10)])
    client = FakeClient(error=ProviderUnavailableError("down"))

    async def scenario():
        loader = nav_history_loader(store, client)
        await loader.load(NavHistoryKey("1"))
        state = await loader.settle()
        await loader.close()
        return state

    state = asyncio.run(scenario())
    assert isinstance(state, Failed)
    assert state.last_known_good == [NavPoint(date=date(2024, 1, 1), nav=10)]


def test_nav_history_loader_stores_fresh_rows(store):
    history = NavHistory(meta={"scheme_code": "1"}, data=[{"date": "05-01-2024", "nav": "11.0"}], status="SUCCESS")

    async def scenario():
        loader = nav_history_loader(store, FakeClient(history=history))
        await loader.load(NavHistoryKey("1"))
        state = await loader.settle()
        await loader.close()
        return state

    state = asyncio.run(scenario())
    assert state.data == [NavPoint(date=date(2024, 1, 5), nav=11.0)]
    assert [r.nav_date for r in store.read_nav_history("1")] == ["2024-01-05"]


def test_late_response_from_superseded_fetch_is_discarded():
    async def scenario():
        release_slow = asyncio.Event()
        persisted = []

        async def fetch(key):
            if key == "slow":
                # ignore cancellation so the old response still arrives
                while not release_slow.is_set():
                    try:
                        await release_slow.wait()
                    except asyncio.CancelledError:
                        continue
                return "V2"
            return "V3"

        loader = ResourceLoader(
            "test",
            fetch=fetch,
            read_cached=lambda key: "V1",
            persist=lambda key, data: persisted.append(data),
        )
        seen = []
        loader.subscribe(seen.append)

        await loader.load("slow")
        slow_task = loader._inflight
        await asyncio.sleep(0)
        await loader.load("fast")
        await loader.settle()

        release_slow.set()
        await slow_task
        # a stale event reaching the queue directly is dropped by the reducer too
        await loader._queue.put(FetchSucceeded(generation=1, data="V2"))
        state = await loader.settle()
        await loader.close()
        return state, seen, persisted

    state, seen, persisted = asyncio.run(scenario())
    assert state == Success(generation=2, data="V3")
    assert persisted == ["V3"]
    assert all(getattr(s, "data", None) != "V2" for s in seen)
