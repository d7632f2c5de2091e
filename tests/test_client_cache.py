# =============================================
# File: tests/test_client_cache.py
# Purpose: Recommendation client cache: freshness, fallback chain, circuit breaker, coalescing
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import asyncio

import pytest

from storefront.client.cache import (
    EMPTY,
    EMPTY_MESSAGE,
    FALLBACK,
    FRESH_CACHE,
    PERSONALIZED,
    STALE_CACHE,
    RecommendationCache,
    make_key,
)
from storefront.client.session import Session
from storefront.errors import UpstreamError
from storefront.results import Empty, ErrorKind, Failed, Ok

SESSION = Session(user_id="u1", access_token="tok")


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _candidate(pid, score=1.0):
    return {"product_id": pid, "name": pid.upper(), "price": 9.5, "thumbnail_url": f"/img/{pid}.png",
            "tags": ["x"], "score": score}


class FakeApi:
    def __init__(self):
        self.rank_result = Ok([_candidate("p1", 3.0), _candidate("p2", 2.0)])
        self.latest = [_candidate(f"g{i}", 0.0) for i in range(6)]
        self.latest_error = None
        self.rank_calls = 0
        self.latest_calls = 0
        self.refresh_calls = []
        self.gate = None
        self.refresh_gate = None
        self.after_refresh = None

    async def get_recommendations(self, session, user_id, context="general", tags=None, limit=6):
        self.rank_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return self.rank_result

    async def latest_products(self, limit=6):
        self.latest_calls += 1
        if self.latest_error is not None:
            raise self.latest_error
        return list(self.latest[:limit])

    async def refresh_recommendations(self, session, user_id=None):
        self.refresh_calls.append(user_id)
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.after_refresh is not None:
            self.rank_result = self.after_refresh
        return True


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(api, clock):
    return RecommendationCache(api, freshness_seconds=300, clock=clock)


def test_key_normalizes_tag_order():
    assert make_key("u1", "general", ["b", "a", "a"], 6) == make_key("u1", "general", ["a", "b"], 6)
    assert make_key(None, "general", [], 6) == "recs:anon:general::6"


@pytest.mark.asyncio
async def test_anonymous_never_gets_personalized(cache, api):
    view = await cache.fetch(None, limit=4)
    assert view.source == FALLBACK
    assert [i["id"] for i in view.items] == ["g0", "g1", "g2", "g3"]
    assert api.rank_calls == 0


@pytest.mark.asyncio
async def test_expired_session_is_treated_as_anonymous(cache, api):
    expired = Session("u1", "tok", expires_at=1.0)
    view = await cache.fetch(expired)
    assert view.source == FALLBACK
    assert api.rank_calls == 0


@pytest.mark.asyncio
async def test_personalized_items_are_display_shaped(cache):
    view = await cache.fetch(SESSION)
    assert view.source == PERSONALIZED
    assert view.items[0] == {"id": "p1", "name": "P1", "price": 9.5, "image_url": "/img/p1.png",
                             "tags": ["x"], "score": 3.0}


@pytest.mark.asyncio
async def test_fresh_entry_is_served_without_refetch(cache, api, clock):
    await cache.fetch(SESSION, tags=["b", "a"])
    clock.advance(299)
    view = await cache.fetch(SESSION, tags=["a", "b"])
    assert view.source == FRESH_CACHE
    assert api.rank_calls == 1

    clock.advance(2)
    view = await cache.fetch(SESSION, tags=["a", "b"])
    assert view.source == PERSONALIZED
    assert api.rank_calls == 2


@pytest.mark.asyncio
async def test_empty_signal_falls_back_to_generic_listing(cache, api):
    api.rank_result = Empty("no_personalized_items")
    personalized_view = await cache.fetch(SESSION, limit=3)
    anon_view = await cache.fetch(None, limit=3)
    assert personalized_view.source == FALLBACK
    assert personalized_view.items == anon_view.items
    assert len(personalized_view.items) == 3


@pytest.mark.asyncio
async def test_failure_serves_stale_and_opens_circuit(cache, api, clock):
    first = await cache.fetch(SESSION)
    clock.advance(301)
    api.rank_result = Failed(ErrorKind.UPSTREAM, "500")

    view = await cache.fetch(SESSION)
    assert view.source == STALE_CACHE
    assert view.items == first.items
    assert api.rank_calls == 2

    # circuit open: no refetch within the window
    clock.advance(10)
    view = await cache.fetch(SESSION)
    assert view.source == STALE_CACHE
    assert api.rank_calls == 2

    # window elapsed: one new attempt
    clock.advance(300)
    api.rank_result = Ok([_candidate("p9")])
    view = await cache.fetch(SESSION)
    assert view.source == PERSONALIZED
    assert api.rank_calls == 3


@pytest.mark.asyncio
async def test_rate_limited_without_stale_entry_serves_generic(cache, api):
    api.rank_result = Failed(ErrorKind.RATE_LIMITED, "Too Many Requests")
    view = await cache.fetch(SESSION)
    assert view.source == FALLBACK
    await cache.fetch(SESSION)
    assert api.rank_calls == 1


@pytest.mark.asyncio
async def test_auth_failure_does_not_open_circuit(cache, api):
    api.rank_result = Failed(ErrorKind.AUTHENTICATION, "expired")
    assert (await cache.fetch(SESSION)).source == FALLBACK
    await cache.fetch(SESSION)
    assert api.rank_calls == 2


@pytest.mark.asyncio
async def test_total_failure_gives_empty_state(cache, api):
    api.rank_result = Failed(ErrorKind.UPSTREAM, "down")
    api.latest_error = UpstreamError("down too")
    view = await cache.fetch(SESSION)
    assert view.source == EMPTY
    assert view.items == []
    assert view.message == EMPTY_MESSAGE


@pytest.mark.asyncio
async def test_concurrent_fetches_share_one_call(cache, api):
    api.gate = asyncio.Event()
    tasks = [asyncio.ensure_future(cache.fetch(SESSION)) for _ in range(3)]
    await asyncio.sleep(0)
    api.gate.set()
    views = await asyncio.gather(*tasks)
    assert api.rank_calls == 1
    assert all(v.items == views[0].items for v in views)


@pytest.mark.asyncio
async def test_result_discarded_when_no_longer_relevant(cache, api):
    alive = {"v": True}
    api.gate = asyncio.Event()
    task = asyncio.ensure_future(cache.fetch(SESSION, is_active=lambda: alive["v"]))
    await asyncio.sleep(0)
    alive["v"] = False
    api.gate.set()
    assert await task is None

    # nothing was cached by the discarded fetch
    api.gate = None
    assert (await cache.fetch(SESSION)).source == PERSONALIZED
    assert api.rank_calls == 2


@pytest.mark.asyncio
async def test_invalidate_clears_user_entries_and_triggers_refresh(cache, api):
    await cache.fetch(SESSION)
    assert await cache.invalidate(SESSION, "u1") is True
    assert api.refresh_calls == ["u1"]
    assert (await cache.fetch(SESSION)).source == PERSONALIZED
    assert api.rank_calls == 2


@pytest.mark.asyncio
async def test_invalidate_without_session_only_clears(cache, api):
    assert await cache.invalidate(None) is False
    assert api.refresh_calls == []


@pytest.mark.asyncio
async def test_fetch_during_pending_refresh_does_not_outlive_it(cache, api):
    api.rank_result = Ok([_candidate("old")])
    await cache.fetch(SESSION)

    api.refresh_gate = asyncio.Event()
    api.after_refresh = Ok([_candidate("new")])
    pending = asyncio.ensure_future(cache.invalidate(SESSION, "u1"))
    await asyncio.sleep(0)

    # re-render while the server is still recomputing
    mid = await cache.fetch(SESSION)
    assert [i["id"] for i in mid.items] == ["old"]

    api.refresh_gate.set()
    assert await pending is True

    after = await cache.fetch(SESSION)
    assert after.source == PERSONALIZED
    assert [i["id"] for i in after.items] == ["new"]


@pytest.mark.asyncio
async def test_fetch_in_flight_across_invalidate_is_not_cached(cache, api):
    api.gate = asyncio.Event()
    api.rank_result = Ok([_candidate("old")])
    task = asyncio.ensure_future(cache.fetch(SESSION))
    await asyncio.sleep(0)

    assert await cache.invalidate(SESSION, "u1") is True
    api.gate.set()
    assert [i["id"] for i in (await task).items] == ["old"]

    api.gate = None
    api.rank_result = Ok([_candidate("new")])
    after = await cache.fetch(SESSION)
    assert after.source == PERSONALIZED
    assert [i["id"] for i in after.items] == ["new"]


@pytest.mark.asyncio
async def test_ok_without_items_falls_back_and_is_not_cached(cache, api):
    api.rank_result = Ok([])
    view = await cache.fetch(SESSION, limit=2)
    assert view.source == FALLBACK
    assert [i["id"] for i in view.items] == ["g0", "g1"]
    await cache.fetch(SESSION, limit=2)
    assert api.rank_calls == 2
