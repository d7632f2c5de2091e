# =============================================
# File: storefront/client/cache.py
# Purpose: Client-side recommendation cache with freshness window, circuit breaker,
#          request coalescing and the personalized -> stale -> generic -> empty fallback chain
# =============================================
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from loguru import logger

from storefront.client.session import Session, active_session
from storefront.client.store import KeyValueStore, MemoryStore
from storefront.results import Empty, ErrorKind, Failed, Ok, RankResult

FRESHNESS_S = 5 * 60
FALLBACK_COUNT = 6
ANON = "anon"
EMPTY_MESSAGE = "No recommendations available"

# Sources, in fallback-chain order
FRESH_CACHE = "fresh_cache"
PERSONALIZED = "personalized"
STALE_CACHE = "stale_cache"
FALLBACK = "fallback"
EMPTY = "empty"


@dataclass
class RecommendationView:
    items: List[Dict[str, Any]]
    source: str
    message: Optional[str] = None


def make_key(user_id: Optional[str], context: str, tags: Optional[Iterable[str]], limit: int) -> str:
    """Equivalent tag sets map to the same key: tags are de-duplicated and sorted."""
    norm = sorted({t.strip() for t in (tags or []) if t and t.strip()})
    return f"recs:{user_id or ANON}:{context}:{','.join(norm)}:{limit}"


def to_display(item: Dict[str, Any]) -> Dict[str, Any]:
    """Candidate-shaped record -> product-like record for product cards."""
    pid = item.get("product_id") or item.get("id")
    return {
        "id": pid,
        "name": item.get("name"),
        "price": item.get("price"),
        "image_url": item.get("thumbnail_url") or item.get("image_url"),
        "tags": list(item.get("tags") or []),
        "score": item.get("score", 0.0),
    }


class RecommendationCache:
    """
    Serves recommendations to the UI without ever raising.

    fetch() walks: fresh entry -> personalized fetch -> stale entry -> generic
    listing -> empty state. A failed refetch opens a per-key circuit for one
    freshness window; concurrent fetches of one key share a single upstream call.
    """

    def __init__(
        self,
        api,
        store: Optional[KeyValueStore] = None,
        freshness_seconds: float = FRESHNESS_S,
        fallback_count: int = FALLBACK_COUNT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api = api
        self._clock = clock
        self._store: KeyValueStore = store if store is not None else MemoryStore(clock=clock)
        self._freshness = freshness_seconds
        self._fallback_count = fallback_count
        self._failed_at: Dict[str, float] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self._epoch = 0

    # ---------- public API ----------
    async def fetch(
        self,
        session: Optional[Session],
        context: str = "general",
        tags: Optional[List[str]] = None,
        limit: int = 6,
        is_active: Optional[Callable[[], bool]] = None,
    ) -> Optional[RecommendationView]:
        """
        Resolve a listing for the UI. Returns None only when `is_active()` turned
        False while awaiting: the result is then discarded and nothing is cached.
        """
        still_relevant = is_active or (lambda: True)
        sess = active_session(session)
        if sess is None:
            return await self._generic(limit, still_relevant)

        key = make_key(sess.user_id, context, tags, limit)
        entry = self._store.get(key)
        if entry is not None and self._is_fresh(entry):
            return RecommendationView(entry["items"], FRESH_CACHE)

        failed_at = self._failed_at.get(key)
        if failed_at is not None and self._clock() - failed_at < self._freshness:
            logger.debug(f"[reccache] circuit open for {key}, skipping refetch")
            return await self._stale_or_generic(entry, limit, still_relevant)

        epoch = self._epoch
        result = await self._join(key, lambda: self._call_ranker(sess, context, tags, limit))
        if not still_relevant():
            return None
        # an invalidate() landed while waiting: the result predates the refresh
        invalidated = epoch != self._epoch

        if isinstance(result, Ok) and result.items:
            items = [to_display(i) for i in result.items]
            if not invalidated:
                self._failed_at.pop(key, None)
                self._store.set(key, {"items": items, "fetched_at": self._clock()})
            return RecommendationView(items, PERSONALIZED)

        if isinstance(result, (Ok, Empty)):
            # nothing personalized is "unavailable", not a valid empty listing
            return await self._generic(limit, still_relevant)

        if result.kind is ErrorKind.AUTHENTICATION:
            logger.info(f"[reccache] session rejected, serving generic listing: {result.message}")
            return await self._generic(limit, still_relevant)
        if result.kind is ErrorKind.RATE_LIMITED:
            logger.warning(f"[reccache] rate limited for {key}")
        else:
            logger.warning(f"[reccache] {result.kind.value} error for {key}: {result.message}")
        if invalidated:
            return await self._generic(limit, still_relevant)
        self._failed_at[key] = self._clock()
        return await self._stale_or_generic(entry, limit, still_relevant)

    async def invalidate(self, session: Optional[Session], user_id: Optional[str] = None) -> bool:
        """
        Ask the server to recompute affinity, then forget cached listings, failure
        marks and in-flight fetches for one user (or everyone). Returns whether the
        server-side refresh succeeded.

        Local state is dropped after the refresh settles, so a fetch issued while
        the refresh is pending cannot leave a pre-refresh listing behind as fresh.
        """
        refreshed = False
        sess = active_session(session)
        if sess is not None:
            try:
                refreshed = bool(await self._api.refresh_recommendations(sess, user_id))
            except Exception as e:
                logger.warning(f"[reccache] refresh trigger failed: {e}")
        self._forget(f"recs:{user_id}:" if user_id else "recs:")
        return refreshed

    def clear(self) -> None:
        """Session end."""
        self._store.clear()
        self._failed_at.clear()
        self._epoch += 1

    # ---------- internals ----------
    def _forget(self, prefix: str) -> None:
        for k in list(self._store.keys()):
            if k.startswith(prefix):
                self._store.delete(k)
        for k in [k for k in self._failed_at if k.startswith(prefix)]:
            self._failed_at.pop(k, None)
        # detach: the next fetch starts its own upstream call
        for k in [k for k in self._inflight if k.startswith(prefix)]:
            self._inflight.pop(k, None)
        self._epoch += 1

    def _is_fresh(self, entry: Dict[str, Any]) -> bool:
        return self._clock() - entry["fetched_at"] < self._freshness

    async def _join(self, key: str, start: Callable[[], Awaitable[Any]]) -> Any:
        """Coalesce concurrent calls for one key onto a single upstream task."""
        fut = self._inflight.get(key)
        if fut is None:
            fut = asyncio.ensure_future(start())
            self._inflight[key] = fut
            fut.add_done_callback(lambda f, k=key: self._inflight.pop(k, None) if self._inflight.get(k) is f else None)
        # a cancelled waiter must not cancel the shared call
        return await asyncio.shield(fut)

    async def _call_ranker(self, sess: Session, context: str, tags: Optional[List[str]], limit: int) -> RankResult:
        try:
            return await self._api.get_recommendations(sess, sess.user_id, context=context, tags=tags or [], limit=limit)
        except Exception as e:
            return Failed(ErrorKind.UPSTREAM, str(e))

    async def _stale_or_generic(
        self, entry: Optional[Dict[str, Any]], limit: int, still_relevant: Callable[[], bool]
    ) -> Optional[RecommendationView]:
        if entry is not None:
            return RecommendationView(entry["items"], STALE_CACHE)
        return await self._generic(limit, still_relevant)

    async def _generic(self, limit: int, still_relevant: Callable[[], bool]) -> Optional[RecommendationView]:
        fkey = f"fallback:{self._fallback_count}"
        entry = self._store.get(fkey)
        if entry is not None and self._is_fresh(entry):
            items = entry["items"]
        else:
            try:
                raw = await self._join(fkey, lambda: self._api.latest_products(self._fallback_count))
            except Exception as e:
                logger.warning(f"[reccache] generic listing unavailable: {e}")
                raw = None
            if not still_relevant():
                return None
            if raw is None:
                items = entry["items"] if entry is not None else []
            else:
                items = [to_display(i) for i in raw]
                self._store.set(fkey, {"items": items, "fetched_at": self._clock()})

        if not still_relevant():
            return None
        if items:
            return RecommendationView(items[:limit], FALLBACK)
        return RecommendationView([], EMPTY, message=EMPTY_MESSAGE)
