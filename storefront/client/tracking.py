# =============================================
# File: storefront/client/tracking.py
# Purpose: Interaction tracking client: classify, debounce and dedupe events before they hit the API
# =============================================
"""
Usage (inside a running event loop):

    tracker = InteractionTracker(api.record_interaction, session_provider=lambda: current_session)
    tracker.track_view("p1", "product", tags=["vitamins"])
    ...
    await tracker.flush()   # on teardown, to deliver what is still pending
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple

from loguru import logger

from storefront.client.session import Session, SessionProvider, active_session
from storefront.client.tags import blog_tags, product_tags
from storefront.db.models import EVENT_TYPES, ITEM_TYPES
from storefront.errors import AuthenticationError, RateLimited, RecommendationError

DEFAULT_DEBOUNCE_S = 1.0

TrackingKey = Tuple[str, str, str]  # (event_type, item_id, item_type)
EmitFn = Callable[[Session, Dict[str, Any]], Awaitable[Any]]


class InteractionTracker:
    """
    Fire-and-forget tracking with one debounce timer per (event_type, item_id, item_type).

    - anonymous (no active session): every call is a no-op
    - bursts on one key collapse into a single emission; each call restarts the timer
    - a view that was emitted successfully is never emitted again in this session
    - failures are logged and swallowed; callers never see an exception
    """

    def __init__(
        self,
        emit: EmitFn,
        session_provider: SessionProvider,
        debounce_seconds: float = DEFAULT_DEBOUNCE_S,
    ) -> None:
        self._emit_fn = emit
        self._session_provider = session_provider
        self._debounce = debounce_seconds
        self._timers: Dict[TrackingKey, asyncio.TimerHandle] = {}
        self._pending_tags: Dict[TrackingKey, List[str]] = {}
        self._viewed: Set[TrackingKey] = set()
        self._inflight_views: Set[TrackingKey] = set()
        self._tasks: Set[asyncio.Task] = set()

    # ---------- public API ----------
    def track(self, event_type: str, item_id: str, item_type: str, tags: Optional[List[str]] = None) -> None:
        try:
            self._schedule(event_type, item_id, item_type, tags)
        except Exception:
            logger.exception(f"[tracker] could not schedule {event_type} for {item_type}:{item_id}")

    def track_view(self, item_id: str, item_type: str, tags: Optional[List[str]] = None) -> None:
        self.track("view", item_id, item_type, tags)

    def track_click(self, item_id: str, item_type: str, tags: Optional[List[str]] = None) -> None:
        self.track("click", item_id, item_type, tags)

    def track_add_to_cart(self, item_id: str, tags: Optional[List[str]] = None) -> None:
        self.track("add_to_cart", item_id, "product", tags)

    def track_purchase(self, item_id: str, tags: Optional[List[str]] = None) -> None:
        self.track("purchase", item_id, "product", tags)

    def track_product_view(self, product: Mapping[str, Any]) -> None:
        """View of a catalog record: id and tags are taken from the record."""
        try:
            item_id = str(product["id"])
        except (KeyError, TypeError):
            logger.warning("[tracker] product record without an id, not tracked")
            return
        self.track("view", item_id, "product", product_tags(product))

    def track_blog_view(self, post: Mapping[str, Any]) -> None:
        """View of a blog post, tagged from its tags, category and title keywords."""
        try:
            item_id = str(post["id"])
        except (KeyError, TypeError):
            logger.warning("[tracker] blog post without an id, not tracked")
            return
        self.track("view", item_id, "blog", blog_tags(post))

    @property
    def pending(self) -> int:
        return len(self._timers)

    async def flush(self) -> None:
        """Emit every pending key now and wait for in-flight emissions."""
        for key in list(self._timers):
            self._timers.pop(key).cancel()
            self._start_emit(key)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Drop pending timers without emitting (owner torn down)."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._pending_tags.clear()

    def reset_session(self) -> None:
        """New login session: views may be tracked again."""
        self.close()
        self._viewed.clear()

    # ---------- internals ----------
    def _schedule(self, event_type: str, item_id: str, item_type: str, tags: Optional[List[str]]) -> None:
        if active_session(self._session_provider()) is None:
            return
        if event_type not in EVENT_TYPES or item_type not in ITEM_TYPES or not item_id:
            logger.warning(f"[tracker] ignoring unknown event {event_type!r} for {item_type!r}:{item_id!r}")
            return

        key: TrackingKey = (event_type, item_id, item_type)
        if event_type == "view" and key in self._viewed:
            return

        loop = asyncio.get_running_loop()
        # cancel-then-set: never two live timers for one key
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._pending_tags[key] = list(tags or [])
        self._timers[key] = loop.call_later(self._debounce, self._on_timer, key)

    def _on_timer(self, key: TrackingKey) -> None:
        self._timers.pop(key, None)
        self._start_emit(key)

    def _start_emit(self, key: TrackingKey) -> None:
        tags = self._pending_tags.pop(key, [])
        task = asyncio.get_running_loop().create_task(self._emit(key, tags))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _emit(self, key: TrackingKey, tags: List[str]) -> None:
        event_type, item_id, item_type = key
        session = active_session(self._session_provider())
        if session is None:
            return
        is_view = event_type == "view"
        if is_view and (key in self._viewed or key in self._inflight_views):
            return

        payload = {
            "user_id": session.user_id,
            "event_type": event_type,
            "item_id": item_id,
            "item_type": item_type,
            "tags": tags,
        }
        if is_view:
            self._inflight_views.add(key)
        try:
            await self._emit_fn(session, payload)
        except AuthenticationError:
            logger.debug(f"[tracker] session rejected, dropping {event_type} for {item_type}:{item_id}")
            return
        except RateLimited:
            logger.warning(f"[tracker] rate limited, dropping {event_type} for {item_type}:{item_id}")
            return
        except RecommendationError as e:
            logger.warning(f"[tracker] failed to track {event_type} for {item_type}:{item_id}: {e.message}")
            return
        except Exception as e:
            logger.error(f"[tracker] unexpected error tracking {event_type} for {item_type}:{item_id}: {e}")
            return
        finally:
            self._inflight_views.discard(key)

        if is_view:
            self._viewed.add(key)
        logger.debug(f"[tracker] tracked {event_type} for {item_type}:{item_id}")
