# =============================================
# File: storefront/utils/ratelimit.py
# Purpose: In-memory per-key rate limiter (sliding window)
# =============================================
from __future__ import annotations
import os
import threading
import time
from collections import deque
from typing import Dict, Deque

from storefront.errors import RateLimited

# In-memory store: key -> timestamps deque
_store: Dict[str, Deque[float]] = {}
_lock = threading.Lock()

def _get_limits() -> tuple[int, int]:
    """Read limits at call time so tests/env overrides take effect."""
    max_reqs = int(os.getenv("RL_MAX_REQS", "60"))
    window_s = int(os.getenv("RL_WINDOW_SECONDS", "60"))
    return max_reqs, window_s

def check_rate_limit(key: str) -> None:
    """Raise RateLimited when the key exceeded its allowance in the current window."""
    now = time.time()
    max_reqs, window_s = _get_limits()

    with _lock:
        dq = _store.setdefault(key, deque())

        # Drop timestamps outside the window
        cutoff = now - window_s
        while dq and dq[0] < cutoff:
            dq.popleft()

        if len(dq) >= max_reqs:
            raise RateLimited("Too Many Requests")

        dq.append(now)

def reset_rate_limit() -> None:
    """For tests: clear in-memory counters."""
    with _lock:
        _store.clear()
