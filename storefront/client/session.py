# =============================================
# File: storefront/client/session.py
# Purpose: Explicit session value handed to the tracking client and the recommendation cache
# =============================================
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class Session:
    """
    Authenticated browser session.

    - user_id: subject of the access token
    - access_token: bearer JWT sent to the API
    - expires_at: epoch seconds; None means "no known expiry"
    """
    user_id: str
    access_token: str
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) >= self.expires_at

    @property
    def auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}


# Callers pass either a Session, None (anonymous) or a provider returning one
SessionProvider = Callable[[], Optional[Session]]


def active_session(session: Optional[Session], now: Optional[float] = None) -> Optional[Session]:
    """The session if it can make authenticated calls, otherwise None."""
    if session is None or not session.user_id or not session.access_token:
        return None
    if session.is_expired(now):
        return None
    return session
