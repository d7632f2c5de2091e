# =============================================
# File: storefront/errors.py
# Purpose: Error taxonomy shared by the event store, ranker, HTTP layer and clients
# =============================================
from __future__ import annotations

from typing import Any, Dict, Optional


class RecommendationError(Exception):
    """
    Base class for every structured error of the subsystem.

    - kind: stable machine-readable tag sent to clients in the error body
    - status_code: HTTP status used when the error crosses the API boundary
    """
    kind = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RecommendationError):
    """Malformed, missing or out-of-range input. Never retried."""
    kind = "validation"
    status_code = 400


class AuthenticationError(RecommendationError):
    """No session, expired session, or a session acting for another user."""
    kind = "authentication"
    status_code = 401


class UpstreamError(RecommendationError):
    """Data store or network failure."""
    kind = "upstream"
    status_code = 500


class UpstreamTimeout(UpstreamError):
    status_code = 504


class RateLimited(RecommendationError):
    kind = "rate_limited"
    status_code = 429
