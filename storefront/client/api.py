# =============================================
# File: storefront/client/api.py
# Purpose: Async HTTP client for the interaction / recommendation / refresh endpoints
# =============================================
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from storefront.client.session import Session
from storefront.errors import (
    AuthenticationError,
    RateLimited,
    RecommendationError,
    UpstreamError,
    ValidationError,
)
from storefront.results import Empty, ErrorKind, Failed, Ok, RankResult

DEFAULT_TIMEOUT_S = 5.0

_ERRORS = {
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.AUTHENTICATION: AuthenticationError,
    ErrorKind.RATE_LIMITED: RateLimited,
    ErrorKind.UPSTREAM: UpstreamError,
}


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or f"HTTP {resp.status_code}")
    return f"HTTP {resp.status_code}"


def error_for(resp: httpx.Response) -> RecommendationError:
    kind = ErrorKind.from_status(resp.status_code)
    return _ERRORS[kind](_error_message(resp))


class StorefrontApi:
    """
    Thin async wrapper over the HTTP endpoints.

    Every call has a bounded timeout; timeouts and transport failures are
    reported as upstream errors, exactly like a 5xx.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_S,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._timeout = timeout

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, session: Optional[Session] = None, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", {}) or {})
        if session is not None:
            headers.update(session.auth_header)
        try:
            return await self._client.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamError("Request timed out", details=str(e)) from e
        except httpx.HTTPError as e:
            raise UpstreamError("Network error", details=str(e)) from e

    async def record_interaction(self, session: Session, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST /interaction. Returns the stored row or raises a RecommendationError."""
        resp = await self._request("POST", "/interaction", session=session, json=payload)
        if resp.status_code != 201:
            raise error_for(resp)
        return resp.json().get("data") or {}

    async def get_recommendations(
        self,
        session: Session,
        user_id: str,
        context: str = "general",
        tags: Optional[List[str]] = None,
        limit: int = 6,
    ) -> RankResult:
        """GET /recommendations, mapped onto Ok / Empty / Failed. Never raises."""
        params = {"user_id": user_id, "context": context, "tags": ",".join(tags or []), "limit": str(limit)}
        try:
            resp = await self._request("GET", "/recommendations", session=session, params=params)
        except UpstreamError as e:
            return Failed(ErrorKind.UPSTREAM, e.details or e.message)

        if resp.status_code != 200:
            kind = ErrorKind.from_status(resp.status_code)
            return Failed(kind, _error_message(resp))
        try:
            body = resp.json()
        except ValueError:
            return Failed(ErrorKind.UPSTREAM, "invalid JSON body")
        if not body.get("success"):
            return Failed(ErrorKind.UPSTREAM, "unsuccessful response")
        data = body.get("data") or []
        return Ok(list(data)) if data else Empty("no_personalized_items")

    async def latest_products(self, limit: int = 6) -> List[Dict[str, Any]]:
        """GET /products/latest. Raises UpstreamError on any failure."""
        resp = await self._request("GET", "/products/latest", params={"limit": str(limit)})
        if resp.status_code != 200:
            raise error_for(resp)
        return list(resp.json().get("data") or [])

    async def refresh_recommendations(self, session: Session, user_id: Optional[str] = None) -> bool:
        body = {"user_id": user_id} if user_id else {}
        try:
            resp = await self._request("POST", "/refresh-recommendations", session=session, json=body)
        except UpstreamError as e:
            logger.warning(f"[refresh] request failed: {e.message}")
            return False
        if resp.status_code != 200:
            logger.warning(f"[refresh] status={resp.status_code} error={_error_message(resp)}")
            return False
        return bool(resp.json().get("success"))
