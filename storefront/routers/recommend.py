# =============================================
# File: storefront/routers/recommend.py
# Purpose: GET /recommendations (personalized ranking) and GET /products/latest (generic listing)
# =============================================
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Request

from storefront.errors import (
    AuthenticationError,
    RateLimited,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from storefront.results import ErrorKind, Failed, Ok
from storefront.services.ranker import GENERAL_CONTEXT, get_recommendations, latest_products
from storefront.utils.auth import AuthUser, require_auth
from storefront.utils.metrics import record_rate_limit_hit, record_recommendation_outcome
from storefront.utils.ratelimit import check_rate_limit

router = APIRouter(tags=["recommend"])

DEFAULT_LIMIT = 6
MAX_LIMIT = 20
MAX_LISTING_LIMIT = 50


# ---------- Helpers ----------
def _parse_tags(raw: Optional[str]) -> List[str]:
    """Comma-separated tags; blanks dropped, order kept, duplicates removed."""
    if not raw:
        return []
    parts = [t.strip() for t in raw.split(",")]
    return list(dict.fromkeys(t for t in parts if t))


def _parse_limit(raw: Optional[str], default: int, upper: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"limit must be a number between 1 and {upper}")
    if limit < 1 or limit > upper:
        raise ValidationError(f"limit must be a number between 1 and {upper}")
    return limit


def _raise_for(result: Failed) -> None:
    if result.kind is ErrorKind.RATE_LIMITED:
        raise RateLimited("Too Many Requests")
    if result.kind is ErrorKind.AUTHENTICATION:
        raise AuthenticationError(result.message or "Authentication required")
    if result.kind is ErrorKind.VALIDATION:
        raise ValidationError(result.message or "Invalid request")
    if result.message == "timeout":
        raise UpstreamTimeout("Recommendation query timed out")
    raise UpstreamError("Failed to get recommendations", details=result.message or None)


# ---------- Endpoints ----------
@router.get("/recommendations")
def get_recommendations_endpoint(
    request: Request,
    user_id: Optional[str] = None,
    context: Optional[str] = None,
    tags: Optional[str] = None,
    limit: Optional[str] = None,
    user: AuthUser = Depends(require_auth),
):
    """
    Personalized recommendations.

    200 -> {success, data: RecommendationCandidate[], context, user_id, total}
    An empty `data` means "nothing personalized": clients fall back to /products/latest.
    """
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValidationError("user_id parameter is required")
    context = (context or "").strip() or GENERAL_CONTEXT
    tag_list = _parse_tags(tags)
    n = _parse_limit(limit, DEFAULT_LIMIT, MAX_LIMIT)

    request.state.log_context = {"user_id": user_id, "context": context, "limit": n}

    if user_id != user.id:
        raise AuthenticationError("user_id does not match the authenticated session")

    try:
        check_rate_limit(f"recs:{user.id}")
    except RateLimited:
        record_rate_limit_hit()
        record_recommendation_outcome("failed:rate_limited")
        request.state.log_context["rate_limited"] = True
        raise

    result = get_recommendations(user_id, context=context, tags=tag_list, limit=n)

    if isinstance(result, Failed):
        record_recommendation_outcome(f"failed:{result.kind.value}")
        request.state.log_context["outcome"] = f"failed:{result.kind.value}"
        _raise_for(result)

    data = result.items if isinstance(result, Ok) else []
    outcome = "ok" if data else "empty"
    record_recommendation_outcome(outcome)
    request.state.log_context["outcome"] = outcome
    return {
        "success": True,
        "data": data,
        "context": context,
        "user_id": user_id,
        "total": len(data),
    }


@router.get("/products/latest")
def get_latest_products(limit: Optional[str] = None):
    """Generic, non-personalized listing used as the recommendation fallback."""
    n = _parse_limit(limit, DEFAULT_LIMIT, MAX_LISTING_LIMIT)
    items = [c.model_dump() for c in latest_products(n)]
    return {"success": True, "data": items, "total": len(items)}
