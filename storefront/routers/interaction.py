# =============================================
# File: storefront/routers/interaction.py
# Purpose: POST /interaction - authenticated ingestion of user interaction events
# =============================================
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse

from storefront.errors import RecommendationError
from storefront.services.events import record_interaction
from storefront.utils.auth import AuthUser, require_auth
from storefront.utils.metrics import record_interaction as count_interaction

router = APIRouter(tags=["interaction"])


@router.post("/interaction", status_code=201)
def post_interaction(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    user: AuthUser = Depends(require_auth),
):
    """
    Record one interaction event.

    Body: {user_id, event_type, item_id, item_type, tags?}
    201 -> {success: true, data: <stored row>}
    """
    request.state.log_context = {
        "user_id": user.id,
        "event_type": payload.get("event_type") if isinstance(payload, dict) else None,
    }
    try:
        event = record_interaction(payload, user)
    except RecommendationError as e:
        request.state.log_context["error_kind"] = e.kind
        raise

    count_interaction(event.event_type)
    return JSONResponse(
        status_code=201,
        content={"success": True, "data": event.model_dump(mode="json")},
    )
