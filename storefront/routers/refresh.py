# =============================================
# File: storefront/routers/refresh.py
# Purpose: POST /refresh-recommendations - trigger affinity recompute for one user or all users
# =============================================
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse

from storefront.errors import ValidationError
from storefront.services.affinity import recompute_affinity
from storefront.utils.auth import AuthUser, require_auth

router = APIRouter(tags=["refresh"])


@router.post("/refresh-recommendations")
def post_refresh(
    request: Request,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    user: AuthUser = Depends(require_auth),
):
    """
    Body: {} for a batch refresh, {"user_id": "..."} for a single user.
    Reports success unless every targeted user failed.
    """
    user_id = (payload or {}).get("user_id")
    if user_id is not None and (not isinstance(user_id, str) or not user_id.strip()):
        raise ValidationError("user_id must be a non-empty string")
    user_id = user_id.strip() if user_id else None

    report = recompute_affinity(user_id)
    request.state.log_context = {
        "user_id": user_id or "*",
        "requested_by": user.id,
        "updated": report.updated,
        "failures": report.failures,
    }

    body = {"success": True, "updated": report.updated, "failures": report.failures, "users": report.users}
    if report.users and report.failures == report.users:
        body.update({"success": False, "error": "Failed to refresh recommendations"})
        return JSONResponse(status_code=500, content=body)
    return body
