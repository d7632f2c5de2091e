# =============================================
# File: storefront/services/events.py
# Purpose: Event store ingest: validate an interaction payload and append one immutable row
# =============================================
from __future__ import annotations

from typing import Any, Dict, List

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from storefront.db import repo
from storefront.db.models import EVENT_TYPES, ITEM_TYPES, InteractionEvent
from storefront.errors import AuthenticationError, UpstreamError, ValidationError
from storefront.utils.auth import AuthUser

REQUIRED_FIELDS = ("user_id", "event_type", "item_id", "item_type")


def _normalize_tags(raw: Any) -> List[str]:
    """Strip, drop empties and dedupe while keeping first-seen order."""
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(t, str) for t in raw):
        raise ValidationError("tags must be a list of strings")
    seen = set()
    out: List[str] = []
    for t in raw:
        t = t.strip()
        if t and t not in seen:
            seen.add(t)
            out.append(t)
    return out


def validate_interaction(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check an incoming payload and return the clean field set.

    Enumerated values are matched exactly: "View" or "PURCHASE" are rejected,
    never coerced.
    """
    data = dict(payload or {})
    missing = [f for f in REQUIRED_FIELDS if not isinstance(data.get(f), str) or not data[f].strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    if data["event_type"] not in EVENT_TYPES:
        raise ValidationError("Invalid event_type. Must be one of: " + ", ".join(EVENT_TYPES))
    if data["item_type"] not in ITEM_TYPES:
        raise ValidationError("Invalid item_type. Must be one of: " + ", ".join(ITEM_TYPES))

    return {
        "user_id": data["user_id"].strip(),
        "event_type": data["event_type"],
        "item_id": data["item_id"].strip(),
        "item_type": data["item_type"],
        "tags": _normalize_tags(data.get("tags")),
    }


def record_interaction(payload: Dict[str, Any], user: AuthUser | None) -> InteractionEvent:
    """
    Append one interaction row for the authenticated caller.

    Raises ValidationError, AuthenticationError or UpstreamError (storage failure).
    """
    if user is None:
        raise AuthenticationError("Authentication required")
    fields = validate_interaction(payload)
    if fields["user_id"] != user.id:
        raise AuthenticationError("user_id does not match the authenticated session")

    event = InteractionEvent(**fields)
    try:
        with Session(repo.get_engine()) as session:
            session.add(event)
            session.commit()
            session.refresh(event)
    except SQLAlchemyError as e:
        logger.error(f"[interaction] insert failed user={fields['user_id']} err={e}")
        raise UpstreamError("Failed to record interaction", details=str(e)) from e

    logger.info(
        f"[interaction] user={event.user_id} type={event.event_type} "
        f"item={event.item_type}:{event.item_id} tags={len(event.tags)}"
    )
    return event
