# =============================================
# File: storefront/routers/metrics.py
# Purpose: Counters for interaction writes, ranker outcomes, aggregation runs and latency
# =============================================
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from storefront.errors import ValidationError
from storefront.utils.metrics import snapshot

router = APIRouter(tags=["metrics"])

SECTIONS = ("counters", "interactions_by_type", "recommendation_outcomes", "latency_ms", "performance")


@router.get("/metrics")
def get_metrics(section: Optional[str] = Query(None, description="Return a single part of the snapshot")):
    """
    Full snapshot by default. `?section=recommendation_outcomes` (or any of
    SECTIONS) returns that part alone, e.g. for a dashboard polling one counter group.
    """
    snap = snapshot()
    if section is None:
        return snap
    if section not in SECTIONS:
        raise ValidationError(f"Unknown metrics section: {section}", details="one of: " + ", ".join(SECTIONS))
    return {section: snap[section]}
