# =============================================
# File: storefront/services/affinity.py
# Purpose: Affinity aggregator: fold a user's interaction history into per-tag scores
# =============================================
"""
Scoring model
-------------
Each event adds ``EVENT_WEIGHTS[event_type] * decay(age)`` to every distinct tag
it carries, where

    decay(age) = 0.5 ** (age_days / AFFINITY_HALF_LIFE_DAYS)

and ``age`` is measured from the user's most recent event. Anchoring on the
history itself (not on wall-clock time) keeps the score a pure function of the
events: recomputing with no new events rewrites identical values.

Writes replace the user's whole tag set inside one transaction. Two recomputes of
the same user racing each other never mix rows: one commits, the other rolls
back on ``uq_user_tag`` and is reported as a failure; rerunning converges.
"""
from __future__ import annotations

import json
import os
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from storefront.db import repo
from storefront.db.models import EVENT_TYPES, AffinityScore, InteractionEvent, as_utc, utcnow
from storefront.utils.metrics import record_aggregation

DEFAULT_WEIGHTS: Dict[str, float] = {
    "view": 1.0,
    "click": 2.0,
    "add_to_cart": 3.0,
    "purchase": 5.0,
}


def _load_weights() -> Dict[str, float]:
    raw = os.getenv("AFFINITY_WEIGHTS")
    if not raw:
        return dict(DEFAULT_WEIGHTS)
    weights = {**DEFAULT_WEIGHTS, **{k: float(v) for k, v in json.loads(raw).items()}}
    ordered = [weights[t] for t in EVENT_TYPES]
    if any(a >= b for a, b in zip(ordered, ordered[1:])) or ordered[0] <= 0:
        raise ValueError("AFFINITY_WEIGHTS must keep view < click < add_to_cart < purchase, all positive")
    return weights


EVENT_WEIGHTS = _load_weights()


def _half_life_days() -> float:
    return float(os.getenv("AFFINITY_HALF_LIFE_DAYS", "30"))


@dataclass
class AggregationReport:
    users: int = 0
    updated: int = 0
    failures: int = 0
    failed_users: List[str] = field(default_factory=list)


def decay(age_days: float, half_life_days: float) -> float:
    if half_life_days <= 0:
        return 1.0
    return 0.5 ** (max(0.0, age_days) / half_life_days)


def compute_scores(events: Iterable[InteractionEvent], half_life_days: Optional[float] = None) -> Dict[str, float]:
    """Pure scoring over an event history. Empty history -> empty mapping."""
    hl = _half_life_days() if half_life_days is None else half_life_days
    history = sorted(events, key=lambda e: (as_utc(e.created_at), e.id))
    if not history:
        return {}
    anchor: datetime = as_utc(history[-1].created_at)

    scores: Dict[str, float] = defaultdict(float)
    for ev in history:
        weight = EVENT_WEIGHTS.get(ev.event_type)
        if weight is None:
            continue
        age_days = (anchor - as_utc(ev.created_at)).total_seconds() / 86400.0
        contribution = weight * decay(age_days, hl)
        for tag in sorted(set(ev.tags or [])):
            scores[tag] += contribution
    return dict(scores)


def _build_rows(user_id: str, scores: Dict[str, float], now: datetime) -> List[AffinityScore]:
    return [AffinityScore(user_id=user_id, tag=tag, score=scores[tag], updated_at=now) for tag in sorted(scores)]


def _recompute_user(user_id: str) -> int:
    """Rewrite one user's rows atomically. Returns the number of rows written."""
    engine = repo.get_engine()
    with Session(engine) as session:
        events = session.exec(
            select(InteractionEvent).where(InteractionEvent.user_id == user_id)
        ).all()
        scores = compute_scores(events)
        now = utcnow()

        try:
            session.exec(delete(AffinityScore).where(AffinityScore.user_id == user_id))
            session.add_all(_build_rows(user_id, scores, now))
            session.commit()
        except Exception:
            session.rollback()
            raise
    return len(scores)


def _all_user_ids() -> List[str]:
    with Session(repo.get_engine()) as session:
        rows = session.exec(select(InteractionEvent.user_id).distinct()).all()
    return sorted(rows)


def recompute_affinity(user_id: Optional[str] = None) -> AggregationReport:
    """
    Recompute AffinityScore rows for one user (on-demand) or every user (batch).

    Per-user failures roll that user back and are counted in the report;
    the batch keeps going with the remaining users.
    """
    report = AggregationReport()
    user_ids = [user_id] if user_id else _all_user_ids()

    for uid in user_ids:
        report.users += 1
        try:
            report.updated += _recompute_user(uid)
        except SQLAlchemyError as e:
            report.failures += 1
            report.failed_users.append(uid)
            logger.error(f"[affinity] recompute failed user={uid} err={e}")
        except Exception:
            report.failures += 1
            report.failed_users.append(uid)
            logger.exception(f"[affinity] unexpected recompute error user={uid}")

    record_aggregation(users=report.users, rows=report.updated, failures=report.failures)
    logger.info(
        f"[affinity] mode={'user' if user_id else 'batch'} users={report.users} "
        f"rows={report.updated} failures={report.failures}"
    )
    return report


def get_user_scores(session: Session, user_id: str) -> Dict[str, float]:
    rows = session.exec(select(AffinityScore).where(AffinityScore.user_id == user_id)).all()
    return {r.tag: r.score for r in rows}
