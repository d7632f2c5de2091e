# =============================================
# File: storefront/services/ranker.py
# Purpose: Recommendation ranker: blend tag affinity, item recency and context-tag overlap
# =============================================
"""
score(product) = affinity + recency + context bonus

- affinity: sum of the user's AffinityScore over the product's tags
- recency:  RECENCY_WEIGHT * 0.5 ** (age_days / RECENCY_HALF_LIFE_DAYS), age taken from
            the later of created_at / updated_at
- context:  CONTEXT_BONUS per product tag found in the context tag set

Ties: more context matches, then more recent, then product_id ascending.
"""
from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from storefront.db import repo
from storefront.db.models import Product, as_utc, utcnow
from storefront.errors import UpstreamError
from storefront.results import Empty, ErrorKind, Failed, Ok, RankResult
from storefront.services.affinity import get_user_scores
from storefront.utils.metrics import record_ranker_latency

GENERAL_CONTEXT = "general"

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="ranker")


class RecommendationCandidate(BaseModel):
    product_id: str
    name: str
    price: float
    thumbnail_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    score: float = 0.0


def _ranker_settings() -> Tuple[float, float, float, float]:
    """Read at call time so tests/env overrides take effect."""
    return (
        float(os.getenv("RECENCY_HALF_LIFE_DAYS", "14")),
        float(os.getenv("RECENCY_WEIGHT", "1.0")),
        float(os.getenv("CONTEXT_BONUS", "2.0")),
        float(os.getenv("RANKER_TIMEOUT_SECONDS", "2.0")),
    )


def context_tag_set(context: Optional[str], tags: Optional[Iterable[str]]) -> Set[str]:
    out = {t.strip() for t in (tags or []) if t and t.strip()}
    ctx = (context or "").strip()
    if ctx and ctx != GENERAL_CONTEXT:
        out.add(ctx)
    return out


def _freshness(p: Product) -> datetime:
    created = as_utc(p.created_at)
    return max(created, as_utc(p.updated_at)) if p.updated_at else created


def rank_products(
    products: Iterable[Product],
    affinity: Dict[str, float],
    context_tags: Set[str],
    limit: int,
    now: Optional[datetime] = None,
) -> List[RecommendationCandidate]:
    """Pure ranking step over already-loaded rows."""
    half_life, recency_weight, context_bonus, _ = _ranker_settings()
    now = as_utc(now) if now else utcnow()

    scored = []
    for p in products:
        tags = list(dict.fromkeys(p.tags or []))
        fresh = _freshness(p)
        age_days = max(0.0, (now - fresh).total_seconds() / 86400.0)
        recency = recency_weight * (0.5 ** (age_days / half_life)) if half_life > 0 else recency_weight
        matches = sum(1 for t in tags if t in context_tags)
        score = sum(affinity.get(t, 0.0) for t in tags) + recency + context_bonus * matches
        scored.append((score, matches, fresh, p, tags))

    # ascending product_id as the last, deterministic tie-break
    scored.sort(key=lambda r: r[3].id)
    scored.sort(key=lambda r: (r[0], r[1], r[2]), reverse=True)

    return [
        RecommendationCandidate(
            product_id=p.id,
            name=p.name,
            price=float(p.price),
            thumbnail_url=p.image_url,
            tags=tags,
            score=round(score, 6),
        )
        for score, _, _, p, tags in scored[:limit]
    ]


def _personalized(user_id: str, context_tags: Set[str], limit: int) -> RankResult:
    with Session(repo.get_engine()) as session:
        affinity = get_user_scores(session, user_id)
        if not affinity:
            return Empty("no_affinity")
        products = session.exec(select(Product).where(Product.is_active == True)).all()  # noqa: E712
    if not products:
        return Empty("no_candidates")
    items = rank_products(products, affinity, context_tags, limit)
    return Ok([c.model_dump() for c in items])


def get_recommendations(
    user_id: str,
    context: str = GENERAL_CONTEXT,
    tags: Optional[List[str]] = None,
    limit: int = 6,
    timeout: Optional[float] = None,
) -> RankResult:
    """
    Ranked recommendations for a user. Never raises.

    Ok(items) when personalized candidates exist, Empty when the user has no
    signal yet (caller falls back), Failed(UPSTREAM) on query error or timeout.
    """
    ctx_tags = context_tag_set(context, tags)
    if timeout is None:
        timeout = _ranker_settings()[3]

    start = time.perf_counter()
    future = _executor.submit(_personalized, user_id, ctx_tags, limit)
    try:
        result = future.result(timeout=timeout)
        record_ranker_latency((time.perf_counter() - start) * 1000)
    except FutureTimeout:
        future.cancel()
        logger.warning(f"[recommend] query timed out user={user_id} timeout={timeout}s")
        return Failed(ErrorKind.UPSTREAM, "timeout")
    except SQLAlchemyError as e:
        logger.error(f"[recommend] query failed user={user_id} err={e}")
        return Failed(ErrorKind.UPSTREAM, str(e))
    except Exception as e:
        logger.exception(f"[recommend] unexpected ranker error user={user_id}")
        return Failed(ErrorKind.UPSTREAM, str(e))

    n = len(result.items) if isinstance(result, Ok) else 0
    logger.info(f"[recommend] user={user_id} context={context} tags={sorted(ctx_tags)} limit={limit} picks={n}")
    return result


def latest_products(limit: int = 6) -> List[RecommendationCandidate]:
    """Generic, context-free listing: most recently added active products."""
    try:
        with Session(repo.get_engine()) as session:
            rows = session.exec(
                select(Product)
                .where(Product.is_active == True)  # noqa: E712
                .order_by(Product.created_at.desc(), Product.id)
                .limit(limit)
            ).all()
    except SQLAlchemyError as e:
        raise UpstreamError("Failed to load products", details=str(e)) from e
    return [
        RecommendationCandidate(
            product_id=p.id,
            name=p.name,
            price=float(p.price),
            thumbnail_url=p.image_url,
            tags=list(p.tags or []),
        )
        for p in rows
    ]
