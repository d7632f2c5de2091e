# =============================================
# File: storefront/db/models.py
# Purpose: SQLModel ORM definitions: interaction events (append-only), per-user tag affinity
#          scores (materialized from events) and the product catalog read by the ranker.
# =============================================

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, CheckConstraint, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

EVENT_TYPES = ("view", "click", "add_to_cart", "purchase")
ITEM_TYPES = ("product", "blog")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Timestamps are stored and compared as aware UTC; a naive value read back is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _in_clause(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class InteractionEvent(SQLModel, table=True):
    __tablename__ = "user_interactions"
    __table_args__ = (
        CheckConstraint(_in_clause("event_type", EVENT_TYPES), name="ck_interaction_event_type"),
        CheckConstraint(_in_clause("item_type", ITEM_TYPES), name="ck_interaction_item_type"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    event_type: str
    item_id: str
    item_type: str
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, index=True)


class AffinityScore(SQLModel, table=True):
    __tablename__ = "user_tag_scores"
    __table_args__ = (UniqueConstraint("user_id", "tag", name="uq_user_tag"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    tag: str
    score: float = 0.0
    updated_at: datetime = Field(default_factory=utcnow)


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str
    price: float
    image_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
