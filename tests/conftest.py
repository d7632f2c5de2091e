"""
Shared fixtures: an isolated in-memory database per test, JWT minting, catalog seeding.
"""
import os
import sys
import time
from datetime import datetime, timedelta, timezone

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import jwt
import pytest
from sqlmodel import Session, SQLModel

from storefront.db import repo
from storefront.db import models  # noqa: F401  (registers tables)
from storefront.db.models import InteractionEvent, Product
from storefront.utils import metrics
from storefront.utils.ratelimit import reset_rate_limit

TEST_SECRET = "test-secret-0123456789-abcdefghijklmnopqrstuvwxyz"
BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def db_engine(monkeypatch):
    monkeypatch.setenv("AUTH_JWT_SECRET", TEST_SECRET)
    monkeypatch.setenv("RL_MAX_REQS", "100")
    monkeypatch.setenv("RL_WINDOW_SECONDS", "60")
    reset_rate_limit()
    metrics.reset()

    engine = repo.make_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    previous = repo.get_engine()
    repo.set_engine(engine)
    yield engine
    repo.set_engine(previous)
    engine.dispose()


def make_token(user_id: str, expires_in: int = 3600, secret: str = TEST_SECRET) -> str:
    claims = {
        "sub": user_id,
        "aud": "authenticated",
        "role": "authenticated",
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(user_id: str, **kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, **kwargs)}"}


def seed_products(engine, specs):
    """specs: iterable of (id, name, tags, created_at) tuples."""
    with Session(engine) as s:
        for pid, name, tags, created in specs:
            s.add(Product(id=pid, name=name, price=9.99, tags=list(tags), created_at=created, updated_at=created))
        s.commit()


def seed_events(engine, user_id, specs):
    """specs: iterable of (event_type, tags, created_at) tuples."""
    with Session(engine) as s:
        for i, (etype, tags, created) in enumerate(specs):
            s.add(
                InteractionEvent(
                    user_id=user_id,
                    event_type=etype,
                    item_id=f"item-{i}",
                    item_type="product",
                    tags=list(tags),
                    created_at=created,
                )
            )
        s.commit()


def days_ago(n: float) -> datetime:
    return BASE_TIME - timedelta(days=n)
