# =============================================
# File: storefront/db/repo.py
# Purpose: DB repository bootstrap: configure engine from DB_URL (default SQLite), expose
#          init_db() to create tables and a swappable engine for tests / CLI overrides.
# =============================================

import os

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

DB_URL = os.getenv("DB_URL", "sqlite:///./storefront.db")


def make_engine(url: str = DB_URL):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # in-memory DBs live in a single connection; share it across threads
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, echo=False, pool_pre_ping=True)


engine = make_engine(DB_URL)


def get_engine():
    return engine


def set_engine(new_engine) -> None:
    global engine
    engine = new_engine


def init_db() -> None:
    # models must be imported so their tables are registered on the metadata
    from storefront.db import models  # noqa: F401
    SQLModel.metadata.create_all(engine)
