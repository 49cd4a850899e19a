"""Database bootstrap helpers shared by the marketplace processes."""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from vaultmarket.common.config import settings


def _connect_args(url: str) -> dict:
    # Side effects run on worker threads, so SQLite connections must be shareable.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


# Single SQLAlchemy engine per process.
engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args(settings.database_url))
# `expire_on_commit=False` keeps ORM objects readable after commit, when
# settlement handlers pass them to side effects.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all marketplace, ledger and notification models."""

    pass
