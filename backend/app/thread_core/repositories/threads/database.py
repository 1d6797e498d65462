"""
Database configuration module.

Sets up the SQLAlchemy engine, session factory, and declarative base for ORM models.

Exports:
    - build_engine: Engine factory honouring SQLite quirks.
    - engine: SQLAlchemy database engine built from ``DATABASE_URL``.
    - SessionLocal: Session factory for database interactions.
    - Base: Declarative base class for defining ORM models.
"""

from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from thread_core.configs import settings


def build_engine(url: str) -> Engine:
    """
    Create an engine for ``url``.

    SQLite connections are shared with the worker threads that run tools and
    searches; an in-memory database keeps a single connection so every
    session sees the same tables.
    """
    if not url:
        raise ValueError("DATABASE_URL environment variable is not set")
    kwargs: Dict[str, Any] = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
