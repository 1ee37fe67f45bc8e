"""Database connection and session management.

This module handles the database connection using SQLAlchemy. The document
store and the identity store both open short-lived sessions from
``SessionLocal``.
"""

import asyncio
import functools
import threading
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import DATA_DIR, DATABASE_URL
from models.base import Base
# Import models to ensure they are registered with Base.metadata
import models  # noqa: F401

T = TypeVar("T")

_shared_connection_lock = threading.RLock()


def build_engine(url: str) -> Engine:
    """Create an engine suited to the given database URL.

    In-memory SQLite databases share a single connection so that every session
    sees the same tables.

    Args:
        url: SQLAlchemy database URL.

    Returns:
        Configured Engine.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, connect_args={"check_same_thread": False})


if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
    # Ensure data directory exists
    DATA_DIR.mkdir(parents=True, exist_ok=True)

engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = engine) -> None:
    Base.metadata.create_all(bind=bind)


# Initialize DB (create tables if not exist)
init_db()


def connection_lock(session_factory: Callable[..., Any]) -> ContextManager:
    """Return the lock guarding sessions made by ``session_factory``.

    Engines backed by a single shared connection (in-memory SQLite) cannot
    run two transactions at once, so their sessions are serialized across
    executor threads. Other engines get a no-op context.
    """
    bind = getattr(session_factory, "kw", {}).get("bind")
    if bind is not None and isinstance(bind.pool, StaticPool):
        return _shared_connection_lock
    return nullcontext()


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run blocking database or hashing work on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args))
