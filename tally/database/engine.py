"""
tally.database.engine — Database Connection & Async Helper
===========================================================

**Why this file exists:**
Notifications are consumed on an ``asyncio`` event loop, but SQLAlchemy +
psycopg2 is **synchronous**.  Calling the DB directly from a coroutine would
stall every other notification until the query returns.

The bridge:

    1. A notification is pulled off the queue  (async world).
    2. The service calls ``await run_db(store.observe, path, ip_hash)``.
    3. ``run_db`` ships the synchronous function to a **thread pool** via
       ``asyncio.to_thread()``.
    4. The DB work happens on a background thread — the event loop stays free.

Usage::

    from tally.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # DATABASE_URL: postgresql or sqlite
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    observation = await run_db(store.observe, path, ip_hash)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session

from tally.constants import SUPPORTED_DIALECTS
from tally.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def database_url() -> str:
    """Return ``DATABASE_URL``, checked against the supported backends.

    Raises
    ------
    RuntimeError
        If the variable is unset, unparsable, or names a backend whose
        INSERT cannot do ``ON CONFLICT DO NOTHING``.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )
    try:
        backend = make_url(url).get_backend_name()
    except ArgumentError as exc:
        raise RuntimeError(f"DATABASE_URL is not a valid database URL: {exc}") from exc
    if backend not in SUPPORTED_DIALECTS:
        raise RuntimeError(
            f"DATABASE_URL uses unsupported backend '{backend}' "
            f"(expected one of: {', '.join(SUPPORTED_DIALECTS)})."
        )
    return url


def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from :func:`database_url`.

    The pool is small: the hot path holds a connection only for the
    duration of one upsert or one ``UPDATE … + 1``.  SQLite (local runs)
    gets a busy timeout instead of pool sizing.
    """
    url = make_url(database_url())

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    else:
        engine = create_engine(
            url,
            echo=False,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,   # Reconnect stale connections automatically
            pool_timeout=10,      # Fail after 10s instead of hanging forever
            pool_recycle=3600,
        )
    logger.info("Database engine created → %s (%s)", url.host or url.database, url.get_backend_name())
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`tally.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments
        where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the event loop is never
    blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
