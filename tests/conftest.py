"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import json
import threading
from datetime import UTC, datetime

import pytest
from minio.datatypes import EventIterable
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from tally.config import StorageConfig, TallyConfig
from tally.database.models import Base, LauncherVersion, Mod, ModVersion

TEST_SALT = "test-salt-for-pytest-only"

# A fixed, timezone-aware "now" for deterministic window arithmetic.
T0 = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Tally tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for tests with truly concurrent writers.

    Each thread gets its own connection; ``BEGIN IMMEDIATE`` makes writers
    queue on the database lock instead of failing with SQLITE_BUSY.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tally.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def catalog(db_engine: Engine) -> Engine:
    """Seed the catalog rows used by the end-to-end scenarios."""
    with Session(db_engine) as session:
        session.add_all([
            Mod(slug="super-mod", title="Super Mod"),
            Mod(slug="other-mod", title="Other Mod"),
        ])
        session.flush()
        session.add_all([
            ModVersion(mod_slug="super-mod", version="1.2.0", download_count=0),
            ModVersion(mod_slug="super-mod", version="1.1.0", download_count=7),
            ModVersion(mod_slug="other-mod", version="1.2.0", download_count=0),
            LauncherVersion(version="3.4.5", download_count=0),
        ])
        session.commit()
    return db_engine


@pytest.fixture
def tally_config() -> TallyConfig:
    return TallyConfig(
        storage=StorageConfig(
            endpoint="minio.test:9000",
            public_bucket="public",
            secure=False,
            access_key="access",
            secret_key="secret",
        ),
        tracking_window_seconds=3600,
        sweep_interval_seconds=3600,
        ip_hash_salt=TEST_SALT,
    )


def mod_downloads(engine: Engine, mod_slug: str, version: str) -> int:
    with Session(engine) as session:
        row = session.query(ModVersion).filter_by(mod_slug=mod_slug, version=version).one()
        return row.download_count


def launcher_downloads(engine: Engine, version: str) -> int:
    with Session(engine) as session:
        return session.query(LauncherVersion).filter_by(version=version).one().download_count


# ---------------------------------------------------------------------------
# Object-storage fakes
# ---------------------------------------------------------------------------
class StubResponse:
    """Streaming HTTP response as seen by minio's ``EventIterable``.

    ``readline`` yields one JSON event per call, then blocks like a live
    notification stream until :meth:`close` is called.
    """

    def __init__(self, events: list[dict]) -> None:
        self._lines = [json.dumps(e).encode() + b"\n" for e in events]
        self._closed = threading.Event()
        self.waiting = threading.Event()
        self.released = False

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def readline(self) -> bytes:
        if self._lines and not self.closed:
            return self._lines.pop(0)
        self.waiting.set()
        self._closed.wait(timeout=10)
        return b""

    def close(self) -> None:
        self._closed.set()

    def release_conn(self) -> None:
        self.released = True


class FakeStorageClient:
    """``Minio`` stand-in whose streams are real ``EventIterable`` objects.

    The first ``failures`` opens raise; the first successful open replays
    ``events``, later ones replay nothing.
    """

    def __init__(self, events: list[dict], failures: int = 0) -> None:
        self.events = events
        self.failures = failures
        self.calls: list[tuple] = []
        self.responses: list[StubResponse] = []
        self.opens = 0

    def listen_bucket_notification(self, bucket, prefix="", suffix="", events=()):
        self.calls.append((bucket, prefix, suffix, tuple(events)))
        return EventIterable(self._open)

    def _open(self) -> StubResponse:
        self.opens += 1
        if self.opens <= self.failures:
            raise ConnectionError("stream refused")
        response = StubResponse(self.events if not self.responses else [])
        self.responses.append(response)
        return response


def get_event(key: str, host: str = "1.2.3.4") -> dict:
    return {
        "Records": [{
            "eventName": "s3:ObjectAccessed:Get",
            "s3": {"bucket": {"name": "public"}, "object": {"key": key, "size": 10}},
            "source": {"host": host, "port": "", "userAgent": "curl/8.0"},
        }],
    }
