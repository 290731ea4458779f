"""
tally.services.tracker_service — Sliding-Window Download Dedup Store
=====================================================================

Answers one question per notification: *is this a fresh download?*

A ``download_trackers`` row means "this client was already counted for this
object key until ``expires_at``".  Every visit, counted or not, pushes the
expiry forward by the tracking window, so a client hammering a file is
counted once per quiet period.

**Atomicity:** the decision is made by the database, not by a read in
Python.  Inside one transaction:

1. ``INSERT … ON CONFLICT (path, ip_hash) DO NOTHING`` — one row inserted
   means a never-seen pair, fresh.
2. ``UPDATE … WHERE expires_at <= :now`` — one row updated means the window
   had lapsed, fresh.  Concurrent observers of the same lapsed row
   serialize on the row lock; only the first one still matches.
3. ``UPDATE … WHERE expires_at < :new_expiry`` — slide the window, not fresh.

**Sweeping** only deletes rows whose window has already lapsed, and re-checks
that condition in the ``DELETE`` itself, so it can never turn a still-active
window into a fresh download.  All methods are synchronous — call via
``await run_db(store.observe, ...)``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, delete, func, select, tuple_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from tally.database.engine import get_session
from tally.database.models import DownloadTracker

logger = logging.getLogger(__name__)

# How many expired rows to delete in each sweep batch
BATCH_SIZE = 5_000

# Dialects whose INSERT supports ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class Observation:
    """Outcome of :meth:`TrackerStore.observe`."""

    is_fresh_download: bool
    expires_at: datetime


class TrackerStore:
    """Persistent ``(path, ip_hash) → expires_at`` table with windowed dedup.

    Parameters
    ----------
    engine:
        SQLAlchemy engine (PostgreSQL in production, SQLite in tests).
    tracking_window:
        How long a counted visit suppresses further counts for the same pair.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        engine: Engine,
        tracking_window: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if tracking_window <= timedelta(0):
            raise ValueError(f"tracking_window must be positive, got {tracking_window}")
        try:
            self._insert = _UPSERT_INSERTS[engine.dialect.name]
        except KeyError:
            raise ValueError(
                f"Unsupported database dialect for download tracking: {engine.dialect.name}"
            ) from None

        self.engine = engine
        self.tracking_window = tracking_window
        self._clock = clock

    # -------------------------------------------------------------------
    # Hot path
    # -------------------------------------------------------------------
    def observe(self, path: str, ip_hash: str, now: datetime | None = None) -> Observation:
        """Record a visit of *ip_hash* to *path* and report whether it counts."""
        now = now or self._clock()
        expires_at = now + self.tracking_window
        same_pair = (DownloadTracker.path == path) & (DownloadTracker.ip_hash == ip_hash)

        with get_session(self.engine) as session:
            inserted = session.execute(
                self._insert(DownloadTracker.__table__)
                .values(path=path, ip_hash=ip_hash, expires_at=expires_at)
                .on_conflict_do_nothing(index_elements=["path", "ip_hash"])
            ).rowcount
            if inserted:
                logger.debug("New tracker: path=%s ip=%s", path, ip_hash)
                return Observation(True, expires_at)

            renewed = session.execute(
                update(DownloadTracker)
                .where(same_pair, DownloadTracker.expires_at <= now)
                .values(expires_at=expires_at)
                .execution_options(synchronize_session=False)
            ).rowcount
            if renewed:
                logger.debug("Tracker window lapsed, renewed: path=%s ip=%s", path, ip_hash)
                return Observation(True, expires_at)

            # Still inside the window: slide it forward, never backwards.
            session.execute(
                update(DownloadTracker)
                .where(same_pair, DownloadTracker.expires_at < expires_at)
                .values(expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            return Observation(False, expires_at)

    # -------------------------------------------------------------------
    # Storage reclamation
    # -------------------------------------------------------------------
    def sweep(self, now: datetime | None = None) -> int:
        """Delete trackers whose window lapsed at or before *now*.

        Returns the number of rows removed.
        """
        now = now or self._clock()
        removed = 0

        while True:
            with get_session(self.engine) as session:
                keys = session.execute(
                    select(DownloadTracker.path, DownloadTracker.ip_hash)
                    .where(DownloadTracker.expires_at <= now)
                    .limit(BATCH_SIZE)
                ).tuples().all()

                if not keys:
                    break

                # Re-check expiry: a row refreshed since the SELECT must survive.
                result = session.execute(
                    delete(DownloadTracker)
                    .where(
                        tuple_(DownloadTracker.path, DownloadTracker.ip_hash).in_(keys),
                        DownloadTracker.expires_at <= now,
                    )
                    .execution_options(synchronize_session=False)
                )
                removed += result.rowcount

            if len(keys) < BATCH_SIZE:
                break

        logger.info("Tracker sweep removed %d expired rows (cutoff=%s)", removed, now.isoformat())
        return removed

    def get_tracker_stats(self, now: datetime | None = None) -> dict:
        """Return tracker table statistics for health logging."""
        now = now or self._clock()
        with get_session(self.engine) as session:
            total = session.scalar(
                select(func.count()).select_from(DownloadTracker)
            ) or 0
            expired = session.scalar(
                select(func.count())
                .select_from(DownloadTracker)
                .where(DownloadTracker.expires_at <= now)
            ) or 0
            oldest = session.scalar(select(func.min(DownloadTracker.expires_at)))
            newest = session.scalar(select(func.max(DownloadTracker.expires_at)))

        return {
            "total_trackers": total,
            "expired_trackers": expired,
            "oldest_expiry": oldest.isoformat() if oldest else None,
            "newest_expiry": newest.isoformat() if newest else None,
        }
