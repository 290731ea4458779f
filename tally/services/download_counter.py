"""
tally.services.download_counter — Download Counter Orchestrator
================================================================

Wires the pipeline together::

    bucket notification ─► classify key ─► fingerprint host
        ─► TrackerStore.observe ─► (fresh?) increment download_count

Lifecycle::

    IDLE ──start()──► LISTENING ──stop()──► STOPPED
      └───start() without storage client──► DEGRADED

The listener thread pushes notifications onto an ``asyncio.Queue``; a single
consumer task pulls them in arrival order and fans each one out to its own
task (bounded by ``max_concurrency``).  Work for different ``(path, ip_hash)``
pairs runs concurrently; same-pair races are settled by the tracker upsert.

:meth:`DownloadCounterService.handle_notification` is the isolation
boundary: nothing raised while processing one notification escapes it.
The sweeper runs on its own task and shares no lock with the hot path.
"""

from __future__ import annotations

import asyncio
import enum
import logging

from minio import Minio
from sqlalchemy import Engine

from tally.config import TallyConfig
from tally.database.engine import run_db
from tally.engine.classifier import DownloadTarget, classify_path
from tally.engine.fingerprint import fingerprint_address
from tally.services.counter_service import increment_download_count
from tally.services.storage import DownloadNotification, NotificationListener
from tally.services.tracker_service import TrackerStore

logger = logging.getLogger(__name__)


class ServiceState(enum.StrEnum):
    IDLE = "idle"
    LISTENING = "listening"
    DEGRADED = "degraded"
    STOPPED = "stopped"


class DownloadCounterService:
    """Listens for download notifications and updates download counts.

    Parameters
    ----------
    cfg:
        Parsed :class:`TallyConfig`.
    engine:
        SQLAlchemy engine holding the catalog and tracker tables.
    client:
        MinIO client, or ``None`` to run in degraded (non-listening) mode.
    salt:
        Fingerprint salt; defaults to ``cfg.ip_hash_salt``.
    tracker:
        Dedup store; built from ``cfg.tracking_window`` when omitted.
    max_concurrency:
        Maximum number of notifications processed at the same time.
    """

    def __init__(
        self,
        cfg: TallyConfig,
        engine: Engine,
        client: Minio | None,
        *,
        salt: str | None = None,
        tracker: TrackerStore | None = None,
        max_concurrency: int = 16,
    ) -> None:
        self.cfg = cfg
        self.engine = engine
        self.client = client
        self.salt = salt or cfg.ip_hash_salt
        if not self.salt:
            raise ValueError("DOWNLOAD_IP_SALT must be set to fingerprint clients")
        self.tracker = tracker or TrackerStore(engine, cfg.tracking_window)
        self.state = ServiceState.IDLE

        self._max_concurrency = max_concurrency
        self._queue: asyncio.Queue[DownloadNotification] | None = None
        self._slots: asyncio.Semaphore | None = None
        self._listener: NotificationListener | None = None
        self._consumer_task: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def start(self) -> None:
        """Subscribe to bucket notifications and schedule the sweeper.

        Without a storage client the service enters ``DEGRADED`` mode instead
        of failing startup; the reason was already logged when the client
        was built.
        """
        if self.state is not ServiceState.IDLE:
            raise RuntimeError(f"Download counter cannot start from state {self.state}")

        if self.client is None:
            logger.info("Download counter running in degraded mode (no storage client)")
            self.state = ServiceState.DEGRADED
            return

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[DownloadNotification] = asyncio.Queue()
        self._queue = queue
        self._slots = asyncio.Semaphore(self._max_concurrency)

        def _enqueue(notification: DownloadNotification) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, notification)

        storage = self.cfg.storage
        self._listener = NotificationListener(
            self.client, storage.public_bucket, storage.events, _enqueue,
        )
        self._listener.start()
        self._consumer_task = asyncio.create_task(self._consume(), name="download-consumer")
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="tracker-sweep")

        self.state = ServiceState.LISTENING
        logger.info(
            "Download counter listening on bucket '%s' (window=%ss, sweep every %ss)",
            storage.public_bucket,
            self.cfg.tracking_window_seconds,
            self.cfg.sweep_interval_seconds,
        )

    async def stop(self) -> None:
        """Unsubscribe, cancel the sweeper and let in-flight work finish."""
        if self.state in (ServiceState.IDLE, ServiceState.STOPPED):
            self.state = ServiceState.STOPPED
            return

        if self._listener is not None:
            await asyncio.to_thread(self._listener.stop)

        tasks = [t for t in (self._consumer_task, self._sweep_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._in_flight:
            logger.info("Waiting for %d in-flight notifications", len(self._in_flight))
            await asyncio.gather(*self._in_flight, return_exceptions=True)

        if self._queue is not None and not self._queue.empty():
            logger.warning("Dropped %d queued notifications on shutdown", self._queue.qsize())

        self.state = ServiceState.STOPPED
        logger.info("Download counter stopped")

    # -------------------------------------------------------------------
    # Consumer
    # -------------------------------------------------------------------
    async def _consume(self) -> None:
        assert self._queue is not None and self._slots is not None
        while True:
            notification = await self._queue.get()
            await self._slots.acquire()
            task = asyncio.create_task(self.handle_notification(notification))
            self._in_flight.add(task)
            task.add_done_callback(self._finish)

    def _finish(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if self._slots is not None:
            self._slots.release()

    # -------------------------------------------------------------------
    # Per-notification pipeline
    # -------------------------------------------------------------------
    async def handle_notification(self, notification: DownloadNotification) -> bool:
        """Process one notification.  Returns True if a counter was incremented.

        Never raises: every failure is logged with the key, host and target.
        """
        target: DownloadTarget | None = None
        try:
            target = classify_path(notification.key)
            if target is None:
                logger.warning(
                    "File %s does not match any known type of download; ignoring",
                    notification.key,
                )
                return False

            ip_hash = fingerprint_address(notification.host, self.salt)
            observation = await run_db(self.tracker.observe, notification.key, ip_hash)
            if not observation.is_fresh_download:
                logger.debug(
                    "Repeat download inside window: key=%s target=%s",
                    notification.key, target.label,
                )
                return False

            updated = await run_db(increment_download_count, self.engine, target)
            return updated > 0

        except Exception:
            logger.exception(
                "Failed to process download notification: key=%s host=%s target=%s",
                notification.key,
                notification.host,
                target.kind if target is not None else None,
            )
            return False

    # -------------------------------------------------------------------
    # Sweeper
    # -------------------------------------------------------------------
    async def sweep_once(self) -> int:
        """Run one tracker sweep.  Returns rows removed, 0 on failure."""
        try:
            return await run_db(self.tracker.sweep)
        except Exception:
            logger.exception("Error while removing expired download trackers")
            return 0

    async def _sweep_loop(self) -> None:
        interval = self.cfg.sweep_interval.total_seconds()
        while True:
            await asyncio.sleep(interval)
            await self.sweep_once()
