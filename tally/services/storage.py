"""
tally.services.storage — MinIO Client & Bucket Notification Listener
=====================================================================

**Why this file exists:**
MinIO pushes bucket notifications over a long-lived HTTP response that the
``minio`` SDK exposes as a *blocking* iterator.  Reading it on the event loop
would freeze notification processing, so the stream is consumed on a daemon
thread and every parsed record is handed to a callback, which the
orchestrator uses to feed an ``asyncio.Queue``.

The listener reconnects with exponential backoff + jitter when the stream
drops, and gives up after ``max_reconnect_attempts`` consecutive failures.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote_plus

from minio import Minio

from tally.config import StorageConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Client construction
# ---------------------------------------------------------------------------
def create_storage_client(storage: StorageConfig) -> Minio | None:
    """Build a MinIO client, or return ``None`` if it cannot be built.

    ``None`` puts the download counter in degraded (non-listening) mode;
    this function is the one place that reports why.
    """
    if not storage.has_credentials:
        logger.warning(
            "Storage client config is incomplete (access key, secret key and "
            "endpoint are all required) — download counting is disabled."
        )
        return None

    try:
        client = Minio(
            storage.endpoint,
            access_key=storage.access_key,
            secret_key=storage.secret_key,
            secure=storage.secure,
        )
    except ValueError as exc:
        # e.g. "http://minio:9000": the SDK wants host[:port] only
        logger.warning(
            "Invalid storage endpoint %r (%s) — download counting is disabled.",
            storage.endpoint, exc,
        )
        return None
    logger.info("Storage client created → %s (bucket=%s)", storage.endpoint, storage.public_bucket)
    return client


# ---------------------------------------------------------------------------
# Notification records
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DownloadNotification:
    """The two fields of an ``s3:ObjectAccessed:Get`` record Tally uses."""

    key: str   # Object key within the bucket (URL-decoded)
    host: str  # Address of the client that issued the GET


def parse_records(event: dict[str, Any]) -> list[DownloadNotification]:
    """Flatten a MinIO notification payload into :class:`DownloadNotification` values.

    S3 notification keys are URL-encoded (``+`` for spaces), so they are
    decoded here.  Records without a key or source host are skipped.
    """
    notifications: list[DownloadNotification] = []
    for record in event.get("Records") or []:
        try:
            key = record["s3"]["object"]["key"]
            host = record["source"]["host"]
        except (KeyError, TypeError):
            logger.warning("Skipping malformed notification record: %r", record)
            continue
        if not key or not host:
            logger.warning("Skipping notification record without key/host: %r", record)
            continue
        notifications.append(DownloadNotification(key=unquote_plus(key), host=host))
    return notifications


# ---------------------------------------------------------------------------
# Listener thread
# ---------------------------------------------------------------------------
class NotificationListener:
    """Consumes ``listen_bucket_notification`` on a background thread.

    Usage::

        listener = NotificationListener(client, "public", events, on_notification)
        listener.start()
        ...
        listener.stop()
    """

    def __init__(
        self,
        client: Minio,
        bucket: str,
        events: Iterable[str],
        on_notification: Callable[[DownloadNotification], None],
        *,
        max_reconnect_attempts: int = 10,
        base_backoff: float = 1.0,
        max_backoff: float = 60.0,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._events = tuple(events)
        self._on_notification = on_notification
        self._max_reconnect_attempts = max_reconnect_attempts
        self._base_backoff = base_backoff
        self._max_backoff = max_backoff

        self._shutdown_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._stream: Any = None
        self._stream_lock = threading.Lock()
        self._healthy = False
        self._failed = False

    @property
    def healthy(self) -> bool:
        """True while the stream is connected."""
        return self._healthy and not self._failed

    @property
    def failed(self) -> bool:
        """True if the listener exhausted its reconnect attempts."""
        return self._failed

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Notification listener already started")
        thread = threading.Thread(
            target=self._listen_thread, daemon=True, name="bucket-notification-listener",
        )
        self._thread = thread
        thread.start()
        logger.info("Bucket notification listener thread started")

    def stop(self, timeout: float = 5.0) -> None:
        """Unsubscribe from the bucket and wait for the thread to exit.

        ``EventIterable`` has no ``close()``; leaving its context closes the
        HTTP response, which unblocks the reader thread.
        """
        self._shutdown_event.set()
        with self._stream_lock:
            stream = self._stream
        if stream is not None:
            try:
                stream.__exit__(None, None, None)
            except Exception:
                logger.warning("Error closing notification stream", exc_info=True)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(
                    "Bucket notification listener did not exit within %.1fs", timeout,
                )
            else:
                logger.info("Bucket notification listener thread stopped")

    # -------------------------------------------------------------------
    # Thread body
    # -------------------------------------------------------------------
    def _open_once(self, stream: Any) -> None:
        """Make ``stream`` open its response at most once.

        ``EventIterable.__next__`` silently reopens a closed response, which
        would resubscribe after :meth:`stop` and would bypass the backoff
        below when the server drops the stream.  A second open raises
        instead, so every reconnect goes through this thread's retry loop.
        """
        opener = stream._func
        opened = False

        def _open():
            nonlocal opened
            if opened or self._shutdown_event.is_set():
                raise ConnectionError("Notification stream closed")
            response = opener()
            opened = True
            self._healthy = True
            logger.info(
                "Listening for %s on bucket '%s'",
                ", ".join(self._events), self._bucket,
            )
            return response

        stream._func = _open

    def _listen_thread(self) -> None:
        attempt = 0

        while not self._shutdown_event.is_set():
            try:
                with self._client.listen_bucket_notification(
                    self._bucket, prefix="", suffix="", events=self._events,
                ) as stream:
                    self._open_once(stream)
                    with self._stream_lock:
                        self._stream = stream
                    # Only ends by raising: a dropped or closed response
                    # surfaces as ConnectionError from _open_once.
                    for event in stream:
                        if self._shutdown_event.is_set():
                            break
                        self._dispatch(event)

            except Exception:
                was_connected = self._healthy
                self._healthy = False
                if self._shutdown_event.is_set():
                    break
                # Consecutive failed opens trip the breaker; a drop after a
                # successful open starts counting again.
                attempt = 1 if was_connected else attempt + 1

                if attempt >= self._max_reconnect_attempts:
                    logger.critical(
                        "Notification listener exhausted %d retries. "
                        "Download counting disabled.",
                        self._max_reconnect_attempts,
                    )
                    self._failed = True
                    break

                backoff = min(self._base_backoff * (2 ** (attempt - 1)), self._max_backoff)
                wait = backoff + random.uniform(0, backoff * 0.5)
                logger.exception(
                    "Notification stream lost (attempt %d/%d). Reconnecting in %.1fs…",
                    attempt, self._max_reconnect_attempts, wait,
                )
                if self._shutdown_event.wait(timeout=wait):
                    break
            finally:
                with self._stream_lock:
                    self._stream = None

        self._healthy = False

    def _dispatch(self, event: dict[str, Any]) -> None:
        for notification in parse_records(event):
            try:
                self._on_notification(notification)
            except Exception:
                logger.exception(
                    "Error handing off notification for key %s", notification.key,
                )
