"""
tally.config — YAML Configuration Loader
=========================================

**Why this file exists:**
Soft settings (storage endpoint, bucket name, tracking window, sweep interval)
live in ``config.yaml``.  Secrets (storage credentials, the fingerprint salt)
never do: they are read from the environment, which ``__main__`` populates
from ``.env`` via python-dotenv before calling :func:`load_config`.

Usage::

    from tally.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.storage.public_bucket) # "public"
    print(cfg.tracking_window)       # datetime.timedelta(seconds=3600)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import yaml

from tally.constants import (
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_TRACKING_WINDOW_SECONDS,
    DOWNLOAD_EVENT_CODES,
)


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Object-storage connection settings.

    ``access_key`` and ``secret_key`` come from the environment
    (``STORAGE_ACCESS_KEY`` / ``STORAGE_SECRET_KEY``).
    """

    endpoint: str | None
    public_bucket: str
    secure: bool = True
    events: tuple[str, ...] = DOWNLOAD_EVENT_CODES
    access_key: str | None = None
    secret_key: str | None = None

    @property
    def has_credentials(self) -> bool:
        """True when a client can be built (key, secret *and* endpoint)."""
        return bool(self.access_key and self.secret_key and self.endpoint)


@dataclass(frozen=True, slots=True)
class TallyConfig:
    """Immutable configuration loaded from ``config.yaml`` + environment."""

    storage: StorageConfig

    # Sliding dedup window and sweeper cadence
    tracking_window_seconds: int = DEFAULT_TRACKING_WINDOW_SECONDS
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS

    # Secret salt for client fingerprints (``DOWNLOAD_IP_SALT``)
    ip_hash_salt: str | None = None

    @property
    def tracking_window(self) -> timedelta:
        return timedelta(seconds=self.tracking_window_seconds)

    @property
    def sweep_interval(self) -> timedelta:
        return timedelta(seconds=self.sweep_interval_seconds)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TallyConfig:
    """Read *path* and return a :class:`TallyConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a duration is not a positive number of seconds.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    storage_raw: dict = raw["storage"]
    tracking_raw: dict = raw.get("tracking") or {}

    storage = StorageConfig(
        endpoint=storage_raw.get("endpoint") or None,
        public_bucket=storage_raw["public_bucket"],
        secure=bool(storage_raw.get("secure", True)),
        events=tuple(storage_raw.get("events") or DOWNLOAD_EVENT_CODES),
        access_key=os.getenv("STORAGE_ACCESS_KEY") or None,
        secret_key=os.getenv("STORAGE_SECRET_KEY") or None,
    )

    window = int(tracking_raw.get("window_seconds", DEFAULT_TRACKING_WINDOW_SECONDS))
    interval = int(tracking_raw.get("sweep_interval_seconds", DEFAULT_SWEEP_INTERVAL_SECONDS))
    if window <= 0 or interval <= 0:
        raise ValueError(
            "tracking.window_seconds and tracking.sweep_interval_seconds "
            f"must be positive (got {window}, {interval})"
        )

    return TallyConfig(
        storage=storage,
        tracking_window_seconds=window,
        sweep_interval_seconds=interval,
        ip_hash_salt=os.getenv("DOWNLOAD_IP_SALT") or None,
    )
