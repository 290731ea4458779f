"""
tally.constants — Shared Constants
===================================

Single source of truth for object-key patterns, notification event codes and
the default timing of the tracking window and sweeper.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Object-storage notifications
# ---------------------------------------------------------------------------
# MinIO / S3 event codes that represent a file download.
DOWNLOAD_EVENT_CODES: tuple[str, ...] = ("s3:ObjectAccessed:Get",)


# ---------------------------------------------------------------------------
# Object key patterns
# ---------------------------------------------------------------------------
SLUG_PATTERN = r"[A-Za-z0-9.\-_]{1,64}"

# mods/<mod slug>/<version slug>/<file name>
MOD_VERSION_KEY = re.compile(rf"^mods/({SLUG_PATTERN})/({SLUG_PATTERN})/(.+)$")

# launcher/<version slug>/<file name>
LAUNCHER_VERSION_KEY = re.compile(rf"^launcher/({SLUG_PATTERN})/(.+)$")


# ---------------------------------------------------------------------------
# Timing defaults (seconds)
# ---------------------------------------------------------------------------
DEFAULT_TRACKING_WINDOW_SECONDS = 60 * 60  # 1 hour
DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 60  # 1 hour


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
# Backends whose INSERT supports ON CONFLICT DO NOTHING (tracker upsert).
SUPPORTED_DIALECTS: tuple[str, ...] = ("postgresql", "sqlite")
