"""
tally.services.counter_service — Atomic Download Count Increments
==================================================================

``download_count`` is also written by the catalog layer (admin edits,
re-imports), so it is never loaded, incremented in Python and saved back.
Each increment is a single ``UPDATE … SET download_count = download_count + 1``
and the database serializes concurrent writers.

A target that resolves to no row is a consistency anomaly (the file exists in
storage but its version was deleted from the catalog).  It is logged and
dropped; it never raises.

All functions are synchronous — call via ``await run_db(...)``.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, update

from tally.database.engine import get_session
from tally.database.models import LauncherVersion, ModVersion
from tally.engine.classifier import DownloadTarget, LauncherVersionTarget, ModVersionTarget

logger = logging.getLogger(__name__)


def increment_mod_version(engine: Engine, mod_slug: str, version_slug: str) -> int:
    """Add one download to mod version ``mod_slug@version_slug``.

    Returns the number of rows incremented (0 if the version is unknown).
    """
    with get_session(engine) as session:
        result = session.execute(
            update(ModVersion)
            .where(ModVersion.mod_slug == mod_slug, ModVersion.version == version_slug)
            .values(download_count=ModVersion.download_count + 1)
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount

    _report(updated, f"mod {mod_slug} version {version_slug}")
    return updated


def increment_launcher_version(engine: Engine, version_slug: str) -> int:
    """Add one download to launcher version *version_slug*."""
    with get_session(engine) as session:
        result = session.execute(
            update(LauncherVersion)
            .where(LauncherVersion.version == version_slug)
            .values(download_count=LauncherVersion.download_count + 1)
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount

    _report(updated, f"launcher version {version_slug}")
    return updated


def increment_download_count(engine: Engine, target: DownloadTarget) -> int:
    """Dispatch *target* to the matching increment function."""
    if isinstance(target, ModVersionTarget):
        return increment_mod_version(engine, target.mod_slug, target.version_slug)
    if isinstance(target, LauncherVersionTarget):
        return increment_launcher_version(engine, target.version_slug)
    raise TypeError(f"Unknown download target: {target!r}")


def _report(updated: int, description: str) -> None:
    if updated == 0:
        logger.warning("Received download event for nonexistent %s!", description)
    elif updated > 1:
        logger.warning("Download event for %s matched %d rows; all incremented", description, updated)
    else:
        logger.debug("Counted download for %s", description)
