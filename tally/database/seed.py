"""
tally.database.seed — Example Catalog Seeder
=============================================

Inserts a small example catalog (two mods, a few versions, two launcher
releases) so a development stack has something to count against.  Only run
when ``TALLY_ENV=develop``.

Idempotent — rows that already exist are left untouched, including their
``download_count``.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from tally.database.engine import get_session
from tally.database.models import LauncherVersion, Mod, ModVersion

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Example catalogue
# ---------------------------------------------------------------------------
EXAMPLE_MODS: dict[str, tuple[str, list[str]]] = {
    "super-mod": ("Super Mod", ["1.0.0", "1.2.0"]),
    "better-raft": ("Better Raft", ["0.9.1"]),
}

EXAMPLE_LAUNCHER_VERSIONS: list[str] = ["3.4.4", "3.4.5"]


def seed_example_catalog(engine: Engine) -> int:
    """Insert any missing example mods, mod versions and launcher versions.

    Returns the number of rows inserted.
    """
    inserted = 0
    with get_session(engine) as session:
        existing_mods = set(session.scalars(select(Mod.slug)).all())
        existing_versions = set(
            session.execute(select(ModVersion.mod_slug, ModVersion.version)).tuples().all()
        )
        existing_launcher = set(session.scalars(select(LauncherVersion.version)).all())

        for slug, (title, versions) in EXAMPLE_MODS.items():
            if slug not in existing_mods:
                session.add(Mod(slug=slug, title=title))
                inserted += 1
            for version in versions:
                if (slug, version) not in existing_versions:
                    session.add(ModVersion(mod_slug=slug, version=version, download_count=0))
                    inserted += 1

        for version in EXAMPLE_LAUNCHER_VERSIONS:
            if version not in existing_launcher:
                session.add(LauncherVersion(version=version, download_count=0))
                inserted += 1

    if inserted:
        logger.info("Seeded %d example catalog rows", inserted)
    return inserted
