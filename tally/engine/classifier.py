"""
tally.engine.classifier — Object Key → Download Target
=======================================================

Maps an object-storage key to the catalog entity it belongs to.  Pure and
total: every key yields either a target or ``None``, never an exception.

Recognised shapes::

    mods/<mod slug>/<version slug>/<file>   → ModVersionTarget
    launcher/<version slug>/<file>          → LauncherVersionTarget
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from tally.constants import LAUNCHER_VERSION_KEY, MOD_VERSION_KEY

__all__ = [
    "DownloadTarget",
    "LauncherVersionTarget",
    "ModVersionTarget",
    "classify_path",
]


@dataclass(frozen=True, slots=True)
class ModVersionTarget:
    """A file belonging to one version of a mod."""

    kind: ClassVar[str] = "mod_version"

    mod_slug: str
    version_slug: str

    @property
    def label(self) -> str:
        return f"{self.mod_slug}@{self.version_slug}"


@dataclass(frozen=True, slots=True)
class LauncherVersionTarget:
    """A file belonging to one launcher release."""

    kind: ClassVar[str] = "launcher_version"

    version_slug: str

    @property
    def label(self) -> str:
        return f"launcher@{self.version_slug}"


DownloadTarget = ModVersionTarget | LauncherVersionTarget


def classify_path(key: str) -> DownloadTarget | None:
    """Return the download target for *key*, or ``None`` if unrecognised."""
    match = MOD_VERSION_KEY.match(key)
    if match:
        return ModVersionTarget(mod_slug=match.group(1), version_slug=match.group(2))

    match = LAUNCHER_VERSION_KEY.match(key)
    if match:
        return LauncherVersionTarget(version_slug=match.group(1))

    return None
