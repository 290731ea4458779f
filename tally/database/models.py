"""
tally.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- mods               — Catalog of mods (slug PK), owned by the catalog layer
- mod_versions       — Released files of a mod, with ``download_count``
- launcher_versions  — Launcher releases, with ``download_count``
- download_trackers  — (path, ip_hash) → expires_at dedup windows

Only ``download_count`` on the two version tables and the whole of
``download_trackers`` are written by Tally.  The rest of the catalog is
managed elsewhere and is assumed to exist.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Tally ORM models."""


# ---------------------------------------------------------------------------
# Mods — catalog entries addressed by slug
# ---------------------------------------------------------------------------
class Mod(Base):
    __tablename__ = "mods"

    slug: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    versions: Mapped[list[ModVersion]] = relationship(
        back_populates="mod", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Mod slug={self.slug!r}>"


# ---------------------------------------------------------------------------
# ModVersion — one row per uploaded mod version
# ---------------------------------------------------------------------------
class ModVersion(Base):
    __tablename__ = "mod_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mod_slug: Mapped[str] = mapped_column(
        String(64), ForeignKey("mods.slug", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[str] = mapped_column(String(64), nullable=False)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    mod: Mapped[Mod] = relationship(back_populates="versions")

    __table_args__ = (
        UniqueConstraint("mod_slug", "version", name="uq_mod_versions_mod_version"),
    )

    def __repr__(self) -> str:
        return (
            f"<ModVersion {self.mod_slug}@{self.version} "
            f"downloads={self.download_count}>"
        )


# ---------------------------------------------------------------------------
# LauncherVersion — one row per launcher release
# ---------------------------------------------------------------------------
class LauncherVersion(Base):
    __tablename__ = "launcher_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    version: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<LauncherVersion {self.version} downloads={self.download_count}>"


# ---------------------------------------------------------------------------
# DownloadTracker — "client C was counted for path P until E"
# ---------------------------------------------------------------------------
class DownloadTracker(Base):
    """Sliding dedup window for one (object key, client fingerprint) pair.

    ``path`` is the raw object key, not the parsed target, so two files of
    the same version are tracked independently.  The composite primary key
    guarantees at most one row per pair.
    """
    __tablename__ = "download_trackers"

    path: Mapped[str] = mapped_column(String(1024), primary_key=True)
    ip_hash: Mapped[str] = mapped_column(String(32), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_download_trackers_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DownloadTracker path={self.path!r} ip={self.ip_hash[:8]}… "
            f"expires={self.expires_at}>"
        )
