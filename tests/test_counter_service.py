"""
tests/test_counter_service.py — Atomic Download Count Increments
=================================================================

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest

from tally.engine.classifier import LauncherVersionTarget, ModVersionTarget
from tally.services.counter_service import (
    increment_download_count,
    increment_launcher_version,
    increment_mod_version,
)
from conftest import launcher_downloads, mod_downloads


class TestIncrementModVersion:
    def test_increments_matching_row_only(self, catalog):
        assert increment_mod_version(catalog, "super-mod", "1.2.0") == 1

        assert mod_downloads(catalog, "super-mod", "1.2.0") == 1
        assert mod_downloads(catalog, "super-mod", "1.1.0") == 7
        assert mod_downloads(catalog, "other-mod", "1.2.0") == 0

    def test_existing_count_preserved(self, catalog):
        increment_mod_version(catalog, "super-mod", "1.1.0")
        assert mod_downloads(catalog, "super-mod", "1.1.0") == 8

    def test_unknown_version_logged(self, catalog, caplog):
        with caplog.at_level(logging.WARNING, logger="tally.services.counter_service"):
            assert increment_mod_version(catalog, "ghost-mod", "9.9.9") == 0
        assert "nonexistent mod ghost-mod version 9.9.9" in caplog.text


class TestIncrementLauncherVersion:
    def test_increments(self, catalog):
        assert increment_launcher_version(catalog, "3.4.5") == 1
        assert increment_launcher_version(catalog, "3.4.5") == 1
        assert launcher_downloads(catalog, "3.4.5") == 2

    def test_unknown_version_logged(self, catalog, caplog):
        with caplog.at_level(logging.WARNING, logger="tally.services.counter_service"):
            assert increment_launcher_version(catalog, "0.0.1") == 0
        assert "nonexistent launcher version 0.0.1" in caplog.text


class TestDispatch:
    def test_mod_target(self, catalog):
        increment_download_count(catalog, ModVersionTarget("super-mod", "1.2.0"))
        assert mod_downloads(catalog, "super-mod", "1.2.0") == 1

    def test_launcher_target(self, catalog):
        increment_download_count(catalog, LauncherVersionTarget("3.4.5"))
        assert launcher_downloads(catalog, "3.4.5") == 1

    def test_unknown_target_type(self, catalog):
        with pytest.raises(TypeError):
            increment_download_count(catalog, "mods/x/y/z")

    @patch("tally.services.counter_service.get_session")
    def test_multiple_rows_warns(self, mock_get_session, caplog):
        mock_session = MagicMock()
        mock_get_session.return_value.__enter__ = MagicMock(return_value=mock_session)
        mock_get_session.return_value.__exit__ = MagicMock(return_value=False)
        mock_session.execute.return_value.rowcount = 2

        with caplog.at_level(logging.WARNING, logger="tally.services.counter_service"):
            assert increment_launcher_version(MagicMock(), "3.4.5") == 2
        assert "matched 2 rows" in caplog.text

    @patch("tally.services.counter_service.get_session")
    def test_storage_error_propagates(self, mock_get_session):
        mock_get_session.side_effect = RuntimeError("db down")
        with pytest.raises(RuntimeError):
            increment_mod_version(MagicMock(), "super-mod", "1.2.0")
