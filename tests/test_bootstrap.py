"""
tests/test_bootstrap.py — Startup Wiring
=========================================

Covers ``tally.__main__``: service construction, development seeding,
degraded mode without storage credentials, and fatal config errors.
"""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.orm import Session

from tally.__main__ import build_service, main, serve
from tally.config import StorageConfig, TallyConfig
from tally.database.models import Mod
from tally.services.download_counter import ServiceState
from conftest import TEST_SALT, run_async


def _cfg(**storage) -> TallyConfig:
    storage.setdefault("endpoint", None)
    return TallyConfig(
        storage=StorageConfig(public_bucket="public", **storage),
        ip_hash_salt=TEST_SALT,
    )


class TestBuildService:
    def test_degraded_without_credentials(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'boot.db'}")
        monkeypatch.delenv("TALLY_ENV", raising=False)

        service = build_service(_cfg(endpoint="minio:9000"))

        assert service.client is None
        assert service.state is ServiceState.IDLE
        with Session(service.engine) as session:
            assert session.query(Mod).count() == 0
        service.engine.dispose()

    def test_develop_seeds_catalog(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'boot.db'}")
        monkeypatch.setenv("TALLY_ENV", "develop")

        service = build_service(_cfg())

        with Session(service.engine) as session:
            assert session.query(Mod).count() > 0
        service.engine.dispose()

    def test_bad_endpoint_degrades_with_one_warning(self, tmp_path, monkeypatch, caplog):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'boot.db'}")
        monkeypatch.delenv("TALLY_ENV", raising=False)

        async def _start_and_stop(service):
            await service.start()
            state = service.state
            await service.stop()
            return state

        with caplog.at_level(logging.INFO):
            service = build_service(_cfg(
                endpoint="http://minio:9000", access_key="a", secret_key="b",
            ))
            state = run_async(_start_and_stop(service))
        service.engine.dispose()

        assert service.client is None
        assert state is ServiceState.DEGRADED
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "download counting is disabled" in warnings[0].getMessage()

    def test_missing_database_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            build_service(_cfg())


class TestMain:
    @patch("tally.__main__.load_dotenv")
    @patch("tally.__main__.load_config")
    def test_missing_salt_exits(self, mock_load_config, _mock_dotenv):
        mock_load_config.return_value = TallyConfig(
            storage=StorageConfig(endpoint=None, public_bucket="public"), ip_hash_salt=None,
        )
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 1

    @patch("tally.__main__.load_dotenv")
    @patch("tally.__main__.load_config")
    @patch("tally.__main__.build_service", side_effect=RuntimeError("DATABASE_URL is not set."))
    def test_database_error_exits(self, _build, mock_load_config, _mock_dotenv):
        mock_load_config.return_value = _cfg()
        with pytest.raises(SystemExit):
            main()


class TestServe:
    def test_serve_propagates_start_failure(self):
        service = MagicMock()
        service.start = AsyncMock(side_effect=RuntimeError("boom"))
        service.stop = AsyncMock()

        with pytest.raises(RuntimeError):
            run_async(serve(service))
        service.stop.assert_not_awaited()
