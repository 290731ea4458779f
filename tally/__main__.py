"""
tally.__main__ — Entry point for ``python -m tally``
=====================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Seed the example catalog when ``TALLY_ENV=develop``.
5. Build the MinIO client (``None`` → degraded mode).
6. Start the DownloadCounterService and run until SIGINT / SIGTERM.

Run with::

    uv run python -m tally
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

from tally.config import TallyConfig, load_config
from tally.database.engine import create_db_engine, init_db
from tally.database.seed import seed_example_catalog
from tally.services.download_counter import DownloadCounterService
from tally.services.storage import create_storage_client

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("tally")


async def serve(service: DownloadCounterService) -> None:
    """Start *service* and block until a shutdown signal arrives."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:  # Windows
            pass

    await service.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down gracefully…")
        await service.stop()


def build_service(cfg: TallyConfig) -> DownloadCounterService:
    engine = create_db_engine()
    init_db(engine)

    if os.getenv("TALLY_ENV") == "develop":
        seed_example_catalog(engine)

    client = create_storage_client(cfg.storage)
    return DownloadCounterService(cfg, engine, client)


def main() -> None:
    """Bootstrap and run the download counter."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config(os.getenv("TALLY_CONFIG", "config.yaml"))
    if not cfg.ip_hash_salt:
        logger.critical(
            "DOWNLOAD_IP_SALT is not set.  "
            "Copy .env.example → .env and set a long random salt."
        )
        sys.exit(1)
    logger.info("Config loaded — bucket: %s", cfg.storage.public_bucket)

    # 3–5. Database, seed data, storage client.
    try:
        service = build_service(cfg)
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)

    # 6. Run (blocks until Ctrl+C or SIGTERM).
    try:
        asyncio.run(serve(service))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
