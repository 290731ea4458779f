"""
Tally — Windowed Download Accounting for Mod & Launcher Files
==============================================================
Listens to object-storage access notifications, forgets repeated downloads
from the same client inside a sliding tracking window, and bumps the
``download_count`` of the mod version or launcher version a file belongs to.

Package layout::

    tally/
    ├── __main__.py        # python -m tally — wiring + run loop
    ├── config.py          # YAML + .env → typed Python config
    ├── constants.py       # Key patterns, event codes, defaults
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # Catalog + download tracker tables
    │   └── seed.py        # Example catalog for development
    ├── engine/
    │   ├── classifier.py  # Object key → download target
    │   └── fingerprint.py # Client address → salted digest
    └── services/
        ├── storage.py          # MinIO client + notification listener thread
        ├── tracker_service.py  # Sliding-window dedup store + sweep
        ├── counter_service.py  # Atomic download_count increments
        └── download_counter.py # Orchestrator (start / stop / handle)
"""

__version__ = "0.1.0"
