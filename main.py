"""
Petty Cash Gatekeeper Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema, makes sure the ledger row exists and runs the
Supabase sync worker until interrupted.  Every subsystem is wired here;
no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import sys
import threading
from pathlib import Path

from pettycash.config import get_config
from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger, get_logger
from pettycash.schema import initialize_schema
from pettycash.services import create_services


def main() -> None:
    """Wire dependencies and keep the sync worker running."""
    logger: StructuredLogger = get_logger("pettycash.main")
    logger.info("Starting Petty Cash Gatekeeper...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (SQLite always, Supabase replica optional)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.SQLITE_PATH),
        logger=get_logger("pettycash.database"),
    )
    # DatabaseManager.close() is safe to call more than once.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. Schema (idempotent, migrates older files forward)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, get_logger("pettycash.schema"))

    # ------------------------------------------------------------------
    # 4. Service Container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(db=db, config=config)
    balance = services["balance_ledger"].ensure_exists()
    logger.info(
        "Ledger ready: balance %s %s, %d change(s) waiting to sync.",
        config.BASE_CURRENCY,
        balance.current_balance,
        db.get_pending_sync_count(),
    )

    # ------------------------------------------------------------------
    # 5. Background replication (blocks until interrupted)
    # ------------------------------------------------------------------
    sync_worker = services["sync_worker"]
    sync_worker.start()
    try:
        threading.Event().wait()
    finally:
        sync_worker.stop()
        db.close()
        logger.info("Petty Cash Gatekeeper shut down.")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
