"""
Local ledger schema.

:func:`initialize_schema` brings a SQLite file up to
:data:`CURRENT_SCHEMA_VERSION`.  A new file gets every table from
:data:`_TABLE_DEFINITIONS` at once; an older file gets only the steps in
:data:`_MIGRATIONS` above its stored version.  Either path runs in one
transaction together with the version bump, so a failed upgrade leaves
the file at its previous version and is retried on the next start.

Money columns end in ``_minor`` and hold integer minor units (see
:mod:`pettycash.utils.money`).

To change the schema: edit the DDL below, bump the version, and register
an idempotent ``_migrate_vN_to_vM`` step guarded by :func:`_has_column`.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from pettycash.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 2

_TABLE_DEFINITIONS: list[str] = [
    # -- single-row version tracker -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- outbound replication buffer ------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS sync_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        table_name TEXT NOT NULL,
        operation TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        payload TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        retry_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        attempted_at TIMESTAMP,
        error_message TEXT
    )
    """,
    # -- persistent structured audit trail ------------------------------------
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        details TEXT DEFAULT '{}',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- users (role kept free-form: legacy values normalise on read) ---------
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        role TEXT NOT NULL DEFAULT 'employee',
        manager_id TEXT REFERENCES users(id) ON DELETE SET NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        approval_limit_minor INTEGER,
        department TEXT,
        phone TEXT,
        created_by TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK (manager_id IS NULL OR manager_id <> id)
    )
    """,
    # -- expense claims -------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        transaction_number TEXT NOT NULL UNIQUE,
        category TEXT NOT NULL,
        pre_tax_amount_minor INTEGER,
        tax_amount_minor INTEGER NOT NULL DEFAULT 0,
        post_tax_amount_minor INTEGER NOT NULL CHECK (post_tax_amount_minor > 0),
        currency TEXT NOT NULL DEFAULT 'INR',
        exchange_rate TEXT NOT NULL DEFAULT '1',
        transaction_date TEXT NOT NULL,
        invoice_date TEXT,
        payment_date TEXT,
        payment_method TEXT,
        payee_client_name TEXT,
        purpose TEXT NOT NULL DEFAULT '',
        has_gst_invoice INTEGER NOT NULL DEFAULT 0,
        submitted_by TEXT,
        requested_by TEXT,
        approved_by TEXT,
        rejected_by TEXT,
        approved_at TEXT,
        rejected_at TEXT,
        paid_date TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        workflow TEXT NOT NULL DEFAULT 'simple',
        approvals TEXT NOT NULL DEFAULT '[]',
        rejection_reason TEXT,
        admin_comment TEXT,
        notes TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    # -- inbound top-ups ------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS fund_transfers (
        id TEXT PRIMARY KEY,
        transfer_id TEXT NOT NULL UNIQUE,
        transfer_type TEXT NOT NULL CHECK (transfer_type IN ('bank', 'cash')),
        amount_minor INTEGER NOT NULL CHECK (amount_minor > 0),
        currency TEXT NOT NULL DEFAULT 'INR',
        exchange_rate TEXT NOT NULL DEFAULT '1',
        transfer_date TEXT NOT NULL,
        bank_name TEXT,
        from_account TEXT,
        transaction_reference TEXT,
        recipient_id TEXT,
        recipient_name TEXT,
        purpose TEXT,
        notes TEXT,
        initiated_by TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'completed',
        created_at TEXT NOT NULL
    )
    """,
    # -- singleton ledger row -------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS balance (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        current_balance_minor INTEGER NOT NULL DEFAULT 0,
        total_received_minor INTEGER NOT NULL DEFAULT 0,
        total_spent_minor INTEGER NOT NULL DEFAULT 0,
        opening_balance_minor INTEGER NOT NULL DEFAULT 0,
        last_updated TEXT,
        updated_by TEXT,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    # -- per-period document counters ----------------------------------------
    """
    CREATE TABLE IF NOT EXISTS sequences (
        name TEXT PRIMARY KEY,
        value INTEGER NOT NULL
    )
    """,
    # -- monthly category budgets ---------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS budgets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        category TEXT NOT NULL,
        month INTEGER NOT NULL CHECK (month BETWEEN 1 AND 12),
        year INTEGER NOT NULL,
        budget_amount_minor INTEGER NOT NULL DEFAULT 0,
        spent_amount_minor INTEGER NOT NULL DEFAULT 0,
        UNIQUE (category, month, year)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_manager_id ON users(manager_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_submitted_by ON transactions(submitted_by)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_requested_by ON transactions(requested_by)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(transaction_date)",
    "CREATE INDEX IF NOT EXISTS idx_fund_transfers_date ON fund_transfers(transfer_date)",
    "CREATE INDEX IF NOT EXISTS idx_sync_queue_status ON sync_queue(status)",
]

# Only these names are interpolated into PRAGMA statements.
_KNOWN_TABLES: frozenset[str] = frozenset({
    "schema_version",
    "sync_queue",
    "audit_log",
    "users",
    "transactions",
    "fund_transfers",
    "balance",
    "sequences",
    "budgets",
})


def _has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    if table not in _KNOWN_TABLES:
        raise ValueError(f"Unknown table {table!r}")
    return any(info[1] == column for info in conn.execute(f"PRAGMA table_info({table})"))


def _migrate_v1_to_v2(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Balance version counter and sync retry counter."""
    if not _has_column(conn, "balance", "version"):
        conn.execute("ALTER TABLE balance ADD COLUMN version INTEGER NOT NULL DEFAULT 0")
    if not _has_column(conn, "sync_queue", "retry_count"):
        conn.execute("ALTER TABLE sync_queue ADD COLUMN retry_count INTEGER NOT NULL DEFAULT 0")
    logger.info("Schema step 1 -> 2 applied.")


Migration = Callable[[sqlite3.Connection, StructuredLogger], None]

# Keyed by the version each step produces.
_MIGRATIONS: dict[int, Migration] = {
    2: _migrate_v1_to_v2,
}


def _stored_version(conn: sqlite3.Connection) -> int:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            version INTEGER NOT NULL,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.commit()
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return row[0] if row is not None else 0


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Create or upgrade the ledger tables.  Safe to call on every start.

    Raises whatever the failing DDL raised, after rolling back.
    """
    current = _stored_version(conn)
    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Ledger schema at version %d.", current)
        return

    try:
        if current == 0:
            for ddl in _TABLE_DEFINITIONS:
                conn.execute(ddl)
        else:
            for target in sorted(v for v in _MIGRATIONS if current < v <= CURRENT_SCHEMA_VERSION):
                _MIGRATIONS[target](conn, logger)
        conn.execute(
            """
            INSERT INTO schema_version (id, version) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                          applied_at = CURRENT_TIMESTAMP
            """,
            (CURRENT_SCHEMA_VERSION,),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        logger.error("Schema upgrade from version %d failed; rolled back.", current)
        raise

    logger.info("Ledger schema upgraded from version %d to %d.", current, CURRENT_SCHEMA_VERSION)
