"""
Connections for the petty-cash ledger.

The local SQLite file is the system of record.  All writes go through one
process-wide lock, and multi-row ledger changes (approve and debit, fund
and credit) share one SQLite transaction via :meth:`DatabaseManager.atomic`.

Supabase is optional and write-only from this process: repositories queue
their writes in ``sync_queue`` and
:class:`~pettycash.services.sync_worker.SyncWorkerService` ships them.
Without credentials the ledger simply runs local-only.

Query logic lives in the repositories, not here.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, Union

from supabase import Client as SupabaseClient
from supabase import create_client

from pettycash.logger import StructuredLogger


class DatabaseManager:
    """Owns the SQLite connection, the write lock and the optional replica client.

    Built once in the composition root::

        db = DatabaseManager(
            supabase_url=config.SUPABASE_URL,
            supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
            sqlite_path=Path(config.SQLITE_PATH),
            logger=StructuredLogger(name="database"),
        )
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._in_batch: bool = False
        self._supabase: Optional[SupabaseClient] = self._connect_replica(supabase_url, supabase_key)
        self._sqlite_conn: sqlite3.Connection = self._open_ledger(sqlite_path)

    @property
    def supabase(self) -> SupabaseClient:
        if self._supabase is None:
            raise RuntimeError("No Supabase replica configured; the ledger is local-only.")
        return self._supabase

    @property
    def is_online(self) -> bool:
        return self._supabase is not None

    @property
    def sqlite(self) -> sqlite3.Connection:
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        return self._write_lock

    @property
    def in_batch(self) -> bool:
        """Whether an :meth:`atomic` block currently owns the transaction.

        While it does, repository ``_commit()`` calls do nothing.
        """
        return self._in_batch

    @contextmanager
    def atomic(self) -> Generator[sqlite3.Connection, None, None]:
        """All-or-nothing block of ledger writes.

        Opens ``BEGIN IMMEDIATE`` under the write lock, commits on a clean
        exit and rolls back (then re-raises) on any exception.  An inner
        ``atomic()`` simply joins the outer one::

            with db.atomic():
                balance_repo.debit_if_sufficient(amount, actor_id)
                transaction_repo.save_if_status(txn, expected)
        """
        with self._write_lock:
            if self._in_batch:
                yield self._sqlite_conn
                return

            conn = self._sqlite_conn
            self._in_batch = True
            try:
                if not conn.in_transaction:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except Exception as exc:
                conn.rollback()
                self._logger.warning("Ledger write rolled back: %s", exc)
                raise
            finally:
                self._in_batch = False

    def get_pending_sync_count(self) -> int:
        """Queued writes still waiting for the replica (0 before the schema exists)."""
        with self._write_lock:
            try:
                row = self._sqlite_conn.execute(
                    "SELECT COUNT(*) FROM sync_queue WHERE status = 'pending'"
                ).fetchone()
            except sqlite3.Error:
                self._logger.debug("sync_queue not readable yet.", exc_info=True)
                return 0
        return int(row[0]) if row else 0

    def close(self) -> None:
        with self._write_lock:
            try:
                self._sqlite_conn.close()
            except sqlite3.ProgrammingError:
                return
        self._logger.info("Ledger database closed.")

    def _connect_replica(self, url: str, key: str) -> Optional[SupabaseClient]:
        if not (url and key):
            self._logger.warning("No Supabase credentials; replication disabled.")
            return None
        try:
            client = create_client(url, key)
        except (ValueError, TypeError) as exc:
            self._logger.warning("Supabase credentials rejected (%s); running local-only.", exc)
            return None
        except Exception as exc:
            self._logger.error(
                "Supabase client failed to start (%s); running local-only.", exc, exc_info=True,
            )
            return None
        self._logger.info("Supabase replica client ready.")
        return client

    def _open_ledger(self, path: Union[Path, str]) -> sqlite3.Connection:
        """Open the SQLite file with WAL journaling, foreign keys and ``sqlite3.Row`` rows.

        Raises:
            PermissionError: The file or its directory cannot be opened.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
        except PermissionError as exc:
            msg = f"Cannot open the ledger database at '{path}': permission denied."
            self._logger.error(msg)
            raise PermissionError(msg) from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys = ON;")
        self._logger.info("Ledger database opened at %s", path)
        return conn
