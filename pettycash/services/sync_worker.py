"""
Replica sync.

Every local write enqueues a ``sync_queue`` row in the same SQLite
transaction, so only committed ledger changes are ever shipped.  This
worker drains that queue to Supabase, oldest row first, either on a
daemon thread (:meth:`SyncWorkerService.start`) or on demand
(:meth:`SyncWorkerService.sync_now`).

A row that keeps failing is retried on later cycles and parked as
``permanently_failed`` after ``_MAX_RETRY_COUNT`` attempts.  Replica
errors are logged only; the local ledger is never touched.

Queue reads and status writes hold ``DatabaseManager.write_lock``; the
HTTP call to Supabase does not, so a slow replica cannot stall approvals.
"""

from __future__ import annotations

import json
import threading
from typing import Callable, Optional, Union

from pettycash.config import AppConfig
from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.services.base_service import BaseService

_Payload = Union[dict[str, object], list[dict[str, object]]]

# Remote tables a queue row may target.
REPLICATED_TABLES: frozenset[str] = frozenset({
    "users",
    "transactions",
    "fund_transfers",
    "balance",
    "budgets",
    "audit_log",
})


def _insert(table, entity_id: str, payload: _Payload) -> None:
    table.insert(payload).execute()


def _update(table, entity_id: str, payload: _Payload) -> None:
    table.update(payload).eq("id", entity_id).execute()


def _upsert(table, entity_id: str, payload: _Payload) -> None:
    table.upsert(payload).execute()


def _delete(table, entity_id: str, payload: _Payload) -> None:
    table.delete().eq("id", entity_id).execute()


_REPLAY: dict[str, Callable[..., None]] = {
    "insert": _insert,
    "update": _update,
    "upsert": _upsert,
    "delete": _delete,
}


class SyncWorkerService(BaseService):
    """Ships queued local writes to the Supabase replica."""

    _MAX_INTERVAL_S: float = 300.0
    _BATCH_SIZE: int = 50
    _MAX_RETRY_COUNT: int = 5
    _JOIN_TIMEOUT_S: float = 10.0

    def __init__(
        self,
        db: DatabaseManager,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db: DatabaseManager = db
        self._interval_s: float = config.SYNC_INTERVAL_S
        self._thread: Optional[threading.Thread] = None
        self._stopping: threading.Event = threading.Event()
        self._failed_cycles: int = 0

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping.clear()
        self._failed_cycles = 0
        self._thread = threading.Thread(target=self._loop, name="SyncWorker", daemon=True)
        self._thread.start()
        self._logger.info("Sync worker started (every %.0fs).", self._interval_s)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stopping.set()
        self._thread.join(timeout=self._JOIN_TIMEOUT_S)
        if self._thread.is_alive():
            self._logger.warning("Sync worker still busy after %.0fs; abandoning it.", self._JOIN_TIMEOUT_S)
        else:
            self._logger.info("Sync worker stopped.")
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sync_now(self) -> int:
        """Drain one batch on the calling thread and return how many rows reached the replica."""
        if not self._db.is_online:
            self._logger.debug("No replica configured; nothing to sync.")
            return 0
        return self._drain_batch()

    # -- worker loop -----------------------------------------------------

    def _loop(self) -> None:
        while not self._stopping.wait(timeout=self._next_delay()):
            if not self._db.is_online:
                continue
            try:
                self._drain_batch()
            except Exception:
                self._failed_cycles += 1
                self._logger.warning(
                    "Sync cycle failed (%d in a row).", self._failed_cycles, exc_info=True,
                )
            else:
                self._failed_cycles = 0

    def _next_delay(self) -> float:
        # Doubles per failed cycle, capped.
        if not self._failed_cycles:
            return self._interval_s
        return min(self._interval_s * 2 ** min(self._failed_cycles, 6), self._MAX_INTERVAL_S)

    def _drain_batch(self) -> int:
        shipped = 0
        batch = self._claim_batch()
        for row in batch:
            queue_id: int = row["id"]
            try:
                payload: _Payload = json.loads(row["payload"])
            except (json.JSONDecodeError, TypeError) as exc:
                self._logger.error("sync_queue row %d has an unreadable payload: %s", queue_id, exc)
                self._record_outcome(queue_id, error=f"Malformed JSON: {exc}", permanent=True)
                continue

            try:
                self._ship(row["table_name"], row["operation"], row["entity_id"], payload)
            except Exception as exc:
                self._logger.warning(
                    "sync_queue row %d (%s %s) not shipped: %s",
                    queue_id, row["operation"], row["table_name"], exc,
                )
                self._record_outcome(queue_id, error=str(exc))
                continue

            self._record_outcome(queue_id)
            shipped += 1

        if batch:
            self._logger.info("Replica sync: %d of %d queued rows shipped.", shipped, len(batch))
        return shipped

    def _ship(self, table_name: str, operation: str, entity_id: str, payload: _Payload) -> None:
        if table_name not in REPLICATED_TABLES:
            raise ValueError(f"Table '{table_name}' is not replicated")
        replay = _REPLAY.get(operation)
        if replay is None:
            raise ValueError(f"Unknown sync operation '{operation}'")
        replay(self._db.supabase.table(table_name), entity_id, payload)

    # -- queue access ----------------------------------------------------

    def _claim_batch(self) -> list:
        with self._db.write_lock:
            return self._db.sqlite.execute(
                """
                SELECT id, table_name, operation, entity_id, payload
                FROM sync_queue
                WHERE status = 'pending'
                ORDER BY id
                LIMIT ?
                """,
                (self._BATCH_SIZE,),
            ).fetchall()

    def _record_outcome(
        self, queue_id: int, error: Optional[str] = None, permanent: bool = False,
    ) -> None:
        """Mark a row shipped, or count a failed attempt against it.

        A failed row goes back to ``pending`` until its attempts reach
        ``_MAX_RETRY_COUNT`` (or straight away when *permanent*), after
        which it is ``permanently_failed``.
        """
        if error is None:
            sql = """
                UPDATE sync_queue
                SET status = 'synced', attempted_at = CURRENT_TIMESTAMP, error_message = NULL
                WHERE id = ?
            """
            params: tuple[object, ...] = (queue_id,)
        else:
            sql = """
                UPDATE sync_queue
                SET retry_count = retry_count + 1,
                    status = CASE
                        WHEN ? OR retry_count + 1 >= ? THEN 'permanently_failed'
                        ELSE 'pending'
                    END,
                    attempted_at = CURRENT_TIMESTAMP,
                    error_message = ?
                WHERE id = ?
            """
            params = (int(permanent), self._MAX_RETRY_COUNT, error, queue_id)
        with self._db.write_lock:
            self._db.sqlite.execute(sql, params)
            self._db.sqlite.commit()
