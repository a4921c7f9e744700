"""
Base Repository.

Provides shared infrastructure for all repositories:
- DatabaseManager reference (SQLite system of record + optional Supabase)
- Logger reference
- Commit handling that cooperates with ``DatabaseManager.atomic()``
- Sync queue writes for outbound replication
"""

from __future__ import annotations

import json
import sqlite3
from typing import Optional, Union

from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.utils.general import JsonValue


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def sqlite(self) -> sqlite3.Connection:
        return self._db.sqlite

    def _commit(self) -> None:
        """Commit unless an ``atomic()`` block owns the transaction.

        Repository code calls this instead of ``self.sqlite.commit()`` so
        that multi-repository writes commit or roll back together.
        """
        if not self._db.in_batch:
            self.sqlite.commit()

    def _queue_pending_sync(
        self,
        operation: str,
        entity_id: str,
        payload: Union[dict[str, JsonValue], list[dict[str, JsonValue]]],
        table: Optional[str] = None,
    ) -> None:
        """Record a write for the sync worker to replay to Supabase.

        Joins the caller's transaction and does not commit.

        Args:
            operation: ``insert``, ``update``, ``upsert`` or ``delete``.
            entity_id: The ID of the affected entity.
            payload: JSON-safe row data (see ``convert_to_json_safe``).
            table: Remote table name; defaults to :attr:`TABLE`.
        """
        target: str = table or self.TABLE
        try:
            self.sqlite.execute(
                """
                INSERT INTO sync_queue (table_name, operation, entity_id, payload)
                VALUES (?, ?, ?, ?)
                """,
                (target, operation, entity_id, json.dumps(payload, default=str)),
            )
            self._logger.debug(
                "Queued pending sync: %s %s/%s", operation, target, entity_id
            )
        except sqlite3.Error as exc:
            self._logger.warning(
                "Failed to queue pending sync for %s/%s: %s", target, entity_id, exc,
            )
