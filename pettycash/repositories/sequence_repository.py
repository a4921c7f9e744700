"""
Sequence Repository.

Named, monotonically increasing counters used for human-readable document
numbers.  Increment and read happen under the write lock in one
transaction, so two callers can never draw the same value.
"""

from __future__ import annotations

from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.repositories.base_repository import BaseRepository


class SequenceRepository(BaseRepository):
    """Local counters.  Not replicated: numbers are assigned on this node."""

    TABLE = "sequences"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    def next_value(self, name: str) -> int:
        """Increment counter *name* (starting at 1) and return the new value."""
        with self._db.write_lock:
            self.sqlite.execute(
                f"""
                INSERT INTO {self.TABLE} (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
                """,
                (name,),
            )
            row = self.sqlite.execute(
                f"SELECT value FROM {self.TABLE} WHERE name = ?", (name,)
            ).fetchone()
            self._commit()
        return int(row["value"])

    def current_value(self, name: str) -> int:
        row = self.sqlite.execute(
            f"SELECT value FROM {self.TABLE} WHERE name = ?", (name,)
        ).fetchone()
        return int(row["value"]) if row else 0
