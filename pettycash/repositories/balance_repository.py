"""
Balance Repository.

The singleton ledger row is only ever changed through single-statement
``UPDATE``s that do the arithmetic inside SQLite.  There is no
read-modify-write path, and the debit carries its own floor
(``WHERE current_balance_minor >= ?``): zero rows affected means the
balance was insufficient and nothing changed.
"""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import Optional

from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.models.balance import Balance
from pettycash.repositories.base_repository import BaseRepository
from pettycash.utils.general import convert_to_json_safe, utc_now
from pettycash.utils.money import from_minor_units, to_minor_units

_BALANCE_ID: int = 1


class BalanceRepository(BaseRepository):
    """Atomic credit / debit / adjustment operations on the ledger row."""

    TABLE = "balance"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    def get(self) -> Optional[Balance]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE id = ?", (_BALANCE_ID,)
        ).fetchone()
        return self._parse(row) if row else None

    def create_if_missing(self, opening_balance: Decimal, actor_id: str) -> Balance:
        """Insert the ledger row seeded with *opening_balance* unless it exists."""
        opening_minor = to_minor_units(opening_balance)
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"""
                INSERT OR IGNORE INTO {self.TABLE}
                    (id, current_balance_minor, total_received_minor,
                     total_spent_minor, opening_balance_minor,
                     last_updated, updated_by, version)
                VALUES (?, ?, 0, 0, ?, ?, ?, 0)
                """,
                (_BALANCE_ID, opening_minor, opening_minor, utc_now().isoformat(), actor_id),
            )
            created = cursor.rowcount > 0
            balance = self._require()
            if created:
                self._queue_sync(balance)
                self._logger.info("Balance record created with opening %s", opening_balance)
            self._commit()
        return balance

    def credit(self, amount: Decimal, actor_id: str) -> Optional[Balance]:
        """Add to current and received.  ``None`` when the row is missing."""
        minor = to_minor_units(amount)
        return self._apply(
            "current_balance_minor = current_balance_minor + ?, "
            "total_received_minor = total_received_minor + ?",
            (minor, minor),
            actor_id,
        )

    def debit_if_sufficient(self, amount: Decimal, actor_id: str) -> Optional[Balance]:
        """Subtract from current and add to spent, only if current covers it.

        Returns:
            The updated balance, or ``None`` when the floor check failed
            (or the row is missing) and nothing was written.
        """
        minor = to_minor_units(amount)
        return self._apply(
            "current_balance_minor = current_balance_minor - ?, "
            "total_spent_minor = total_spent_minor + ?",
            (minor, minor),
            actor_id,
            floor_minor=minor,
        )

    def adjust_current(self, delta: Decimal, actor_id: str) -> Optional[Balance]:
        """Move ``current_balance`` alone by *delta*; totals are untouched."""
        return self._apply(
            "current_balance_minor = current_balance_minor + ?",
            (to_minor_units(delta),),
            actor_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply(
        self,
        assignments: str,
        params: tuple[int, ...],
        actor_id: str,
        floor_minor: Optional[int] = None,
    ) -> Optional[Balance]:
        sql = (
            f"UPDATE {self.TABLE} SET {assignments}, "
            "last_updated = ?, updated_by = ?, version = version + 1 "
            "WHERE id = ?"
        )
        bound: list[object] = [*params, utc_now().isoformat(), actor_id, _BALANCE_ID]
        if floor_minor is not None:
            sql += " AND current_balance_minor >= ?"
            bound.append(floor_minor)

        with self._db.write_lock:
            cursor = self.sqlite.execute(sql, bound)
            if cursor.rowcount == 0:
                self._commit()
                return None
            balance = self._require()
            self._queue_sync(balance)
            self._commit()
        return balance

    def _require(self) -> Balance:
        balance = self.get()
        if balance is None:
            raise sqlite3.DatabaseError("Balance row vanished during update")
        return balance

    def _queue_sync(self, balance: Balance) -> None:
        self._queue_pending_sync(
            "upsert", str(balance.id), convert_to_json_safe(balance.model_dump())
        )

    @staticmethod
    def _parse(row: sqlite3.Row) -> Balance:
        data = dict(row)
        for col in ("current_balance", "total_received", "total_spent", "opening_balance"):
            data[col] = from_minor_units(data.pop(f"{col}_minor"))
        return Balance(**data)
