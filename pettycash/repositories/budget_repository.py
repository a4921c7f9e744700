"""
Budget Repository.

Monthly per-category spending envelopes.  ``mark_as_paid`` feeds the
``spent_amount`` aggregate; months without a budget row are left alone.
"""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import Optional

from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.models.balance import Budget
from pettycash.repositories.base_repository import BaseRepository
from pettycash.utils.general import convert_to_json_safe
from pettycash.utils.money import from_minor_units, to_minor_units


class BudgetRepository(BaseRepository):
    TABLE = "budgets"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    def get(self, category: str, month: int, year: int) -> Optional[Budget]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE category = ? AND month = ? AND year = ?",
            (category, month, year),
        ).fetchone()
        return self._parse(row) if row else None

    def set_budget(
        self, category: str, month: int, year: int, amount: Decimal,
    ) -> Budget:
        """Create or replace the budgeted amount; ``spent_amount`` is kept."""
        with self._db.write_lock:
            self.sqlite.execute(
                f"""
                INSERT INTO {self.TABLE} (category, month, year, budget_amount_minor)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(category, month, year)
                DO UPDATE SET budget_amount_minor = excluded.budget_amount_minor
                """,
                (category, month, year, to_minor_units(amount)),
            )
            budget = self.get(category, month, year)
            self._queue_sync(budget)
            self._commit()
        return budget

    def increment_spent(
        self, category: str, month: int, year: int, amount: Decimal,
    ) -> bool:
        """Add *amount* to the month's spent total.  ``False`` if no budget row."""
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"""
                UPDATE {self.TABLE}
                SET spent_amount_minor = spent_amount_minor + ?
                WHERE category = ? AND month = ? AND year = ?
                """,
                (to_minor_units(amount), category, month, year),
            )
            if cursor.rowcount:
                self._queue_sync(self.get(category, month, year))
            self._commit()
        return cursor.rowcount > 0

    def _queue_sync(self, budget: Budget) -> None:
        self._queue_pending_sync(
            "upsert",
            f"{budget.category}:{budget.year}-{budget.month:02d}",
            convert_to_json_safe(budget.model_dump()),
        )

    @staticmethod
    def _parse(row: sqlite3.Row) -> Budget:
        return Budget(
            category=row["category"],
            month=row["month"],
            year=row["year"],
            budget_amount=from_minor_units(row["budget_amount_minor"]),
            spent_amount=from_minor_units(row["spent_amount_minor"]),
        )
