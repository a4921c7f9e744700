"""
Transaction Repository.

Data access for expense claims.  Status writes are compare-and-swap
(``WHERE status = ?``) so two actors racing on the same claim cannot both
win; the loser sees ``False`` and the service reports a conflict.
"""

from __future__ import annotations

import json
import sqlite3
from decimal import Decimal
from typing import Optional

from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.models.enums import TransactionStatus
from pettycash.models.transaction import Transaction
from pettycash.repositories.base_repository import BaseRepository
from pettycash.repositories.transaction_query import TransactionQuery
from pettycash.utils.general import convert_to_json_safe
from pettycash.utils.money import from_minor_units, to_minor_units

_MONEY_COLUMNS: tuple[str, ...] = ("pre_tax_amount", "tax_amount", "post_tax_amount")
_DATE_COLUMNS: tuple[str, ...] = (
    "transaction_date",
    "invoice_date",
    "payment_date",
    "approved_at",
    "rejected_at",
    "paid_date",
    "created_at",
    "updated_at",
)


class TransactionRepository(BaseRepository):
    """Data access layer for Transaction entities."""

    TABLE = "transactions"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE id = ?", (transaction_id,)
        ).fetchone()
        return self._parse(row) if row else None

    def find(
        self,
        query: TransactionQuery,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        """Transactions matching *query*, newest first."""
        where_sql, params = query.compile()
        sql = (
            f"SELECT * FROM {self.TABLE} WHERE {where_sql} "
            "ORDER BY created_at DESC, transaction_number DESC"
        )
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = [*params, limit, offset]
        rows = self.sqlite.execute(sql, params).fetchall()
        return [self._parse(row) for row in rows]

    def count(self, query: TransactionQuery) -> int:
        where_sql, params = query.compile()
        row = self.sqlite.execute(
            f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where_sql}", params
        ).fetchone()
        return int(row["cnt"])

    def totals_by_status(
        self, query: TransactionQuery,
    ) -> dict[TransactionStatus, tuple[int, Decimal]]:
        """``{status: (count, sum of post_tax_amount)}`` over *query*."""
        where_sql, params = query.compile()
        rows = self.sqlite.execute(
            f"""
            SELECT status, COUNT(*) AS cnt, COALESCE(SUM(post_tax_amount_minor), 0) AS total
            FROM {self.TABLE}
            WHERE {where_sql}
            GROUP BY status
            """,
            params,
        ).fetchall()
        return {
            TransactionStatus(row["status"]): (int(row["cnt"]), from_minor_units(row["total"]))
            for row in rows
        }

    def totals_by_category(
        self, query: TransactionQuery,
    ) -> list[tuple[str, int, Decimal, Decimal, Decimal]]:
        """``(category, count, total, min, max)`` over *query*, largest total first."""
        where_sql, params = query.compile()
        rows = self.sqlite.execute(
            f"""
            SELECT category,
                   COUNT(*) AS cnt,
                   SUM(post_tax_amount_minor) AS total,
                   MIN(post_tax_amount_minor) AS low,
                   MAX(post_tax_amount_minor) AS high
            FROM {self.TABLE}
            WHERE {where_sql}
            GROUP BY category
            ORDER BY total DESC, category
            """,
            params,
        ).fetchall()
        return [
            (
                row["category"],
                int(row["cnt"]),
                from_minor_units(row["total"]),
                from_minor_units(row["low"]),
                from_minor_units(row["high"]),
            )
            for row in rows
        ]

    def totals_by_month(self, query: TransactionQuery) -> dict[int, tuple[int, Decimal]]:
        """``{month number: (count, total)}`` keyed on ``transaction_date``."""
        where_sql, params = query.compile()
        rows = self.sqlite.execute(
            f"""
            SELECT CAST(substr(transaction_date, 6, 2) AS INTEGER) AS month,
                   COUNT(*) AS cnt,
                   SUM(post_tax_amount_minor) AS total
            FROM {self.TABLE}
            WHERE {where_sql}
            GROUP BY month
            """,
            params,
        ).fetchall()
        return {
            int(row["month"]): (int(row["cnt"]), from_minor_units(row["total"]))
            for row in rows
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, transaction: Transaction) -> Transaction:
        row = self._to_row(transaction)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._db.write_lock:
            self.sqlite.execute(
                f"INSERT INTO {self.TABLE} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            self._queue_pending_sync("insert", transaction.id, self._payload(transaction))
            self._commit()
        self._logger.info(
            "Transaction created: %s (%s)",
            transaction.transaction_number,
            transaction.status,
        )
        return transaction

    def save_if_status(
        self, transaction: Transaction, expected_status: TransactionStatus,
    ) -> bool:
        """Persist every field of *transaction* if the stored status is unchanged.

        Returns:
            ``False`` when another writer moved the claim first.
        """
        row = self._to_row(transaction)
        row.pop("id")
        assignments = ", ".join(f"{col} = ?" for col in row)
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"UPDATE {self.TABLE} SET {assignments} WHERE id = ? AND status = ?",
                (*row.values(), transaction.id, str(expected_status)),
            )
            if cursor.rowcount:
                self._queue_pending_sync(
                    "update", transaction.id, self._payload(transaction)
                )
            self._commit()
        return cursor.rowcount > 0

    def delete_if_status(
        self, transaction_id: str, expected_status: TransactionStatus,
    ) -> bool:
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"DELETE FROM {self.TABLE} WHERE id = ? AND status = ?",
                (transaction_id, str(expected_status)),
            )
            if cursor.rowcount:
                self._queue_pending_sync("delete", transaction_id, {"id": transaction_id})
            self._commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(row: sqlite3.Row) -> Transaction:
        data = dict(row)
        for col in _MONEY_COLUMNS:
            minor = data.pop(f"{col}_minor")
            data[col] = from_minor_units(minor) if minor is not None else None
        data["exchange_rate"] = Decimal(data["exchange_rate"])
        data["has_gst_invoice"] = bool(data["has_gst_invoice"])
        data["approvals"] = json.loads(data["approvals"] or "[]")
        data["notes"] = json.loads(data["notes"] or "[]")
        return Transaction(**data)

    @staticmethod
    def _to_row(transaction: Transaction) -> dict[str, object]:
        data = transaction.model_dump(exclude={"approvals", "notes"})
        row: dict[str, object] = {}
        for key, value in data.items():
            if key in _MONEY_COLUMNS:
                row[f"{key}_minor"] = to_minor_units(value) if value is not None else None
            elif key in _DATE_COLUMNS:
                row[key] = value.isoformat() if value is not None else None
            elif key == "exchange_rate":
                row[key] = str(value)
            elif key == "has_gst_invoice":
                row[key] = int(value)
            elif value is not None:
                row[key] = str(value)
            else:
                row[key] = None
        row["approvals"] = json.dumps(
            convert_to_json_safe([step.model_dump() for step in transaction.approvals])
        )
        row["notes"] = json.dumps(
            convert_to_json_safe([note.model_dump() for note in transaction.notes])
        )
        return row

    @staticmethod
    def _payload(transaction: Transaction) -> dict[str, object]:
        return convert_to_json_safe(transaction.model_dump())
