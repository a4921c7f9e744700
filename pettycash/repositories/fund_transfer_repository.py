"""
Fund Transfer Repository.

Data access for bank and cash top-ups.  The balance side of each write is
handled by :class:`~pettycash.repositories.balance_repository.BalanceRepository`;
the service pairs the two inside ``DatabaseManager.atomic()``.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from decimal import Decimal
from typing import Optional

from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.models.enums import TransferType
from pettycash.models.fund_transfer import FundTransfer
from pettycash.repositories.base_repository import BaseRepository
from pettycash.utils.general import convert_to_json_safe
from pettycash.utils.money import from_minor_units, to_minor_units


class FundTransferRepository(BaseRepository):
    """Data access layer for FundTransfer entities."""

    TABLE = "fund_transfers"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, transfer_pk: str) -> Optional[FundTransfer]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE id = ?", (transfer_pk,)
        ).fetchone()
        return self._parse(row) if row else None

    def list_transfers(
        self,
        transfer_type: Optional[TransferType] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> tuple[list[FundTransfer], int]:
        """Return one page of transfers (newest first) and the unpaged total."""
        where_sql, params = self._filters(transfer_type, start, end)
        total_row = self.sqlite.execute(
            f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where_sql}", params
        ).fetchone()

        sql = (
            f"SELECT * FROM {self.TABLE} WHERE {where_sql} "
            "ORDER BY transfer_date DESC, created_at DESC"
        )
        page_params = list(params)
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            page_params.extend([limit, offset])
        rows = self.sqlite.execute(sql, page_params).fetchall()
        return [self._parse(row) for row in rows], int(total_row["cnt"])

    def totals_by_type(
        self, start: Optional[date] = None, end: Optional[date] = None,
    ) -> dict[TransferType, tuple[int, Decimal]]:
        """``{transfer_type: (count, total)}`` for completed transfers in range."""
        where_sql, params = self._filters(None, start, end)
        rows = self.sqlite.execute(
            f"""
            SELECT transfer_type, COUNT(*) AS cnt, COALESCE(SUM(amount_minor), 0) AS total
            FROM {self.TABLE}
            WHERE {where_sql} AND status = 'completed'
            GROUP BY transfer_type
            """,
            params,
        ).fetchall()
        return {
            TransferType(row["transfer_type"]): (int(row["cnt"]), from_minor_units(row["total"]))
            for row in rows
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, transfer: FundTransfer) -> FundTransfer:
        row = self._to_row(transfer)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._db.write_lock:
            self.sqlite.execute(
                f"INSERT INTO {self.TABLE} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            self._queue_pending_sync(
                "insert", transfer.id, convert_to_json_safe(transfer.model_dump())
            )
            self._commit()
        return transfer

    def delete(self, transfer_pk: str) -> bool:
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"DELETE FROM {self.TABLE} WHERE id = ?", (transfer_pk,)
            )
            if cursor.rowcount:
                self._queue_pending_sync("delete", transfer_pk, {"id": transfer_pk})
            self._commit()
        return cursor.rowcount > 0

    def delete_all(self) -> tuple[int, Decimal]:
        """Remove every transfer; returns ``(count, total amount)`` removed."""
        with self._db.write_lock:
            row = self.sqlite.execute(
                f"SELECT COUNT(*) AS cnt, COALESCE(SUM(amount_minor), 0) AS total "
                f"FROM {self.TABLE}"
            ).fetchone()
            ids = [
                r["id"] for r in self.sqlite.execute(f"SELECT id FROM {self.TABLE}")
            ]
            self.sqlite.execute(f"DELETE FROM {self.TABLE}")
            for transfer_pk in ids:
                self._queue_pending_sync("delete", transfer_pk, {"id": transfer_pk})
            self._commit()
        return int(row["cnt"]), from_minor_units(row["total"])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _filters(
        transfer_type: Optional[TransferType],
        start: Optional[date],
        end: Optional[date],
    ) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []
        if transfer_type is not None:
            clauses.append("transfer_type = ?")
            params.append(str(transfer_type))
        if start is not None:
            clauses.append("transfer_date >= ?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("transfer_date <= ?")
            params.append(end.isoformat())
        return (" AND ".join(clauses) if clauses else "1 = 1"), params

    @staticmethod
    def _parse(row: sqlite3.Row) -> FundTransfer:
        data = dict(row)
        data["amount"] = from_minor_units(data.pop("amount_minor"))
        data["exchange_rate"] = Decimal(data["exchange_rate"])
        return FundTransfer(**data)

    @staticmethod
    def _to_row(transfer: FundTransfer) -> dict[str, object]:
        return {
            "id": transfer.id,
            "transfer_id": transfer.transfer_id,
            "transfer_type": str(transfer.transfer_type),
            "amount_minor": to_minor_units(transfer.amount),
            "currency": str(transfer.currency),
            "exchange_rate": str(transfer.exchange_rate),
            "transfer_date": transfer.transfer_date.isoformat(),
            "bank_name": transfer.bank_name,
            "from_account": transfer.from_account,
            "transaction_reference": transfer.transaction_reference,
            "recipient_id": transfer.recipient_id,
            "recipient_name": transfer.recipient_name,
            "purpose": transfer.purpose,
            "notes": transfer.notes,
            "initiated_by": transfer.initiated_by,
            "status": str(transfer.status),
            "created_at": transfer.created_at.isoformat() if transfer.created_at else None,
        }
