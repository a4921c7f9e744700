"""
User Repository.

Handles user data access against the local SQLite store.  Stored role
strings are normalised by the :class:`~pettycash.models.user.User` model
as rows are parsed, so legacy ``custodian``/``handler`` values never
leave this layer.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from typing import Optional

from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.models.enums import UserRole
from pettycash.models.user import User
from pettycash.repositories.base_repository import BaseRepository
from pettycash.utils.general import convert_to_json_safe
from pettycash.utils.money import from_minor_units, to_minor_units


class UserRepository(BaseRepository):
    """Data access layer for User entities."""

    TABLE = "users"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> Optional[User]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE id = ?", (user_id,)
        ).fetchone()
        return self._parse(row) if row else None

    def get_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup by email address."""
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE email = ?", (email.strip().lower(),)
        ).fetchone()
        return self._parse(row) if row else None

    def get_direct_report_ids(self, manager_id: str) -> frozenset[str]:
        """IDs of users whose ``manager_id`` is *manager_id* (one level only)."""
        rows = self.sqlite.execute(
            f"SELECT id FROM {self.TABLE} WHERE manager_id = ?", (manager_id,)
        ).fetchall()
        return frozenset(row["id"] for row in rows)

    def list_users(
        self,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
        team_of: Optional[str] = None,
    ) -> list[User]:
        """List users, optionally limited to a manager and their direct reports."""
        clauses: list[str] = []
        params: list[object] = []
        if team_of is not None:
            clauses.append("(id = ? OR manager_id = ?)")
            params.extend([team_of, team_of])
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} {where} ORDER BY name", params
        ).fetchall()
        users = [self._parse(row) for row in rows]
        # Role filtering happens after normalisation so legacy rows match.
        if role is not None:
            users = [u for u in users if u.role == role]
        return users

    def list_active_by_roles(self, roles: Iterable[UserRole]) -> list[User]:
        wanted = frozenset(roles)
        return [u for u in self.list_users(is_active=True) if u.role in wanted]

    def count_active_admins(self, excluding: Optional[str] = None) -> int:
        return sum(
            1
            for u in self.list_active_by_roles([UserRole.ADMIN])
            if u.id != excluding
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, user: User) -> User:
        """Insert a new user row.

        Raises:
            sqlite3.IntegrityError: On a duplicate email.
        """
        row = self._to_row(user)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._db.write_lock:
            self.sqlite.execute(
                f"INSERT INTO {self.TABLE} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            self._queue_pending_sync("insert", user.id, self._payload(user))
            self._commit()
        self._logger.info("User created: %s (%s)", user.id, user.role)
        return user

    def update(self, user: User) -> User:
        row = self._to_row(user)
        row.pop("id")
        assignments = ", ".join(f"{col} = ?" for col in row)
        with self._db.write_lock:
            self.sqlite.execute(
                f"UPDATE {self.TABLE} SET {assignments} WHERE id = ?",
                (*row.values(), user.id),
            )
            self._queue_pending_sync("update", user.id, self._payload(user))
            self._commit()
        return user

    def delete(self, user_id: str) -> bool:
        """Hard-delete a user.  Direct reports keep existing with no manager."""
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"DELETE FROM {self.TABLE} WHERE id = ?", (user_id,)
            )
            if cursor.rowcount:
                self._queue_pending_sync("delete", user_id, {"id": user_id})
            self._commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(row: sqlite3.Row) -> User:
        data = dict(row)
        limit_minor = data.pop("approval_limit_minor", None)
        data["approval_limit"] = (
            from_minor_units(limit_minor) if limit_minor is not None else None
        )
        data["is_active"] = bool(data["is_active"])
        return User(**data)

    @staticmethod
    def _to_row(user: User) -> dict[str, object]:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "role": str(user.role),
            "manager_id": user.manager_id,
            "is_active": int(user.is_active),
            "approval_limit_minor": (
                to_minor_units(user.approval_limit)
                if user.approval_limit is not None
                else None
            ),
            "department": user.department,
            "phone": user.phone,
            "created_by": user.created_by,
            "created_at": user.created_at.isoformat() if user.created_at else None,
            "updated_at": user.updated_at.isoformat() if user.updated_at else None,
        }

    @staticmethod
    def _payload(user: User) -> dict[str, object]:
        return convert_to_json_safe(user.model_dump())
