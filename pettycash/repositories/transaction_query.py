"""
Access-Controlled Transaction Query.

Translates a :class:`~pettycash.models.access.VisibilityScope` into a SQL
``WHERE`` fragment and lets callers stack further filters on top.  Listing
and every reporting aggregate build their filters from this one class, so
the visibility rule exists in a single place.

Usage::

    query = (
        TransactionQuery.for_scope(scope)
        .with_status(TransactionStatus.PENDING)
        .with_search("taxi")
    )
    where_sql, params = query.compile()
"""

from __future__ import annotations

from datetime import date
from typing import Optional, Union

from pettycash.models.access import VisibilityScope
from pettycash.models.enums import TransactionStatus

__all__ = ["TransactionQuery"]

SqlParam = Union[str, int]
_Clause = tuple[str, tuple[SqlParam, ...]]


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TransactionQuery:
    """Immutable, composable filter over the ``transactions`` table.

    Every ``with_*`` method returns a new query; the scope clause is
    always AND-ed with whatever is added.
    """

    _SEARCH_COLUMNS: tuple[str, ...] = (
        "transaction_number",
        "purpose",
        "payee_client_name",
        "category",
    )

    def __init__(self, scope: VisibilityScope, clauses: tuple[_Clause, ...] = ()) -> None:
        self._scope = scope
        self._clauses = clauses

    @classmethod
    def for_scope(cls, scope: VisibilityScope) -> "TransactionQuery":
        return cls(scope)

    @property
    def scope(self) -> VisibilityScope:
        return self._scope

    def _add(self, sql: str, params: tuple[SqlParam, ...] = ()) -> "TransactionQuery":
        return TransactionQuery(self._scope, self._clauses + ((sql, params),))

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def with_status(self, *statuses: TransactionStatus) -> "TransactionQuery":
        if not statuses:
            return self
        placeholders = ", ".join("?" for _ in statuses)
        return self._add(
            f"status IN ({placeholders})", tuple(str(s) for s in statuses)
        )

    def with_category(self, category: Optional[str]) -> "TransactionQuery":
        if not category:
            return self
        return self._add("category = ?", (category,))

    def with_date_range(
        self, start: Optional[date] = None, end: Optional[date] = None,
    ) -> "TransactionQuery":
        query = self
        if start is not None:
            query = query._add("transaction_date >= ?", (start.isoformat(),))
        if end is not None:
            query = query._add("transaction_date <= ?", (end.isoformat(),))
        return query

    def with_search(self, text: Optional[str]) -> "TransactionQuery":
        term = (text or "").strip()
        if not term:
            return self
        pattern = f"%{_escape_like(term)}%"
        sql = " OR ".join(f"{col} LIKE ? ESCAPE '\\'" for col in self._SEARCH_COLUMNS)
        return self._add(sql, tuple(pattern for _ in self._SEARCH_COLUMNS))

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def _scope_clause(self) -> Optional[_Clause]:
        if self._scope.is_unrestricted:
            return None
        ids = tuple(sorted(self._scope.owner_ids))
        placeholders = ", ".join("?" for _ in ids)
        return (
            f"submitted_by IN ({placeholders}) OR requested_by IN ({placeholders})",
            ids + ids,
        )

    def compile(self) -> tuple[str, list[SqlParam]]:
        """Return ``(where_sql, params)``; ``where_sql`` is ``1 = 1`` when unfiltered."""
        clauses = list(self._clauses)
        scope_clause = self._scope_clause()
        if scope_clause is not None:
            clauses.insert(0, scope_clause)
        if not clauses:
            return "1 = 1", []
        where_sql = " AND ".join(f"({sql})" for sql, _ in clauses)
        params: list[SqlParam] = [p for _, clause_params in clauses for p in clause_params]
        return where_sql, params
