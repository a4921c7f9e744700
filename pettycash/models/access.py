"""
Visibility Scope Model.

Output of the role hierarchy resolver: which owners' transactions a user
may see.  The same object drives single-record checks
(:meth:`VisibilityScope.includes`) and SQL filters
(:class:`~pettycash.repositories.transaction_query.TransactionQuery`).
"""

from __future__ import annotations

from pydantic import BaseModel

from pettycash.models.enums import ScopeKind
from pettycash.models.transaction import Transaction


class VisibilityScope(BaseModel):
    """Resolved visibility for one acting user."""

    kind: ScopeKind
    user_id: str
    member_ids: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    @property
    def is_unrestricted(self) -> bool:
        return self.kind == ScopeKind.ALL

    @property
    def owner_ids(self) -> frozenset[str]:
        """Owner ids a transaction must match; empty for ``ALL``."""
        if self.kind == ScopeKind.ALL:
            return frozenset()
        if self.kind == ScopeKind.TEAM:
            return frozenset({self.user_id}) | self.member_ids
        return frozenset({self.user_id})

    def includes(self, transaction: Transaction) -> bool:
        """``True`` when *transaction* falls inside this scope.

        Transactions without any owner are only visible to ``ALL``.
        """
        if self.is_unrestricted:
            return True
        return bool(transaction.owner_ids & self.owner_ids)
