"""
Role Hierarchy Resolver.

Decides which transactions a user can see and which they may act on.
Visibility is table-driven:

============================  =======  =========================================
Role                          Scope    Rule
============================  =======  =========================================
employee, intern              OWN      submitted_by or requested_by is the user
manager, approver             TEAM     own plus direct reports (one level only)
admin, ceo, auditor, finance  ALL      every transaction
============================  =======  =========================================

Roles missing from the table fall back to ``ALL``, matching the historic
behaviour for unrecognised roles.
"""

from __future__ import annotations

from pettycash.logger import StructuredLogger
from pettycash.models.access import VisibilityScope
from pettycash.models.enums import ScopeKind, UserRole
from pettycash.models.transaction import Transaction
from pettycash.models.user import User
from pettycash.repositories.user_repository import UserRepository
from pettycash.services.base_service import BaseService

ROLE_SCOPE_RULES: dict[UserRole, ScopeKind] = {
    UserRole.EMPLOYEE: ScopeKind.OWN,
    UserRole.INTERN: ScopeKind.OWN,
    UserRole.MANAGER: ScopeKind.TEAM,
    UserRole.APPROVER: ScopeKind.TEAM,
    UserRole.ADMIN: ScopeKind.ALL,
    UserRole.CEO: ScopeKind.ALL,
    UserRole.AUDITOR: ScopeKind.ALL,
    UserRole.FINANCE: ScopeKind.ALL,
}


class RoleHierarchyResolver(BaseService):
    """Resolves visibility scopes and simple-protocol approval rights."""

    def __init__(self, user_repo: UserRepository, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._user_repo = user_repo

    def resolve_scope(self, acting_user: User) -> VisibilityScope:
        """Return the visibility scope for *acting_user*.

        ``TEAM`` costs exactly one direct-report lookup; ``OWN`` and
        ``ALL`` cost none.
        """
        kind = ROLE_SCOPE_RULES.get(acting_user.role, ScopeKind.ALL)
        if kind == ScopeKind.TEAM:
            members = self._user_repo.get_direct_report_ids(acting_user.id)
            return VisibilityScope(kind=kind, user_id=acting_user.id, member_ids=members)
        return VisibilityScope(kind=kind, user_id=acting_user.id)

    def can_access(self, acting_user: User, transaction: Transaction) -> bool:
        """Single-record form of :meth:`resolve_scope`."""
        return self.resolve_scope(acting_user).includes(transaction)

    def can_act_on(self, acting_user: User, transaction: Transaction) -> bool:
        """Whether *acting_user* may approve or reject under the simple protocol.

        Admins always may; managers only within their team; nobody else.
        """
        if acting_user.role == UserRole.ADMIN:
            return True
        if acting_user.role == UserRole.MANAGER:
            return self.can_access(acting_user, transaction)
        return False

    def level_one_approvers(self, submitter: User) -> list[User]:
        """Users to notify when *submitter* files a claim.

        Employees and interns with a manager go to that manager; everyone
        else (and orphaned employees) goes to the active admins.
        """
        if submitter.role in (UserRole.EMPLOYEE, UserRole.INTERN) and submitter.manager_id:
            manager = self._user_repo.get_by_id(submitter.manager_id)
            if manager is not None and manager.is_active:
                return [manager]
        return self._user_repo.list_active_by_roles([UserRole.ADMIN])
