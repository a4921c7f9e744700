"""Visibility scopes and the access-controlled query builder."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.models.access import VisibilityScope
from pettycash.models.enums import ScopeKind, TransactionStatus, UserRole
from pettycash.models.transaction import Transaction
from pettycash.models.user import User
from pettycash.repositories.transaction_query import TransactionQuery
from pettycash.repositories.user_repository import UserRepository
from pettycash.services import ServiceContainer
from pettycash.services.role_hierarchy import RoleHierarchyResolver


def _listed_ids(services: ServiceContainer, user: User, **filters: object) -> set[str]:
    result = services["transaction_crud_service"].list_transactions(user, dict(filters))
    assert result.success, result.error
    return {t.id for t in result.data.items}


class CountingUserRepository(UserRepository):
    """Counts direct-report lookups."""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)
        self.report_lookups = 0

    def get_direct_report_ids(self, manager_id: str) -> frozenset[str]:
        self.report_lookups += 1
        return super().get_direct_report_ids(manager_id)


class TestResolveScope:

    def test_scope_kinds_by_role(
        self, services: ServiceContainer, make_user: Callable[..., User],
    ) -> None:
        resolver = services["role_resolver"]
        assert resolver.resolve_scope(make_user(UserRole.EMPLOYEE)).kind == ScopeKind.OWN
        assert resolver.resolve_scope(make_user(UserRole.INTERN)).kind == ScopeKind.OWN
        assert resolver.resolve_scope(make_user(UserRole.MANAGER)).kind == ScopeKind.TEAM
        assert resolver.resolve_scope(make_user(UserRole.APPROVER)).kind == ScopeKind.TEAM
        for role in (UserRole.ADMIN, UserRole.CEO, UserRole.AUDITOR, UserRole.FINANCE):
            assert resolver.resolve_scope(make_user(role)).kind == ScopeKind.ALL

    def test_team_is_direct_reports_only(
        self, services: ServiceContainer, make_user: Callable[..., User],
    ) -> None:
        boss = make_user(UserRole.MANAGER)
        lead = make_user(UserRole.MANAGER, manager=boss)
        grunt = make_user(UserRole.EMPLOYEE, manager=lead)

        scope = services["role_resolver"].resolve_scope(boss)
        assert scope.member_ids == frozenset({lead.id})
        assert grunt.id not in scope.owner_ids

    @pytest.mark.parametrize(
        ("role", "lookups"),
        [
            (UserRole.MANAGER, 1),
            (UserRole.APPROVER, 1),
            (UserRole.EMPLOYEE, 0),
            (UserRole.INTERN, 0),
            (UserRole.ADMIN, 0),
            (UserRole.AUDITOR, 0),
        ],
    )
    def test_only_team_scope_looks_up_reports(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        make_user: Callable[..., User],
        role: UserRole,
        lookups: int,
    ) -> None:
        repo = CountingUserRepository(db, logger)
        resolver = RoleHierarchyResolver(repo, logger)
        actor = make_user(role)
        make_user(UserRole.EMPLOYEE, manager=actor)

        scope = resolver.resolve_scope(actor)

        assert repo.report_lookups == lookups
        if lookups:
            assert len(scope.member_ids) == 1

    def test_ownerless_record_only_visible_to_all_scope(self) -> None:
        orphan = Transaction(
            id="t1",
            transaction_number="PC2024050001",
            category="Misc",
            post_tax_amount="5",
            transaction_date="2024-05-01",
        )
        assert not VisibilityScope(kind=ScopeKind.OWN, user_id="u1").includes(orphan)
        assert VisibilityScope(kind=ScopeKind.ALL, user_id="u1").includes(orphan)


class TestListingScope:

    def test_employee_sees_exactly_own_claims(
        self,
        services: ServiceContainer,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        me = make_user(UserRole.EMPLOYEE)
        other = make_user(UserRole.EMPLOYEE)
        mine = {claim(me).id, claim(me).id}
        for _ in range(5):
            claim(other)

        assert _listed_ids(services, me) == mine

    def test_claim_filed_on_behalf_is_visible_to_requester(
        self,
        services: ServiceContainer,
        admin: User,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        employee = make_user(UserRole.EMPLOYEE)
        filed = claim(admin, requested_by=employee.id)
        assert _listed_ids(services, employee) == {filed.id}

    def test_manager_sees_own_and_direct_reports_only(
        self,
        services: ServiceContainer,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        d1 = make_user(UserRole.EMPLOYEE, manager=manager)
        d2 = make_user(UserRole.EMPLOYEE, manager=manager)
        d3 = make_user(UserRole.EMPLOYEE)

        expected = {claim(manager).id, claim(d1).id, claim(d2).id}
        unrelated = claim(d3)

        visible = _listed_ids(services, manager)
        assert visible == expected
        assert unrelated.id not in visible

    def test_search_never_widens_scope(
        self,
        services: ServiceContainer,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        me = make_user(UserRole.EMPLOYEE)
        other = make_user(UserRole.EMPLOYEE)
        claim(other, purpose="Printer toner")
        mine = claim(me, purpose="Printer paper")

        assert _listed_ids(services, me, search="Printer") == {mine.id}

    def test_status_filter_and_pagination(
        self,
        services: ServiceContainer,
        admin: User,
        claim: Callable[..., Transaction],
    ) -> None:
        for _ in range(3):
            claim(admin)
        claim(admin, as_draft=True)

        result = services["transaction_crud_service"].list_transactions(
            admin, {"status": "pending", "per_page": 2, "page": 2},
        )
        assert result.data.total == 3
        assert len(result.data.items) == 1
        assert all(t.status == TransactionStatus.PENDING for t in result.data.items)


class TestTransactionQuery:

    def test_unrestricted_query_compiles_to_true(self) -> None:
        where_sql, params = TransactionQuery.for_scope(
            VisibilityScope(kind=ScopeKind.ALL, user_id="a")
        ).compile()
        assert where_sql == "1 = 1"
        assert params == []

    def test_scope_clause_is_anded_first(self) -> None:
        query = TransactionQuery.for_scope(
            VisibilityScope(kind=ScopeKind.OWN, user_id="u1")
        ).with_search("50%")
        where_sql, params = query.compile()

        assert where_sql.startswith("(submitted_by IN (?) OR requested_by IN (?)) AND (")
        assert params[:2] == ["u1", "u1"]
        assert params[2] == "%50\\%%"

    def test_builder_is_immutable(self) -> None:
        base = TransactionQuery.for_scope(VisibilityScope(kind=ScopeKind.ALL, user_id="a"))
        base.with_category("Travel")
        assert base.compile() == ("1 = 1", [])
