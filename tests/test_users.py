"""User administration: manager limits, uniqueness, last-admin guard, scoping."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from pettycash.database import DatabaseManager
from pettycash.models.enums import UserRole
from pettycash.models.user import User
from pettycash.repositories.user_repository import UserRepository
from pettycash.services import ServiceContainer
from pettycash.services.users import UserService


@pytest.fixture
def users(services: ServiceContainer) -> UserService:
    return services["user_service"]


class TestCreateUser:

    def test_manager_created_user_reports_to_manager(
        self, users: UserService, make_user: Callable[..., User],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        result = users.create_user(
            {"name": "New Hire", "email": "New.Hire@Example.com", "manager_id": None},
            manager,
        )

        assert result.status_code == 201
        assert result.data.manager_id == manager.id
        assert result.data.email == "new.hire@example.com"
        assert result.data.created_by == manager.id

    def test_manager_cannot_create_admin(
        self, users: UserService, make_user: Callable[..., User],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        result = users.create_user(
            {"name": "Boss", "email": "boss@example.com", "role": "admin"}, manager,
        )
        assert result.status_code == 403

    def test_employee_cannot_create_users(
        self, users: UserService, make_user: Callable[..., User],
    ) -> None:
        result = users.create_user(
            {"name": "X", "email": "x@example.com"}, make_user(UserRole.EMPLOYEE),
        )
        assert result.status_code == 403

    def test_duplicate_email_is_a_conflict(self, users: UserService, admin: User) -> None:
        first = users.create_user({"name": "A", "email": "dup@example.com"}, admin)
        again = users.create_user({"name": "B", "email": "DUP@example.com"}, admin)

        assert first.success
        assert again.status_code == 409

    def test_legacy_role_in_payload_is_normalised(
        self, users: UserService, admin: User,
    ) -> None:
        result = users.create_user(
            {"name": "Old Timer", "email": "old@example.com", "role": "custodian"}, admin,
        )
        assert result.data.role == UserRole.EMPLOYEE

    def test_approval_limit_only_kept_for_approvers(
        self, users: UserService, admin: User,
    ) -> None:
        approver = users.create_user(
            {"name": "Ap", "email": "ap@example.com", "role": "approver", "approval_limit": "5000"},
            admin,
        ).data
        employee = users.create_user(
            {"name": "Em", "email": "em@example.com", "approval_limit": "5000"}, admin,
        ).data

        assert approver.approval_limit is not None
        assert employee.approval_limit is None

    def test_unknown_manager_is_not_found(self, users: UserService, admin: User) -> None:
        result = users.create_user(
            {"name": "Lost", "email": "lost@example.com", "manager_id": "ghost"}, admin,
        )
        assert result.status_code == 404


class TestLastAdminGuard:

    def test_sole_admin_cannot_demote_themselves(
        self, users: UserService, admin: User,
    ) -> None:
        result = users.update_user(admin.id, {"role": "manager"}, admin)
        assert result.status_code == 409

    def test_sole_admin_cannot_deactivate_through_update(
        self, users: UserService, admin: User,
    ) -> None:
        result = users.update_user(admin.id, {"is_active": False}, admin)
        assert result.status_code == 409

    def test_manager_cannot_deactivate_the_last_admin(
        self, users: UserService, make_user: Callable[..., User],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        lone_admin = make_user(UserRole.ADMIN, manager=manager)

        result = users.deactivate_user(lone_admin.id, manager)
        assert result.status_code == 409

    def test_second_admin_can_be_removed(
        self, users: UserService, admin: User, make_user: Callable[..., User],
    ) -> None:
        other = make_user(UserRole.ADMIN)
        assert users.deactivate_user(other.id, admin).success
        assert users.delete_user(other.id, admin).success
        assert users.get_user(other.id, admin).status_code == 404

    def test_cannot_delete_or_deactivate_self(self, users: UserService, admin: User) -> None:
        assert users.delete_user(admin.id, admin).status_code == 400
        assert users.deactivate_user(admin.id, admin).status_code == 400


class TestUpdateUser:

    def test_manager_cannot_reassign_report(
        self, users: UserService, make_user: Callable[..., User],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        other = make_user(UserRole.MANAGER)
        report = make_user(UserRole.EMPLOYEE, manager=manager)

        result = users.update_user(report.id, {"manager_id": other.id}, manager)
        assert result.status_code == 403

    def test_manager_cannot_edit_someone_elses_report(
        self, users: UserService, make_user: Callable[..., User],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        stranger = make_user(UserRole.EMPLOYEE)
        assert users.update_user(stranger.id, {"name": "Z"}, manager).status_code == 403

    def test_user_cannot_manage_themselves(
        self, users: UserService, admin: User, make_user: Callable[..., User],
    ) -> None:
        employee = make_user(UserRole.EMPLOYEE)
        result = users.update_user(employee.id, {"manager_id": employee.id}, admin)
        assert result.status_code == 400

    def test_demotion_clears_approval_limit(
        self, users: UserService, admin: User,
    ) -> None:
        approver = users.create_user(
            {"name": "Ap", "email": "ap2@example.com", "role": "approver", "approval_limit": "100"},
            admin,
        ).data
        updated = users.update_user(approver.id, {"role": "employee"}, admin).data
        assert updated.approval_limit is None


class TestListUsers:

    def test_manager_sees_self_and_reports(
        self, users: UserService, make_user: Callable[..., User],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        report = make_user(UserRole.EMPLOYEE, manager=manager)
        make_user(UserRole.EMPLOYEE)

        listed = {u.id for u in users.list_users(manager).data}
        assert listed == {manager.id, report.id}

    def test_employee_sees_only_self(
        self, users: UserService, admin: User, make_user: Callable[..., User],
    ) -> None:
        employee = make_user(UserRole.EMPLOYEE)
        assert [u.id for u in users.list_users(employee).data] == [employee.id]
        assert users.get_user(admin.id, employee).status_code == 403

    def test_admin_can_exclude_inactive(
        self, users: UserService, admin: User, make_user: Callable[..., User],
    ) -> None:
        gone = make_user(UserRole.EMPLOYEE, is_active=False)
        everyone = {u.id for u in users.list_users(admin).data}
        active = {u.id for u in users.list_users(admin, include_inactive=False).data}

        assert gone.id in everyone
        assert gone.id not in active

    def test_legacy_stored_role_reads_as_employee(
        self, db: DatabaseManager, user_repo: UserRepository, users: UserService, admin: User,
    ) -> None:
        db.sqlite.execute(
            "INSERT INTO users (id, name, email, role, created_at, updated_at) "
            "VALUES ('legacy-1', 'Legacy', 'legacy@example.com', 'handler', "
            "'2023-01-01T00:00:00+00:00', '2023-01-01T00:00:00+00:00')"
        )
        db.sqlite.commit()

        assert user_repo.get_by_id("legacy-1").role == UserRole.EMPLOYEE
        employees = users.list_users(admin, role=UserRole.EMPLOYEE).data
        assert "legacy-1" in {u.id for u in employees}
