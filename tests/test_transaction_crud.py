"""Claim creation, numbering, on-behalf filing, edits and deletion."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal

import pytest

from pettycash.models.enums import ApprovalWorkflowKind, TransactionStatus, UserRole
from pettycash.models.transaction import Transaction
from pettycash.models.user import User
from pettycash.services import ServiceContainer
from pettycash.services.transaction_crud import TransactionCrudService
from pettycash.utils.general import utc_now
from tests.conftest import RecordingNotifier


@pytest.fixture
def crud(services: ServiceContainer) -> TransactionCrudService:
    return services["transaction_crud_service"]


class TestCreateTransaction:

    def test_numbers_are_sequential_per_month(
        self, admin: User, claim: Callable[..., Transaction],
    ) -> None:
        period = utc_now().strftime("%Y%m")
        first = claim(admin)
        second = claim(admin)

        assert first.transaction_number == f"PC{period}0001"
        assert second.transaction_number == f"PC{period}0002"

    def test_deleted_draft_number_is_not_reused(
        self, crud: TransactionCrudService, admin: User, claim: Callable[..., Transaction],
    ) -> None:
        draft = claim(admin, as_draft=True)
        assert crud.delete_transaction(draft.id, admin).success
        assert claim(admin).transaction_number.endswith("0002")

    def test_simple_claim_starts_pending_and_notifies(
        self,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
        notifier: RecordingNotifier,
    ) -> None:
        employee = make_user(UserRole.EMPLOYEE)
        txn = claim(employee)

        assert txn.status == TransactionStatus.PENDING
        assert txn.workflow == ApprovalWorkflowKind.SIMPLE
        assert txn.submitted_by == employee.id
        assert txn.requested_by == employee.id
        assert notifier.kinds() == ["submitted"]

    def test_draft_does_not_notify(
        self,
        admin: User,
        claim: Callable[..., Transaction],
        notifier: RecordingNotifier,
    ) -> None:
        txn = claim(admin, as_draft=True)
        assert txn.status == TransactionStatus.DRAFT
        assert notifier.calls == []

    def test_hierarchical_claim_always_starts_as_draft(
        self, admin: User, claim: Callable[..., Transaction],
    ) -> None:
        txn = claim(admin, workflow="hierarchical")
        assert txn.status == TransactionStatus.DRAFT
        assert txn.workflow == ApprovalWorkflowKind.HIERARCHICAL

    @pytest.mark.parametrize(
        "payload, fragment",
        [
            ({"category": "Travel", "post_tax_amount": "0", "transaction_date": "2024-05-01"},
             "post_tax_amount"),
            ({"post_tax_amount": "10", "transaction_date": "2024-05-01"}, "category"),
            ({"category": "Travel", "post_tax_amount": "10"}, "transaction_date"),
        ],
    )
    def test_invalid_payload_is_rejected(
        self,
        crud: TransactionCrudService,
        admin: User,
        payload: dict[str, object],
        fragment: str,
    ) -> None:
        result = crud.create_transaction(payload, admin)
        assert result.status_code == 400
        assert result.error_code == "VALIDATION_ERROR"
        assert fragment in result.error

    def test_create_returns_201(self, crud: TransactionCrudService, admin: User) -> None:
        result = crud.create_transaction(
            {"category": "Meals", "post_tax_amount": "12.5", "transaction_date": "2024-05-01"},
            admin,
        )
        assert result.status_code == 201


class TestOnBehalfFiling:

    def test_admin_can_file_for_anyone_active(
        self,
        admin: User,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        employee = make_user(UserRole.EMPLOYEE)
        txn = claim(admin, requested_by=employee.id)
        assert txn.submitted_by == admin.id
        assert txn.requested_by == employee.id

    def test_manager_can_file_for_direct_report(
        self, make_user: Callable[..., User], claim: Callable[..., Transaction],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        report = make_user(UserRole.EMPLOYEE, manager=manager)
        assert claim(manager, requested_by=report.id).requested_by == report.id

    def test_manager_cannot_file_for_other_team(
        self,
        crud: TransactionCrudService,
        make_user: Callable[..., User],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        stranger = make_user(UserRole.EMPLOYEE)
        result = crud.create_transaction(
            {
                "category": "Travel",
                "post_tax_amount": "10",
                "transaction_date": "2024-05-01",
                "requested_by": stranger.id,
            },
            manager,
        )
        assert result.status_code == 403

    def test_employee_cannot_file_for_someone_else(
        self, crud: TransactionCrudService, make_user: Callable[..., User],
    ) -> None:
        me = make_user(UserRole.EMPLOYEE)
        other = make_user(UserRole.EMPLOYEE)
        result = crud.create_transaction(
            {
                "category": "Travel",
                "post_tax_amount": "10",
                "transaction_date": "2024-05-01",
                "requested_by": other.id,
            },
            me,
        )
        assert result.status_code == 403

    def test_deactivated_requester_is_rejected(
        self, crud: TransactionCrudService, admin: User, make_user: Callable[..., User],
    ) -> None:
        gone = make_user(UserRole.EMPLOYEE, is_active=False)
        result = crud.create_transaction(
            {
                "category": "Travel",
                "post_tax_amount": "10",
                "transaction_date": "2024-05-01",
                "requested_by": gone.id,
            },
            admin,
        )
        assert result.status_code == 400

    def test_unknown_requester_is_not_found(
        self, crud: TransactionCrudService, admin: User,
    ) -> None:
        result = crud.create_transaction(
            {
                "category": "Travel",
                "post_tax_amount": "10",
                "transaction_date": "2024-05-01",
                "requested_by": "nobody",
            },
            admin,
        )
        assert result.status_code == 404


class TestReadAndEdit:

    def test_get_outside_scope_is_forbidden(
        self,
        crud: TransactionCrudService,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        owner = make_user(UserRole.EMPLOYEE)
        snoop = make_user(UserRole.EMPLOYEE)
        txn = claim(owner)

        assert crud.get_transaction(txn.id, owner).success
        assert crud.get_transaction(txn.id, snoop).status_code == 403

    def test_owner_can_edit_pending_claim(
        self,
        crud: TransactionCrudService,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        owner = make_user(UserRole.EMPLOYEE)
        txn = claim(owner)

        result = crud.update_transaction(
            txn.id, {"post_tax_amount": "88.80", "purpose": "Airport taxi"}, owner,
        )

        assert result.success, result.error
        stored = crud.get_transaction(txn.id, owner).data
        assert str(stored.post_tax_amount) == "88.80"
        assert stored.purpose == "Airport taxi"
        assert stored.status == TransactionStatus.PENDING

    def test_non_owner_cannot_edit(
        self,
        crud: TransactionCrudService,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        manager = make_user(UserRole.MANAGER)
        report = make_user(UserRole.EMPLOYEE, manager=manager)
        txn = claim(report)
        assert crud.update_transaction(txn.id, {"purpose": "x"}, manager).status_code == 403

    def test_zero_amount_edit_is_rejected(
        self, crud: TransactionCrudService, admin: User, claim: Callable[..., Transaction],
    ) -> None:
        txn = claim(admin)
        assert crud.update_transaction(txn.id, {"post_tax_amount": "0"}, admin).status_code == 400

    def test_only_drafts_can_be_deleted(
        self, crud: TransactionCrudService, admin: User, claim: Callable[..., Transaction],
    ) -> None:
        pending = claim(admin)
        result = crud.delete_transaction(pending.id, admin)
        assert result.status_code == 409
        assert crud.get_transaction(pending.id, admin).success

    def test_owner_deletes_own_draft(
        self,
        crud: TransactionCrudService,
        make_user: Callable[..., User],
        claim: Callable[..., Transaction],
    ) -> None:
        owner = make_user(UserRole.EMPLOYEE)
        draft = claim(owner, as_draft=True)

        assert crud.delete_transaction(draft.id, owner).success
        assert crud.get_transaction(draft.id, owner).status_code == 404

    @pytest.mark.parametrize("field", ["post_tax_amount", "category", "transaction_date", "purpose"])
    def test_required_field_cannot_be_cleared(
        self,
        crud: TransactionCrudService,
        admin: User,
        claim: Callable[..., Transaction],
        field: str,
    ) -> None:
        txn = claim(admin, amount="42.00")

        result = crud.update_transaction(txn.id, {field: None}, admin)

        assert result.status_code == 400
        assert result.error_code == "VALIDATION_ERROR"
        assert field in result.error
        stored = crud.get_transaction(txn.id, admin).data
        assert stored.post_tax_amount == Decimal("42.00")
        assert stored.category == "Travel"

    def test_optional_field_can_be_cleared(
        self, crud: TransactionCrudService, admin: User, claim: Callable[..., Transaction],
    ) -> None:
        txn = claim(admin, payee_client_name="Acme Cabs")

        result = crud.update_transaction(txn.id, {"payee_client_name": None}, admin)

        assert result.success, result.error
        assert crud.get_transaction(txn.id, admin).data.payee_client_name is None


class TestAmountPrecision:

    @pytest.mark.parametrize("amount", ["0.004", "0.001"])
    def test_sub_cent_claim_is_rejected(
        self, crud: TransactionCrudService, admin: User, amount: str,
    ) -> None:
        result = crud.create_transaction(
            {"category": "Meals", "post_tax_amount": amount, "transaction_date": "2024-05-01"},
            admin,
        )
        assert result.status_code == 400
        assert "post_tax_amount" in result.error

    def test_claim_amount_is_rounded_to_cents(
        self, crud: TransactionCrudService, admin: User, claim: Callable[..., Transaction],
    ) -> None:
        txn = claim(admin, amount="10.005")

        assert txn.post_tax_amount == Decimal("10.01")
        assert crud.get_transaction(txn.id, admin).data.post_tax_amount == Decimal("10.01")

    def test_sub_cent_edit_is_rejected(
        self, crud: TransactionCrudService, admin: User, claim: Callable[..., Transaction],
    ) -> None:
        txn = claim(admin)
        result = crud.update_transaction(txn.id, {"post_tax_amount": "0.003"}, admin)
        assert result.status_code == 400
