"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database (local-only mode, no
Supabase client), the full service container and a notifier that records
calls instead of sending email.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from pettycash.config import AppConfig
from pettycash.database import DatabaseManager
from pettycash.logger import StructuredLogger
from pettycash.models.enums import TransactionStatus, UserRole
from pettycash.models.transaction import Transaction
from pettycash.models.user import User
from pettycash.repositories.user_repository import UserRepository
from pettycash.schema import initialize_schema
from pettycash.services import ServiceContainer, create_services
from pettycash.utils.general import new_id, utc_now


class RecordingNotifier:
    """Notifier fake.  ``fail=True`` makes every call raise."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Transaction]] = []
        self.fail: bool = False

    def _record(self, kind: str, transaction: Transaction) -> None:
        if self.fail:
            raise RuntimeError("mail server down")
        self.calls.append((kind, transaction))

    def notify_submitted(
        self, transaction: Transaction, submitter: User, approvers: Sequence[User],
    ) -> None:
        self._record("submitted", transaction)

    def notify_status_update(
        self,
        transaction: Transaction,
        owner: Optional[User],
        actor: User,
        new_status: TransactionStatus,
        comment: Optional[str],
    ) -> None:
        self._record(f"status:{new_status}", transaction)

    def notify_info_requested(
        self,
        transaction: Transaction,
        owner: Optional[User],
        actor: User,
        message: str,
    ) -> None:
        self._record("info_requested", transaction)

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.calls]


@pytest.fixture(scope="session")
def logger(tmp_path_factory: pytest.TempPathFactory) -> StructuredLogger:
    log_dir = tmp_path_factory.mktemp("logs")
    return StructuredLogger(name="pettycash.tests", log_file=str(log_dir / "tests.log"))


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(_env_file=None, ENVIRONMENT="test")


@pytest.fixture
def db(logger: StructuredLogger) -> Iterator[DatabaseManager]:
    manager = DatabaseManager(
        supabase_url="", supabase_key="", sqlite_path=":memory:", logger=logger,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(
    db: DatabaseManager, config: AppConfig, notifier: RecordingNotifier,
) -> ServiceContainer:
    return create_services(db=db, config=config, notifier=notifier)


@pytest.fixture
def user_repo(db: DatabaseManager, logger: StructuredLogger) -> UserRepository:
    return UserRepository(db=db, logger=logger)


@pytest.fixture
def make_user(user_repo: UserRepository) -> Callable[..., User]:
    """Insert a user directly through the repository."""
    counter = {"n": 0}

    def _make(
        role: UserRole = UserRole.EMPLOYEE,
        manager: Optional[User] = None,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        label = name or f"{role}-{counter['n']}"
        now = utc_now()
        user = User(
            id=new_id(),
            name=label,
            email=f"{label.lower().replace(' ', '.')}@example.com",
            role=role,
            manager_id=manager.id if manager else None,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        return user_repo.create(user)

    return _make


@pytest.fixture
def admin(make_user: Callable[..., User]) -> User:
    return make_user(UserRole.ADMIN, name="Admin")


@pytest.fixture
def fund(
    services: ServiceContainer, admin: User,
) -> Callable[[Decimal], None]:
    """Top up the balance with a cash transfer."""

    def _fund(amount: Decimal) -> None:
        result = services["fund_transfer_service"].add_funds(
            {
                "transfer_type": "cash",
                "amount": str(amount),
                "transfer_date": date.today().isoformat(),
            },
            admin,
        )
        assert result.success, result.error

    return _fund


@pytest.fixture
def claim(services: ServiceContainer) -> Callable[..., Transaction]:
    """Create a claim as *user* and return it."""

    def _claim(user: User, amount: str = "100.00", **extra: object) -> Transaction:
        payload: dict[str, object] = {
            "category": "Travel",
            "post_tax_amount": amount,
            "transaction_date": date.today().isoformat(),
            "purpose": "Taxi to client site",
        }
        payload.update(extra)
        result = services["transaction_crud_service"].create_transaction(payload, user)
        assert result.success, result.error
        assert result.data is not None
        return result.data

    return _claim
