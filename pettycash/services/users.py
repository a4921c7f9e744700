"""
User Management Service.

Handles user administration: creation, updates, deactivation, hard
deletion and listing.

Architectural notes:
    - Admins manage everyone.  Managers may only create employees and
      interns, who are always assigned to the creating manager, and may
      only edit or deactivate their own direct reports.
    - Deactivation is the normal way to remove someone; hard delete is
      an admin cleanup tool and never removes the last active admin.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from pettycash.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PettyCashError,
    ValidationError,
)
from pettycash.logger import StructuredLogger
from pettycash.models.enums import ScopeKind, UserRole
from pettycash.models.service_models import ServiceResult, UserCreateInput, UserUpdateInput
from pettycash.models.user import User
from pettycash.repositories.user_repository import UserRepository
from pettycash.services.base_service import BaseService
from pettycash.services.role_hierarchy import ROLE_SCOPE_RULES
from pettycash.utils.audit import log_audit_event
from pettycash.utils.general import new_id, utc_now

# Roles a manager is allowed to hand out.
_MANAGER_ASSIGNABLE_ROLES: frozenset[UserRole] = frozenset({UserRole.EMPLOYEE, UserRole.INTERN})


class UserService(BaseService):
    """Service layer for user management operations."""

    def __init__(self, repo: UserRepository, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._repo = repo

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(
        self, payload: dict[str, object], current_user: User,
    ) -> ServiceResult[User]:
        """
        Create a user account.

        Managers can only create employees and interns; the new user's
        ``manager_id`` is always the creating manager, whatever was sent.

        Returns:
            ServiceResult with the new user and status 201.
        """
        try:
            self._require_active(current_user)
            data = self._validate(UserCreateInput, payload)

            manager_id = data.manager_id
            if current_user.role == UserRole.MANAGER:
                if data.role not in _MANAGER_ASSIGNABLE_ROLES:
                    raise AuthorizationError("Managers can only create employees and interns.")
                manager_id = current_user.id
            elif current_user.role != UserRole.ADMIN:
                raise AuthorizationError("Only admins and managers can create users.")

            if self._repo.get_by_email(data.email) is not None:
                raise ConflictError(f"A user with email {data.email} already exists.")
            if manager_id is not None:
                self._require_manager(manager_id)

            now = utc_now()
            user = User(
                id=new_id(),
                name=data.name.strip(),
                email=data.email,
                role=data.role,
                manager_id=manager_id,
                approval_limit=data.approval_limit if data.role == UserRole.APPROVER else None,
                department=data.department,
                phone=data.phone,
                created_by=current_user.id,
                created_at=now,
                updated_at=now,
            )
            try:
                self._repo.create(user)
            except sqlite3.IntegrityError as exc:
                raise ConflictError(f"A user with email {data.email} already exists.") from exc

            self._audit("CREATE_USER", user, current_user, {"role": str(user.role)})
            return ServiceResult(success=True, data=user, status_code=201)

        except PettyCashError as exc:
            self._logger.warning("User not created by %s: %s", current_user.id, exc.message)
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("create user", exc)

    def update_user(
        self,
        user_id: str,
        payload: dict[str, object],
        current_user: User,
    ) -> ServiceResult[User]:
        try:
            self._require_active(current_user)
            data = self._validate(UserUpdateInput, payload)
            changes = data.model_dump(exclude_unset=True)
            target = self._load(user_id)
            self._require_can_manage(current_user, target)

            if current_user.role == UserRole.MANAGER:
                if "role" in changes and changes["role"] not in _MANAGER_ASSIGNABLE_ROLES:
                    raise AuthorizationError("Managers can only assign employee or intern roles.")
                if changes.get("manager_id", current_user.id) != current_user.id:
                    raise AuthorizationError("Managers cannot reassign their reports.")

            if "email" in changes and changes["email"] != target.email:
                if self._repo.get_by_email(changes["email"]) is not None:
                    raise ConflictError(f"A user with email {changes['email']} already exists.")
            if changes.get("manager_id") is not None:
                if changes["manager_id"] == target.id:
                    raise ValidationError("A user cannot be their own manager.")
                self._require_manager(changes["manager_id"])

            loses_admin = target.role == UserRole.ADMIN and target.is_active and (
                changes.get("role", UserRole.ADMIN) != UserRole.ADMIN
                or changes.get("is_active") is False
            )
            if loses_admin:
                self._require_other_admin(target)

            updated = target.model_copy(update={**changes, "updated_at": utc_now()})
            if updated.role != UserRole.APPROVER:
                updated.approval_limit = None
            self._repo.update(updated)
            self._audit(
                "UPDATE_USER", updated, current_user,
                {"fields": ", ".join(sorted(changes))},
            )
            return ServiceResult(success=True, data=updated)

        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("update user", exc)

    def deactivate_user(self, user_id: str, current_user: User) -> ServiceResult[User]:
        """Mark a user inactive.  Their claims and approvals stay attributed."""
        try:
            self._require_active(current_user)
            target = self._load(user_id)
            self._require_can_manage(current_user, target)
            if target.id == current_user.id:
                raise ValidationError("You cannot deactivate your own account.")
            if not target.is_active:
                return ServiceResult(success=True, data=target)
            if target.role == UserRole.ADMIN:
                self._require_other_admin(target)

            updated = target.model_copy(update={"is_active": False, "updated_at": utc_now()})
            self._repo.update(updated)
            self._audit("DEACTIVATE_USER", updated, current_user)
            return ServiceResult(success=True, data=updated)

        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("deactivate user", exc)

    def delete_user(self, user_id: str, current_user: User) -> ServiceResult[None]:
        """Hard-delete a user (admin only).  Direct reports lose their manager."""
        try:
            self._require_active(current_user)
            if current_user.role != UserRole.ADMIN:
                raise AuthorizationError("Only admins can delete users.")
            target = self._load(user_id)
            if target.id == current_user.id:
                raise ValidationError("You cannot delete your own account.")
            if target.role == UserRole.ADMIN and target.is_active:
                self._require_other_admin(target)

            self._repo.delete(target.id)
            self._audit("DELETE_USER", target, current_user, {"email": target.email})
            return ServiceResult(success=True)

        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("delete user", exc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_users(
        self,
        current_user: User,
        role: Optional[UserRole] = None,
        include_inactive: bool = True,
    ) -> ServiceResult[list[User]]:
        """Users visible to *current_user*.

        Managers see themselves and their direct reports; employees only
        themselves; admin-like roles everyone.
        """
        try:
            self._require_active(current_user)
            is_active = None if include_inactive else True
            scope = ROLE_SCOPE_RULES.get(current_user.role, ScopeKind.ALL)
            if scope == ScopeKind.TEAM:
                users = self._repo.list_users(role=role, is_active=is_active, team_of=current_user.id)
            elif scope == ScopeKind.OWN:
                users = [current_user] if role in (None, current_user.role) else []
            else:
                users = self._repo.list_users(role=role, is_active=is_active)
            return ServiceResult(success=True, data=users)
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("list users", exc)

    def get_user(self, user_id: str, current_user: User) -> ServiceResult[User]:
        try:
            self._require_active(current_user)
            target = self._load(user_id)
            if not self._can_view(current_user, target):
                raise AuthorizationError("You are not authorized to view this user.")
            return ServiceResult(success=True, data=target)
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("retrieve user", exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, user_id: str) -> User:
        user = self._repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    def _require_manager(self, manager_id: str) -> User:
        manager = self._repo.get_by_id(manager_id)
        if manager is None:
            raise NotFoundError("Manager not found.")
        if not manager.is_active:
            raise ValidationError("Cannot assign a deactivated manager.")
        return manager

    def _require_other_admin(self, target: User) -> None:
        if self._repo.count_active_admins(excluding=target.id) == 0:
            raise ConflictError("Cannot remove the last active admin.")

    @staticmethod
    def _require_can_manage(actor: User, target: User) -> None:
        if actor.role == UserRole.ADMIN:
            return
        if actor.role == UserRole.MANAGER and target.manager_id == actor.id:
            return
        raise AuthorizationError("You are not authorized to manage this user.")

    @staticmethod
    def _can_view(actor: User, target: User) -> bool:
        if actor.id == target.id:
            return True
        scope = ROLE_SCOPE_RULES.get(actor.role, ScopeKind.ALL)
        if scope == ScopeKind.ALL:
            return True
        return scope == ScopeKind.TEAM and target.manager_id == actor.id

    def _audit(
        self,
        action: str,
        target: User,
        actor: User,
        details: Optional[dict[str, str]] = None,
    ) -> None:
        log_audit_event(
            logger=self._logger,
            action=action,
            entity_type="User",
            entity_id=target.id,
            user_id=actor.id,
            details=details,
            conn=self._repo.sqlite,
        )
