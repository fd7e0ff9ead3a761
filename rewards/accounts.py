import logging
import math
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Collection, Optional
from uuid import UUID, uuid4

from .errors import ContributorNotFoundError, DuplicateEmailError, RewardsServiceError, UnauthorizedError
from .models import ClaimStatus, Contributor, UserPage, UserRole, UserStats, UserStatus
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class AccountService:
    """Contributor records and the approval workflow."""

    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    def register(self, name: str, email: str, role: UserRole = UserRole.OTHERS) -> Contributor:
        if UserRole(role) == UserRole.SUPER_ADMIN:
            raise UnauthorizedError("Cannot register as super admin")
        return self._create(name, email, UserRole(role), UserStatus.PENDING)

    def create_super_admin(self, name: str, email: str) -> Contributor:
        try:
            return self._create(name, email, UserRole.SUPER_ADMIN, UserStatus.APPROVED)
        except DuplicateEmailError:
            existing = self.storage.find_user_by_email(email.strip().lower())
            if existing and existing["role"] == UserRole.SUPER_ADMIN:
                return Contributor(**existing)
            raise

    def get(self, user_id: UUID) -> Contributor:
        return Contributor(**self._get_user_data(user_id))

    def list_users(self, statuses: Optional[Collection[UserStatus]] = None,
                   role: Optional[UserRole] = None) -> list[Contributor]:
        """Non-admin users, newest first, optionally filtered by status and role."""
        users = [
            Contributor(**u) for u in reversed(self.storage.find_users())
            if u["role"] != UserRole.SUPER_ADMIN
            and (not statuses or u["status"] in statuses)
            and (role is None or u["role"] == role)
        ]
        users.sort(key=lambda u: u.created_at, reverse=True)
        return users

    def page_users(self, status: Optional[UserStatus] = None, role: Optional[UserRole] = None,
                   page: int = 1, limit: int = 10) -> UserPage:
        page = max(page, 1)
        limit = max(limit, 1)
        users = self.list_users([status] if status else None, role)
        offset = (page - 1) * limit
        return UserPage(
            users=users[offset:offset + limit],
            total=len(users),
            total_pages=math.ceil(len(users) / limit),
            current_page=page,
        )

    def pending_users(self) -> list[Contributor]:
        return self.list_users([UserStatus.PENDING])

    def approved_users(self) -> list[Contributor]:
        # Blocked users stay in the managed list so they can be unblocked.
        return self.list_users([UserStatus.APPROVED, UserStatus.BLOCKED])

    def stats(self) -> UserStats:
        users = self.list_users()
        by_status = Counter(UserStatus(u.status) for u in users)
        return UserStats(
            total_users=len(users),
            pending_users=by_status[UserStatus.PENDING],
            approved_users=by_status[UserStatus.APPROVED],
            blocked_users=by_status[UserStatus.BLOCKED],
            role_stats=dict(Counter(UserRole(u.role) for u in users)),
        )

    def approve(self, user_id: UUID) -> Contributor:
        return self._update(user_id, "approved", status=UserStatus.APPROVED, rejection_reason="")

    def reject(self, user_id: UUID, reason: Optional[str] = None) -> Contributor:
        return self._update(
            user_id, "rejected", status=UserStatus.REJECTED, rejection_reason=reason or "No reason provided"
        )

    def block(self, user_id: UUID) -> Contributor:
        return self._update(user_id, "blocked", status=UserStatus.BLOCKED)

    def unblock(self, user_id: UUID) -> Contributor:
        return self._update(user_id, "unblocked", status=UserStatus.APPROVED)

    def change_role(self, user_id: UUID, role: UserRole) -> Contributor:
        role = UserRole(role)
        if role == UserRole.SUPER_ADMIN:
            raise UnauthorizedError("Cannot assign super admin role")
        return self._update(user_id, f"moved to role {role.value}", role=role)

    def delete_user(self, user_id: UUID) -> None:
        """Remove a user; their claims and points events stay as history."""
        with self.storage.unit_of_work(user_id):
            user_data = self._get_user_data(user_id)
            if user_data["role"] == UserRole.SUPER_ADMIN:
                raise UnauthorizedError("Cannot delete super admin")
            open_claims = [
                c for c in self.storage.find_claims(user_id=user_id)
                if c["status"] in (ClaimStatus.PENDING, ClaimStatus.PROCESSING)
            ]
            if open_claims:
                raise RewardsServiceError("Cannot delete a user with a claim awaiting payment")
            self.storage.delete_user(user_id)
        logger.info("User %s deleted", user_id)

    def _create(self, name: str, email: str, role: UserRole, status: UserStatus) -> Contributor:
        email = email.strip().lower()
        user_data = {
            "id": uuid4(),
            "name": name.strip(),
            "email": email,
            "role": role,
            "status": status,
            "rejection_reason": "",
            "points": 0,
            "total_earnings": Decimal("0"),
            "claimed_milestones": [],
            "version": 0,
            "created_at": datetime.now(timezone.utc),
        }
        self.storage.insert_user(user_data)
        logger.info("Registered user %s as %s", user_data["id"], role.value)
        return Contributor(**user_data)

    def _get_user_data(self, user_id: UUID) -> dict:
        user_data = self.storage.get_user(user_id)
        if not user_data:
            raise ContributorNotFoundError(f"User {user_id} not found")
        return user_data

    def _update(self, user_id: UUID, action: str, **changes) -> Contributor:
        with self.storage.unit_of_work(user_id):
            user_data = self._get_user_data(user_id)
            if user_data["role"] == UserRole.SUPER_ADMIN:
                raise UnauthorizedError("Cannot modify super admin")
            user_data.update(changes)
            self.storage.save_user(user_data)
        logger.info("User %s %s", user_id, action)
        return Contributor(**user_data)
