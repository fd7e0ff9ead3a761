"""
Contributor Rewards Ledger

This module provides:
- Point credits and debits from content activity
- Append-only points events with balance as a fold
- Milestone claims: pending → processing → paid / rejected
- Refund of points and milestone on rejection
- Per-contributor serialized, rollback-safe updates
"""

from .models import (
    MILESTONES,
    ClaimStatus,
    PaymentMethod,
    PointsReason,
    UserRole,
    UserStatus,
    Claim,
    Contributor,
    PointsEvent,
)
from .accounts import AccountService
from .service import RewardsService
from .storage import InMemoryStorage

__all__ = [
    "MILESTONES",
    "ClaimStatus",
    "PaymentMethod",
    "PointsReason",
    "UserRole",
    "UserStatus",
    "Claim",
    "Contributor",
    "PointsEvent",
    "AccountService",
    "RewardsService",
    "InMemoryStorage",
]
