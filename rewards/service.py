import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID, uuid4

from .errors import (
    RewardsServiceError,
    InvalidMilestoneError,
    AlreadyClaimedError,
    InsufficientBalanceError,
    ClaimAlreadyPendingError,
    ClaimNotFoundError,
    ContributorNotFoundError,
    InvalidStateTransitionError,
)
from .models import (
    ClaimStatus,
    PaymentMethod,
    PointsReason,
    Claim,
    Contributor,
    PointsEvent,
    ClaimResponse,
    ClaimPage,
    StatusStats,
    PointsBalance,
    PointsHistoryResponse,
    milestone_amount,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class RewardsService:
    """Points ledger and milestone claim workflow."""

    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    def request_claim(
        self,
        contributor_id: UUID,
        milestone_points: int,
        payment_method: Union[PaymentMethod, str],
        payment_details: str,
    ) -> ClaimResponse:
        amount = milestone_amount(milestone_points)
        if amount is None:
            raise InvalidMilestoneError(
                f"Invalid milestone {milestone_points}. Valid milestones are 10, 25, 50, and 100 points."
            )
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise RewardsServiceError(f"Unsupported payment method {payment_method!r}")
        details = (payment_details or "").strip()
        if not details:
            raise RewardsServiceError("Payment details are required")

        with self.storage.unit_of_work(contributor_id):
            user_data = self._get_user_data(contributor_id)

            if milestone_points in user_data["claimed_milestones"]:
                raise AlreadyClaimedError(
                    f"The {milestone_points} points milestone has already been claimed. "
                    "Each milestone can only be claimed once."
                )
            if self.storage.find_claims(user_id=contributor_id, status=ClaimStatus.PENDING):
                raise ClaimAlreadyPendingError(
                    "A pending claim already exists. Wait for it to be processed."
                )
            if user_data["points"] < milestone_points:
                raise InsufficientBalanceError(
                    f"Insufficient points. Have {user_data['points']} points but need {milestone_points}."
                )

            now = datetime.now(timezone.utc)
            claim_data = {
                "id": uuid4(),
                "user_id": contributor_id,
                "points": milestone_points,
                "amount": amount,
                "payment_method": method,
                "payment_details": details,
                "status": ClaimStatus.PENDING,
                "transaction_id": "",
                "notes": "",
                "processed_by": None,
                "processed_at": None,
                "created_at": now,
                "updated_at": now,
            }
            self.storage.insert_claim(claim_data)

            user_data["claimed_milestones"].append(milestone_points)
            self._record_points(
                user_data, -milestone_points, PointsReason.CLAIM_REQUESTED, claim_data["id"], now
            )
            self.storage.save_user(user_data)

        logger.info(
            "Claim %s requested by %s for %s points", claim_data["id"], contributor_id, milestone_points
        )
        return ClaimResponse(
            claim=Claim(**claim_data),
            contributor=Contributor(**user_data),
            message="Claim request submitted successfully",
        )

    def resolve_claim(
        self,
        claim_id: UUID,
        new_status: Union[ClaimStatus, str],
        processor_id: UUID,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ClaimResponse:
        try:
            target = ClaimStatus(new_status)
        except ValueError:
            raise InvalidStateTransitionError(f"Unknown claim status {new_status!r}")

        claim_data = self.storage.get_claim(claim_id)
        if not claim_data:
            raise ClaimNotFoundError(f"Claim {claim_id} not found")

        with self.storage.unit_of_work(claim_data["user_id"]):
            claim_data = self.storage.get_claim(claim_id)
            current = ClaimStatus(claim_data["status"])
            if not current.can_transition_to(target):
                raise InvalidStateTransitionError(
                    f"Cannot move claim from {current.value} to {target.value}"
                )

            user_data = self._get_user_data(claim_data["user_id"])
            now = datetime.now(timezone.utc)

            claim_data["status"] = target
            claim_data["transaction_id"] = transaction_id or claim_data["transaction_id"]
            claim_data["notes"] = notes or claim_data["notes"]
            claim_data["processed_by"] = processor_id
            claim_data["processed_at"] = now
            claim_data["updated_at"] = now
            self.storage.save_claim(claim_data)

            if target == ClaimStatus.PAID:
                user_data["total_earnings"] = user_data["total_earnings"] + claim_data["amount"]
                self.storage.save_user(user_data)
            elif target == ClaimStatus.REJECTED:
                user_data["claimed_milestones"] = [
                    m for m in user_data["claimed_milestones"] if m != claim_data["points"]
                ]
                self._record_points(
                    user_data, claim_data["points"], PointsReason.CLAIM_REJECTED, claim_id, now
                )
                self.storage.save_user(user_data)

        logger.info("Claim %s moved %s -> %s by %s", claim_id, current.value, target.value, processor_id)
        return ClaimResponse(
            claim=Claim(**claim_data),
            contributor=Contributor(**user_data),
            message=f"Claim {target.value} successfully",
        )

    def award_content_points(self, user_id: UUID, reference_id: Optional[UUID] = None) -> Optional[PointsEvent]:
        with self.storage.unit_of_work(user_id):
            user_data = self._get_user_data(user_id)
            if Contributor(**user_data).is_super_admin:
                return None
            event = self._record_points(user_data, 1, PointsReason.CONTENT_CREATED, reference_id)
            self.storage.save_user(user_data)
        logger.info("Awarded 1 point to %s (balance %s)", user_id, user_data["points"])
        return event

    def debit_content_points(self, user_id: UUID, reference_id: Optional[UUID] = None) -> Optional[PointsEvent]:
        with self.storage.unit_of_work(user_id):
            user_data = self._get_user_data(user_id)
            if Contributor(**user_data).is_super_admin:
                return None
            # Floored at zero; the event records the delta actually applied.
            delta = -1 if user_data["points"] > 0 else 0
            event = self._record_points(user_data, delta, PointsReason.CONTENT_DELETED, reference_id)
            self.storage.save_user(user_data)
        logger.info("Deducted %s point(s) from %s (balance %s)", -delta, user_id, user_data["points"])
        return event

    def get_claim(self, claim_id: UUID) -> Claim:
        claim_data = self.storage.get_claim(claim_id)
        if not claim_data:
            raise ClaimNotFoundError(f"Claim {claim_id} not found")
        return Claim(**claim_data)

    def list_claims_by_contributor(self, contributor_id: UUID) -> list[Claim]:
        claims = [Claim(**c) for c in self.storage.find_claims(user_id=contributor_id)]
        claims.sort(key=lambda c: c.created_at, reverse=True)
        return claims

    def list_all_claims(self, status: Optional[ClaimStatus] = None, page: int = 1, limit: int = 20) -> ClaimPage:
        page = max(page, 1)
        limit = max(limit, 1)
        claims = [Claim(**c) for c in self.storage.find_claims(status=status)]
        claims.sort(key=lambda c: c.created_at, reverse=True)
        offset = (page - 1) * limit
        return ClaimPage(
            claims=claims[offset:offset + limit],
            total=len(claims),
            total_pages=math.ceil(len(claims) / limit),
            current_page=page,
        )

    def count_pending_claims(self) -> int:
        return len(self.storage.find_claims(status=ClaimStatus.PENDING))

    def aggregate_stats_by_status(self) -> dict[ClaimStatus, StatusStats]:
        stats = {s: StatusStats() for s in ClaimStatus}
        for claim in self.storage.find_claims():
            entry = stats[ClaimStatus(claim["status"])]
            entry.count += 1
            entry.total_amount += claim["amount"]
        return stats

    def get_balance(self, user_id: UUID) -> PointsBalance:
        user_data = self._get_user_data(user_id)
        events = self.storage.find_points_events(user_id)
        last_event = max(events, key=lambda e: e["created_at"]) if events else None

        return PointsBalance(
            user_id=user_id,
            points=sum(e["delta"] for e in events),
            total_earnings=Decimal(str(user_data["total_earnings"])),
            claimed_milestones=sorted(user_data["claimed_milestones"]),
            total_events=len(events),
            last_event_at=last_event["created_at"] if last_event else None,
        )

    def get_points_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> PointsHistoryResponse:
        user_data = self._get_user_data(user_id)
        all_events = [PointsEvent(**e) for e in self.storage.find_points_events(user_id)]
        all_events.sort(key=lambda e: e.created_at, reverse=True)

        return PointsHistoryResponse(
            user_id=user_id,
            events=all_events[offset:offset + limit],
            total_count=len(all_events),
            current_points=user_data["points"],
        )

    def _get_user_data(self, user_id: UUID) -> dict:
        user_data = self.storage.get_user(user_id)
        if not user_data:
            raise ContributorNotFoundError(f"User {user_id} not found")
        return user_data

    def _record_points(
        self,
        user_data: dict,
        delta: int,
        reason: PointsReason,
        reference_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> PointsEvent:
        new_balance = user_data["points"] + delta
        if new_balance < 0:
            raise InsufficientBalanceError(f"Points for user {user_data['id']} cannot go below zero")
        user_data["points"] = new_balance

        event_data = {
            "id": uuid4(),
            "user_id": user_data["id"],
            "delta": delta,
            "reason": reason,
            "balance_after": new_balance,
            "reference_id": reference_id,
            "created_at": now or datetime.now(timezone.utc),
        }
        self.storage.append_points_event(event_data)
        return PointsEvent(**event_data)
