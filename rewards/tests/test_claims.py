"""
Unit Tests for the Rewards Service

Tests cover:
1. Claim request flow and its preconditions
2. Claim resolution and the transition table
3. Points credits and debits from content activity
4. Claim views and stats
5. Rollback and concurrent requests
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import UUID, uuid4

from rewards.accounts import AccountService
from rewards.errors import (
    AlreadyClaimedError,
    ClaimAlreadyPendingError,
    ClaimNotFoundError,
    ContributorNotFoundError,
    InsufficientBalanceError,
    InvalidMilestoneError,
    InvalidStateTransitionError,
    RewardsServiceError,
)
from rewards.models import ClaimStatus, PaymentMethod, PointsReason
from rewards.service import RewardsService
from rewards.storage import InMemoryStorage


PROCESSOR_ID = UUID("11111111-1111-1111-1111-111111111111")


def make_contributor(service: RewardsService, points: int = 0, email: str = "poster@example.com") -> UUID:
    accounts = AccountService(service.storage)
    user = accounts.register("Job Poster", email, "job_poster")
    accounts.approve(user.id)
    for _ in range(points):
        service.award_content_points(user.id, uuid4())
    return user.id


def request(service: RewardsService, user_id: UUID, points: int):
    return service.request_claim(user_id, points, PaymentMethod.UPI, "poster@okbank")


class TestRequestClaimFlow:
    """Tests for requesting a milestone claim."""

    def test_request_claim_success(self):
        """Scenario: 30 points, claim 25 -> balance 5, milestone recorded, one pending claim."""
        service = RewardsService()
        user_id = make_contributor(service, points=30)

        response = request(service, user_id, 25)

        assert response.claim.status == ClaimStatus.PENDING
        assert response.claim.points == 25
        assert response.claim.amount == Decimal("30")
        assert response.claim.payment_details == "poster@okbank"
        assert response.contributor.points == 5
        assert response.contributor.claimed_milestones == [25]
        assert service.count_pending_claims() == 1

    def test_second_request_reports_pending_before_balance(self):
        """A second request fails as already pending even though the balance is also short."""
        service = RewardsService()
        user_id = make_contributor(service, points=30)
        request(service, user_id, 25)

        with pytest.raises(ClaimAlreadyPendingError):
            request(service, user_id, 10)

        assert service.get_balance(user_id).points == 5

    def test_invalid_milestone(self):
        service = RewardsService()
        user_id = make_contributor(service, points=30)

        with pytest.raises(InvalidMilestoneError):
            request(service, user_id, 20)

    def test_insufficient_balance(self):
        service = RewardsService()
        user_id = make_contributor(service, points=9)

        with pytest.raises(InsufficientBalanceError):
            request(service, user_id, 10)

        assert service.list_claims_by_contributor(user_id) == []

    def test_already_claimed_milestone(self):
        """A paid milestone cannot be claimed again."""
        service = RewardsService()
        user_id = make_contributor(service, points=30)
        claim = request(service, user_id, 10).claim
        service.resolve_claim(claim.id, ClaimStatus.PAID, PROCESSOR_ID)

        with pytest.raises(AlreadyClaimedError):
            request(service, user_id, 10)

    def test_unknown_contributor(self):
        service = RewardsService()

        with pytest.raises(ContributorNotFoundError):
            request(service, uuid4(), 10)

    def test_blank_payment_details_rejected(self):
        service = RewardsService()
        user_id = make_contributor(service, points=10)

        with pytest.raises(RewardsServiceError):
            service.request_claim(user_id, 10, "upi", "   ")

    def test_unknown_payment_method_rejected(self):
        service = RewardsService()
        user_id = make_contributor(service, points=10)

        with pytest.raises(RewardsServiceError):
            service.request_claim(user_id, 10, "cheque", "somewhere")


class TestResolveClaimFlow:
    """Tests for processing claims."""

    def test_paid_credits_earnings_only(self):
        service = RewardsService()
        user_id = make_contributor(service, points=30)
        claim = request(service, user_id, 25).claim

        response = service.resolve_claim(claim.id, ClaimStatus.PAID, PROCESSOR_ID, transaction_id="TXN-1")

        assert response.claim.status == ClaimStatus.PAID
        assert response.claim.transaction_id == "TXN-1"
        assert response.claim.processed_by == PROCESSOR_ID
        assert response.claim.processed_at is not None
        assert response.contributor.total_earnings == Decimal("30")
        assert response.contributor.points == 5
        assert response.contributor.claimed_milestones == [25]

    def test_repeat_paid_does_not_double_credit(self):
        service = RewardsService()
        user_id = make_contributor(service, points=30)
        claim = request(service, user_id, 25).claim
        service.resolve_claim(claim.id, ClaimStatus.PAID, PROCESSOR_ID)

        with pytest.raises(InvalidStateTransitionError):
            service.resolve_claim(claim.id, ClaimStatus.PAID, PROCESSOR_ID)

        assert service.get_balance(user_id).total_earnings == Decimal("30")

    def test_rejected_refunds_points_and_milestone(self):
        """Scenario: rejection restores 30 points and the 25 milestone becomes claimable."""
        service = RewardsService()
        user_id = make_contributor(service, points=30)
        claim = request(service, user_id, 25).claim

        response = service.resolve_claim(claim.id, "rejected", PROCESSOR_ID, notes="Wrong UPI id")

        assert response.claim.status == ClaimStatus.REJECTED
        assert response.claim.notes == "Wrong UPI id"
        assert response.contributor.points == 30
        assert response.contributor.claimed_milestones == []

        again = request(service, user_id, 25)
        assert again.claim.status == ClaimStatus.PENDING
        assert again.contributor.points == 5

    def test_processing_has_no_side_effects(self):
        service = RewardsService()
        user_id = make_contributor(service, points=10)
        claim = request(service, user_id, 10).claim

        response = service.resolve_claim(claim.id, ClaimStatus.PROCESSING, PROCESSOR_ID)

        assert response.claim.status == ClaimStatus.PROCESSING
        assert response.contributor.points == 0
        assert response.contributor.total_earnings == Decimal("0")
        assert response.contributor.claimed_milestones == [10]

    def test_processing_then_paid(self):
        service = RewardsService()
        user_id = make_contributor(service, points=50)
        claim = request(service, user_id, 50).claim
        service.resolve_claim(claim.id, ClaimStatus.PROCESSING, PROCESSOR_ID)

        response = service.resolve_claim(claim.id, ClaimStatus.PAID, PROCESSOR_ID)

        assert response.contributor.total_earnings == Decimal("60")

    def test_processing_claim_no_longer_blocks_new_request(self):
        service = RewardsService()
        user_id = make_contributor(service, points=35)
        claim = request(service, user_id, 25).claim
        service.resolve_claim(claim.id, ClaimStatus.PROCESSING, PROCESSOR_ID)

        response = request(service, user_id, 10)

        assert response.contributor.points == 0
        assert sorted(response.contributor.claimed_milestones) == [10, 25]

    @pytest.mark.parametrize("target", [ClaimStatus.PENDING, ClaimStatus.PROCESSING, ClaimStatus.PAID])
    def test_rejected_is_terminal(self, target):
        service = RewardsService()
        user_id = make_contributor(service, points=10)
        claim = request(service, user_id, 10).claim
        service.resolve_claim(claim.id, ClaimStatus.REJECTED, PROCESSOR_ID)

        with pytest.raises(InvalidStateTransitionError):
            service.resolve_claim(claim.id, target, PROCESSOR_ID)

        assert service.get_balance(user_id).points == 10

    def test_cannot_move_back_to_pending(self):
        service = RewardsService()
        user_id = make_contributor(service, points=10)
        claim = request(service, user_id, 10).claim

        with pytest.raises(InvalidStateTransitionError):
            service.resolve_claim(claim.id, ClaimStatus.PENDING, PROCESSOR_ID)

    def test_unknown_status_rejected(self):
        service = RewardsService()
        user_id = make_contributor(service, points=10)
        claim = request(service, user_id, 10).claim

        with pytest.raises(InvalidStateTransitionError):
            service.resolve_claim(claim.id, "refunded", PROCESSOR_ID)

    def test_resolve_nonexistent_claim(self):
        service = RewardsService()

        with pytest.raises(ClaimNotFoundError):
            service.resolve_claim(uuid4(), ClaimStatus.PAID, PROCESSOR_ID)


class TestContentPoints:
    """Tests for points earned and lost through content activity."""

    def test_award_and_debit(self):
        service = RewardsService()
        user_id = make_contributor(service, points=2)

        event = service.debit_content_points(user_id, uuid4())

        assert event.delta == -1
        assert event.reason == PointsReason.CONTENT_DELETED
        assert service.get_balance(user_id).points == 1

    def test_debit_floored_at_zero(self):
        service = RewardsService()
        user_id = make_contributor(service)

        event = service.debit_content_points(user_id, uuid4())

        assert event.delta == 0
        assert event.balance_after == 0
        assert AccountService(service.storage).get(user_id).points == 0

    def test_super_admin_exempt(self):
        service = RewardsService()
        admin = AccountService(service.storage).create_super_admin("Admin", "admin@example.com")

        assert service.award_content_points(admin.id, uuid4()) is None
        assert service.debit_content_points(admin.id, uuid4()) is None
        assert AccountService(service.storage).get(admin.id).points == 0

    def test_balance_is_fold_of_events(self):
        service = RewardsService()
        user_id = make_contributor(service, points=40)
        first = request(service, user_id, 25).claim
        service.resolve_claim(first.id, ClaimStatus.REJECTED, PROCESSOR_ID)
        request(service, user_id, 10)
        service.debit_content_points(user_id, uuid4())

        balance = service.get_balance(user_id)
        stored = AccountService(service.storage).get(user_id)

        assert balance.points == stored.points == 29
        assert balance.total_events == 44

    def test_points_history(self):
        service = RewardsService()
        user_id = make_contributor(service, points=3)

        history = service.get_points_history(user_id, limit=2)

        assert history.total_count == 3
        assert len(history.events) == 2
        assert history.current_points == 3


class TestClaimViews:
    """Tests for claim listings and stats."""

    def test_list_all_claims_with_filter_and_pages(self):
        service = RewardsService()
        ids = [make_contributor(service, points=10, email=f"user{i}@example.com") for i in range(3)]
        claims = [request(service, user_id, 10).claim for user_id in ids]
        service.resolve_claim(claims[0].id, ClaimStatus.PAID, PROCESSOR_ID)

        pending = service.list_all_claims(status=ClaimStatus.PENDING)
        first_page = service.list_all_claims(page=1, limit=2)
        second_page = service.list_all_claims(page=2, limit=2)

        assert pending.total == 2
        assert first_page.total == 3
        assert first_page.total_pages == 2
        assert len(first_page.claims) == 2
        assert second_page.current_page == 2
        assert len(second_page.claims) == 1

    def test_stats_by_status(self):
        service = RewardsService()
        a = make_contributor(service, points=25, email="a@example.com")
        b = make_contributor(service, points=10, email="b@example.com")
        paid = request(service, a, 25).claim
        request(service, b, 10)
        service.resolve_claim(paid.id, ClaimStatus.PAID, PROCESSOR_ID)

        stats = service.aggregate_stats_by_status()

        assert set(stats) == set(ClaimStatus)
        assert stats[ClaimStatus.PAID].count == 1
        assert stats[ClaimStatus.PAID].total_amount == Decimal("30")
        assert stats[ClaimStatus.PENDING].count == 1
        assert stats[ClaimStatus.PENDING].total_amount == Decimal("15")
        assert stats[ClaimStatus.REJECTED].count == 0

    def test_list_by_contributor_newest_first(self):
        service = RewardsService()
        user_id = make_contributor(service, points=35)
        first = request(service, user_id, 25).claim
        service.resolve_claim(first.id, ClaimStatus.PAID, PROCESSOR_ID)
        second = request(service, user_id, 10).claim

        claims = service.list_claims_by_contributor(user_id)

        assert [c.id for c in claims] == [second.id, first.id]


class TestAtomicity:
    """Tests for rollback and concurrent requests."""

    def test_failed_save_rolls_back_claim(self, monkeypatch):
        storage = InMemoryStorage()
        service = RewardsService(storage)
        user_id = make_contributor(service, points=30)

        def broken_save(user_data):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(storage, "save_user", broken_save)

        with pytest.raises(RuntimeError):
            request(service, user_id, 25)

        monkeypatch.undo()
        assert service.list_claims_by_contributor(user_id) == []
        assert service.get_balance(user_id).points == 30
        stored = AccountService(storage).get(user_id)
        assert stored.points == 30
        assert stored.claimed_milestones == []

    def test_failed_resolve_rolls_back_status(self, monkeypatch):
        storage = InMemoryStorage()
        service = RewardsService(storage)
        user_id = make_contributor(service, points=10)
        claim = request(service, user_id, 10).claim

        def broken_save(user_data):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(storage, "save_user", broken_save)

        with pytest.raises(RuntimeError):
            service.resolve_claim(claim.id, ClaimStatus.REJECTED, PROCESSOR_ID)

        monkeypatch.undo()
        assert service.get_claim(claim.id).status == ClaimStatus.PENDING
        assert service.get_balance(user_id).points == 0

    def test_concurrent_requests_single_success(self):
        service = RewardsService()
        user_id = make_contributor(service, points=30)

        def attempt(points):
            try:
                request(service, user_id, points)
                return True
            except RewardsServiceError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, [25, 10, 25, 10, 25, 10, 25, 10]))

        assert results.count(True) == 1
        assert len(service.list_claims_by_contributor(user_id)) == 1
        assert service.get_balance(user_id).points >= 0

    def test_concurrent_rejections_refund_once(self):
        service = RewardsService()
        user_id = make_contributor(service, points=25)
        claim = request(service, user_id, 25).claim

        def attempt(_):
            try:
                service.resolve_claim(claim.id, ClaimStatus.REJECTED, PROCESSOR_ID)
                return True
            except InvalidStateTransitionError:
                return False

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(attempt, range(4)))

        assert results.count(True) == 1
        assert service.get_balance(user_id).points == 25

    def test_many_contributors_in_parallel(self):
        service = RewardsService()
        user_ids = [make_contributor(service, points=10, email=f"user{i}@example.com") for i in range(200)]
        errors = []
        writing = True

        def read_views():
            while writing:
                try:
                    service.count_pending_claims()
                    service.aggregate_stats_by_status()
                    service.list_all_claims()
                except Exception as e:
                    errors.append(e)

        with ThreadPoolExecutor(max_workers=11) as pool:
            readers = [pool.submit(read_views) for _ in range(3)]
            claims = list(pool.map(lambda user_id: request(service, user_id, 10), user_ids))
            writing = False
            for reader in readers:
                reader.result()

        assert errors == []
        assert len(claims) == 200
        assert service.count_pending_claims() == 200
        assert service.aggregate_stats_by_status()[ClaimStatus.PENDING].total_amount == Decimal("3000")

    def test_unknown_contributor_gets_no_lock(self):
        storage = InMemoryStorage()
        service = RewardsService(storage)
        unknown = uuid4()

        with pytest.raises(ContributorNotFoundError):
            request(service, unknown, 10)

        assert unknown not in storage._locks


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
