class RewardsServiceError(Exception):
    pass


class InvalidMilestoneError(RewardsServiceError):
    pass


class AlreadyClaimedError(RewardsServiceError):
    pass


class InsufficientBalanceError(RewardsServiceError):
    pass


class ClaimAlreadyPendingError(RewardsServiceError):
    pass


class ClaimNotFoundError(RewardsServiceError):
    pass


class ContributorNotFoundError(RewardsServiceError):
    pass


class InvalidStateTransitionError(RewardsServiceError):
    pass


class UnauthorizedError(RewardsServiceError):
    pass


class DuplicateEmailError(RewardsServiceError):
    pass


class ContentNotFoundError(RewardsServiceError):
    pass
