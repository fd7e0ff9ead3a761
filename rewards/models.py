from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator


# Milestone points -> payout amount. Fixed, not configurable at runtime.
MILESTONES: dict[int, Decimal] = {
    10: Decimal("15"),
    25: Decimal("30"),
    50: Decimal("60"),
    100: Decimal("120"),
}


def milestone_amount(points: int) -> Optional[Decimal]:
    return MILESTONES.get(points)


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    RESOURCE_POSTER = "resource_poster"
    JOB_POSTER = "job_poster"
    BLOG_POSTER = "blog_poster"
    TECH_BLOG_POSTER = "tech_blog_poster"
    DIGITAL_PRODUCT_POSTER = "digital_product_poster"
    OTHERS = "others"


class UserStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BLOCKED = "blocked"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    REJECTED = "rejected"

    def can_transition_to(self, target: "ClaimStatus") -> bool:
        return target in CLAIM_TRANSITIONS[self]


CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.PENDING: frozenset({ClaimStatus.PROCESSING, ClaimStatus.PAID, ClaimStatus.REJECTED}),
    ClaimStatus.PROCESSING: frozenset({ClaimStatus.PAID, ClaimStatus.REJECTED}),
    ClaimStatus.PAID: frozenset(),
    ClaimStatus.REJECTED: frozenset(),
}


class PaymentMethod(str, Enum):
    UPI = "upi"
    PHONE = "phone"


class PointsReason(str, Enum):
    CONTENT_CREATED = "content_created"
    CONTENT_DELETED = "content_deleted"
    CLAIM_REQUESTED = "claim_requested"
    CLAIM_REJECTED = "claim_rejected"


class Contributor(BaseModel):
    id: UUID
    name: str
    email: str
    role: UserRole = UserRole.OTHERS
    status: UserStatus = UserStatus.PENDING
    rejection_reason: str = ""
    points: int = Field(default=0, ge=0)
    total_earnings: Decimal = Field(default=Decimal("0"), ge=0)
    claimed_milestones: list[int] = Field(default_factory=list)
    version: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN


class Claim(BaseModel):
    id: UUID
    user_id: UUID
    points: int
    amount: Decimal
    payment_method: PaymentMethod
    payment_details: str
    status: ClaimStatus = ClaimStatus.PENDING
    transaction_id: str = ""
    notes: str = ""
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PointsEvent(BaseModel):
    id: UUID
    user_id: UUID
    delta: int
    reason: PointsReason
    balance_after: int
    reference_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateClaimRequest(BaseModel):
    points: int = Field(..., description="Milestone to redeem: 10, 25, 50 or 100")
    payment_method: PaymentMethod
    payment_details: str = Field(..., min_length=1)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "points": 25,
            "payment_method": "upi",
            "payment_details": "contributor@okbank",
        }
    })

    @field_validator("payment_details")
    @classmethod
    def _strip_details(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("payment_details must not be blank")
        return value


class ResolveClaimRequest(BaseModel):
    status: ClaimStatus
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class ClaimResponse(BaseModel):
    claim: Claim
    contributor: Contributor
    message: str


class ClaimPage(BaseModel):
    claims: list[Claim]
    total: int
    total_pages: int
    current_page: int


class StatusStats(BaseModel):
    count: int = 0
    total_amount: Decimal = Decimal("0")


class PointsBalance(BaseModel):
    user_id: UUID
    points: int
    total_earnings: Decimal
    claimed_milestones: list[int]
    total_events: int
    last_event_at: Optional[datetime] = None


class PointsHistoryResponse(BaseModel):
    user_id: UUID
    events: list[PointsEvent]
    total_count: int
    current_points: int


class RegisterUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: str
    role: UserRole = UserRole.OTHERS


class RejectUserRequest(BaseModel):
    reason: Optional[str] = None


class ChangeRoleRequest(BaseModel):
    role: UserRole


class UserPage(BaseModel):
    users: list[Contributor]
    total: int
    total_pages: int
    current_page: int


class UserStats(BaseModel):
    total_users: int
    pending_users: int
    approved_users: int
    blocked_users: int
    role_stats: dict[UserRole, int]
