import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from content import ContentKind, ContentService
from .accounts import AccountService
from .config import Settings, get_settings
from .errors import (
    RewardsServiceError, ClaimNotFoundError, ContributorNotFoundError, ContentNotFoundError,
    UnauthorizedError, DuplicateEmailError,
)
from .models import (
    ClaimStatus, Claim, Contributor, ClaimResponse, ClaimPage, StatusStats,
    PointsBalance, PointsHistoryResponse, CreateClaimRequest, ResolveClaimRequest,
    RegisterUserRequest, RejectUserRequest, ChangeRoleRequest, UserPage, UserRole, UserStats, UserStatus,
)
from .policy import (
    can_manage_users, can_request_claim, can_resolve_claims, can_view_claim, can_view_points, require,
)
from .service import RewardsService
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class CreateContentRequest(BaseModel):
    kind: ContentKind
    title: str = Field(..., min_length=1)
    data: dict = Field(default_factory=dict)


class ContentChangeResponse(BaseModel):
    item: dict
    points_delta: int
    message: str


def _to_http(error: RewardsServiceError) -> HTTPException:
    if isinstance(error, (ClaimNotFoundError, ContributorNotFoundError, ContentNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, UnauthorizedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, DuplicateEmailError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


def get_rewards(request: Request) -> RewardsService:
    return request.app.state.rewards


def get_accounts(request: Request) -> AccountService:
    return request.app.state.accounts


def get_content(request: Request) -> ContentService:
    return request.app.state.content


def get_actor(
    x_user_id: Optional[UUID] = Header(default=None),
    accounts: AccountService = Depends(get_accounts),
) -> Contributor:
    """Resolve the acting user supplied by the access-control layer."""
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized, no user supplied")
    try:
        actor = accounts.get(x_user_id)
    except ContributorNotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not actor.is_super_admin and actor.status != UserStatus.APPROVED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Your account is not approved yet")
    return actor


router = APIRouter()


@router.get("/health", tags=["System"])
def health_check(request: Request):
    return {"status": "healthy", "service": request.app.state.settings.app_name}


@router.post("/claims", response_model=ClaimResponse, status_code=status.HTTP_201_CREATED, tags=["Claims"])
def create_claim(
    body: CreateClaimRequest,
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
) -> ClaimResponse:
    try:
        require(can_request_claim(actor), "Only approved contributors can request claims")
        return rewards.request_claim(actor.id, body.points, body.payment_method, body.payment_details)
    except RewardsServiceError as e:
        raise _to_http(e)


@router.get("/claims/my-claims", response_model=list[Claim], tags=["Claims"])
def get_my_claims(
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
) -> list[Claim]:
    return rewards.list_claims_by_contributor(actor.id)


@router.get("/claims/stats", response_model=dict[ClaimStatus, StatusStats], tags=["Claims"])
def get_claim_stats(
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
):
    try:
        require(can_resolve_claims(actor), "Access denied. Super Admin only.")
    except UnauthorizedError as e:
        raise _to_http(e)
    return rewards.aggregate_stats_by_status()


@router.get("/claims/pending/count", tags=["Claims"])
def get_pending_claims_count(
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
):
    try:
        require(can_resolve_claims(actor), "Access denied. Super Admin only.")
    except UnauthorizedError as e:
        raise _to_http(e)
    return {"count": rewards.count_pending_claims()}


@router.get("/claims", response_model=ClaimPage, tags=["Claims"])
def get_all_claims(
    request: Request,
    claim_status: Optional[ClaimStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
) -> ClaimPage:
    try:
        require(can_resolve_claims(actor), "Access denied. Super Admin only.")
    except UnauthorizedError as e:
        raise _to_http(e)
    settings: Settings = request.app.state.settings
    limit = min(limit or settings.default_page_size, settings.max_page_size)
    return rewards.list_all_claims(claim_status, page, limit)


@router.get("/claims/{claim_id}", response_model=Claim, tags=["Claims"])
def get_claim(
    claim_id: UUID,
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
) -> Claim:
    try:
        claim = rewards.get_claim(claim_id)
        require(can_view_claim(actor, claim), "Not authorized to view this claim")
        return claim
    except RewardsServiceError as e:
        raise _to_http(e)


@router.put("/claims/{claim_id}", response_model=ClaimResponse, tags=["Claims"])
def resolve_claim(
    claim_id: UUID,
    body: ResolveClaimRequest,
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
) -> ClaimResponse:
    try:
        require(can_resolve_claims(actor), "Access denied. Super Admin only.")
        return rewards.resolve_claim(claim_id, body.status, actor.id, body.transaction_id, body.notes)
    except RewardsServiceError as e:
        raise _to_http(e)


@router.get("/users/{user_id}/points", response_model=PointsBalance, tags=["Users"])
def get_points_balance(
    user_id: UUID,
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
) -> PointsBalance:
    try:
        require(can_view_points(actor, user_id), "Not authorized to view these points")
        return rewards.get_balance(user_id)
    except RewardsServiceError as e:
        raise _to_http(e)


@router.get("/users/{user_id}/points/history", response_model=PointsHistoryResponse, tags=["Users"])
def get_points_history(
    user_id: UUID,
    limit: int = Query(default=50, ge=1),
    offset: int = Query(default=0, ge=0),
    actor: Contributor = Depends(get_actor),
    rewards: RewardsService = Depends(get_rewards),
) -> PointsHistoryResponse:
    try:
        require(can_view_points(actor, user_id), "Not authorized to view these points")
        return rewards.get_points_history(user_id, limit, offset)
    except RewardsServiceError as e:
        raise _to_http(e)


@router.post("/users", response_model=Contributor, status_code=status.HTTP_201_CREATED, tags=["Users"])
def register_user(body: RegisterUserRequest, accounts: AccountService = Depends(get_accounts)) -> Contributor:
    try:
        return accounts.register(body.name, body.email, body.role)
    except RewardsServiceError as e:
        raise _to_http(e)


def _manage_user(actor: Contributor, action):
    try:
        require(can_manage_users(actor), "Access denied. Super Admin only.")
        return action()
    except RewardsServiceError as e:
        raise _to_http(e)


@router.get("/users", response_model=UserPage, tags=["Users"])
def get_all_users(
    user_status: Optional[UserStatus] = Query(default=None, alias="status"),
    role: Optional[UserRole] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    actor: Contributor = Depends(get_actor),
    accounts: AccountService = Depends(get_accounts),
) -> UserPage:
    return _manage_user(actor, lambda: accounts.page_users(user_status, role, page, limit))


@router.get("/users/pending", response_model=list[Contributor], tags=["Users"])
def get_pending_users(actor: Contributor = Depends(get_actor),
                      accounts: AccountService = Depends(get_accounts)) -> list[Contributor]:
    return _manage_user(actor, accounts.pending_users)


@router.get("/users/approved", response_model=list[Contributor], tags=["Users"])
def get_approved_users(actor: Contributor = Depends(get_actor),
                       accounts: AccountService = Depends(get_accounts)) -> list[Contributor]:
    return _manage_user(actor, accounts.approved_users)


@router.get("/users/stats", response_model=UserStats, tags=["Users"])
def get_dashboard_stats(actor: Contributor = Depends(get_actor),
                        accounts: AccountService = Depends(get_accounts)) -> UserStats:
    return _manage_user(actor, accounts.stats)


@router.get("/users/{user_id}", response_model=Contributor, tags=["Users"])
def get_user(user_id: UUID, actor: Contributor = Depends(get_actor),
             accounts: AccountService = Depends(get_accounts)) -> Contributor:
    return _manage_user(actor, lambda: accounts.get(user_id))


@router.delete("/users/{user_id}", tags=["Users"])
def delete_user(user_id: UUID, actor: Contributor = Depends(get_actor),
                accounts: AccountService = Depends(get_accounts)):
    _manage_user(actor, lambda: accounts.delete_user(user_id))
    return {"message": "User deleted successfully"}


@router.put("/users/{user_id}/approve", response_model=Contributor, tags=["Users"])
def approve_user(user_id: UUID, actor: Contributor = Depends(get_actor),
                 accounts: AccountService = Depends(get_accounts)) -> Contributor:
    return _manage_user(actor, lambda: accounts.approve(user_id))


@router.put("/users/{user_id}/reject", response_model=Contributor, tags=["Users"])
def reject_user(user_id: UUID, body: Optional[RejectUserRequest] = None, actor: Contributor = Depends(get_actor),
                accounts: AccountService = Depends(get_accounts)) -> Contributor:
    return _manage_user(actor, lambda: accounts.reject(user_id, body.reason if body else None))


@router.put("/users/{user_id}/block", response_model=Contributor, tags=["Users"])
def block_user(user_id: UUID, actor: Contributor = Depends(get_actor),
               accounts: AccountService = Depends(get_accounts)) -> Contributor:
    return _manage_user(actor, lambda: accounts.block(user_id))


@router.put("/users/{user_id}/unblock", response_model=Contributor, tags=["Users"])
def unblock_user(user_id: UUID, actor: Contributor = Depends(get_actor),
                 accounts: AccountService = Depends(get_accounts)) -> Contributor:
    return _manage_user(actor, lambda: accounts.unblock(user_id))


@router.put("/users/{user_id}/role", response_model=Contributor, tags=["Users"])
def change_user_role(user_id: UUID, body: ChangeRoleRequest, actor: Contributor = Depends(get_actor),
                     accounts: AccountService = Depends(get_accounts)) -> Contributor:
    return _manage_user(actor, lambda: accounts.change_role(user_id, body.role))


@router.get("/content", response_model=list[dict], tags=["Content"])
def list_content(
    kind: Optional[ContentKind] = None,
    author_id: Optional[UUID] = None,
    content: ContentService = Depends(get_content),
) -> list[dict]:
    return [item.to_dict() for item in content.list_items(kind, author_id)]


@router.get("/content/my", response_model=list[dict], tags=["Content"])
def list_my_content(
    kind: Optional[ContentKind] = None,
    actor: Contributor = Depends(get_actor),
    content: ContentService = Depends(get_content),
) -> list[dict]:
    return [item.to_dict() for item in content.list_items(kind, actor.id)]


@router.get("/content/{item_id}", response_model=dict, tags=["Content"])
def get_content_item(item_id: UUID, content: ContentService = Depends(get_content)) -> dict:
    try:
        return content.get_item(item_id).to_dict()
    except RewardsServiceError as e:
        raise _to_http(e)


@router.post("/content", response_model=ContentChangeResponse, status_code=status.HTTP_201_CREATED,
             tags=["Content"])
def create_content(
    body: CreateContentRequest,
    actor: Contributor = Depends(get_actor),
    content: ContentService = Depends(get_content),
) -> ContentChangeResponse:
    try:
        change = content.create_item(actor, body.kind, body.title, body.data)
    except RewardsServiceError as e:
        raise _to_http(e)
    return ContentChangeResponse(item=change.item.to_dict(), points_delta=change.points_delta,
                                 message=change.message)


@router.delete("/content/{item_id}", response_model=ContentChangeResponse, tags=["Content"])
def delete_content(
    item_id: UUID,
    actor: Contributor = Depends(get_actor),
    content: ContentService = Depends(get_content),
) -> ContentChangeResponse:
    try:
        change = content.delete_item(actor, item_id)
    except RewardsServiceError as e:
        raise _to_http(e)
    return ContentChangeResponse(item=change.item.to_dict(), points_delta=change.points_delta,
                                 message=change.message)


def create_app(settings: Optional[Settings] = None, storage: Optional[InMemoryStorage] = None,
               root_path: str = "") -> FastAPI:
    settings = settings or get_settings()
    storage = storage or InMemoryStorage()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.super_admin_email:
            admin = app.state.accounts.create_super_admin(
                settings.super_admin_name or "Super Admin", settings.super_admin_email
            )
            logger.info("Super admin available as %s", admin.id)
        yield

    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(
        title=settings.app_name,
        description="Contributor points ledger and milestone claim workflow",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    rewards = RewardsService(storage)
    app.state.settings = settings
    app.state.rewards = rewards
    app.state.accounts = AccountService(storage)
    app.state.content = ContentService(rewards)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
