"""Capability checks on the acting user.

The actor's identity and role come from the access-control collaborator and
are trusted as given; these helpers only decide what that actor may do.
"""

from typing import TYPE_CHECKING, Union
from uuid import UUID

from .errors import UnauthorizedError
from .models import Claim, Contributor, UserRole, UserStatus

if TYPE_CHECKING:
    from content import ContentKind

# Content kind -> roles allowed to post it (super_admin may post anything).
POSTING_ROLES: dict[str, frozenset[UserRole]] = {
    "job": frozenset({UserRole.JOB_POSTER}),
    "blog": frozenset({UserRole.BLOG_POSTER, UserRole.TECH_BLOG_POSTER}),
    "resource": frozenset({UserRole.RESOURCE_POSTER}),
    "digital_product": frozenset({UserRole.DIGITAL_PRODUCT_POSTER}),
    "course": frozenset(),
    "mock_test": frozenset(),
}


def is_approved(actor: Contributor) -> bool:
    return actor.is_super_admin or actor.status == UserStatus.APPROVED


def can_request_claim(actor: Contributor) -> bool:
    return not actor.is_super_admin and actor.status == UserStatus.APPROVED


def can_resolve_claims(actor: Contributor) -> bool:
    return actor.is_super_admin


def can_manage_users(actor: Contributor) -> bool:
    return actor.is_super_admin


def can_view_claim(actor: Contributor, claim: Claim) -> bool:
    return actor.is_super_admin or claim.user_id == actor.id


def can_view_points(actor: Contributor, user_id: UUID) -> bool:
    return actor.is_super_admin or actor.id == user_id


def can_post(actor: Contributor, kind: Union["ContentKind", str]) -> bool:
    kind = getattr(kind, "value", kind)
    if actor.is_super_admin:
        return True
    if not is_approved(actor):
        return False
    return actor.role in POSTING_ROLES.get(kind, frozenset())


def require(allowed: bool, message: str = "Not authorized to perform this action") -> None:
    if not allowed:
        raise UnauthorizedError(message)
