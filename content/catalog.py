import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from rewards.errors import ContentNotFoundError, RewardsServiceError
from rewards.models import Contributor
from rewards.policy import can_post, require
from rewards.service import RewardsService

logger = logging.getLogger(__name__)


class ContentKind(str, Enum):
    JOB = "job"
    BLOG = "blog"
    RESOURCE = "resource"
    DIGITAL_PRODUCT = "digital_product"
    COURSE = "course"
    MOCK_TEST = "mock_test"


# Creating one of these credits the author a point; courses and mock tests are admin-only.
POINT_EARNING_KINDS = frozenset({
    ContentKind.JOB, ContentKind.BLOG, ContentKind.RESOURCE, ContentKind.DIGITAL_PRODUCT,
})


@dataclass
class ContentItem:
    id: UUID
    kind: ContentKind
    title: str
    author_id: UUID
    data: dict = field(default_factory=dict)
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def earns_points(self) -> bool:
        return self.kind in POINT_EARNING_KINDS

    def to_dict(self) -> dict:
        return {
            "id": str(self.id), "kind": self.kind.value, "title": self.title,
            "author_id": str(self.author_id), "data": self.data, "is_deleted": self.is_deleted,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContentItem":
        deleted_at = data.get("deleted_at")
        return cls(
            id=UUID(data["id"]), kind=ContentKind(data["kind"]), title=data["title"],
            author_id=UUID(data["author_id"]), data=data.get("data", {}),
            is_deleted=data.get("is_deleted", False),
            deleted_at=datetime.fromisoformat(deleted_at) if deleted_at else None,
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class ContentChange:
    item: ContentItem
    points_delta: int = 0
    message: str = ""


class ContentService:
    def __init__(self, rewards: Optional[RewardsService] = None):
        self.rewards = rewards or RewardsService()
        self.storage = self.rewards.storage

    def create_item(self, actor: Contributor, kind: ContentKind, title: str,
                    data: Optional[dict[str, Any]] = None) -> ContentChange:
        kind = ContentKind(kind)
        require(can_post(actor, kind), f"Not authorized to post {kind.value.replace('_', ' ')} content")
        if not title or not title.strip():
            raise RewardsServiceError("Title is required")

        item = ContentItem(id=uuid4(), kind=kind, title=title.strip(), author_id=actor.id, data=data or {})
        delta = 0
        with self.storage.unit_of_work(actor.id):
            self.storage.save_content(item.to_dict())
            if item.earns_points:
                event = self.rewards.award_content_points(actor.id, item.id)
                delta = event.delta if event else 0

        logger.info("%s %s created by %s", kind.value, item.id, actor.id)
        message = f"{kind.value} created successfully"
        if delta:
            message += ". You earned 1 point!"
        return ContentChange(item=item, points_delta=delta, message=message)

    def delete_item(self, actor: Contributor, item_id: UUID) -> ContentChange:
        item = self.get_item(item_id)
        require(
            actor.is_super_admin or item.author_id == actor.id,
            f"Not authorized to delete this {item.kind.value.replace('_', ' ')}",
        )

        if actor.is_super_admin:
            self.storage.delete_content(item.id)
            logger.info("%s %s permanently deleted by %s", item.kind.value, item.id, actor.id)
            return ContentChange(item=item, message=f"{item.kind.value} permanently deleted")

        delta = 0
        with self.storage.unit_of_work(item.author_id):
            # Re-read under the author's lock; only one delete sees the live item.
            item = self.get_item(item_id)
            item.is_deleted = True
            item.deleted_at = datetime.now(timezone.utc)
            self.storage.save_content(item.to_dict())
            if item.earns_points:
                event = self.rewards.debit_content_points(item.author_id, item.id)
                delta = event.delta if event else 0

        logger.info("%s %s soft-deleted by %s", item.kind.value, item.id, actor.id)
        return ContentChange(item=item, points_delta=delta, message=f"{item.kind.value} deleted successfully")

    def get_item(self, item_id: UUID) -> ContentItem:
        data = self.storage.get_content(item_id)
        if not data or data["is_deleted"]:
            raise ContentNotFoundError(f"Content {item_id} not found")
        return ContentItem.from_dict(data)

    def list_items(self, kind: Optional[ContentKind] = None, author_id: Optional[UUID] = None,
                   include_deleted: bool = False) -> list[ContentItem]:
        items = [ContentItem.from_dict(d) for d in self.storage.find_content()]
        if kind:
            items = [i for i in items if i.kind == ContentKind(kind)]
        if author_id:
            items = [i for i in items if i.author_id == author_id]
        if not include_deleted:
            items = [i for i in items if not i.is_deleted]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items
