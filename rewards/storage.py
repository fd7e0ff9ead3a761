import copy
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import UUID

from .errors import ContributorNotFoundError, DuplicateEmailError

logger = logging.getLogger(__name__)


class InMemoryStorage:
    """Document store for users, claims, points events and content items.

    Every read-modify-write touching a contributor's balance goes through
    ``unit_of_work``, which serializes writers for that contributor and
    restores their documents if the block raises. The collections are shared
    by all contributors, so each access to them holds ``_guard`` and readers
    get list copies rather than live views.
    """

    def __init__(self):
        self.users: dict[UUID, dict] = {}
        self.claims: dict[UUID, dict] = {}
        self.points_events: dict[UUID, dict] = {}
        self.content_items: dict[UUID, dict] = {}
        self.email_index: dict[str, UUID] = {}
        self._locks: dict[UUID, threading.RLock] = {}
        self._guard = threading.RLock()

    def _lock_for(self, user_id: UUID) -> threading.RLock:
        with self._guard:
            if user_id not in self.users:
                raise ContributorNotFoundError(f"User {user_id} not found")
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
            return lock

    @contextmanager
    def unit_of_work(self, user_id: UUID) -> Iterator[None]:
        with self._lock_for(user_id):
            with self._guard:
                user_snapshot = copy.deepcopy(self.users.get(user_id))
                claim_snapshot = {
                    cid: copy.deepcopy(c) for cid, c in self.claims.items() if c["user_id"] == user_id
                }
                event_ids = {eid for eid, e in self.points_events.items() if e["user_id"] == user_id}
                content_snapshot = {
                    iid: copy.deepcopy(i) for iid, i in self.content_items.items()
                    if i["author_id"] == str(user_id)
                }
            try:
                yield
            except Exception:
                logger.warning("Rolling back unit of work for user %s", user_id)
                self._restore(user_id, user_snapshot, claim_snapshot, event_ids, content_snapshot)
                raise

    def _restore(self, user_id: UUID, user_snapshot: Optional[dict], claim_snapshot: dict[UUID, dict],
                 event_ids: set[UUID], content_snapshot: dict[UUID, dict]) -> None:
        with self._guard:
            if user_snapshot is None:
                self.users.pop(user_id, None)
            else:
                self.users[user_id] = user_snapshot
                self.email_index[user_snapshot["email"]] = user_id

            for cid in [cid for cid, c in self.claims.items() if c["user_id"] == user_id]:
                if cid not in claim_snapshot:
                    del self.claims[cid]
            self.claims.update(claim_snapshot)

            for eid in [eid for eid, e in self.points_events.items() if e["user_id"] == user_id]:
                if eid not in event_ids:
                    del self.points_events[eid]

            for iid in [iid for iid, i in self.content_items.items() if i["author_id"] == str(user_id)]:
                if iid not in content_snapshot:
                    del self.content_items[iid]
            self.content_items.update(content_snapshot)

    def get_user(self, user_id: UUID) -> Optional[dict]:
        with self._guard:
            return self.users.get(user_id)

    def insert_user(self, user_data: dict) -> dict:
        with self._guard:
            if user_data["email"] in self.email_index:
                raise DuplicateEmailError(f"User with email {user_data['email']} already exists")
            return self.save_user(user_data)

    def save_user(self, user_data: dict) -> dict:
        with self._guard:
            user_data["version"] = user_data.get("version", 0) + 1
            self.users[user_data["id"]] = user_data
            self.email_index[user_data["email"]] = user_data["id"]
            return user_data

    def delete_user(self, user_id: UUID) -> None:
        with self._guard:
            user_data = self.users.pop(user_id, None)
            if user_data:
                self.email_index.pop(user_data["email"], None)
            self._locks.pop(user_id, None)

    def find_user_by_email(self, email: str) -> Optional[dict]:
        with self._guard:
            user_id = self.email_index.get(email)
            return self.users.get(user_id) if user_id else None

    def find_users(self) -> list[dict]:
        with self._guard:
            return list(self.users.values())

    def insert_claim(self, claim_data: dict) -> dict:
        with self._guard:
            self.claims[claim_data["id"]] = claim_data
            return claim_data

    def save_claim(self, claim_data: dict) -> dict:
        with self._guard:
            self.claims[claim_data["id"]] = claim_data
            return claim_data

    def get_claim(self, claim_id: UUID) -> Optional[dict]:
        with self._guard:
            return self.claims.get(claim_id)

    def find_claims(self, user_id: Optional[UUID] = None, status: Optional[str] = None) -> list[dict]:
        with self._guard:
            claims = list(self.claims.values())
        return [
            c for c in claims
            if (user_id is None or c["user_id"] == user_id)
            and (status is None or c["status"] == status)
        ]

    def append_points_event(self, event_data: dict) -> dict:
        with self._guard:
            self.points_events[event_data["id"]] = event_data
            return event_data

    def find_points_events(self, user_id: UUID) -> list[dict]:
        with self._guard:
            events = list(self.points_events.values())
        return [e for e in events if e["user_id"] == user_id]

    def save_content(self, item_data: dict) -> dict:
        with self._guard:
            self.content_items[UUID(item_data["id"])] = item_data
            return item_data

    def get_content(self, item_id: UUID) -> Optional[dict]:
        with self._guard:
            return self.content_items.get(item_id)

    def delete_content(self, item_id: UUID) -> None:
        with self._guard:
            self.content_items.pop(item_id, None)

    def find_content(self) -> list[dict]:
        with self._guard:
            return list(self.content_items.values())
