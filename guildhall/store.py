"""
Data store for Guild Hall.

Two interchangeable backends expose the same methods:

* ``FirestoreStore`` keeps every record in a top-level Firestore collection
  and uses Firestore transactions for conditional writes and the point award.
* ``MemoryStore`` keeps plain dicts behind a re-entrant lock. It backs local
  development and the test-suite.

Rows are returned as plain dicts with their ``id`` merged in. Conditional
writes take ``expected_status`` (an iterable of statuses) and raise
``StaleStateError`` when the stored status is not one of them, so a
precondition checked by the engine cannot be invalidated between the read and
the write.
"""

import copy
import logging
import threading
import uuid
from typing import Dict, Iterable, List, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from .errors import NotFoundError, StaleStateError

QUESTS = "quests"
OBJECTIVES = "objectives"
USER_QUESTS = "user_quests"
USER_OBJECTIVES = "user_objectives"
USERS = "users"
USER_ROLES = "user_roles"
NOTIFICATIONS = "notifications"


def user_quest_key(user_id: str, quest_id: str) -> str:
    # one row per (user, quest); re-acceptance reuses it
    return f"{user_id}_{quest_id}"


def user_objective_key(user_quest_id: str, objective_id: str) -> str:
    return f"{user_quest_id}_{objective_id}"


def _check_expected(current: dict, expected_status: Optional[Iterable[str]]):
    if expected_status is not None and current.get("status") not in set(expected_status):
        raise StaleStateError(current.get("status"))


class MemoryStore:
    def __init__(self):
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[str, dict]] = {}
        self.clear()

    def clear(self):
        with self._lock:
            self._tables = {
                name: {}
                for name in (QUESTS, OBJECTIVES, USER_QUESTS, USER_OBJECTIVES, USERS, USER_ROLES, NOTIFICATIONS)
            }

    # generic helpers
    def _get(self, table: str, row_id: str) -> Optional[dict]:
        with self._lock:
            row = self._tables[table].get(row_id)
            return copy.deepcopy(row) if row is not None else None

    def _insert(self, table: str, data: dict, row_id: str = None) -> dict:
        with self._lock:
            row_id = row_id or uuid.uuid4().hex
            row = copy.deepcopy(data)
            row["id"] = row_id
            self._tables[table][row_id] = row
            return copy.deepcopy(row)

    def _update(self, table: str, row_id: str, changes: dict, expected_status=None) -> dict:
        with self._lock:
            row = self._tables[table].get(row_id)
            if row is None:
                raise NotFoundError(f"{table} {row_id} not found")
            _check_expected(row, expected_status)
            row.update(copy.deepcopy(changes))
            return copy.deepcopy(row)

    def _select(self, table: str, **filters) -> List[dict]:
        with self._lock:
            rows = []
            for row in self._tables[table].values():
                if all(
                    row.get(field) in value if isinstance(value, (list, tuple, set)) else row.get(field) == value
                    for field, value in filters.items()
                    if value is not None
                ):
                    rows.append(copy.deepcopy(row))
            return rows

    # quests
    def get_quest(self, quest_id: str) -> Optional[dict]:
        return self._get(QUESTS, quest_id)

    def list_quests(self, status: str = None) -> List[dict]:
        quests = self._select(QUESTS, status=status)
        return sorted(quests, key=lambda q: q.get("created_at") or 0)

    def create_quest(self, data: dict) -> dict:
        return self._insert(QUESTS, data)

    def update_quest(self, quest_id: str, changes: dict) -> dict:
        return self._update(QUESTS, quest_id, changes)

    # objectives
    def get_objective(self, objective_id: str) -> Optional[dict]:
        return self._get(OBJECTIVES, objective_id)

    def list_objectives(self, quest_id: str) -> List[dict]:
        objectives = self._select(OBJECTIVES, quest_id=quest_id)
        return sorted(objectives, key=lambda o: o.get("display_order", 0))

    def create_objective(self, data: dict) -> dict:
        return self._insert(OBJECTIVES, data)

    def update_objective(self, objective_id: str, changes: dict) -> dict:
        return self._update(OBJECTIVES, objective_id, changes)

    # user quests
    def get_user_quest(self, user_quest_id: str) -> Optional[dict]:
        return self._get(USER_QUESTS, user_quest_id)

    def list_user_quests(self, user_id: str = None, quest_id: str = None, statuses: Iterable[str] = None) -> List[dict]:
        return self._select(
            USER_QUESTS,
            user_id=user_id,
            quest_id=quest_id,
            status=list(statuses) if statuses is not None else None,
        )

    def create_user_quest(self, user_quest_id: str, data: dict) -> dict:
        with self._lock:
            existing = self._tables[USER_QUESTS].get(user_quest_id)
            if existing is not None:
                raise StaleStateError(existing.get("status"), reason="exists")
            return self._insert(USER_QUESTS, data, row_id=user_quest_id)

    def update_user_quest(self, user_quest_id: str, changes: dict, expected_status: Iterable[str] = None) -> dict:
        return self._update(USER_QUESTS, user_quest_id, changes, expected_status)

    # user objectives
    def get_user_objective(self, user_objective_id: str) -> Optional[dict]:
        return self._get(USER_OBJECTIVES, user_objective_id)

    def list_user_objectives(self, user_quest_id: str = None, status: str = None) -> List[dict]:
        return self._select(USER_OBJECTIVES, user_quest_id=user_quest_id, status=status)

    def put_user_objective(self, user_objective_id: str, data: dict) -> dict:
        return self._insert(USER_OBJECTIVES, data, row_id=user_objective_id)

    def update_user_objective(self, user_objective_id: str, changes: dict, expected_status: Iterable[str] = None) -> dict:
        return self._update(USER_OBJECTIVES, user_objective_id, changes, expected_status)

    def award_completion(self, user_quest_id: str, expected_status: Iterable[str], changes: dict, points: int) -> dict:
        """Flip a user quest to completed and credit its owner, all under one lock."""
        with self._lock:
            user_quest = self._tables[USER_QUESTS].get(user_quest_id)
            if user_quest is None:
                raise NotFoundError(f"user quest {user_quest_id} not found")
            _check_expected(user_quest, expected_status)
            objectives = self._select(USER_OBJECTIVES, user_quest_id=user_quest_id)
            if not objectives or any(o["status"] != "approved" for o in objectives):
                raise StaleStateError(user_quest.get("status"), reason="objectives")

            user_quest.update(copy.deepcopy(changes))
            user = self._tables[USERS].setdefault(user_quest["user_id"], {"id": user_quest["user_id"]})
            user["total_points"] = user.get("total_points", 0) + points
            user["quests_completed"] = user.get("quests_completed", 0) + 1
            return copy.deepcopy(user_quest)

    # users and roles
    def get_user(self, user_id: str) -> Optional[dict]:
        return self._get(USERS, user_id)

    def list_users(self) -> List[dict]:
        return self._select(USERS)

    def upsert_user(self, user_id: str, data: dict) -> dict:
        with self._lock:
            row = self._tables[USERS].setdefault(user_id, {"id": user_id})
            row.update(copy.deepcopy(data))
            return copy.deepcopy(row)

    def get_roles(self, user_id: str) -> set:
        return {row["role"] for row in self._select(USER_ROLES, user_id=user_id)}

    def add_role(self, user_id: str, role: str):
        self._insert(USER_ROLES, {"user_id": user_id, "role": role}, row_id=f"{user_id}_{role}")

    def list_role_members(self, roles: Iterable[str]) -> List[str]:
        return sorted({row["user_id"] for row in self._select(USER_ROLES, role=list(roles))})

    # notifications
    def add_notification(self, data: dict) -> dict:
        return self._insert(NOTIFICATIONS, data)

    def get_notification(self, notification_id: str) -> Optional[dict]:
        return self._get(NOTIFICATIONS, notification_id)

    def list_notifications(self, user_id: str, unread_only: bool = False) -> List[dict]:
        rows = self._select(NOTIFICATIONS, user_id=user_id, read=False if unread_only else None)
        return sorted(rows, key=lambda n: n["created_at"], reverse=True)

    def update_notification(self, notification_id: str, changes: dict) -> dict:
        return self._update(NOTIFICATIONS, notification_id, changes)

    def mark_all_notifications_read(self, user_id: str, read_at) -> int:
        with self._lock:
            count = 0
            for row in self._tables[NOTIFICATIONS].values():
                if row["user_id"] == user_id and not row.get("read"):
                    row.update({"read": True, "read_at": read_at})
                    count += 1
            return count


class FirestoreStore:
    def __init__(self, db):
        self.db = db

    @staticmethod
    def _to_dict(snapshot) -> Optional[dict]:
        if not snapshot.exists:
            return None
        data = snapshot.to_dict()
        data["id"] = snapshot.id
        return data

    def _get(self, collection: str, doc_id: str) -> Optional[dict]:
        return self._to_dict(self.db.collection(collection).document(doc_id).get())

    def _insert(self, collection: str, data: dict, doc_id: str = None) -> dict:
        ref = self.db.collection(collection).document(doc_id) if doc_id else self.db.collection(collection).document()
        ref.set(data)
        data = dict(data)
        data["id"] = ref.id
        return data

    def _update(self, collection: str, doc_id: str, changes: dict, expected_status=None) -> dict:
        ref = self.db.collection(collection).document(doc_id)
        transaction = self.db.transaction()

        @firestore.transactional
        def _apply(transaction):
            snapshot = ref.get(transaction=transaction)
            current = self._to_dict(snapshot)
            if current is None:
                raise NotFoundError(f"{collection} {doc_id} not found")
            _check_expected(current, expected_status)
            transaction.update(ref, changes)
            current.update(changes)
            return current

        return _apply(transaction)

    def _stream(self, query) -> List[dict]:
        return [self._to_dict(doc) for doc in query.stream()]

    # quests
    def get_quest(self, quest_id):
        return self._get(QUESTS, quest_id)

    def list_quests(self, status=None):
        query = self.db.collection(QUESTS)
        if status is not None:
            query = query.where("status", "==", status)
        quests = self._stream(query)
        return sorted(quests, key=lambda q: q.get("created_at") or 0)

    def create_quest(self, data):
        return self._insert(QUESTS, data)

    def update_quest(self, quest_id, changes):
        return self._update(QUESTS, quest_id, changes)

    # objectives
    def get_objective(self, objective_id):
        return self._get(OBJECTIVES, objective_id)

    def list_objectives(self, quest_id):
        objectives = self._stream(self.db.collection(OBJECTIVES).where("quest_id", "==", quest_id))
        return sorted(objectives, key=lambda o: o.get("display_order", 0))

    def create_objective(self, data):
        return self._insert(OBJECTIVES, data)

    def update_objective(self, objective_id, changes):
        return self._update(OBJECTIVES, objective_id, changes)

    # user quests
    def get_user_quest(self, user_quest_id):
        return self._get(USER_QUESTS, user_quest_id)

    def list_user_quests(self, user_id=None, quest_id=None, statuses=None):
        query = self.db.collection(USER_QUESTS)
        if user_id is not None:
            query = query.where("user_id", "==", user_id)
        if quest_id is not None:
            query = query.where("quest_id", "==", quest_id)
        if statuses is not None:
            query = query.where("status", "in", list(statuses))
        return self._stream(query)

    def create_user_quest(self, user_quest_id, data):
        ref = self.db.collection(USER_QUESTS).document(user_quest_id)
        try:
            ref.create(data)
        except gcp_exceptions.AlreadyExists:
            existing = self._to_dict(ref.get()) or {}
            raise StaleStateError(existing.get("status"), reason="exists")
        data = dict(data)
        data["id"] = user_quest_id
        return data

    def update_user_quest(self, user_quest_id, changes, expected_status=None):
        return self._update(USER_QUESTS, user_quest_id, changes, expected_status)

    # user objectives
    def get_user_objective(self, user_objective_id):
        return self._get(USER_OBJECTIVES, user_objective_id)

    def list_user_objectives(self, user_quest_id=None, status=None):
        query = self.db.collection(USER_OBJECTIVES)
        if user_quest_id is not None:
            query = query.where("user_quest_id", "==", user_quest_id)
        if status is not None:
            query = query.where("status", "==", status)
        return self._stream(query)

    def put_user_objective(self, user_objective_id, data):
        return self._insert(USER_OBJECTIVES, data, doc_id=user_objective_id)

    def update_user_objective(self, user_objective_id, changes, expected_status=None):
        return self._update(USER_OBJECTIVES, user_objective_id, changes, expected_status)

    def award_completion(self, user_quest_id, expected_status, changes, points):
        """Single Firestore transaction: re-check status and objectives, complete, credit points."""
        user_quest_ref = self.db.collection(USER_QUESTS).document(user_quest_id)
        objectives_query = self.db.collection(USER_OBJECTIVES).where("user_quest_id", "==", user_quest_id)
        transaction = self.db.transaction()

        @firestore.transactional
        def _award(transaction):
            user_quest = self._to_dict(user_quest_ref.get(transaction=transaction))
            if user_quest is None:
                raise NotFoundError(f"user quest {user_quest_id} not found")
            _check_expected(user_quest, expected_status)
            objectives = [o.to_dict() for o in transaction.get(objectives_query)]
            if not objectives or any(o["status"] != "approved" for o in objectives):
                raise StaleStateError(user_quest.get("status"), reason="objectives")

            user_ref = self.db.collection(USERS).document(user_quest["user_id"])
            transaction.update(user_quest_ref, changes)
            transaction.set(
                user_ref,
                {
                    "total_points": firestore.Increment(points),
                    "quests_completed": firestore.Increment(1),
                },
                merge=True,
            )
            user_quest.update(changes)
            return user_quest

        user_quest = _award(transaction)
        logging.info(f"Awarded {points} points to {user_quest['user_id']} for {user_quest_id}")
        return user_quest

    # users and roles
    def get_user(self, user_id):
        return self._get(USERS, user_id)

    def list_users(self):
        return self._stream(self.db.collection(USERS))

    def upsert_user(self, user_id, data):
        ref = self.db.collection(USERS).document(user_id)
        ref.set(data, merge=True)
        return self._to_dict(ref.get())

    def get_roles(self, user_id):
        roles = self.db.collection(USER_ROLES).where("user_id", "==", user_id).stream()
        return {role.to_dict()["role"] for role in roles}

    def add_role(self, user_id, role):
        self.db.collection(USER_ROLES).document(f"{user_id}_{role}").set({"user_id": user_id, "role": role})

    def list_role_members(self, roles):
        members = self.db.collection(USER_ROLES).where("role", "in", list(roles)).stream()
        return sorted({member.to_dict()["user_id"] for member in members})

    # notifications
    def add_notification(self, data):
        return self._insert(NOTIFICATIONS, data)

    def get_notification(self, notification_id):
        return self._get(NOTIFICATIONS, notification_id)

    def list_notifications(self, user_id, unread_only=False):
        query = self.db.collection(NOTIFICATIONS).where("user_id", "==", user_id)
        if unread_only:
            query = query.where("read", "==", False)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING)
        return self._stream(query)

    def update_notification(self, notification_id, changes):
        return self._update(NOTIFICATIONS, notification_id, changes)

    def mark_all_notifications_read(self, user_id, read_at):
        unread = self.db.collection(NOTIFICATIONS).where("user_id", "==", user_id).where("read", "==", False).stream()
        batch = self.db.batch()
        count = 0
        for notification in unread:
            batch.update(notification.reference, {"read": True, "read_at": read_at})
            count += 1
        if count:
            batch.commit()
        return count
