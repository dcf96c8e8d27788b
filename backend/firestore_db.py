"""
Firestore-backed DbClient.

Documents use the camelCase field names the web client reads
(``participantIds``, ``passengerLimit`` ...). Lower-cased copies of the
starting point and destination are stored alongside so discovery can run
case-insensitive prefix range queries.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from backend.db import (
    ROOM_UPDATABLE_FIELDS,
    USER_UPDATABLE_FIELDS,
    check_joinable,
    check_passenger_limit,
    matches_prefix,
    normalize_email,
)
from backend.errors import (
    DuplicateEmailError,
    OwnerCannotLeaveError,
    RoomNotFoundError,
    UserNotFoundError,
)
from shared.constants import (
    DEFAULT_DISCOVERY_LIMIT,
    ROOMS_COLLECTION,
    USERS_COLLECTION,
)
from shared.json_utils import convert_keys
from shared.types import Room, RoomStatus, UserProfile

logger = logging.getLogger(__name__)

PREFIX_RANGE_END = "\uf8ff"
MAX_BATCH_WRITES = 500


def room_to_document(room: Room) -> dict:
    data = room.as_dict()
    data.pop("id")
    data["starting_point_lower"] = room.starting_point.lower()
    data["destination_lower"] = room.destination.lower()
    return convert_keys(data, "snake_to_camel")


def room_from_document(room_id: str, document: dict) -> Room:
    data = convert_keys(document, "camel_to_snake")
    return Room(
        id=room_id,
        name=data.get("name", ""),
        owner_id=data["owner_id"],
        owner_name=data.get("owner_name", ""),
        owner_avatar_url=data.get("owner_avatar_url"),
        participant_ids=list(data.get("participant_ids") or []),
        starting_point=data.get("starting_point", ""),
        destination=data.get("destination", ""),
        passenger_limit=int(data.get("passenger_limit", 0)),
        auto_status=bool(data.get("auto_status", False)),
        status=RoomStatus(data.get("status", RoomStatus.OPEN.value)),
        expires_at=data.get("expires_at"),
        created_at=data.get("created_at") or time.time(),
        updated_at=data.get("updated_at") or time.time(),
    )


def user_to_document(profile: UserProfile) -> dict:
    data = {
        "email": profile.email,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "college": profile.college or "",
        "avatar_url": profile.avatar_url,
        "email_verified": profile.email_verified,
        "password_hash": profile.password_hash,
        "password_salt": profile.password_salt,
        "created_at": profile.created_at,
    }
    return convert_keys(data, "snake_to_camel")


def user_from_document(user_id: str, document: dict) -> UserProfile:
    data = convert_keys(document, "camel_to_snake")
    return UserProfile(
        id=user_id,
        email=data.get("email", ""),
        first_name=data.get("first_name", ""),
        last_name=data.get("last_name", ""),
        college=data.get("college") or None,
        avatar_url=data.get("avatar_url"),
        email_verified=bool(data.get("email_verified", False)),
        password_hash=data.get("password_hash"),
        password_salt=data.get("password_salt"),
        created_at=data.get("created_at") or time.time(),
    )


class FirestoreDbClient:
    """DbClient over a Firestore database initialized through firebase_admin."""

    def __init__(self, client=None):
        self.client = client or firestore.client()

    def _rooms(self):
        return self.client.collection(ROOMS_COLLECTION)

    def _users(self):
        return self.client.collection(USERS_COLLECTION)

    def create_user(self, profile: UserProfile) -> UserProfile:
        profile.email = normalize_email(profile.email)
        if self.get_user_by_email(profile.email):
            raise DuplicateEmailError(profile.email)
        self._users().document(profile.id).set(user_to_document(profile))
        return profile

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        snapshot = self._users().document(user_id).get()
        if not snapshot.exists:
            return None
        return user_from_document(snapshot.id, snapshot.to_dict())

    def get_user_by_email(self, email: str) -> Optional[UserProfile]:
        query = self._users().where(
            filter=FieldFilter("email", "==", normalize_email(email))
        ).limit(1)
        for snapshot in query.stream():
            return user_from_document(snapshot.id, snapshot.to_dict())
        return None

    def update_user(self, user_id: str, **fields) -> UserProfile:
        ref = self._users().document(user_id)
        if not ref.get().exists:
            raise UserNotFoundError(user_id)
        changes = {k: v for k, v in fields.items() if k in USER_UPDATABLE_FIELDS}
        if changes:
            ref.update(convert_keys(changes, "snake_to_camel"))
        return self.get_user(user_id)

    def create_room(self, room: Room) -> Room:
        self._rooms().document(room.id).set(room_to_document(room))
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        snapshot = self._rooms().document(room_id).get()
        if not snapshot.exists:
            return None
        return room_from_document(snapshot.id, snapshot.to_dict())

    def update_room(self, room_id: str, **fields) -> Room:
        ref = self._rooms().document(room_id)
        changes = {k: v for k, v in fields.items() if k in ROOM_UPDATABLE_FIELDS}
        if "status" in changes:
            changes["status"] = RoomStatus(changes["status"]).value
        if "starting_point" in changes:
            changes["starting_point_lower"] = changes["starting_point"].lower()
        if "destination" in changes:
            changes["destination_lower"] = changes["destination"].lower()

        @firestore.transactional
        def _update(transaction) -> None:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise RoomNotFoundError(room_id)
            check_passenger_limit(
                room_from_document(snapshot.id, snapshot.to_dict()), changes
            )
            changes["updated_at"] = time.time()
            transaction.update(ref, convert_keys(changes, "snake_to_camel"))

        _update(self.client.transaction())
        return self.get_room(room_id)

    def delete_room(self, room_id: str) -> bool:
        ref = self._rooms().document(room_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    def list_rooms(
        self,
        *,
        starting_prefix: str | None = None,
        destination_prefix: str | None = None,
        status: RoomStatus | None = RoomStatus.OPEN,
        include_full: bool = True,
        unexpired_at: float | None = None,
        limit: int = DEFAULT_DISCOVERY_LIMIT,
    ) -> list[Room]:
        query = self._rooms()
        if status is not None:
            query = query.where(filter=FieldFilter("status", "==", status.value))
        # Firestore only serves one range field cheaply; destination prefix,
        # capacity and expiry are applied after the fetch, before the limit.
        if starting_prefix and starting_prefix.strip():
            prefix = starting_prefix.strip().lower()
            query = query.where(
                filter=FieldFilter("startingPointLower", ">=", prefix)
            ).where(
                filter=FieldFilter("startingPointLower", "<=", prefix + PREFIX_RANGE_END)
            )
        rooms = [
            room_from_document(snapshot.id, snapshot.to_dict())
            for snapshot in query.stream()
        ]
        rooms = [r for r in rooms if matches_prefix(r.destination, destination_prefix)]
        if not include_full:
            rooms = [r for r in rooms if not r.is_full]
        if unexpired_at is not None:
            rooms = [r for r in rooms if not r.is_expired(unexpired_at)]
        rooms.sort(key=lambda r: r.created_at, reverse=True)
        return rooms[:limit]

    def list_rooms_for_participant(
        self, user_id: str, limit: int = DEFAULT_DISCOVERY_LIMIT
    ) -> list[Room]:
        query = self._rooms().where(
            filter=FieldFilter("participantIds", "array_contains", user_id)
        )
        rooms = [
            room_from_document(snapshot.id, snapshot.to_dict())
            for snapshot in query.stream()
        ]
        rooms.sort(key=lambda r: r.created_at, reverse=True)
        return rooms[:limit]

    def add_participant(
        self, room_id: str, user_id: str, now: float | None = None
    ) -> Room:
        now = time.time() if now is None else now
        ref = self._rooms().document(room_id)

        @firestore.transactional
        def _join(transaction) -> Room:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise RoomNotFoundError(room_id)
            room = room_from_document(snapshot.id, snapshot.to_dict())
            if check_joinable(room, user_id, now):
                room.participant_ids.append(user_id)
                room.updated_at = now
                transaction.update(
                    ref,
                    {
                        "participantIds": firestore.ArrayUnion([user_id]),
                        "updatedAt": now,
                    },
                )
            return room

        return _join(self.client.transaction())

    def remove_participant(self, room_id: str, user_id: str) -> Room:
        ref = self._rooms().document(room_id)

        @firestore.transactional
        def _leave(transaction) -> Room:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise RoomNotFoundError(room_id)
            room = room_from_document(snapshot.id, snapshot.to_dict())
            if user_id == room.owner_id:
                raise OwnerCannotLeaveError(room_id)
            if room.has_participant(user_id):
                room.participant_ids.remove(user_id)
                room.updated_at = time.time()
                transaction.update(
                    ref,
                    {
                        "participantIds": firestore.ArrayRemove([user_id]),
                        "updatedAt": room.updated_at,
                    },
                )
            return room

        return _leave(self.client.transaction())

    def expire_rooms(self, now: float | None = None) -> list[Room]:
        now = time.time() if now is None else now
        query = (
            self._rooms()
            .where(filter=FieldFilter("status", "==", RoomStatus.OPEN.value))
            .where(filter=FieldFilter("expiresAt", "<=", now))
        )
        expired: list[Room] = []
        batch = self.client.batch()
        pending = 0
        for snapshot in query.stream():
            room = room_from_document(snapshot.id, snapshot.to_dict())
            room.status = RoomStatus.EXPIRED
            room.updated_at = now
            batch.update(
                snapshot.reference,
                {"status": RoomStatus.EXPIRED.value, "updatedAt": now},
            )
            expired.append(room)
            pending += 1
            if pending == MAX_BATCH_WRITES:
                batch.commit()
                batch = self.client.batch()
                pending = 0
        if pending:
            batch.commit()
        if expired:
            logger.info("Expired %d Firestore rooms", len(expired))
        return expired
