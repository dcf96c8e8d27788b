"""
Room operations shared by the HTTP routes and the expiration worker.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from backend.db import DbClient, new_id
from backend.errors import (
    NotRoomOwnerError,
    RoomClosedError,
    RoomNotFoundError,
)
from backend.events import RoomEventBus
from shared.types import Room, RoomStatus, UserProfile

logger = logging.getLogger(__name__)


def room_view(
    room: Room, viewer: Optional[UserProfile] = None, now: float | None = None
) -> dict:
    """Read model of a room as the room card and details page show it."""
    now = time.time() if now is None else now
    viewer_id = viewer.id if viewer else None
    view = room.as_dict()
    view.update(
        {
            "participant_count": room.participant_count,
            "seats_left": room.seats_left,
            "is_full": room.is_full,
            "is_expired": room.is_expired(now),
            "minutes_remaining": room.minutes_remaining(now),
            "is_participant": bool(viewer_id and room.has_participant(viewer_id)),
            "is_owner": viewer_id == room.owner_id,
        }
    )
    return view


def publish_room(bus: RoomEventBus, room: Room, event: str) -> None:
    payload = room_view(room)
    payload["event"] = event
    bus.publish(room.id, payload)


def _require_room(db: DbClient, room_id: str) -> Room:
    room = db.get_room(room_id)
    if not room:
        raise RoomNotFoundError(room_id)
    return room


def _require_owner(room: Room, user: UserProfile) -> None:
    if room.owner_id != user.id:
        raise NotRoomOwnerError(room.id)


def create_room(
    db: DbClient,
    owner: UserProfile,
    *,
    name: str,
    starting_point: str,
    destination: str,
    passenger_limit: int,
    auto_status: bool = False,
    expires_in_minutes: int | None = None,
    now: float | None = None,
) -> Room:
    now = time.time() if now is None else now
    room = Room(
        id=new_id(),
        name=name.strip(),
        owner_id=owner.id,
        owner_name=owner.display_name,
        owner_avatar_url=owner.avatar_url,
        participant_ids=[owner.id],
        starting_point=starting_point.strip(),
        destination=destination.strip(),
        passenger_limit=passenger_limit,
        auto_status=auto_status,
        status=RoomStatus.OPEN,
        expires_at=now + expires_in_minutes * 60 if expires_in_minutes else None,
        created_at=now,
        updated_at=now,
    )
    created = db.create_room(room)
    logger.info("Room %s created by %s", created.id, owner.id)
    return created


def discover_rooms(
    db: DbClient,
    *,
    starting_point: str | None = None,
    destination: str | None = None,
    include_full: bool = False,
    limit: int = 50,
    now: float | None = None,
) -> list[Room]:
    """
    Open, unexpired rooms matching both prefixes, newest first.

    Full rooms are dropped unless ``include_full`` is set; callers then read
    ``is_full`` off the room view. The store filters before applying
    ``limit``, so a run of newer full rooms never hides joinable ones.
    """
    now = time.time() if now is None else now
    return db.list_rooms(
        starting_prefix=starting_point,
        destination_prefix=destination,
        status=RoomStatus.OPEN,
        include_full=include_full,
        unexpired_at=now,
        limit=limit,
    )


def join_room(
    db: DbClient,
    bus: RoomEventBus,
    room_id: str,
    user: UserProfile,
    now: float | None = None,
) -> Room:
    room = db.add_participant(room_id, user.id, now=now)
    logger.info("User %s joined room %s", user.id, room_id)
    publish_room(bus, room, "joined")
    return room


def leave_room(
    db: DbClient, bus: RoomEventBus, room_id: str, user: UserProfile
) -> Room:
    room = db.remove_participant(room_id, user.id)
    logger.info("User %s left room %s", user.id, room_id)
    publish_room(bus, room, "left")
    return room


def update_room(
    db: DbClient,
    bus: RoomEventBus,
    room_id: str,
    user: UserProfile,
    **changes,
) -> Room:
    room = _require_room(db, room_id)
    _require_owner(room, user)
    if room.status != RoomStatus.OPEN:
        raise RoomClosedError(room_id)
    changes = {k: v for k, v in changes.items() if v is not None}
    for key in ("name", "starting_point", "destination"):
        if key in changes:
            changes[key] = changes[key].strip()
    if not changes:
        return room
    updated = db.update_room(room_id, **changes)
    publish_room(bus, updated, "updated")
    return updated


def complete_room(
    db: DbClient, bus: RoomEventBus, room_id: str, user: UserProfile
) -> Room:
    room = _require_room(db, room_id)
    _require_owner(room, user)
    if room.status == RoomStatus.COMPLETED:
        return room
    updated = db.update_room(room_id, status=RoomStatus.COMPLETED)
    logger.info("Room %s completed", room_id)
    publish_room(bus, updated, "completed")
    return updated


def delete_room(
    db: DbClient, bus: RoomEventBus, room_id: str, user: UserProfile
) -> None:
    room = _require_room(db, room_id)
    _require_owner(room, user)
    db.delete_room(room_id)
    logger.info("Room %s deleted", room_id)
    payload = room_view(room)
    payload["event"] = "deleted"
    bus.publish(room_id, payload)


def list_riders(db: DbClient, room: Room) -> list[dict]:
    """Public profiles of the riders, owner first, unknown ids as placeholders."""
    riders = []
    for user_id in room.participant_ids:
        profile = db.get_user(user_id)
        if profile:
            rider = profile.as_public_dict()
        else:
            rider = {
                "id": user_id,
                "first_name": "User",
                "last_name": "",
                "display_name": "User",
                "initials": "U",
                "college": None,
                "avatar_url": None,
            }
        rider["is_owner"] = user_id == room.owner_id
        riders.append(rider)
    return riders


def expire_rooms(
    db: DbClient, bus: RoomEventBus, now: float | None = None
) -> list[Room]:
    expired = db.expire_rooms(now)
    for room in expired:
        logger.info("Room %s expired", room.id)
        publish_room(bus, room, "expired")
    return expired
