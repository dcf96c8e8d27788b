"""
Database abstraction for Postgres and an in-memory test implementation.

Rooms keep their participant list in insertion order; the owner is always the
first entry. Joins are conditional appends: the capacity and lifecycle checks
run under the same lock (or row lock) as the write, so two riders racing for
the last seat cannot both get it.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    or_,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from backend.errors import (
    DuplicateEmailError,
    InvalidRoomUpdateError,
    OwnerCannotLeaveError,
    RoomClosedError,
    RoomFullError,
    RoomNotFoundError,
    UserNotFoundError,
)
from shared.constants import DEFAULT_DISCOVERY_LIMIT
from shared.types import Room, RoomStatus, UserProfile

USER_UPDATABLE_FIELDS = {
    "first_name",
    "last_name",
    "college",
    "avatar_url",
    "email_verified",
}
ROOM_UPDATABLE_FIELDS = {
    "name",
    "starting_point",
    "destination",
    "passenger_limit",
    "auto_status",
    "status",
    "expires_at",
    "owner_name",
    "owner_avatar_url",
}


class DbClient(Protocol):
    """Interface for database access."""

    def create_user(self, profile: UserProfile) -> UserProfile:
        ...

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserProfile]:
        ...

    def update_user(self, user_id: str, **fields) -> UserProfile:
        ...

    def create_room(self, room: Room) -> Room:
        ...

    def get_room(self, room_id: str) -> Optional[Room]:
        ...

    def update_room(self, room_id: str, **fields) -> Room:
        """Raises InvalidRoomUpdateError if passenger_limit drops below the riders."""
        ...

    def delete_room(self, room_id: str) -> bool:
        ...

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
        """
        Rooms matching both prefixes, newest first. Full rooms and rooms
        expired at ``unexpired_at`` are filtered before ``limit`` applies.
        """
        ...

    def list_rooms_for_participant(
        self, user_id: str, limit: int = DEFAULT_DISCOVERY_LIMIT
    ) -> list[Room]:
        ...

    def add_participant(
        self, room_id: str, user_id: str, now: float | None = None
    ) -> Room:
        ...

    def remove_participant(self, room_id: str, user_id: str) -> Room:
        ...

    def expire_rooms(self, now: float | None = None) -> list[Room]:
        ...


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_email(email: str) -> str:
    return email.strip().lower()


def matches_prefix(value: str, prefix: str | None) -> bool:
    if not prefix:
        return True
    return value.lower().startswith(prefix.strip().lower())


def check_joinable(room: Room, user_id: str, now: float) -> bool:
    """
    Raise if ``user_id`` may not join ``room``.

    Returns False when the user is already a participant, meaning there is
    nothing to write.
    """
    if room.has_participant(user_id):
        return False
    if not room.is_joinable(now):
        raise RoomClosedError(room.id)
    if room.is_full:
        raise RoomFullError(room.id)
    return True


def check_passenger_limit(room: Room, fields: dict) -> None:
    """Raise if an update would set the limit below the riders already in."""
    limit = fields.get("passenger_limit")
    if limit is not None and limit < room.participant_count:
        raise InvalidRoomUpdateError(
            "Passenger limit cannot be lower than the current number of riders"
        )


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserProfile] = {}
        self.rooms: Dict[str, Room] = {}
        self._lock = threading.RLock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.rooms.clear()

    def create_user(self, profile: UserProfile) -> UserProfile:
        with self._lock:
            profile.email = normalize_email(profile.email)
            if self._find_user_by_email(profile.email):
                raise DuplicateEmailError(profile.email)
            self.users[profile.id] = copy.deepcopy(profile)
            return copy.deepcopy(profile)

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[UserProfile]:
        user = self._find_user_by_email(normalize_email(email))
        return copy.deepcopy(user) if user else None

    def _find_user_by_email(self, email: str) -> Optional[UserProfile]:
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    def update_user(self, user_id: str, **fields) -> UserProfile:
        with self._lock:
            user = self.users.get(user_id)
            if not user:
                raise UserNotFoundError(user_id)
            for key, value in fields.items():
                if key in USER_UPDATABLE_FIELDS:
                    setattr(user, key, value)
            return copy.deepcopy(user)

    def create_room(self, room: Room) -> Room:
        with self._lock:
            self.rooms[room.id] = copy.deepcopy(room)
            return copy.deepcopy(room)

    def get_room(self, room_id: str) -> Optional[Room]:
        room = self.rooms.get(room_id)
        return copy.deepcopy(room) if room else None

    def update_room(self, room_id: str, **fields) -> Room:
        with self._lock:
            room = self.rooms.get(room_id)
            if not room:
                raise RoomNotFoundError(room_id)
            check_passenger_limit(room, fields)
            for key, value in fields.items():
                if key in ROOM_UPDATABLE_FIELDS:
                    setattr(room, key, value)
            room.updated_at = time.time()
            return copy.deepcopy(room)

    def delete_room(self, room_id: str) -> bool:
        with self._lock:
            return self.rooms.pop(room_id, None) is not None

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
        rooms = sorted(self.rooms.values(), key=lambda r: r.created_at, reverse=True)
        items: list[Room] = []
        for room in rooms:
            if status is not None and room.status != status:
                continue
            if not matches_prefix(room.starting_point, starting_prefix):
                continue
            if not matches_prefix(room.destination, destination_prefix):
                continue
            if not include_full and room.is_full:
                continue
            if unexpired_at is not None and room.is_expired(unexpired_at):
                continue
            items.append(copy.deepcopy(room))
            if len(items) >= limit:
                break
        return items

    def list_rooms_for_participant(
        self, user_id: str, limit: int = DEFAULT_DISCOVERY_LIMIT
    ) -> list[Room]:
        rooms = sorted(self.rooms.values(), key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in rooms if r.has_participant(user_id)][:limit]

    def add_participant(
        self, room_id: str, user_id: str, now: float | None = None
    ) -> Room:
        now = time.time() if now is None else now
        with self._lock:
            room = self.rooms.get(room_id)
            if not room:
                raise RoomNotFoundError(room_id)
            if check_joinable(room, user_id, now):
                room.participant_ids.append(user_id)
                room.updated_at = now
            return copy.deepcopy(room)

    def remove_participant(self, room_id: str, user_id: str) -> Room:
        with self._lock:
            room = self.rooms.get(room_id)
            if not room:
                raise RoomNotFoundError(room_id)
            if user_id == room.owner_id:
                raise OwnerCannotLeaveError(room_id)
            if room.has_participant(user_id):
                room.participant_ids.remove(user_id)
                room.updated_at = time.time()
            return copy.deepcopy(room)

    def expire_rooms(self, now: float | None = None) -> list[Room]:
        now = time.time() if now is None else now
        expired: list[Room] = []
        with self._lock:
            for room in self.rooms.values():
                if room.status == RoomStatus.OPEN and room.is_expired(now):
                    room.status = RoomStatus.EXPIRED
                    room.updated_at = now
                    expired.append(copy.deepcopy(room))
        return expired


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_user(self, row: "UserRow") -> UserProfile:
        return UserProfile(
            id=row.id,
            email=row.email,
            first_name=row.first_name,
            last_name=row.last_name,
            college=row.college,
            avatar_url=row.avatar_url,
            email_verified=row.email_verified,
            password_hash=row.password_hash,
            password_salt=row.password_salt,
            created_at=row.created_at,
        )

    def _participant_ids(self, session: Session, room_id: str) -> list[str]:
        stmt = (
            select(RoomParticipantRow.user_id)
            .where(RoomParticipantRow.room_id == room_id)
            .order_by(RoomParticipantRow.seq.asc())
        )
        return list(session.execute(stmt).scalars().all())

    def _to_room(self, session: Session, row: "RoomRow") -> Room:
        return Room(
            id=row.id,
            name=row.name,
            owner_id=row.owner_id,
            owner_name=row.owner_name,
            owner_avatar_url=row.owner_avatar_url,
            participant_ids=self._participant_ids(session, row.id),
            starting_point=row.starting_point,
            destination=row.destination,
            passenger_limit=row.passenger_limit,
            auto_status=row.auto_status,
            status=RoomStatus(row.status),
            expires_at=row.expires_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_user(self, profile: UserProfile) -> UserProfile:
        email = normalize_email(profile.email)
        with self.Session() as session:
            existing = session.execute(
                select(UserRow).where(UserRow.email == email)
            ).scalar_one_or_none()
            if existing:
                raise DuplicateEmailError(email)
            row = UserRow(
                id=profile.id,
                email=email,
                first_name=profile.first_name,
                last_name=profile.last_name,
                college=profile.college,
                avatar_url=profile.avatar_url,
                email_verified=profile.email_verified,
                password_hash=profile.password_hash,
                password_salt=profile.password_salt,
                created_at=profile.created_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_user(row)

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserProfile]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == normalize_email(email))
            ).scalar_one_or_none()
            return self._to_user(row) if row else None

    def update_user(self, user_id: str, **fields) -> UserProfile:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                raise UserNotFoundError(user_id)
            for key, value in fields.items():
                if key in USER_UPDATABLE_FIELDS:
                    setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._to_user(row)

    def create_room(self, room: Room) -> Room:
        with self.Session() as session:
            session.add(
                RoomRow(
                    id=room.id,
                    name=room.name,
                    owner_id=room.owner_id,
                    owner_name=room.owner_name,
                    owner_avatar_url=room.owner_avatar_url,
                    starting_point=room.starting_point,
                    destination=room.destination,
                    passenger_limit=room.passenger_limit,
                    auto_status=room.auto_status,
                    status=room.status.value,
                    expires_at=room.expires_at,
                    created_at=room.created_at,
                    updated_at=room.updated_at,
                )
            )
            session.flush()
            for user_id in dict.fromkeys(room.participant_ids):
                session.add(
                    RoomParticipantRow(
                        room_id=room.id, user_id=user_id, joined_at=room.created_at
                    )
                )
            session.commit()
            row = session.get(RoomRow, room.id)
            return self._to_room(session, row)

    def get_room(self, room_id: str) -> Optional[Room]:
        with self.Session() as session:
            row = session.get(RoomRow, room_id)
            return self._to_room(session, row) if row else None

    def update_room(self, room_id: str, **fields) -> Room:
        with self.Session() as session:
            # Same row lock as add_participant, so the limit check sees every join.
            row = session.execute(
                select(RoomRow).where(RoomRow.id == room_id).with_for_update()
            ).scalar_one_or_none()
            if not row:
                raise RoomNotFoundError(room_id)
            check_passenger_limit(self._to_room(session, row), fields)
            for key, value in fields.items():
                if key not in ROOM_UPDATABLE_FIELDS:
                    continue
                if isinstance(value, RoomStatus):
                    value = value.value
                setattr(row, key, value)
            row.updated_at = time.time()
            session.commit()
            session.refresh(row)
            return self._to_room(session, row)

    def delete_room(self, room_id: str) -> bool:
        with self.Session() as session:
            row = session.get(RoomRow, room_id)
            if not row:
                return False
            session.execute(
                delete(RoomParticipantRow).where(RoomParticipantRow.room_id == room_id)
            )
            session.delete(row)
            session.commit()
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
        stmt = select(RoomRow)
        if status is not None:
            stmt = stmt.where(RoomRow.status == status.value)
        if starting_prefix and starting_prefix.strip():
            stmt = stmt.where(
                func.lower(RoomRow.starting_point).startswith(
                    starting_prefix.strip().lower(), autoescape=True
                )
            )
        if destination_prefix and destination_prefix.strip():
            stmt = stmt.where(
                func.lower(RoomRow.destination).startswith(
                    destination_prefix.strip().lower(), autoescape=True
                )
            )
        if unexpired_at is not None:
            stmt = stmt.where(
                or_(RoomRow.expires_at.is_(None), RoomRow.expires_at > unexpired_at)
            )
        if not include_full:
            riders = (
                select(func.count(RoomParticipantRow.seq))
                .where(RoomParticipantRow.room_id == RoomRow.id)
                .scalar_subquery()
            )
            stmt = stmt.where(riders < RoomRow.passenger_limit)
        stmt = stmt.order_by(RoomRow.created_at.desc()).limit(limit)
        with self.Session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_room(session, row) for row in rows]

    def list_rooms_for_participant(
        self, user_id: str, limit: int = DEFAULT_DISCOVERY_LIMIT
    ) -> list[Room]:
        stmt = (
            select(RoomRow)
            .join(RoomParticipantRow, RoomParticipantRow.room_id == RoomRow.id)
            .where(RoomParticipantRow.user_id == user_id)
            .order_by(RoomRow.created_at.desc())
            .limit(limit)
        )
        with self.Session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_room(session, row) for row in rows]

    def add_participant(
        self, room_id: str, user_id: str, now: float | None = None
    ) -> Room:
        now = time.time() if now is None else now
        with self.Session() as session:
            # Row lock serializes concurrent joins on the same room.
            row = session.execute(
                select(RoomRow).where(RoomRow.id == room_id).with_for_update()
            ).scalar_one_or_none()
            if not row:
                raise RoomNotFoundError(room_id)
            room = self._to_room(session, row)
            if check_joinable(room, user_id, now):
                session.add(
                    RoomParticipantRow(room_id=room_id, user_id=user_id, joined_at=now)
                )
                row.updated_at = now
            session.commit()
            return self._to_room(session, row)

    def remove_participant(self, room_id: str, user_id: str) -> Room:
        with self.Session() as session:
            row = session.execute(
                select(RoomRow).where(RoomRow.id == room_id).with_for_update()
            ).scalar_one_or_none()
            if not row:
                raise RoomNotFoundError(room_id)
            if user_id == row.owner_id:
                raise OwnerCannotLeaveError(room_id)
            result = session.execute(
                delete(RoomParticipantRow).where(
                    RoomParticipantRow.room_id == room_id,
                    RoomParticipantRow.user_id == user_id,
                )
            )
            if result.rowcount:
                row.updated_at = time.time()
            session.commit()
            return self._to_room(session, row)

    def expire_rooms(self, now: float | None = None) -> list[Room]:
        now = time.time() if now is None else now
        with self.Session() as session:
            rows = (
                session.execute(
                    select(RoomRow)
                    .where(
                        RoomRow.status == RoomStatus.OPEN.value,
                        RoomRow.expires_at != None,  # noqa: E711
                        RoomRow.expires_at <= now,
                    )
                    .with_for_update(skip_locked=True)
                )
                .scalars()
                .all()
            )
            for row in rows:
                row.status = RoomStatus.EXPIRED.value
                row.updated_at = now
            session.commit()
            return [self._to_room(session, row) for row in rows]


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False, default="")
    college = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    password_hash = Column(String, nullable=True)
    password_salt = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class RoomRow(Base):
    __tablename__ = "sharing_rooms"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    owner_id = Column(String, nullable=False, index=True)
    owner_name = Column(String, nullable=False, default="")
    owner_avatar_url = Column(String, nullable=True)
    starting_point = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    passenger_limit = Column(Integer, nullable=False)
    auto_status = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, index=True)
    expires_at = Column(Float, nullable=True, index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class RoomParticipantRow(Base):
    __tablename__ = "room_participants"
    __table_args__ = (UniqueConstraint("room_id", "user_id"),)

    seq = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(
        String, ForeignKey("sharing_rooms.id"), nullable=False, index=True
    )
    user_id = Column(String, nullable=False, index=True)
    joined_at = Column(Float, nullable=False)
