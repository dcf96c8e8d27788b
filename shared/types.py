# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import List, Optional


class RoomStatus(StrEnum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


@dataclass
class UserProfile:
    id: str
    email: str
    first_name: str
    last_name: str = ""
    college: Optional[str] = None
    avatar_url: Optional[str] = None
    email_verified: bool = False
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "User"

    @property
    def initials(self) -> str:
        parts = self.display_name.split()
        return "".join(part[0] for part in parts).upper() or "U"

    def as_public_dict(self) -> dict:
        """Profile fields that are safe to show to other riders."""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "display_name": self.display_name,
            "initials": self.initials,
            "college": self.college,
            "avatar_url": self.avatar_url,
        }


@dataclass
class Room:
    id: str
    name: str
    owner_id: str
    starting_point: str
    destination: str
    passenger_limit: int
    owner_name: str = ""
    owner_avatar_url: Optional[str] = None
    participant_ids: List[str] = field(default_factory=list)
    auto_status: bool = False
    status: RoomStatus = RoomStatus.OPEN
    expires_at: Optional[float] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def participant_count(self) -> int:
        return len(self.participant_ids)

    @property
    def is_full(self) -> bool:
        return self.participant_count >= self.passenger_limit

    @property
    def seats_left(self) -> int:
        return max(0, self.passenger_limit - self.participant_count)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participant_ids

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return self.expires_at <= now

    def is_joinable(self, now: float | None = None) -> bool:
        return self.status == RoomStatus.OPEN and not self.is_expired(now)

    def minutes_remaining(self, now: float | None = None) -> Optional[int]:
        if self.expires_at is None:
            return None
        now = time.time() if now is None else now
        return max(0, round((self.expires_at - now) / 60))

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "owner_avatar_url": self.owner_avatar_url,
            "participant_ids": list(self.participant_ids),
            "starting_point": self.starting_point,
            "destination": self.destination,
            "passenger_limit": self.passenger_limit,
            "auto_status": self.auto_status,
            "status": self.status.value,
            "expires_at": self.expires_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
