"""
Pydantic schemas for the ride-sharing FastAPI backend.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from shared.constants import (
    COLLEGE_MAX_LENGTH,
    EXPIRATION_CHOICES_MINUTES,
    FULL_NAME_MAX_LENGTH,
    LOCATION_MAX_LENGTH,
    MAX_ASSISTANT_QUERY_LENGTH,
    MAX_PASSENGER_LIMIT,
    MIN_PASSENGER_LIMIT,
    ROOM_NAME_MAX_LENGTH,
)


class SignupRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=FULL_NAME_MAX_LENGTH)
    email: EmailStr
    password: str = Field(..., max_length=256)
    college: Optional[str] = Field(None, max_length=COLLEGE_MAX_LENGTH)

    @field_validator("full_name")
    @classmethod
    def _full_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Full name is required")
        return value.strip()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class VerifyEmailRequest(BaseModel):
    token: str


class FederatedLoginRequest(BaseModel):
    id_token: str


class TokenResponse(BaseModel):
    token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str


class UserProfileResponse(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: str
    last_name: str
    display_name: str
    initials: str
    college: Optional[str] = None
    avatar_url: Optional[str] = None
    email_verified: Optional[bool] = None


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=60)
    last_name: Optional[str] = Field(None, max_length=60)
    college: Optional[str] = Field(None, max_length=COLLEGE_MAX_LENGTH)
    avatar_url: Optional[str] = Field(None, max_length=1024)

    @field_validator("first_name")
    @classmethod
    def _first_name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("First name is required")
        return value.strip() if value is not None else None


class AvatarUploadRequest(BaseModel):
    content_type: Literal["image/png", "image/jpeg", "image/webp"] = "image/png"


class AvatarUploadResponse(BaseModel):
    upload_url: str
    avatar_url: str


class CreateRoomRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=ROOM_NAME_MAX_LENGTH)
    starting_point: str = Field(..., min_length=1, max_length=LOCATION_MAX_LENGTH)
    destination: str = Field(..., min_length=1, max_length=LOCATION_MAX_LENGTH)
    passenger_limit: int = Field(..., ge=MIN_PASSENGER_LIMIT, le=MAX_PASSENGER_LIMIT)
    auto_status: bool = False
    expires_in_minutes: Optional[int] = None

    @field_validator("name", "starting_point", "destination")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("expires_in_minutes")
    @classmethod
    def _known_expiration(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in EXPIRATION_CHOICES_MINUTES:
            raise ValueError(
                f"must be one of {', '.join(map(str, EXPIRATION_CHOICES_MINUTES))}"
            )
        return value


class UpdateRoomRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=ROOM_NAME_MAX_LENGTH)
    starting_point: Optional[str] = Field(
        None, min_length=1, max_length=LOCATION_MAX_LENGTH
    )
    destination: Optional[str] = Field(
        None, min_length=1, max_length=LOCATION_MAX_LENGTH
    )
    passenger_limit: Optional[int] = Field(
        None, ge=MIN_PASSENGER_LIMIT, le=MAX_PASSENGER_LIMIT
    )
    auto_status: Optional[bool] = None

    @field_validator("name", "starting_point", "destination")
    @classmethod
    def _not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("must not be blank")
        return value


class RoomResponse(BaseModel):
    id: str
    name: str
    owner_id: str
    owner_name: str
    owner_avatar_url: Optional[str] = None
    participant_ids: list[str]
    starting_point: str
    destination: str
    passenger_limit: int
    auto_status: bool
    status: str
    expires_at: Optional[float] = None
    created_at: float
    updated_at: float
    participant_count: int
    seats_left: int
    is_full: bool
    is_expired: bool
    minutes_remaining: Optional[int] = None
    is_participant: bool
    is_owner: bool


class RiderResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    display_name: str
    initials: str
    college: Optional[str] = None
    avatar_url: Optional[str] = None
    is_owner: bool


class RoomDetailsResponse(BaseModel):
    room: RoomResponse
    riders: list[RiderResponse]


class ListRoomsResponse(BaseModel):
    rooms: list[RoomResponse]


class CoordinatesResponse(BaseModel):
    lat: float
    lng: float


class RouteResponse(BaseModel):
    room_id: str
    origin: CoordinatesResponse
    destination: CoordinatesResponse
    distance_meters: int
    duration_seconds: int
    provider: str
    polyline: Optional[str] = None
    summary: Optional[str] = None
    path: list[CoordinatesResponse]


class ExtractRideDetailsRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=MAX_ASSISTANT_QUERY_LENGTH)


class ExtractRideDetailsResponse(BaseModel):
    name: str
    starting_point: str
    destination: str
    passenger_limit: int


class RouteSuggestionsRequest(BaseModel):
    starting_point: str = Field(..., min_length=1, max_length=LOCATION_MAX_LENGTH)
    destination: str = Field(..., min_length=1, max_length=LOCATION_MAX_LENGTH)
    auto_status: bool = False


class RouteSuggestionsResponse(BaseModel):
    suggested_routes: list[str]
    nearby_destinations: list[str]


class SummarizeRequest(BaseModel):
    destination: str = Field(..., min_length=1, max_length=LOCATION_MAX_LENGTH)
    start_time: str = Field(..., min_length=1, max_length=64)
    number_of_people: int = Field(..., ge=1, le=MAX_PASSENGER_LIMIT)


class SummarizeResponse(BaseModel):
    summary: str


class HealthResponse(BaseModel):
    status: Literal["ok"]
    database: str
    events: str
