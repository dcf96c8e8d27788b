"""
HTTP routes for the ride-sharing backend API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from backend import auth
from backend import rooms as room_service
from backend.auth import get_current_user
from backend.config import Settings, get_settings
from backend.db import DbClient, new_id
from backend.dependencies import (
    get_db_client,
    get_directions_client,
    get_event_bus,
    get_geocoder,
    get_storage_client,
)
from backend.errors import (
    AssistantUnavailableError,
    AuthError,
    DuplicateEmailError,
    GeocodingError,
    InvalidRoomUpdateError,
    NotRoomOwnerError,
    OwnerCannotLeaveError,
    RoomClosedError,
    RoomError,
    RoomFullError,
    RoomNotFoundError,
)
from backend.events import RoomEventBus, format_sse
from backend.maps import DirectionsClient, Geocoder
from backend.schemas import (
    AvatarUploadRequest,
    AvatarUploadResponse,
    CreateRoomRequest,
    ExtractRideDetailsRequest,
    ExtractRideDetailsResponse,
    FederatedLoginRequest,
    HealthResponse,
    ListRoomsResponse,
    LoginRequest,
    RiderResponse,
    RoomDetailsResponse,
    RoomResponse,
    RouteResponse,
    RouteSuggestionsRequest,
    RouteSuggestionsResponse,
    SignupRequest,
    SummarizeRequest,
    SummarizeResponse,
    TokenResponse,
    UpdateProfileRequest,
    UpdateRoomRequest,
    UserProfileResponse,
    VerifyEmailRequest,
)
from backend.storage import StorageClient, avatar_path
from models import ride_assistant
from shared.constants import DEFAULT_DISCOVERY_LIMIT, MAX_DISCOVERY_LIMIT
from shared.types import Room, RoomStatus, UserProfile

logger = logging.getLogger(__name__)

router = APIRouter()

ASSISTANT_ERROR_DETAIL = "Something went wrong with the assistant. Please try again."
TERMINAL_EVENTS = {"deleted", "completed", "expired"}


def _room_http_error(error: RoomError) -> HTTPException:
    if isinstance(error, RoomNotFoundError):
        return HTTPException(status_code=404, detail="Room not found")
    if isinstance(error, RoomFullError):
        return HTTPException(status_code=409, detail="Ride is full")
    if isinstance(error, RoomClosedError):
        return HTTPException(status_code=409, detail="Room is no longer open")
    if isinstance(error, OwnerCannotLeaveError):
        return HTTPException(
            status_code=409, detail="The owner cannot leave their own room"
        )
    if isinstance(error, NotRoomOwnerError):
        return HTTPException(
            status_code=403, detail="Only the room owner can do this"
        )
    if isinstance(error, InvalidRoomUpdateError):
        return HTTPException(status_code=400, detail=str(error))
    return HTTPException(status_code=400, detail="Could not update the room")


def _profile_response(user: UserProfile, private: bool = False) -> UserProfileResponse:
    data = user.as_public_dict()
    if private:
        data["email"] = user.email
        data["email_verified"] = user.email_verified
    return UserProfileResponse(**data)


def _room_response(room: Room, viewer: UserProfile | None = None) -> RoomResponse:
    return RoomResponse(**room_service.room_view(room, viewer))


def _token_response(user: UserProfile) -> TokenResponse:
    return TokenResponse(
        token=auth.create_access_token(user.id, user.email), user_id=user.id
    )


# ---------------------- Auth ----------------------
@router.post(
    "/auth/signup", response_model=UserProfileResponse, status_code=201
)
def signup(
    payload: SignupRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    """
    Create an unverified account and send the verification link.
    """
    if not auth.email_allowed(payload.email, settings.allowed_email_domain):
        raise HTTPException(
            status_code=400,
            detail=(
                f"You must use a valid '@{settings.allowed_email_domain}' "
                "email address to access this service."
            ),
        )
    if len(payload.password) < settings.min_password_length:
        raise HTTPException(
            status_code=400,
            detail=(
                "Your password must be at least "
                f"{settings.min_password_length} characters long."
            ),
        )
    first_name, last_name = auth.split_full_name(payload.full_name)
    creds = auth.hash_password(payload.password)
    profile = UserProfile(
        id=new_id(),
        email=payload.email,
        first_name=first_name,
        last_name=last_name,
        college=(payload.college or "").strip() or None,
        password_hash=creds["hash"],
        password_salt=creds["salt"],
    )
    try:
        user = db.create_user(profile)
    except DuplicateEmailError:
        raise HTTPException(
            status_code=409,
            detail="An account with this email already exists. Please log in instead.",
        )
    auth.send_verification_link(user)
    return _profile_response(user, private=True)


@router.post("/auth/verify-email", response_model=UserProfileResponse)
def verify_email(payload: VerifyEmailRequest, db: DbClient = Depends(get_db_client)):
    try:
        token = auth.decode_verification_token(payload.token)
    except AuthError:
        raise HTTPException(status_code=400, detail="Invalid or expired verification link")
    user = db.get_user(token.sub)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not user.email_verified:
        user = db.update_user(user.id, email_verified=True)
    return _profile_response(user, private=True)


@router.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: DbClient = Depends(get_db_client)):
    user = db.get_user_by_email(payload.email)
    if (
        not user
        or not user.password_hash
        or not auth.verify_password(payload.password, user.password_salt, user.password_hash)
    ):
        raise HTTPException(
            status_code=401,
            detail="The email or password you entered is incorrect.",
        )
    if not user.email_verified:
        raise HTTPException(
            status_code=403,
            detail="You must verify your email address before logging in.",
        )
    return _token_response(user)


@router.post("/auth/federated", response_model=TokenResponse)
def federated_login(
    payload: FederatedLoginRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    try:
        identity = auth.verify_federated_token(payload.id_token)
    except AuthError:
        raise HTTPException(status_code=401, detail="Invalid federated credentials")
    if not auth.email_allowed(identity.email, settings.allowed_email_domain):
        raise HTTPException(
            status_code=400,
            detail=f"You must use a valid '@{settings.allowed_email_domain}' account.",
        )
    if not identity.email_verified:
        raise HTTPException(status_code=403, detail="Email not verified")

    user = db.get_user(identity.uid) or db.get_user_by_email(identity.email)
    if user is None:
        first_name, last_name = auth.split_full_name(identity.name or "")
        user = db.create_user(
            UserProfile(
                id=identity.uid,
                email=identity.email,
                first_name=first_name or identity.email.split("@")[0],
                last_name=last_name,
                avatar_url=identity.picture,
                email_verified=True,
            )
        )
        logger.info("Created federated user %s", user.id)
    elif not user.email_verified or (identity.picture and not user.avatar_url):
        user = db.update_user(
            user.id,
            email_verified=True,
            avatar_url=user.avatar_url or identity.picture,
        )
    return _token_response(user)


# ---------------------- Users ----------------------
@router.get("/users/me", response_model=UserProfileResponse)
def read_me(user: UserProfile = Depends(get_current_user)):
    return _profile_response(user, private=True)


@router.patch("/users/me", response_model=UserProfileResponse)
def update_me(
    payload: UpdateProfileRequest,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    changes = payload.model_dump(exclude_none=True)
    if changes:
        user = db.update_user(user.id, **changes)
    return _profile_response(user, private=True)


@router.post("/users/me/avatar", response_model=AvatarUploadResponse)
def request_avatar_upload(
    payload: AvatarUploadRequest,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    path = avatar_path(user.id, payload.content_type)
    upload_url = storage.presign_put(path, payload.content_type, expires_in=900)
    avatar_url = storage.public_url(path)
    db.update_user(user.id, avatar_url=avatar_url)
    return AvatarUploadResponse(upload_url=upload_url, avatar_url=avatar_url)


@router.get("/users/{user_id}", response_model=UserProfileResponse)
def read_user(
    user_id: str,
    _: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    user = db.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return _profile_response(user)


# ---------------------- Rooms ----------------------
@router.post("/rooms", response_model=RoomResponse, status_code=201)
def create_room(
    payload: CreateRoomRequest,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    room = room_service.create_room(
        db,
        user,
        name=payload.name,
        starting_point=payload.starting_point,
        destination=payload.destination,
        passenger_limit=payload.passenger_limit,
        auto_status=payload.auto_status,
        expires_in_minutes=payload.expires_in_minutes,
    )
    return _room_response(room, user)


@router.get("/rooms", response_model=ListRoomsResponse)
def list_rooms(
    starting_point: str | None = Query(None, max_length=200),
    destination: str | None = Query(None, max_length=200),
    include_full: bool = Query(False),
    limit: int = Query(DEFAULT_DISCOVERY_LIMIT, ge=1, le=MAX_DISCOVERY_LIMIT),
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    rooms = room_service.discover_rooms(
        db,
        starting_point=starting_point,
        destination=destination,
        include_full=include_full,
        limit=limit,
    )
    return ListRoomsResponse(rooms=[_room_response(r, user) for r in rooms])


@router.get("/rooms/mine", response_model=ListRoomsResponse)
def list_my_rooms(
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    """Rooms the caller created or joined, in any status."""
    rooms = db.list_rooms_for_participant(user.id)
    return ListRoomsResponse(rooms=[_room_response(r, user) for r in rooms])


@router.get("/rooms/{room_id}", response_model=RoomDetailsResponse)
def get_room(
    room_id: str,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    room = db.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    riders = [RiderResponse(**r) for r in room_service.list_riders(db, room)]
    return RoomDetailsResponse(room=_room_response(room, user), riders=riders)


@router.patch("/rooms/{room_id}", response_model=RoomResponse)
def update_room(
    room_id: str,
    payload: UpdateRoomRequest,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    bus: RoomEventBus = Depends(get_event_bus),
):
    try:
        room = room_service.update_room(
            db, bus, room_id, user, **payload.model_dump(exclude_none=True)
        )
    except RoomError as e:
        raise _room_http_error(e)
    return _room_response(room, user)


@router.delete("/rooms/{room_id}", status_code=204)
def delete_room(
    room_id: str,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    bus: RoomEventBus = Depends(get_event_bus),
):
    try:
        room_service.delete_room(db, bus, room_id, user)
    except RoomError as e:
        raise _room_http_error(e)


@router.post("/rooms/{room_id}/join", response_model=RoomResponse)
def join_room(
    room_id: str,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    bus: RoomEventBus = Depends(get_event_bus),
):
    try:
        room = room_service.join_room(db, bus, room_id, user)
    except RoomError as e:
        raise _room_http_error(e)
    return _room_response(room, user)


@router.post("/rooms/{room_id}/leave", response_model=RoomResponse)
def leave_room(
    room_id: str,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    bus: RoomEventBus = Depends(get_event_bus),
):
    try:
        room = room_service.leave_room(db, bus, room_id, user)
    except RoomError as e:
        raise _room_http_error(e)
    return _room_response(room, user)


@router.post("/rooms/{room_id}/complete", response_model=RoomResponse)
def complete_room(
    room_id: str,
    user: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    bus: RoomEventBus = Depends(get_event_bus),
):
    try:
        room = room_service.complete_room(db, bus, room_id, user)
    except RoomError as e:
        raise _room_http_error(e)
    return _room_response(room, user)


@router.get("/rooms/{room_id}/route", response_model=RouteResponse)
def room_route(
    room_id: str,
    _: UserProfile = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    geocoder: Geocoder = Depends(get_geocoder),
    directions: DirectionsClient = Depends(get_directions_client),
):
    room = db.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    try:
        origin = geocoder.geocode(room.starting_point)
        destination = geocoder.geocode(room.destination)
        if origin is None or destination is None:
            raise HTTPException(
                status_code=422, detail="Could not find one of the locations on the map"
            )
        route = directions.route(origin, destination)
    except GeocodingError as e:
        logger.warning("Route lookup failed for room %s: %s", room_id, e)
        raise HTTPException(status_code=502, detail="Map service unavailable")
    return RouteResponse(room_id=room_id, **route.as_dict())


@router.get("/rooms/{room_id}/events")
def room_events(
    room_id: str,
    db: DbClient = Depends(get_db_client),
    bus: RoomEventBus = Depends(get_event_bus),
    settings: Settings = Depends(get_settings),
):
    """
    Server-sent events stream of room snapshots. The first event is the
    current state; the stream ends once the room is completed, expired or
    deleted.
    """
    # Subscribe before reading the snapshot so no change falls in between.
    subscription = bus.subscribe(room_id)
    room = db.get_room(room_id)
    if not room:
        subscription.close()
        raise HTTPException(status_code=404, detail="Room not found")

    def stream():
        try:
            yield format_sse(room_service.room_view(room))
            if room.status != RoomStatus.OPEN:
                return
            while True:
                payload = subscription.get(timeout=settings.event_keepalive_seconds)
                if payload is None:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(payload)
                if payload.get("event") in TERMINAL_EVENTS:
                    return
        finally:
            subscription.close()

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ---------------------- Assistant ----------------------
@router.post(
    "/assistant/extract-ride-details", response_model=ExtractRideDetailsResponse
)
def extract_ride_details(
    payload: ExtractRideDetailsRequest,
    _: UserProfile = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    try:
        details = ride_assistant.extract_ride_details(
            payload.query, api_key=settings.gemini_api_key, model=settings.gemini_model
        )
    except AssistantUnavailableError:
        raise HTTPException(status_code=502, detail=ASSISTANT_ERROR_DETAIL)
    return ExtractRideDetailsResponse(**details.model_dump())


@router.post(
    "/assistant/route-suggestions", response_model=RouteSuggestionsResponse
)
def route_suggestions(
    payload: RouteSuggestionsRequest,
    _: UserProfile = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    try:
        suggestions = ride_assistant.suggest_routes(
            payload.starting_point,
            payload.destination,
            payload.auto_status,
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
        )
    except AssistantUnavailableError:
        raise HTTPException(status_code=502, detail=ASSISTANT_ERROR_DETAIL)
    return RouteSuggestionsResponse(**suggestions.model_dump())


@router.post("/assistant/summarize", response_model=SummarizeResponse)
def summarize(
    payload: SummarizeRequest,
    _: UserProfile = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    try:
        summary = ride_assistant.summarize_sharing_details(
            payload.destination,
            payload.start_time,
            payload.number_of_people,
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
        )
    except AssistantUnavailableError:
        raise HTTPException(status_code=502, detail=ASSISTANT_ERROR_DETAIL)
    return SummarizeResponse(summary=summary)


# ---------------------- Health ----------------------
@router.get("/health", response_model=HealthResponse)
def health(
    db: DbClient = Depends(get_db_client),
    bus: RoomEventBus = Depends(get_event_bus),
):
    return HealthResponse(
        status="ok", database=type(db).__name__, events=type(bus).__name__
    )
