"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

import firebase_admin

from backend.config import get_settings
from backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from backend.events import InMemoryRoomEventBus, RedisRoomEventBus, RoomEventBus
from backend.maps import (
    DirectionsClient,
    Geocoder,
    GoogleDirectionsClient,
    NominatimGeocoder,
    StaticGeocoder,
    StraightLineDirections,
)
from backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_event_bus: RoomEventBus | None = None
_geocoder: Geocoder | None = None
_directions_client: DirectionsClient | None = None
_storage_client: StorageClient | None = None


def get_firebase_app() -> firebase_admin.App:
    """Return the default firebase_admin app, initializing it on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        settings = get_settings()
        options = (
            {"projectId": settings.firebase_project_id}
            if settings.firebase_project_id
            else None
        )
        return firebase_admin.initialize_app(options=options)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so room state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _db_client = InMemoryDbClient()
    elif settings.use_firestore:
        from backend.firestore_db import FirestoreDbClient

        get_firebase_app()
        _db_client = FirestoreDbClient()
    elif settings.database_url:
        _db_client = PostgresDbClient(settings.database_url)
    else:
        _db_client = InMemoryDbClient()
    logger.info("Using %s", type(_db_client).__name__)
    return _db_client


def get_event_bus() -> RoomEventBus:
    global _event_bus
    if _event_bus:
        return _event_bus

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _event_bus = RedisRoomEventBus(
            url=settings.redis_url,
            channel_prefix=settings.redis_channel_prefix,
        )
    else:
        _event_bus = InMemoryRoomEventBus()
    return _event_bus


def get_geocoder() -> Geocoder:
    global _geocoder
    if _geocoder:
        return _geocoder

    settings = get_settings()
    if settings.use_in_memory_backends:
        _geocoder = StaticGeocoder()
    else:
        _geocoder = NominatimGeocoder(
            url=settings.nominatim_url,
            user_agent=settings.nominatim_user_agent,
            bias=settings.geocode_bias,
        )
    return _geocoder


def get_directions_client() -> DirectionsClient:
    global _directions_client
    if _directions_client:
        return _directions_client

    settings = get_settings()
    if settings.google_maps_api_key and not settings.use_in_memory_backends:
        _directions_client = GoogleDirectionsClient(
            api_key=settings.google_maps_api_key
        )
    else:
        _directions_client = StraightLineDirections()
    return _directions_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.s3_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.s3_public_base_url,
        )
    return _storage_client
