"""
Geocoding and directions clients for room route display.

Nominatim resolves addresses (its usage policy allows one request per
second); Google Directions computes the driving route when an API key is
configured. Without a key the route falls back to a straight line.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Optional, Protocol

import requests

from backend.errors import GeocodingError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10  # seconds
NOMINATIM_MIN_INTERVAL = 1.0  # seconds between requests
GEOCODE_CACHE_SIZE = 512
EARTH_RADIUS_METERS = 6_371_000
AVERAGE_CITY_SPEED_KMH = 20.0
GOOGLE_DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def as_query(self) -> str:
        return f"{self.lat},{self.lng}"


@dataclass
class RouteInfo:
    origin: Coordinates
    destination: Coordinates
    distance_meters: int
    duration_seconds: int
    provider: str
    polyline: Optional[str] = None
    summary: Optional[str] = None
    path: list[Coordinates] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class Geocoder(Protocol):
    def geocode(self, address: str) -> Optional[Coordinates]:
        ...


class DirectionsClient(Protocol):
    def route(self, origin: Coordinates, destination: Coordinates) -> RouteInfo:
        ...


def haversine_meters(a: Coordinates, b: Coordinates) -> float:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))


class NominatimGeocoder:
    """OpenStreetMap Nominatim search client."""

    def __init__(
        self,
        url: str = "https://nominatim.openstreetmap.org/search",
        user_agent: str = "rideshare-rooms/0.1",
        bias: str | None = None,
        session: requests.Session | None = None,
        cache_size: int = GEOCODE_CACHE_SIZE,
    ):
        self.url = url
        self.user_agent = user_agent
        self.bias = bias
        self.session = session or requests.Session()
        self._lock = threading.Lock()
        self._last_request = 0.0
        self.cache_size = cache_size
        self._cache: OrderedDict[str, Optional[Coordinates]] = OrderedDict()
        self._cache_lock = threading.Lock()

    def _query_for(self, address: str) -> str:
        if self.bias and self.bias.lower() not in address.lower():
            return f"{address}, {self.bias}"
        return address

    def _throttle(self) -> None:
        wait = NOMINATIM_MIN_INTERVAL - (time.monotonic() - self._last_request)
        if wait > 0:
            time.sleep(wait)
        self._last_request = time.monotonic()

    def geocode(self, address: str) -> Optional[Coordinates]:
        key = address.strip().lower()
        if not key:
            return None
        with self._cache_lock:
            if key in self._cache:
                self._cache.move_to_end(key)
                return self._cache[key]
        with self._lock:
            self._throttle()
            try:
                response = self.session.get(
                    self.url,
                    params={"q": self._query_for(address), "format": "json", "limit": 1},
                    headers={"User-Agent": self.user_agent},
                    timeout=REQUEST_TIMEOUT,
                )
                response.raise_for_status()
                results = response.json()
            except (requests.RequestException, ValueError) as e:
                raise GeocodingError(address) from e
        coords = None
        if results:
            coords = Coordinates(lat=float(results[0]["lat"]), lng=float(results[0]["lon"]))
        else:
            logger.info("No geocoding result for %r", address)
        # Least recently used entries go first once the cache is full.
        with self._cache_lock:
            self._cache[key] = coords
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return coords


class StaticGeocoder:
    """In-memory lookup table for development and tests."""

    DEFAULT_PLACES = {
        "vesit": Coordinates(19.0462, 72.8892),
        "chembur station": Coordinates(19.0622, 72.9011),
        "kurla station": Coordinates(19.0656, 72.8790),
        "ghatkopar station": Coordinates(19.0863, 72.9081),
    }

    def __init__(self, places: dict[str, Coordinates] | None = None):
        self.places = {
            k.lower(): v for k, v in (places or self.DEFAULT_PLACES).items()
        }

    def geocode(self, address: str) -> Optional[Coordinates]:
        return self.places.get(address.strip().lower())


class StraightLineDirections:
    """Great-circle route used when no directions provider is configured."""

    def route(self, origin: Coordinates, destination: Coordinates) -> RouteInfo:
        distance = haversine_meters(origin, destination)
        duration = distance / (AVERAGE_CITY_SPEED_KMH * 1000 / 3600)
        return RouteInfo(
            origin=origin,
            destination=destination,
            distance_meters=round(distance),
            duration_seconds=round(duration),
            provider="straight_line",
            path=[origin, destination],
        )


class GoogleDirectionsClient:
    """Google Maps Directions API client (driving mode)."""

    def __init__(
        self,
        api_key: str,
        url: str = GOOGLE_DIRECTIONS_URL,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.url = url
        self.session = session or requests.Session()

    def route(self, origin: Coordinates, destination: Coordinates) -> RouteInfo:
        try:
            response = self.session.get(
                self.url,
                params={
                    "origin": origin.as_query(),
                    "destination": destination.as_query(),
                    "mode": "driving",
                    "key": self.api_key,
                },
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise GeocodingError("directions request failed") from e

        if payload.get("status") != "OK" or not payload.get("routes"):
            logger.warning("Directions API returned status %s", payload.get("status"))
            raise GeocodingError(f"directions status {payload.get('status')}")

        best = payload["routes"][0]
        legs = best.get("legs", [])
        return RouteInfo(
            origin=origin,
            destination=destination,
            distance_meters=sum(leg["distance"]["value"] for leg in legs),
            duration_seconds=sum(leg["duration"]["value"] for leg in legs),
            provider="google",
            polyline=best.get("overview_polyline", {}).get("points"),
            summary=best.get("summary"),
            path=[origin, destination],
        )
