"""
Domain exceptions raised by the service layer and translated to HTTP errors
by the routes.
"""

from __future__ import annotations


class RoomError(Exception):
    """Base class for room membership and lifecycle failures."""


class RoomNotFoundError(RoomError):
    pass


class RoomFullError(RoomError):
    pass


class RoomClosedError(RoomError):
    """The room is completed, expired or otherwise no longer accepting riders."""


class OwnerCannotLeaveError(RoomError):
    pass


class NotRoomOwnerError(RoomError):
    pass


class InvalidRoomUpdateError(RoomError):
    pass


class UserNotFoundError(Exception):
    pass


class DuplicateEmailError(Exception):
    pass


class AuthError(Exception):
    """Credentials or tokens could not be validated."""


class GeocodingError(Exception):
    """An address could not be resolved to coordinates."""


class AssistantUnavailableError(Exception):
    """The hosted language model did not return a usable structured response."""
