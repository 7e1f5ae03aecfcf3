"""
Typed errors raised by the MedTrack helpers.

Each error carries the HTTP status it maps to; ``medtrack.main`` renders
them as ``{"error": message}``.
"""

from fastapi import status


class MedTrackError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(MedTrackError):
    """A referenced id does not exist."""
    status_code = status.HTTP_404_NOT_FOUND


class BadRequestError(MedTrackError):
    """The request would violate a business invariant."""
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(MedTrackError):
    """Missing, malformed or expired credentials."""
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(MedTrackError):
    """Authenticated, but not allowed to do this."""
    status_code = status.HTTP_403_FORBIDDEN
