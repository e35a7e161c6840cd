"""Engine error taxonomy.

Every failure the engine surfaces to a caller is one of these. The HTTP
layer maps them to status codes in ``middleware.error_handler``.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""

    status_code: int = 400
    code: str = "engine_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class NotFoundError(EngineError):
    """Requested entity does not exist."""

    status_code = 404
    code = "not_found"


class SessionNotFoundError(NotFoundError):
    """Session not found or already ended."""

    code = "session_not_found"


class BadgeNotFoundError(NotFoundError):
    """Badge not found."""

    code = "badge_not_found"


class ConflictError(EngineError):
    """Request conflicts with the current state."""

    status_code = 409
    code = "conflict"

    def __init__(self, message: str | None = None, *, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class AlreadyLikedError(ConflictError):
    """Already liked this user this week."""

    code = "already_liked"


class InvalidInputError(EngineError):
    """Malformed or out-of-range input."""

    status_code = 422
    code = "invalid_input"


class InvalidDimensionError(InvalidInputError):
    """Unknown stats dimension."""

    code = "invalid_dimension"


class TransientError(EngineError):
    """Storage contention persisted after internal retries."""

    status_code = 503
    code = "transient"
