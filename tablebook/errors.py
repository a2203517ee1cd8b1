class BookingError(Exception):
    """Base class for every error the reservation core surfaces to callers."""

    status = 500
    code = "BOOKING_ERROR"

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(BookingError):
    """A field or argument failed validation. Fix the input, never retry."""

    status = 422
    code = "VALIDATION_ERROR"

    def __init__(self, reason: str, field: str | None = None):
        super().__init__(reason, details=field)
        self.reason = reason
        self.field = field


class InvalidArgument(ValidationError):
    pass


class NotFound(BookingError):
    status = 404
    code = "NOT_FOUND"


class Conflict(BookingError):
    """Table already occupied or slot already taken."""

    status = 409
    code = "CONFLICT"


class StorageFailure(BookingError):
    """Datastore unavailable or transaction aborted. Callers may retry with backoff."""

    status = 503
    code = "STORAGE_FAILURE"
