"""Domain Exceptions - typed failures of the reservation engine"""


class ReservationError(Exception):
    """Base class for every failure the engine reports"""
    code = "RESERVATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(ReservationError):
    code = "NOT_FOUND"


class IntervalConflictError(ReservationError):
    code = "INTERVAL_CONFLICT"


class ResourceUnavailableError(ReservationError):
    code = "RESOURCE_UNAVAILABLE"


class InvalidTransitionError(ReservationError):
    code = "INVALID_TRANSITION"


class NotCancellableError(ReservationError):
    code = "NOT_CANCELLABLE"


class TooEarlyError(ReservationError):
    code = "TOO_EARLY"


class ReservationValidationError(ReservationError, ValueError):
    code = "VALIDATION_ERROR"


class StoreUnavailableError(ReservationError):
    """Transient infrastructure failure; safe for the caller to retry with backoff"""
    code = "STORE_UNAVAILABLE"


class AccessDeniedError(ReservationError):
    code = "ACCESS_DENIED"
