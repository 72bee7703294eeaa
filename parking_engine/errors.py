"""
Typed failures raised by the parking engine.

Every failure carries a stable ``kind`` and a human-readable message; the HTTP
layer turns the kind into a status code through ``ERROR_STATUS_RULES``.
"""
from enum import Enum

from fastapi import HTTPException


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    PERMISSION_DENIED = "permission_denied"
    UNAUTHENTICATED = "unauthenticated"
    UPSTREAM_FAILURE = "upstream_failure"


class ParkingError(Exception):
    kind = ErrorKind.UPSTREAM_FAILURE
    default_message = "Parking operation failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# Not found

class NotFound(ParkingError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Record not found"


class SpotNotFound(NotFound):
    default_message = "Parking spot not found"


class SessionNotFound(NotFound):
    default_message = "Session not found"


class ReservationNotFound(NotFound):
    default_message = "Reservation not found"


class RatesNotFound(NotFound):
    default_message = "Parking lot not found"


# Invalid input

class InvalidInput(ParkingError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "Invalid input"


class InvalidPlate(InvalidInput):
    default_message = "Valid license plate is required"


class InvalidVehicleType(InvalidInput):
    default_message = "Unknown vehicle type"


class InvalidTimeRange(InvalidInput):
    default_message = "End time must not be before start time"


class ReservationInPast(InvalidInput):
    default_message = "Cannot create reservation in the past"


# Conflicts

class Conflict(ParkingError):
    kind = ErrorKind.CONFLICT
    default_message = "Conflicting operation"


class SpotNotAvailable(Conflict):
    default_message = "Parking spot is not available"


class SessionAlreadyActive(Conflict):
    default_message = "Spot already has an active session"


class SessionAlreadyClosed(Conflict):
    default_message = "Session already completed"


class ReservationConflict(Conflict):
    default_message = "Spot is already reserved for this time period"


class ReservationAlreadyCancelled(Conflict):
    default_message = "Reservation is already cancelled"


class InvalidTransition(Conflict):
    default_message = "Invalid spot status transition"


# Access

class PermissionDenied(ParkingError):
    kind = ErrorKind.PERMISSION_DENIED
    default_message = "Permission denied"


class Unauthenticated(ParkingError):
    kind = ErrorKind.UNAUTHENTICATED
    default_message = "Authentication required"


class UpstreamFailure(ParkingError):
    kind = ErrorKind.UPSTREAM_FAILURE
    default_message = "Upstream service failed"


# (kind, status_code). First match wins; unknown kinds fall back to 500.
ERROR_STATUS_RULES = [
    (ErrorKind.NOT_FOUND, 404),
    (ErrorKind.INVALID_INPUT, 422),
    (ErrorKind.CONFLICT, 409),
    (ErrorKind.PERMISSION_DENIED, 403),
    (ErrorKind.UNAUTHENTICATED, 401),
    (ErrorKind.UPSTREAM_FAILURE, 502),
]


def status_code_for(kind: ErrorKind) -> int:
    for rule_kind, status_code in ERROR_STATUS_RULES:
        if rule_kind == kind:
            return status_code
    return 500


def parking_error_to_http(exc: ParkingError) -> HTTPException:
    """Map a ParkingError into an HTTPException carrying its kind and message."""
    return HTTPException(
        status_code=status_code_for(exc.kind),
        detail={"kind": exc.kind.value, "message": exc.message},
    )
