"""Domain exceptions shared by the ride services.

Every error carries the HTTP-equivalent status and a machine readable code so
the API layer can surface enough detail for the client to self-correct.
"""

import functools
import logging
from typing import Any, Dict, Optional

from django.db import DatabaseError

logger = logging.getLogger(__name__)


class RideshareError(Exception):
    """Base class for all ride domain errors."""
    status_code = 400
    error_code = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def detail(self) -> Dict[str, Any]:
        return {}


# ===================== Validation (400) =====================

class RideValidationError(RideshareError):
    """Raised when input is malformed or out of range."""
    error_code = "validation_error"

    def __init__(self, errors: Dict[str, str], message: str = "Invalid input"):
        super().__init__(message)
        self.errors = dict(errors)

    def detail(self):
        return {"errors": self.errors}


class InvalidCoordinateError(RideValidationError):
    """Raised when a latitude/longitude pair is out of range or not a number."""
    error_code = "invalid_coordinate"

    def __init__(self, field: str = "coordinates", message: str = "Invalid coordinates"):
        super().__init__({field: message}, message)


# ===================== Not found (404) =====================

class NotFoundError(RideshareError):
    """Raised when a referenced entity does not exist."""
    status_code = 404
    error_code = "not_found"


class RequestNotFoundError(NotFoundError):
    """Raised when a ride request is absent or no longer open for proposals."""
    error_code = "request_not_found"


class NegotiationNotFoundError(NotFoundError):
    error_code = "negotiation_not_found"


class DriverNotFoundError(NotFoundError):
    error_code = "driver_not_found"


# ===================== Permission (403) =====================

class NotParticipantError(RideshareError):
    """Raised when an actor is neither the rider nor the driver of a negotiation."""
    status_code = 403
    error_code = "not_participant"


# ===================== State conflicts (409) =====================

class StateConflictError(RideshareError):
    """Raised when the current state forbids the operation; re-fetch before retrying."""
    status_code = 409
    error_code = "state_conflict"

    def __init__(self, message: str = "", current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status

    def detail(self):
        return {"current_status": self.current_status}


class NotOpenError(StateConflictError):
    """Raised when a negotiation is already accepted or rejected."""
    error_code = "not_open"


class DuplicateNegotiationError(StateConflictError):
    """Raised when an open negotiation already exists for the request/driver pair."""
    error_code = "duplicate_negotiation"


class SameActorRepeatError(StateConflictError):
    """Raised when an actor tries to counter or accept their own offer."""
    error_code = "same_actor_repeat"


class RequestNotPendingError(StateConflictError):
    """Raised when a ride request already left the pending state."""
    error_code = "request_not_pending"


# ===================== Storage (500) =====================

class StorageFailureError(RideshareError):
    """Raised when the persistence layer fails. Never carries internal detail."""
    status_code = 500
    error_code = "storage_failure"

    def __init__(self, message: str = "Storage is temporarily unavailable"):
        super().__init__(message)


def storage_guard(func):
    """Translate database errors escaping a service call into StorageFailureError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DatabaseError as exc:
            logger.exception("Storage failure in %s", func.__qualname__)
            raise StorageFailureError() from exc
    return wrapper
