"""Error taxonomy shared by the request, offer and matching services."""


class DeliveryServiceError(Exception):
    """Base class; carries a machine-readable code and an HTTP status."""
    code = "delivery_error"
    http_status = 400

    def __init__(self, message: str = "", code: str = None, details=None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code:
            self.code = code


class ValidationError(DeliveryServiceError):
    """Raised for malformed or out-of-range input. Nothing has been written."""
    code = "validation_error"
    http_status = 400


class NotFoundError(DeliveryServiceError):
    """Raised when a request or offer id does not exist."""
    code = "not_found"
    http_status = 404


class ConflictError(DeliveryServiceError):
    """Raised when the record is no longer in the state the operation needs."""
    code = "conflict"
    http_status = 409


class AuthorizationError(DeliveryServiceError):
    """Raised when the caller does not own the request or offer."""
    code = "forbidden"
    http_status = 403


class ExternalServiceError(DeliveryServiceError):
    """Raised by external collaborators (trip directory). Never user-facing from matching."""
    code = "external_service_error"
    http_status = 502


# deadlock_detected, serialization_failure
LOCK_CONFLICT_SQLSTATES = {"40P01", "40001"}


def is_lock_conflict(exc: Exception) -> bool:
    """True when a database error was raised because a concurrent transaction won a lock."""
    cause = exc.__cause__
    code = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    return code in LOCK_CONFLICT_SQLSTATES
