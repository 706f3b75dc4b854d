"""
Error taxonomy for the enforcement engine.

Every error the engine raises to a caller derives from FocusLockError and
carries the HTTP status the API layer answers with plus a stable error code.
Messages are safe to show to the user: they never echo another tenant's ids.
"""


class FocusLockError(Exception):
    """Base class for engine errors."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str = "Internal error"):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message, "error_code": self.error_code}


class NotFound(FocusLockError):
    """Task, session or proof does not exist."""

    status_code = 404
    error_code = "not_found"

    def __init__(self, entity: str = "Resource"):
        super().__init__(f"{entity} not found")
        self.entity = entity


class Forbidden(FocusLockError):
    """Caller does not own the resource."""

    status_code = 403
    error_code = "forbidden"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class InvalidTransition(FocusLockError):
    """A state machine rule was violated."""

    status_code = 409
    error_code = "invalid_transition"

    def __init__(self, current: str, target: str | None = None, message: str | None = None):
        if message is None:
            if target is None:
                message = f"Transition not allowed from {current}"
            else:
                message = f"Transition not allowed: {current} -> {target}"
        super().__init__(message)
        self.current = current
        self.target = target


class ValidationError(FocusLockError):
    """Malformed payload."""

    status_code = 422
    error_code = "validation_error"


class DeliveryFailure(FocusLockError):
    """A notification channel could not be reached. Never fatal."""

    status_code = 502
    error_code = "delivery_failure"

    def __init__(self, channel: str, reason: str):
        super().__init__(f"{channel} delivery failed: {reason}")
        self.channel = channel
        self.reason = reason


class StoreUnavailable(FocusLockError):
    """Transient persistence failure."""

    status_code = 503
    error_code = "store_unavailable"

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(message)
