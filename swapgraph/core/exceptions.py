"""
SwapGraph Exception Hierarchy

All exceptions inherit from SwapGraphError for easy catching.
Each class carries a stable `code`; services convert raised errors into
structured results at the operation boundary via to_error().
"""

from typing import Any, Dict, Optional


class SwapGraphError(Exception):
    """Base exception for all SwapGraph errors"""

    code = "INTERNAL"

    def __init__(
        self,
        message:     str,
        details:     Optional[Dict[str, Any]] = None,
        reason_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message     = message
        self.details     = dict(details or {})
        self.reason_code = reason_code

    def to_error(self) -> Dict[str, Any]:
        """Structured error body: {code, message, details{reason_code, ...}}."""
        details = dict(self.details)
        if self.reason_code is not None:
            details["reason_code"] = self.reason_code
        return {
            "code":    self.code,
            "message": self.message,
            "details": details,
        }

    def __str__(self):
        parts = dict(self.details)
        if self.reason_code is not None:
            parts["reason_code"] = self.reason_code
        if parts:
            details_str = ", ".join(f"{k}={v}" for k, v in parts.items())
            return f"{self.message} ({details_str})"
        return self.message


class ValidationError(SwapGraphError):
    """Raised when a request or configuration is malformed"""
    code = "CONSTRAINT_VIOLATION"


class NotFoundError(SwapGraphError):
    """Raised when a proposal, cycle, intent or run is unknown"""
    code = "NOT_FOUND"


class ForbiddenError(SwapGraphError):
    """Raised when an actor touches a record it does not own"""
    code = "FORBIDDEN"


class ConflictError(SwapGraphError):
    """Raised when a write collides with existing state"""
    code = "CONFLICT"


class IdempotencyConflictError(ConflictError):
    """Raised when an idempotency key is reused with a different payload"""
    code = "IDEMPOTENCY_KEY_REUSE_PAYLOAD_MISMATCH"


class ReservationConflictError(ConflictError):
    """Raised when an intent is not reserved for the proposal being accepted"""
    code = "RESERVATION_CONFLICT"


class PreconditionFailedError(SwapGraphError):
    """Raised when a transition is attempted from the wrong state"""
    code = "PRECONDITION_FAILED"


class ExpiredError(SwapGraphError):
    """Raised when a proposal or deposit window has elapsed"""
    code = "EXPIRED"


class IntegrityError(SwapGraphError):
    """Raised when a cryptographic integrity check fails"""
    code = "INTEGRITY"


class JournalError(SwapGraphError):
    """Raised when the event journal cannot be written"""
    code = "INTERNAL"
