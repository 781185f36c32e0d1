"""
Error taxonomy for the payment core.

Every error carries:
- Error code (for client handling)
- User message (safe to show to callers)
- HTTP status code (for API responses)

Validation and rate-limit errors happen before any external effect.
Gateway errors are terminal (business) or indeterminate (unreachable).
Persistence errors are logged and never surfaced to callers.
"""
from typing import Any, Dict, List, Optional


class VotePayError(Exception):
    """Base exception for all payment core errors."""

    error_code = "internal_error"
    http_status = 500
    default_user_message = "An unexpected error occurred. Please try again later."

    def __init__(self, message: str, user_message: Optional[str] = None, **kwargs: Any):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message
        self.metadata = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "code": self.error_code,
            "message": self.user_message,
            "type": self.__class__.__name__,
        }


class ValidationError(VotePayError):
    """
    Caller input is malformed.

    Always locally recoverable. No external call is made.
    """

    error_code = "validation_error"
    http_status = 400
    default_user_message = "Validation error"

    def __init__(
        self,
        message: str,
        errors: Optional[Dict[str, List[str]]] = None,
        user_message: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, user_message=user_message, **kwargs)
        self.errors = errors or {}


class PhoneValidationError(ValidationError):
    """Raised when a phone number cannot be normalised to 2547XXXXXXXX."""

    def __init__(self, raw_phone: str, attempted: str):
        super().__init__(
            f"Invalid phone number {attempted!r}; expected 2547XXXXXXXX",
            errors={"phoneNumber": ["Invalid phone number format; expected 2547XXXXXXXX"]},
            user_message="Invalid phone number format",
        )
        self.raw_phone = raw_phone
        self.attempted = attempted


class RateLimited(VotePayError):
    """Caller must back off until the window resets."""

    error_code = "rate_limited"
    http_status = 429
    default_user_message = "Too many requests. Please try again shortly."

    def __init__(self, key: str, retry_after: int, reset_time: float, limit: int):
        super().__init__(f"Rate limit exceeded for {key}", key=key)
        self.retry_after = retry_after
        self.reset_time = reset_time
        self.limit = limit


class GatewayBusinessFailure(VotePayError):
    """The gateway declined the payment. Terminal; the message is passed through."""

    error_code = "gateway_declined"
    http_status = 400
    default_user_message = "Payment failed"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, user_message=message or self.default_user_message)
        self.status_code = status_code


class GatewayUnreachable(VotePayError):
    """
    Transport-level failure talking to the gateway.

    Indeterminate: the caller should retry with the same idempotency key.
    """

    error_code = "gateway_unreachable"
    http_status = 502
    default_user_message = "Failed to connect to payment server"

    def __init__(self, message: str, user_message: Optional[str] = None, timed_out: bool = False):
        super().__init__(message, user_message=user_message)
        self.timed_out = timed_out
        if timed_out:
            self.http_status = 504


class PersistenceError(VotePayError):
    """A store write or read failed. Logged, never surfaced as a payment failure."""

    error_code = "persistence_error"


class NotFound(VotePayError):
    """Requested entity does not exist."""

    error_code = "not_found"
    http_status = 404
    default_user_message = "Not found"


class CandidateNotFound(NotFound):
    """Vote credit targeted an unknown candidate."""

    error_code = "candidate_not_found"

    def __init__(self, candidate_id: str):
        super().__init__(f"Candidate {candidate_id} not found", candidate_id=candidate_id)
        self.candidate_id = candidate_id


class InternalError(VotePayError):
    """Catch-all; the public message stays generic."""

    error_code = "internal_error"
    http_status = 500
    default_user_message = "An unexpected error occurred"
