"""
Relay error taxonomy.

Every failure the relay can report before streaming starts is one of these.
The FastAPI exception handler turns them into ``{"error": ..., "details": ...}``
JSON bodies with the matching status code.
"""
from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base class for errors reported to the caller as a JSON payload."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class BadRequest(RelayError):
    """Malformed input. Not retried."""
    status_code = 400
    default_message = "Bad request"


class Unauthorized(RelayError):
    """Missing or rejected bearer credential."""
    status_code = 401
    default_message = "Unauthorized"


class PaymentRequired(RelayError):
    """Provider account out of funds. Terminal until the account is funded."""
    status_code = 402
    default_message = "Payment required. Please add funds to your OpenAI account."


class NotFound(RelayError):
    """Unknown conversation, or one owned by somebody else."""
    status_code = 404
    default_message = "Conversation not found"


class RateLimited(RelayError):
    """Provider rate limit hit. Caller should back off and retry."""
    status_code = 429
    default_message = "Rate limit exceeded. Please try again later."


class InternalError(RelayError):
    status_code = 500
    default_message = "Internal server error"


class UpstreamError(RelayError):
    status_code = 500
    default_message = "OpenAI API error"


def error_for_upstream_status(status_code: int, body: str = "") -> RelayError:
    """Map a non-success provider status to the error returned to the caller."""
    if status_code == 429:
        return RateLimited()
    if status_code == 402:
        return PaymentRequired()
    return UpstreamError(details=body or None)
