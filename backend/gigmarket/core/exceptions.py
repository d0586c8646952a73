"""
Domain error taxonomy shared by the order lifecycle engine and its adapters.

Every error carries a stable ``code``, the HTTP status the API layer maps it
to, and a ``context`` dictionary naming the field or rule that failed so the
caller can act on it.
"""

from typing import Any


class MarketplaceError(Exception):
    """Base exception for marketplace domain errors."""

    code = "marketplace_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.context,
        }


class NotFoundError(MarketplaceError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"
    status_code = 404


class ForbiddenError(MarketplaceError):
    """Raised when the actor's role or ownership does not permit an action."""

    code = "forbidden"
    status_code = 403


class InvalidArgumentError(MarketplaceError):
    """Raised when caller input is malformed or out of range."""

    code = "invalid_argument"
    status_code = 400


class InvalidStatusError(InvalidArgumentError):
    """Raised for unknown statuses or transitions outside the lifecycle graph."""

    code = "invalid_status"


class InvalidPackageError(InvalidArgumentError):
    """Raised when a package name is not offered by the service."""

    code = "invalid_package"


class SelfOrderError(InvalidArgumentError):
    """Raised when a seller attempts to purchase their own service."""

    code = "self_order"


class RevisionLimitExceededError(InvalidArgumentError):
    """Raised when a revision is requested after the allowance is used up."""

    code = "revision_limit_exceeded"


class TerminalStateError(MarketplaceError):
    """Raised when a Completed or Cancelled order is mutated."""

    code = "terminal_state"
    status_code = 409


class AlreadyRequestedError(MarketplaceError):
    """Raised when a one-at-a-time request is filed while one is pending."""

    code = "already_requested"
    status_code = 409


class AlreadyReviewedError(MarketplaceError):
    """Raised when a buyer reviews the same order twice."""

    code = "already_reviewed"
    status_code = 409


class ConflictError(MarketplaceError):
    """Raised when a concurrent mutation of the same order wins the race."""

    code = "conflict"
    status_code = 409
