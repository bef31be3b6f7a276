"""
Domain error taxonomy. Routers map these onto HTTP responses; everything
below the router layer raises them unchanged.
"""

from dataclasses import dataclass


class DomainError(Exception):
    """Base class for errors surfaced to the caller."""

    code = "domain_error"


class ValidationError(DomainError):
    """Malformed input, rejected before any mutation."""

    code = "validation_error"


class NotFoundError(DomainError):
    code = "not_found"


class ConflictError(DomainError):
    """State-machine rule violated, including a lost booking race."""

    code = "slot_unavailable"


class ForbiddenError(DomainError):
    code = "forbidden"


class CapacityExceededError(DomainError):
    """The occupant already holds the maximum number of active bookings."""

    code = "capacity_exceeded"


class UnavailableError(DomainError):
    """Transient infrastructure failure. Safe to retry after re-fetching state."""

    code = "unavailable"


@dataclass(frozen=True)
class ExternalSyncFailed:
    """Advisory record of a calendar mirroring failure. Never raised."""

    slot_id: str
    operation: str
    reason: str
    detail: str
