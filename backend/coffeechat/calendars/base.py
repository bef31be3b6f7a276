"""
Calendar adapter contract.

The booking core only talks to calendars through this interface. Adapters
return an opaque event reference on creation and accept it back for every
later operation; the core never inspects it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, time
from typing import Any, Mapping, Optional, Sequence


@dataclass(frozen=True)
class Participant:
    principal_id: str
    display_name: str
    email: Optional[str]


class CalendarError(Exception):
    """Base class for calendar adapter failures."""

    kind = "unknown"


class CalendarUnauthorizedError(CalendarError):
    """Missing, revoked or expired credential."""

    kind = "unauthorized"


class CalendarUnavailableError(CalendarError):
    """Provider unreachable, timed out or rate limited."""

    kind = "unavailable"


class CalendarNotFoundError(CalendarError):
    kind = "not_found"


class CalendarUnknownError(CalendarError):
    kind = "unknown"


class CalendarAdapter(ABC):
    """
    Base interface for calendar providers.

    All operations are safe to retry at the caller's discretion and raise a
    CalendarError subclass on failure.
    """

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the adapter is configured to talk to its provider."""

    @abstractmethod
    async def create_event(
        self,
        participants: Sequence[Participant],
        slot_date: date,
        slot_time: time,
        location: str,
        title: str,
        description: str,
        *,
        on_behalf_of: str,
    ) -> str:
        """
        Create an event on the calendar of `on_behalf_of` inviting every participant.

        Returns:
            str: opaque external event reference
        """

    @abstractmethod
    async def update_event(self, ref: str, changes: Mapping[str, Any]) -> None:
        """Apply a partial update to an existing event."""

    @abstractmethod
    async def delete_event(self, ref: str) -> None: ...

    @abstractmethod
    async def annotate_completed(self, ref: str) -> None:
        """Mark the event as having taken place."""

    async def aclose(self) -> None:
        """Release provider resources (connections, clients)."""
