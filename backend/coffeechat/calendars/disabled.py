from datetime import date, time
from typing import Any, Mapping, Sequence

from .base import CalendarAdapter, CalendarUnavailableError, Participant


class DisabledCalendarAdapter(CalendarAdapter):
    """Adapter used when no calendar provider is configured. Never ready."""

    def is_ready(self) -> bool:
        return False

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
        raise CalendarUnavailableError("calendar sync is disabled")

    async def update_event(self, ref: str, changes: Mapping[str, Any]) -> None:
        raise CalendarUnavailableError("calendar sync is disabled")

    async def delete_event(self, ref: str) -> None:
        raise CalendarUnavailableError("calendar sync is disabled")

    async def annotate_completed(self, ref: str) -> None:
        raise CalendarUnavailableError("calendar sync is disabled")
