from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Mapping, Optional, Protocol, Sequence

from ..models import CalendarCredential, Ranking, Slot, SlotStatus, User


@dataclass(frozen=True)
class SlotFilter:
    status: Optional[SlotStatus] = None
    host_id: Optional[str] = None
    occupant_id: Optional[str] = None


@dataclass(frozen=True)
class QuotaChange:
    """Adjustment of an occupant's active-booking count, applied with a slot write."""

    occupant_id: str
    delta: int
    limit: Optional[int] = None


class SlotRepository(Protocol):
    async def get(self, slot_id: str) -> Slot | None: ...

    async def create(
        self,
        *,
        host_id: str,
        host_display_name: str,
        slot_date: date,
        slot_time: time,
        location: str,
    ) -> Slot: ...

    async def list_slots(self, slot_filter: SlotFilter) -> list[Slot]: ...

    async def count_active(self, occupant_id: str) -> int: ...

    async def compare_and_set(
        self,
        slot_id: str,
        *,
        expected_version: int,
        changes: Mapping[str, Any],
        quota: QuotaChange | None = None,
    ) -> Slot | None:
        """
        Atomically apply `changes` (and `quota`) if the stored version still equals
        `expected_version`. Returns the updated slot, or None when the version moved
        or the slot vanished. Raises CapacityExceededError if the quota limit would
        be crossed; in that case nothing is written.
        """
        ...

    async def delete(self, slot_id: str, *, expected_version: int) -> bool: ...

    async def set_external_ref(self, slot_id: str, *, occupant_id: str, ref: str) -> Slot | None:
        """Store `ref` only while the slot is still booked by `occupant_id`."""
        ...


class RankingRepository(Protocol):
    async def upsert(self, ranker_id: str, candidate_ids: Sequence[str]) -> Ranking: ...

    async def get(self, ranker_id: str) -> Ranking | None: ...

    async def list_all(self) -> list[Ranking]: ...


class ProfileDirectory(Protocol):
    async def get(self, principal_id: str) -> User | None: ...

    async def list_candidate_ids(self) -> list[str]: ...

    async def set_calendar_connection(
        self,
        principal_id: str,
        *,
        connected: bool,
        calendar_email: str | None,
    ) -> None: ...


class CalendarCredentialRepository(Protocol):
    async def get(self, principal_id: str) -> CalendarCredential | None: ...

    async def save(
        self,
        principal_id: str,
        *,
        access_token: str,
        calendar_email: str | None,
        expires_at: datetime | None,
    ) -> CalendarCredential: ...

    async def delete(self, principal_id: str) -> None: ...
