import asyncio
from datetime import date, datetime, time, timezone
from typing import Any, Mapping, Optional, Sequence

import pytest
from coffeechat.calendars.base import CalendarAdapter, Participant
from coffeechat.domain.errors import CapacityExceededError
from coffeechat.domain.repositories import QuotaChange, SlotFilter
from coffeechat.models import Ranking, Role, Slot, SlotStatus, User

_SLOT_FIELDS = (
    "id",
    "host_id",
    "host_display_name",
    "date",
    "time",
    "location",
    "status",
    "occupant_id",
    "occupant_display_name",
    "external_event_ref",
    "version",
    "created_at",
    "updated_at",
)


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _clone(slot: Slot) -> Slot:
    return Slot(**{name: getattr(slot, name) for name in _SLOT_FIELDS})


class FakeSlotRepo:
    """In-memory slot store with the same compare-and-set contract as the SQL one.

    Every call yields to the event loop first so concurrent callers interleave
    between their read and their conditional write.
    """

    def __init__(self) -> None:
        self.slots: dict[str, Slot] = {}
        self.quota: dict[str, int] = {}
        self.attach_error: Optional[Exception] = None
        self.cas_calls = 0

    async def get(self, slot_id: str) -> Slot | None:
        await asyncio.sleep(0)
        stored = self.slots.get(slot_id)
        return _clone(stored) if stored is not None else None

    async def create(
        self,
        *,
        host_id: str,
        host_display_name: str,
        slot_date: date,
        slot_time: time,
        location: str,
    ) -> Slot:
        now = _utc_now_naive()
        slot = Slot(
            id=f"slot-{len(self.slots) + 1}",
            host_id=host_id,
            host_display_name=host_display_name,
            date=slot_date,
            time=slot_time,
            location=location,
            status=SlotStatus.AVAILABLE,
            occupant_id=None,
            occupant_display_name=None,
            external_event_ref=None,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.slots[slot.id] = slot
        return _clone(slot)

    async def list_slots(self, slot_filter: SlotFilter) -> list[Slot]:
        rows = [
            s
            for s in self.slots.values()
            if (slot_filter.status is None or s.status == slot_filter.status)
            and (slot_filter.host_id is None or s.host_id == slot_filter.host_id)
            and (slot_filter.occupant_id is None or s.occupant_id == slot_filter.occupant_id)
        ]
        rows.sort(key=lambda s: (s.date, s.time, s.id))
        return [_clone(s) for s in rows]

    async def count_active(self, occupant_id: str) -> int:
        await asyncio.sleep(0)
        return sum(1 for s in self.slots.values() if s.occupant_id == occupant_id and s.status == SlotStatus.BOOKED)

    async def compare_and_set(
        self,
        slot_id: str,
        *,
        expected_version: int,
        changes: Mapping[str, Any],
        quota: QuotaChange | None = None,
    ) -> Slot | None:
        await asyncio.sleep(0)
        self.cas_calls += 1
        stored = self.slots.get(slot_id)
        if stored is None or stored.version != expected_version:
            return None
        if quota is not None:
            updated = self.quota.get(quota.occupant_id, 0) + quota.delta
            if quota.delta > 0 and quota.limit is not None and updated > quota.limit:
                raise CapacityExceededError("maximum active bookings reached")
            self.quota[quota.occupant_id] = max(updated, 0)
        for name, value in changes.items():
            setattr(stored, name, value)
        stored.version += 1
        stored.updated_at = _utc_now_naive()
        return _clone(stored)

    async def delete(self, slot_id: str, *, expected_version: int) -> bool:
        await asyncio.sleep(0)
        stored = self.slots.get(slot_id)
        if stored is None or stored.version != expected_version:
            return False
        del self.slots[slot_id]
        return True

    async def set_external_ref(self, slot_id: str, *, occupant_id: str, ref: str) -> Slot | None:
        await asyncio.sleep(0)
        if self.attach_error is not None:
            raise self.attach_error
        stored = self.slots.get(slot_id)
        if stored is None or stored.status != SlotStatus.BOOKED or stored.occupant_id != occupant_id:
            return None
        stored.external_event_ref = ref
        stored.version += 1
        return _clone(stored)

    def put(self, **overrides: Any) -> Slot:
        """Insert a slot directly, bypassing the registry."""
        now = _utc_now_naive()
        fields: dict[str, Any] = {
            "id": f"slot-{len(self.slots) + 1}",
            "host_id": "host-1",
            "host_display_name": "Hannah Host",
            "date": date(2025, 1, 10),
            "time": time(14, 0),
            "location": "Main Library",
            "status": SlotStatus.AVAILABLE,
            "occupant_id": None,
            "occupant_display_name": None,
            "external_event_ref": None,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        slot = Slot(**fields)
        self.slots[slot.id] = slot
        if slot.status == SlotStatus.BOOKED and slot.occupant_id:
            self.quota[slot.occupant_id] = self.quota.get(slot.occupant_id, 0) + 1
        return _clone(slot)


class FakeDirectory:
    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.error: Optional[Exception] = None

    def add(
        self,
        user_id: str,
        *,
        name: str,
        role: Role = Role.RUSHEE,
        email: Optional[str] = None,
        calendar_connected: bool = False,
    ) -> User:
        now = _utc_now_naive()
        user = User(
            id=user_id,
            display_name=name,
            email=email,
            role=role,
            calendar_connected=calendar_connected,
            calendar_email=None,
            created_at=now,
            updated_at=now,
        )
        self.users[user_id] = user
        return user

    async def get(self, principal_id: str) -> User | None:
        if self.error is not None:
            raise self.error
        return self.users.get(principal_id)

    async def list_candidate_ids(self) -> list[str]:
        return sorted(u.id for u in self.users.values() if u.role == Role.RUSHEE)

    async def set_calendar_connection(self, principal_id: str, *, connected: bool, calendar_email: str | None) -> None:
        user = self.users.get(principal_id)
        if user is not None:
            user.calendar_connected = connected
            user.calendar_email = calendar_email


class FakeCalendar(CalendarAdapter):
    def __init__(self) -> None:
        self.ready = True
        self.fail_with: Optional[Exception] = None
        self.delay: float = 0.0
        self.calls: list[tuple[str, Any]] = []
        self._next = 0

    def is_ready(self) -> bool:
        return self.ready

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

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
        self.calls.append(("create", {"participants": list(participants), "title": title, "on_behalf_of": on_behalf_of}))
        await self._maybe_fail()
        self._next += 1
        return f"{on_behalf_of}:evt{self._next}"

    async def update_event(self, ref: str, changes: Mapping[str, Any]) -> None:
        self.calls.append(("update", ref))
        await self._maybe_fail()

    async def delete_event(self, ref: str) -> None:
        self.calls.append(("delete", ref))
        await self._maybe_fail()

    async def annotate_completed(self, ref: str) -> None:
        self.calls.append(("annotate", ref))
        await self._maybe_fail()

    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]


class FakeRankingRepo:
    def __init__(self) -> None:
        self.rankings: dict[str, Ranking] = {}

    async def upsert(self, ranker_id: str, candidate_ids: Sequence[str]) -> Ranking:
        ranking = Ranking(ranker_id=ranker_id, candidate_ids=list(candidate_ids), updated_at=_utc_now_naive())
        self.rankings[ranker_id] = ranking
        return ranking

    async def get(self, ranker_id: str) -> Ranking | None:
        return self.rankings.get(ranker_id)

    async def list_all(self) -> list[Ranking]:
        return [self.rankings[k] for k in sorted(self.rankings)]


@pytest.fixture
def slot_repo() -> FakeSlotRepo:
    return FakeSlotRepo()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def ranking_repo() -> FakeRankingRepo:
    return FakeRankingRepo()
