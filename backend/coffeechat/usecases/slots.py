"""
Slot registry: the only code path that changes slot state.

Every transition reads the slot, validates it with a pure rule from
``domain.services`` and writes back conditionally on the version it read.
A lost race re-reads and re-validates, so callers racing for the same slot
see exactly one success and ``ConflictError`` for everyone else.
"""

from __future__ import annotations

from datetime import date, time
from typing import Any, Callable, Optional

from ..domain.errors import ConflictError, NotFoundError, ValidationError
from ..domain.repositories import QuotaChange, SlotFilter, SlotRepository
from ..domain.services import (
    SlotSnapshot,
    validate_booking,
    validate_cancellation,
    validate_deletion,
    validate_outcome,
    validate_slot_fields,
)
from ..models import Slot, SlotStatus

DEFAULT_ATTEMPTS = 3

Plan = Callable[[Slot], tuple[dict[str, Any], Optional[QuotaChange]]]


def _snapshot(slot: Slot) -> SlotSnapshot:
    return SlotSnapshot(status=slot.status, host_id=slot.host_id, occupant_id=slot.occupant_id)


async def get_slot(slot_repo: SlotRepository, *, slot_id: str) -> Slot:
    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise NotFoundError("slot not found")
    return slot


async def _transition(slot_repo: SlotRepository, slot_id: str, plan: Plan, *, attempts: int) -> Slot:
    for _ in range(max(attempts, 1)):
        slot = await get_slot(slot_repo, slot_id=slot_id)
        changes, quota = plan(slot)
        updated = await slot_repo.compare_and_set(
            slot_id,
            expected_version=slot.version,
            changes=changes,
            quota=quota,
        )
        if updated is not None:
            return updated
    raise ConflictError("slot changed while updating; re-fetch and retry")


async def create_slot(
    slot_repo: SlotRepository,
    *,
    host_id: str,
    host_display_name: str,
    slot_date: date | None,
    slot_time: time | None,
    location: str | None,
) -> Slot:
    valid_date, valid_time, cleaned_location = validate_slot_fields(slot_date, slot_time, location)
    return await slot_repo.create(
        host_id=host_id,
        host_display_name=host_display_name.strip() or host_id,
        slot_date=valid_date,
        slot_time=valid_time,
        location=cleaned_location,
    )


async def list_slots(
    slot_repo: SlotRepository,
    *,
    status: SlotStatus | None = None,
    host_id: str | None = None,
    occupant_id: str | None = None,
) -> list[Slot]:
    return await slot_repo.list_slots(SlotFilter(status=status, host_id=host_id, occupant_id=occupant_id))


async def count_active_bookings(slot_repo: SlotRepository, *, occupant_id: str) -> int:
    return await slot_repo.count_active(occupant_id)


async def book_slot(
    slot_repo: SlotRepository,
    *,
    slot_id: str,
    occupant_id: str,
    occupant_display_name: str,
    max_active: int | None = None,
    attempts: int = DEFAULT_ATTEMPTS,
) -> Slot:
    if not occupant_id:
        raise ValidationError("occupant id is required")
    display_name = occupant_display_name.strip() or occupant_id

    def _plan(slot: Slot) -> tuple[dict[str, Any], Optional[QuotaChange]]:
        validate_booking(_snapshot(slot), occupant_id=occupant_id)
        changes = {
            "status": SlotStatus.BOOKED,
            "occupant_id": occupant_id,
            "occupant_display_name": display_name,
            "external_event_ref": None,
        }
        return changes, QuotaChange(occupant_id=occupant_id, delta=1, limit=max_active)

    return await _transition(slot_repo, slot_id, _plan, attempts=attempts)


async def cancel_slot(
    slot_repo: SlotRepository,
    *,
    slot_id: str,
    requester_id: str,
    attempts: int = DEFAULT_ATTEMPTS,
) -> Slot:
    def _plan(slot: Slot) -> tuple[dict[str, Any], Optional[QuotaChange]]:
        released = validate_cancellation(_snapshot(slot), requester_id=requester_id)
        changes = {
            "status": SlotStatus.AVAILABLE,
            "occupant_id": None,
            "occupant_display_name": None,
            "external_event_ref": None,
        }
        return changes, QuotaChange(occupant_id=released, delta=-1)

    return await _transition(slot_repo, slot_id, _plan, attempts=attempts)


async def mark_outcome(
    slot_repo: SlotRepository,
    *,
    slot_id: str,
    requester_id: str,
    outcome: str | SlotStatus,
    attempts: int = DEFAULT_ATTEMPTS,
) -> Slot:
    def _plan(slot: Slot) -> tuple[dict[str, Any], Optional[QuotaChange]]:
        status = validate_outcome(_snapshot(slot), requester_id=requester_id, outcome=outcome)
        if slot.occupant_id is None:
            raise ConflictError("booked slot has no occupant")
        # external_event_ref is kept for completed and no-show slots.
        return {"status": status}, QuotaChange(occupant_id=slot.occupant_id, delta=-1)

    return await _transition(slot_repo, slot_id, _plan, attempts=attempts)


async def delete_slot(
    slot_repo: SlotRepository,
    *,
    slot_id: str,
    requester_id: str,
    attempts: int = DEFAULT_ATTEMPTS,
) -> Slot:
    """Remove an available slot. Returns the slot as it was before deletion."""
    for _ in range(max(attempts, 1)):
        slot = await get_slot(slot_repo, slot_id=slot_id)
        validate_deletion(_snapshot(slot), requester_id=requester_id)
        if await slot_repo.delete(slot_id, expected_version=slot.version):
            return slot
    raise ConflictError("slot changed while deleting; re-fetch and retry")


async def attach_external_ref(
    slot_repo: SlotRepository,
    *,
    slot_id: str,
    occupant_id: str,
    ref: str,
) -> Slot | None:
    """Best-effort metadata write. None when the booking it belongs to is gone."""
    return await slot_repo.set_external_ref(slot_id, occupant_id=occupant_id, ref=ref)
