from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status

from ..calendars.base import CalendarAdapter
from ..deps import get_booking_policy, get_calendar, get_current_principal, get_directory, get_slot_repo, require_roles
from ..domain.errors import DomainError, UnavailableError
from ..domain.repositories import ProfileDirectory, SlotRepository
from ..models import Role, SlotStatus
from ..schemas import BookingRead, SlotCreate, SlotOutcome, SlotRead
from ..usecases import bookings as booking_usecase
from ..usecases import slots as slot_usecase
from ..usecases.bookings import BookingPolicy
from .errors import audit_or_500, to_http_exception

router = APIRouter(prefix="/slots", tags=["slots"], dependencies=[Depends(get_current_principal)])

_host = require_roles(Role.MEMBER, Role.ADMIN)
_rushee = require_roles(Role.RUSHEE)


async def _display_name(directory: ProfileDirectory, principal_id: str) -> str:
    try:
        profile = await directory.get(principal_id)
    except UnavailableError:
        return principal_id
    if profile is None or not profile.display_name:
        return principal_id
    return profile.display_name


@router.post("", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    slot_repo: SlotRepository = Depends(get_slot_repo),
    directory: ProfileDirectory = Depends(get_directory),
    principal_id: str = Depends(_host),
) -> SlotRead:
    try:
        slot = await slot_usecase.create_slot(
            slot_repo,
            host_id=principal_id,
            host_display_name=await _display_name(directory, principal_id),
            slot_date=payload.date,
            slot_time=payload.time,
            location=payload.location,
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc

    audit_or_500(
        action="slot.created",
        initiator="host",
        actor_id=principal_id,
        slot_id=slot.id,
        status_to=slot.status,
        version=slot.version,
    )
    return SlotRead.from_db(slot=slot)


@router.get("", response_model=List[SlotRead])
async def list_slots(
    status_filter: Optional[SlotStatus] = Query(default=None, alias="status"),
    host_id: Optional[str] = Query(default=None),
    occupant_id: Optional[str] = Query(default=None),
    slot_repo: SlotRepository = Depends(get_slot_repo),
) -> list[SlotRead]:
    try:
        rows = await slot_usecase.list_slots(
            slot_repo,
            status=status_filter,
            host_id=host_id,
            occupant_id=occupant_id,
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc
    return [SlotRead.from_db(slot=slot) for slot in rows]


@router.post("/{slot_id}/book", response_model=BookingRead)
async def book_slot(
    slot_id: str = Path(..., min_length=1),
    slot_repo: SlotRepository = Depends(get_slot_repo),
    calendar: CalendarAdapter = Depends(get_calendar),
    directory: ProfileDirectory = Depends(get_directory),
    policy: BookingPolicy = Depends(get_booking_policy),
    principal_id: str = Depends(_rushee),
) -> BookingRead:
    try:
        result = await booking_usecase.request_booking(
            slot_repo,
            calendar,
            directory,
            slot_id=slot_id,
            occupant_id=principal_id,
            occupant_display_name=await _display_name(directory, principal_id),
            policy=policy,
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc

    audit_or_500(
        action="slot.booked",
        initiator="occupant",
        actor_id=principal_id,
        slot_id=result.slot.id,
        status_from=result.status_from,
        status_to=result.slot.status,
        version=result.slot.version,
        extra={"sync_warnings": len(result.warnings)} if result.warnings else None,
    )
    return BookingRead.from_result(slot=result.slot, warnings=result.warnings)


@router.post("/{slot_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    slot_id: str = Path(..., min_length=1),
    slot_repo: SlotRepository = Depends(get_slot_repo),
    calendar: CalendarAdapter = Depends(get_calendar),
    policy: BookingPolicy = Depends(get_booking_policy),
    principal_id: str = Depends(get_current_principal),
) -> BookingRead:
    try:
        result = await booking_usecase.request_cancellation(
            slot_repo,
            calendar,
            slot_id=slot_id,
            requester_id=principal_id,
            policy=policy,
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc

    audit_or_500(
        action="slot.cancelled",
        initiator="host" if principal_id == result.slot.host_id else "occupant",
        actor_id=principal_id,
        slot_id=result.slot.id,
        status_from=result.status_from,
        status_to=result.slot.status,
        version=result.slot.version,
    )
    return BookingRead.from_result(slot=result.slot, warnings=result.warnings)


@router.post("/{slot_id}/outcome", response_model=BookingRead)
async def mark_slot_outcome(
    payload: SlotOutcome,
    slot_id: str = Path(..., min_length=1),
    slot_repo: SlotRepository = Depends(get_slot_repo),
    calendar: CalendarAdapter = Depends(get_calendar),
    policy: BookingPolicy = Depends(get_booking_policy),
    principal_id: str = Depends(get_current_principal),
) -> BookingRead:
    try:
        result = await booking_usecase.request_outcome(
            slot_repo,
            calendar,
            slot_id=slot_id,
            requester_id=principal_id,
            outcome=payload.outcome,
            policy=policy,
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc

    audit_or_500(
        action="slot.completed" if result.slot.status == SlotStatus.COMPLETED else "slot.no_show",
        initiator="host",
        actor_id=principal_id,
        slot_id=result.slot.id,
        status_from=result.status_from,
        status_to=result.slot.status,
        version=result.slot.version,
    )
    return BookingRead.from_result(slot=result.slot, warnings=result.warnings)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_slot(
    slot_id: str = Path(..., min_length=1),
    slot_repo: SlotRepository = Depends(get_slot_repo),
    principal_id: str = Depends(get_current_principal),
) -> Response:
    try:
        removed = await slot_usecase.delete_slot(slot_repo, slot_id=slot_id, requester_id=principal_id)
    except DomainError as exc:
        raise to_http_exception(exc) from exc

    audit_or_500(
        action="slot.deleted",
        initiator="host",
        actor_id=principal_id,
        slot_id=removed.id,
        status_from=removed.status,
        version=removed.version,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
