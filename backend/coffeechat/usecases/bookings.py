"""
Booking coordinator.

Sequences booking, cancellation and outcome requests across the slot registry
and the calendar adapter. Only the capacity check and the registry transition
decide the result; calendar mirroring runs afterwards (or, for cancellation,
before) as a time-bounded step whose failures come back as advisory
``ExternalSyncFailed`` warnings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional

from ..calendars.base import CalendarAdapter, CalendarError, CalendarNotFoundError, Participant
from ..config import Settings
from ..domain.errors import CapacityExceededError, ExternalSyncFailed, UnavailableError
from ..domain.repositories import ProfileDirectory, SlotRepository
from ..domain.services import SlotSnapshot, validate_cancellation, validate_outcome
from ..models import Slot, SlotStatus, User
from . import slots as slot_usecase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingPolicy:
    max_active: int = 2
    attempts: int = slot_usecase.DEFAULT_ATTEMPTS
    calendar_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingPolicy":
        return cls(
            max_active=settings.max_active_bookings,
            attempts=settings.booking_retry_attempts,
            calendar_timeout=settings.calendar_timeout_seconds,
        )


@dataclass
class BookingResult:
    slot: Slot
    warnings: list[ExternalSyncFailed] = field(default_factory=list)
    status_from: Optional[SlotStatus] = None


class _SyncRun:
    """Collects advisory warnings for the calendar steps of one request."""

    def __init__(self, slot_id: str, timeout: float) -> None:
        self.slot_id = slot_id
        self.timeout = timeout
        self.warnings: list[ExternalSyncFailed] = []

    def warn(self, operation: str, reason: str, detail: str) -> None:
        logger.warning("calendar %s failed for slot %s: %s (%s)", operation, self.slot_id, reason, detail)
        self.warnings.append(
            ExternalSyncFailed(slot_id=self.slot_id, operation=operation, reason=reason, detail=detail)
        )

    async def attempt(
        self,
        operation: str,
        call: Awaitable[Any],
        *,
        ignore: tuple[type[CalendarError], ...] = (),
    ) -> tuple[bool, Any]:
        try:
            return True, await asyncio.wait_for(call, self.timeout)
        except ignore as exc:
            logger.info("calendar %s for slot %s ignored: %s", operation, self.slot_id, exc)
            return True, None
        except TimeoutError:
            self.warn(operation, "timeout", f"no response within {self.timeout:g}s")
        except CalendarError as exc:
            self.warn(operation, exc.kind, str(exc))
        except UnavailableError as exc:
            self.warn(operation, "unavailable", str(exc))
        except Exception as exc:
            # Mirroring never decides the outcome of the request.
            logger.exception("unexpected calendar %s failure for slot %s", operation, self.slot_id)
            self.warnings.append(
                ExternalSyncFailed(
                    slot_id=self.slot_id,
                    operation=operation,
                    reason="unknown",
                    detail=f"{type(exc).__name__}: {exc}",
                )
            )
        return False, None


def _participant(profile: Optional[User], principal_id: str, fallback_name: str) -> Participant:
    if profile is None:
        return Participant(principal_id=principal_id, display_name=fallback_name, email=None)
    return Participant(
        principal_id=principal_id,
        display_name=profile.display_name or fallback_name,
        email=profile.email or profile.calendar_email,
    )


async def _create_mirror_event(
    calendar: CalendarAdapter, directory: ProfileDirectory, slot: Slot, occupant_id: str
) -> Optional[str]:
    """Create the calendar event for a fresh booking. None when nobody has calendar sync on."""
    host = await directory.get(slot.host_id)
    occupant = await directory.get(occupant_id)
    if occupant is not None and occupant.calendar_connected:
        acting = occupant_id
    elif host is not None and host.calendar_connected:
        acting = slot.host_id
    else:
        logger.info("no participant of slot %s has calendar sync enabled", slot.id)
        return None

    host_name = slot.host_display_name
    occupant_name = slot.occupant_display_name or occupant_id
    participants = [
        _participant(host, slot.host_id, host_name),
        _participant(occupant, occupant_id, occupant_name),
    ]
    return await calendar.create_event(
        participants,
        slot.date,
        slot.time,
        slot.location,
        f"Coffee Chat: {host_name} & {occupant_name}",
        f"Coffee chat between {host_name} (member) and {occupant_name} (rushee).",
        on_behalf_of=acting,
    )


async def request_booking(
    slot_repo: SlotRepository,
    calendar: CalendarAdapter,
    directory: ProfileDirectory,
    *,
    slot_id: str,
    occupant_id: str,
    occupant_display_name: str,
    policy: BookingPolicy = BookingPolicy(),
) -> BookingResult:
    active = await slot_usecase.count_active_bookings(slot_repo, occupant_id=occupant_id)
    if active >= policy.max_active:
        raise CapacityExceededError(f"at most {policy.max_active} active bookings are allowed")

    slot = await slot_usecase.book_slot(
        slot_repo,
        slot_id=slot_id,
        occupant_id=occupant_id,
        occupant_display_name=occupant_display_name,
        max_active=policy.max_active,
        attempts=policy.attempts,
    )
    result = BookingResult(slot=slot, status_from=SlotStatus.AVAILABLE)
    if not calendar.is_ready():
        return result

    sync = _SyncRun(slot.id, policy.calendar_timeout)
    ok, ref = await sync.attempt("create_event", _create_mirror_event(calendar, directory, slot, occupant_id))
    if ok and ref:
        try:
            attached = await slot_usecase.attach_external_ref(
                slot_repo, slot_id=slot.id, occupant_id=occupant_id, ref=ref
            )
        except UnavailableError as exc:
            sync.warn("attach_ref", "unavailable", str(exc))
        else:
            if attached is not None:
                result.slot = attached
            else:
                logger.info("booking of slot %s ended before its event was attached; removing event", slot.id)
                await sync.attempt("delete_event", calendar.delete_event(ref))
    result.warnings = sync.warnings
    return result


async def request_cancellation(
    slot_repo: SlotRepository,
    calendar: CalendarAdapter,
    *,
    slot_id: str,
    requester_id: str,
    policy: BookingPolicy = BookingPolicy(),
) -> BookingResult:
    slot = await slot_usecase.get_slot(slot_repo, slot_id=slot_id)
    # Reject unauthorized or invalid requests before touching the calendar.
    validate_cancellation(
        SlotSnapshot(status=slot.status, host_id=slot.host_id, occupant_id=slot.occupant_id),
        requester_id=requester_id,
    )

    sync = _SyncRun(slot.id, policy.calendar_timeout)
    ref = slot.external_event_ref
    if ref:
        if calendar.is_ready():
            await sync.attempt("delete_event", calendar.delete_event(ref), ignore=(CalendarNotFoundError,))
        else:
            sync.warn("delete_event", "unavailable", "calendar adapter is not ready")

    updated = await slot_usecase.cancel_slot(
        slot_repo,
        slot_id=slot_id,
        requester_id=requester_id,
        attempts=policy.attempts,
    )
    return BookingResult(slot=updated, warnings=sync.warnings, status_from=slot.status)


async def request_outcome(
    slot_repo: SlotRepository,
    calendar: CalendarAdapter,
    *,
    slot_id: str,
    requester_id: str,
    outcome: str | SlotStatus,
    policy: BookingPolicy = BookingPolicy(),
) -> BookingResult:
    slot = await slot_usecase.get_slot(slot_repo, slot_id=slot_id)
    status = validate_outcome(
        SlotSnapshot(status=slot.status, host_id=slot.host_id, occupant_id=slot.occupant_id),
        requester_id=requester_id,
        outcome=outcome,
    )

    sync = _SyncRun(slot.id, policy.calendar_timeout)
    if status == SlotStatus.COMPLETED and slot.external_event_ref:
        if calendar.is_ready():
            await sync.attempt("annotate_completed", calendar.annotate_completed(slot.external_event_ref))
        else:
            sync.warn("annotate_completed", "unavailable", "calendar adapter is not ready")

    updated = await slot_usecase.mark_outcome(
        slot_repo,
        slot_id=slot_id,
        requester_id=requester_id,
        outcome=status,
        attempts=policy.attempts,
    )
    return BookingResult(slot=updated, warnings=sync.warnings, status_from=slot.status)
