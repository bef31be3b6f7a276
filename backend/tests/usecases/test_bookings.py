from datetime import date, time

import httpx
import pytest
from coffeechat.calendars.base import (
    CalendarNotFoundError,
    CalendarUnauthorizedError,
    CalendarUnavailableError,
)
from coffeechat.calendars.google import GoogleCalendarAdapter
from coffeechat.domain.errors import (
    CapacityExceededError,
    ConflictError,
    ForbiddenError,
    UnavailableError,
)
from coffeechat.models import CalendarCredential, Role, SlotStatus
from coffeechat.usecases import bookings as uc
from coffeechat.usecases import slots as slot_uc

POLICY = uc.BookingPolicy(max_active=2, attempts=3, calendar_timeout=0.05)


@pytest.fixture
def people(directory):
    directory.add("host-1", name="Hannah Host", role=Role.MEMBER, email="hannah@example.com")
    directory.add("rushee-1", name="Ray Rushee", email="ray@example.com", calendar_connected=True)
    directory.add("rushee-2", name="Rae Rushee", email="rae@example.com")
    return directory


async def _book(slot_repo, calendar, directory, slot_id: str, occupant_id: str = "rushee-1"):
    return await uc.request_booking(
        slot_repo,
        calendar,
        directory,
        slot_id=slot_id,
        occupant_id=occupant_id,
        occupant_display_name=directory.users[occupant_id].display_name,
        policy=POLICY,
    )


@pytest.mark.asyncio
async def test_booking_mirrors_event_on_occupant_calendar(slot_repo, calendar, people) -> None:
    existing = slot_repo.put()

    result = await _book(slot_repo, calendar, people, existing.id)

    assert result.warnings == []
    assert result.status_from == SlotStatus.AVAILABLE
    assert result.slot.status == SlotStatus.BOOKED
    assert result.slot.external_event_ref == "rushee-1:evt1"
    op, args = calendar.calls[0]
    assert op == "create"
    assert args["on_behalf_of"] == "rushee-1"
    assert args["title"] == "Coffee Chat: Hannah Host & Ray Rushee"
    assert [p.email for p in args["participants"]] == ["hannah@example.com", "ray@example.com"]


@pytest.mark.asyncio
async def test_booking_falls_back_to_host_calendar(slot_repo, calendar, people) -> None:
    people.users["host-1"].calendar_connected = True
    existing = slot_repo.put()

    result = await _book(slot_repo, calendar, people, existing.id, occupant_id="rushee-2")

    assert calendar.calls[0][1]["on_behalf_of"] == "host-1"
    assert result.slot.external_event_ref == "host-1:evt1"


@pytest.mark.asyncio
async def test_booking_without_connected_calendars_skips_mirroring(slot_repo, calendar, people) -> None:
    existing = slot_repo.put()

    result = await _book(slot_repo, calendar, people, existing.id, occupant_id="rushee-2")

    assert calendar.calls == []
    assert result.warnings == []
    assert result.slot.external_event_ref is None


@pytest.mark.asyncio
async def test_booking_with_adapter_not_ready_is_silent(slot_repo, calendar, people) -> None:
    calendar.ready = False
    existing = slot_repo.put()

    result = await _book(slot_repo, calendar, people, existing.id)

    assert calendar.calls == []
    assert result.warnings == []
    assert result.slot.status == SlotStatus.BOOKED


@pytest.mark.asyncio
async def test_calendar_failure_never_blocks_booking(slot_repo, calendar, people) -> None:
    calendar.fail_with = CalendarUnavailableError("provider down")
    existing = slot_repo.put()

    result = await _book(slot_repo, calendar, people, existing.id)

    assert result.slot.status == SlotStatus.BOOKED
    assert result.slot.external_event_ref is None
    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert warning.slot_id == existing.id
    assert warning.operation == "create_event"
    assert warning.reason == "unavailable"


@pytest.mark.asyncio
async def test_calendar_timeout_becomes_warning(slot_repo, calendar, people) -> None:
    calendar.delay = 1.0
    existing = slot_repo.put()

    result = await _book(slot_repo, calendar, people, existing.id)

    assert result.slot.status == SlotStatus.BOOKED
    assert [w.reason for w in result.warnings] == ["timeout"]
    assert slot_repo.slots[existing.id].external_event_ref is None


@pytest.mark.asyncio
async def test_unexpected_calendar_exception_becomes_warning(slot_repo, calendar, people) -> None:
    calendar.fail_with = RuntimeError("boom")
    existing = slot_repo.put()

    result = await _book(slot_repo, calendar, people, existing.id)

    assert result.slot.status == SlotStatus.BOOKED
    assert slot_repo.slots[existing.id].status == SlotStatus.BOOKED
    assert [(w.operation, w.reason) for w in result.warnings] == [("create_event", "unknown")]
    assert "RuntimeError" in result.warnings[0].detail


class _OneToken:
    async def get(self, principal_id: str):
        return CalendarCredential(principal_id=principal_id, access_token="t", calendar_email=None, expires_at=None)


@pytest.mark.asyncio
async def test_google_adapter_bad_body_is_advisory(slot_repo, people) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    google = GoogleCalendarAdapter(
        _OneToken(),
        base_url="https://calendar.test/v3",
        time_zone="America/New_York",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    existing = slot_repo.put()

    result = await _book(slot_repo, google, people, existing.id)

    assert result.slot.status == SlotStatus.BOOKED
    assert result.slot.external_event_ref is None
    assert [(w.operation, w.reason) for w in result.warnings] == [("create_event", "unknown")]


@pytest.mark.asyncio
async def test_event_removed_when_booking_gone_before_attach(
    slot_repo, calendar, people, monkeypatch: pytest.MonkeyPatch
) -> None:
    existing = slot_repo.put()

    async def booking_gone(*args, **kwargs):
        return None

    monkeypatch.setattr(slot_repo, "set_external_ref", booking_gone)

    result = await _book(slot_repo, calendar, people, existing.id)

    assert calendar.operations() == ["create", "delete"]
    assert calendar.calls[1][1] == "rushee-1:evt1"
    assert result.slot.external_event_ref is None
    assert result.warnings == []


@pytest.mark.asyncio
async def test_attach_outage_is_advisory(slot_repo, calendar, people) -> None:
    slot_repo.attach_error = UnavailableError("store timed out")
    existing = slot_repo.put()

    result = await _book(slot_repo, calendar, people, existing.id)

    assert result.slot.status == SlotStatus.BOOKED
    assert [(w.operation, w.reason) for w in result.warnings] == [("attach_ref", "unavailable")]


@pytest.mark.asyncio
async def test_capacity_checked_before_booking(slot_repo, calendar, people) -> None:
    slot_repo.put(status=SlotStatus.BOOKED, occupant_id="rushee-1", occupant_display_name="Ray Rushee")
    slot_repo.put(status=SlotStatus.BOOKED, occupant_id="rushee-1", occupant_display_name="Ray Rushee")
    third = slot_repo.put()

    with pytest.raises(CapacityExceededError):
        await _book(slot_repo, calendar, people, third.id)

    assert slot_repo.slots[third.id].status == SlotStatus.AVAILABLE
    assert calendar.calls == []


@pytest.mark.asyncio
async def test_completed_bookings_do_not_count_toward_capacity(slot_repo, calendar, people) -> None:
    slot_repo.put(status=SlotStatus.COMPLETED, occupant_id="rushee-1", occupant_display_name="Ray Rushee")
    slot_repo.put(status=SlotStatus.NO_SHOW, occupant_id="rushee-1", occupant_display_name="Ray Rushee")
    fresh = slot_repo.put()

    result = await _book(slot_repo, calendar, people, fresh.id)
    assert result.slot.status == SlotStatus.BOOKED


@pytest.mark.asyncio
async def test_cancellation_deletes_event_first(slot_repo, calendar, people) -> None:
    existing = slot_repo.put(
        status=SlotStatus.BOOKED,
        occupant_id="rushee-1",
        occupant_display_name="Ray Rushee",
        external_event_ref="rushee-1:evt9",
    )

    result = await uc.request_cancellation(
        slot_repo, calendar, slot_id=existing.id, requester_id="rushee-1", policy=POLICY
    )

    assert calendar.calls == [("delete", "rushee-1:evt9")]
    assert result.status_from == SlotStatus.BOOKED
    assert result.slot.status == SlotStatus.AVAILABLE
    assert result.slot.external_event_ref is None
    assert result.warnings == []


@pytest.mark.asyncio
async def test_cancellation_treats_missing_event_as_deleted(slot_repo, calendar, people) -> None:
    calendar.fail_with = CalendarNotFoundError("gone")
    existing = slot_repo.put(
        status=SlotStatus.BOOKED,
        occupant_id="rushee-1",
        occupant_display_name="Ray Rushee",
        external_event_ref="rushee-1:evt9",
    )

    result = await uc.request_cancellation(slot_repo, calendar, slot_id=existing.id, requester_id="host-1", policy=POLICY)

    assert result.warnings == []
    assert result.slot.status == SlotStatus.AVAILABLE


@pytest.mark.asyncio
async def test_cancellation_proceeds_when_calendar_rejects(slot_repo, calendar, people) -> None:
    calendar.fail_with = CalendarUnauthorizedError("token revoked")
    existing = slot_repo.put(
        status=SlotStatus.BOOKED,
        occupant_id="rushee-1",
        occupant_display_name="Ray Rushee",
        external_event_ref="rushee-1:evt9",
    )

    result = await uc.request_cancellation(slot_repo, calendar, slot_id=existing.id, requester_id="host-1", policy=POLICY)

    assert result.slot.status == SlotStatus.AVAILABLE
    assert [(w.operation, w.reason) for w in result.warnings] == [("delete_event", "unauthorized")]


@pytest.mark.asyncio
async def test_cancellation_by_stranger_touches_nothing(slot_repo, calendar, people) -> None:
    existing = slot_repo.put(
        status=SlotStatus.BOOKED,
        occupant_id="rushee-1",
        occupant_display_name="Ray Rushee",
        external_event_ref="rushee-1:evt9",
    )

    with pytest.raises(ForbiddenError):
        await uc.request_cancellation(slot_repo, calendar, slot_id=existing.id, requester_id="rushee-2", policy=POLICY)

    assert calendar.calls == []
    assert slot_repo.slots[existing.id].status == SlotStatus.BOOKED


@pytest.mark.asyncio
async def test_completed_outcome_annotates_event(slot_repo, calendar, people) -> None:
    existing = slot_repo.put(
        status=SlotStatus.BOOKED,
        occupant_id="rushee-1",
        occupant_display_name="Ray Rushee",
        external_event_ref="rushee-1:evt9",
    )

    result = await uc.request_outcome(
        slot_repo, calendar, slot_id=existing.id, requester_id="host-1", outcome="completed", policy=POLICY
    )

    assert calendar.calls == [("annotate", "rushee-1:evt9")]
    assert result.slot.status == SlotStatus.COMPLETED
    assert result.slot.external_event_ref == "rushee-1:evt9"


@pytest.mark.asyncio
async def test_no_show_leaves_calendar_alone(slot_repo, calendar, people) -> None:
    existing = slot_repo.put(
        status=SlotStatus.BOOKED,
        occupant_id="rushee-1",
        occupant_display_name="Ray Rushee",
        external_event_ref="rushee-1:evt9",
    )

    result = await uc.request_outcome(
        slot_repo, calendar, slot_id=existing.id, requester_id="host-1", outcome="no-show", policy=POLICY
    )

    assert calendar.calls == []
    assert result.slot.status == SlotStatus.NO_SHOW


@pytest.mark.asyncio
async def test_outcome_annotation_failure_is_advisory(slot_repo, calendar, people) -> None:
    calendar.fail_with = CalendarUnavailableError("down")
    existing = slot_repo.put(
        status=SlotStatus.BOOKED,
        occupant_id="rushee-1",
        occupant_display_name="Ray Rushee",
        external_event_ref="rushee-1:evt9",
    )

    result = await uc.request_outcome(
        slot_repo, calendar, slot_id=existing.id, requester_id="host-1", outcome="completed", policy=POLICY
    )

    assert result.slot.status == SlotStatus.COMPLETED
    assert [w.operation for w in result.warnings] == ["annotate_completed"]


@pytest.mark.asyncio
async def test_host_and_two_rushees_full_lifecycle(slot_repo, calendar, people) -> None:
    slot = await slot_uc.create_slot(
        slot_repo,
        host_id="host-1",
        host_display_name="Hannah Host",
        slot_date=date(2025, 1, 10),
        slot_time=time(14, 0),
        location="Main Library",
    )

    first = await _book(slot_repo, calendar, people, slot.id, occupant_id="rushee-1")
    assert first.slot.occupant_id == "rushee-1"

    with pytest.raises(ConflictError):
        await _book(slot_repo, calendar, people, slot.id, occupant_id="rushee-2")

    await uc.request_cancellation(slot_repo, calendar, slot_id=slot.id, requester_id="rushee-1", policy=POLICY)
    second = await _book(slot_repo, calendar, people, slot.id, occupant_id="rushee-2")
    assert second.slot.occupant_id == "rushee-2"

    done = await uc.request_outcome(
        slot_repo, calendar, slot_id=slot.id, requester_id="host-1", outcome="completed", policy=POLICY
    )
    assert done.slot.status == SlotStatus.COMPLETED
    assert calendar.operations() == ["create", "delete"]
    assert slot_repo.quota == {"rushee-1": 0, "rushee-2": 0}
