"""
Google Calendar adapter.

Talks to the Calendar v3 REST API with the acting principal's stored OAuth
access token. Event references have the form ``<principal_id>:<event_id>`` so
later deletes and updates run against the calendar that owns the event.
"""

from __future__ import annotations

import logging
from datetime import date, time
from typing import Any, Mapping, Optional, Sequence
from zoneinfo import ZoneInfoNotFoundError

import httpx

from ..domain.repositories import CalendarCredentialRepository
from ..utils.time import local_meeting_window, utc_now_naive
from .base import (
    CalendarAdapter,
    CalendarNotFoundError,
    CalendarUnauthorizedError,
    CalendarUnavailableError,
    CalendarUnknownError,
    Participant,
)

logger = logging.getLogger(__name__)

COMPLETED_COLOR_ID = "10"
COMPLETED_NOTE = "\n\nStatus: Completed"
_RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


def encode_ref(principal_id: str, event_id: str) -> str:
    return f"{principal_id}:{event_id}"


def decode_ref(ref: str) -> tuple[str, str]:
    principal_id, sep, event_id = ref.rpartition(":")
    if not sep or not principal_id or not event_id:
        raise CalendarUnknownError(f"malformed event reference: {ref!r}")
    return principal_id, event_id


def _error_reason(response: httpx.Response) -> Optional[str]:
    try:
        errors = response.json().get("error", {}).get("errors", [])
    except (ValueError, AttributeError):
        return None
    if errors and isinstance(errors[0], dict):
        return errors[0].get("reason")
    return None


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    detail = f"calendar API returned {status}"
    if status == 403 and _error_reason(response) in _RATE_LIMIT_REASONS:
        raise CalendarUnavailableError(f"{detail} (rate limited)")
    if status in (401, 403):
        raise CalendarUnauthorizedError(detail)
    if status in (404, 410):
        raise CalendarNotFoundError(detail)
    if status == 429 or status >= 500:
        raise CalendarUnavailableError(detail)
    raise CalendarUnknownError(detail)


class GoogleCalendarAdapter(CalendarAdapter):
    def __init__(
        self,
        credentials: CalendarCredentialRepository,
        *,
        base_url: str,
        time_zone: str,
        duration_minutes: int = 30,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.time_zone = time_zone
        self.duration_minutes = duration_minutes
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def is_ready(self) -> bool:
        return not self._client.is_closed

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _access_token(self, principal_id: str) -> str:
        credential = await self.credentials.get(principal_id)
        if credential is None:
            raise CalendarUnauthorizedError("calendar not connected")
        if credential.expires_at is not None and credential.expires_at <= utc_now_naive():
            raise CalendarUnauthorizedError("calendar authorization expired")
        return credential.access_token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        principal_id: str,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        token = await self._access_token(principal_id)
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as exc:
            raise CalendarUnavailableError("calendar request timed out") from exc
        except httpx.TransportError as exc:
            raise CalendarUnavailableError(f"calendar unreachable: {exc}") from exc
        except httpx.HTTPError as exc:
            raise CalendarUnknownError(f"calendar request failed: {exc}") from exc
        _raise_for_status(response)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarUnknownError("calendar API returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise CalendarUnknownError("calendar API returned an unexpected body")
        return payload

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
        try:
            start, end = local_meeting_window(
                slot_date, slot_time, tz_name=self.time_zone, duration_minutes=self.duration_minutes
            )
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise CalendarUnknownError(f"cannot place the meeting in time zone {self.time_zone!r}") from exc
        body = {
            "summary": title,
            "location": location,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.time_zone},
            "attendees": [{"email": p.email} for p in participants if p.email],
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 15},
                ],
            },
            "guestsCanModify": False,
            "guestsCanInviteOthers": False,
            "guestsCanSeeOtherGuests": True,
        }
        created = await self._request(
            "POST",
            "/calendars/primary/events",
            principal_id=on_behalf_of,
            params={"sendUpdates": "all"},
            json=body,
        )
        event_id = created.get("id")
        if not event_id:
            raise CalendarUnknownError("calendar API response has no event id")
        logger.info("created calendar event %s for %s", event_id, on_behalf_of)
        return encode_ref(on_behalf_of, event_id)

    async def update_event(self, ref: str, changes: Mapping[str, Any]) -> None:
        principal_id, event_id = decode_ref(ref)
        await self._request(
            "PATCH",
            f"/calendars/primary/events/{event_id}",
            principal_id=principal_id,
            params={"sendUpdates": "all"},
            json=dict(changes),
        )

    async def delete_event(self, ref: str) -> None:
        principal_id, event_id = decode_ref(ref)
        await self._request(
            "DELETE",
            f"/calendars/primary/events/{event_id}",
            principal_id=principal_id,
            params={"sendUpdates": "all"},
        )

    async def annotate_completed(self, ref: str) -> None:
        principal_id, event_id = decode_ref(ref)
        event = await self._request("GET", f"/calendars/primary/events/{event_id}", principal_id=principal_id)
        description = event.get("description") or ""
        if description.endswith(COMPLETED_NOTE):
            return
        await self.update_event(ref, {"description": description + COMPLETED_NOTE, "colorId": COMPLETED_COLOR_ID})
