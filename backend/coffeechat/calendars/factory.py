"""
Calendar adapter factory.

Picks the adapter for the configured provider.
"""

from ..config import Settings
from ..domain.repositories import CalendarCredentialRepository
from .base import CalendarAdapter


def get_adapter(settings: Settings, credentials: CalendarCredentialRepository) -> CalendarAdapter:
    """
    Build the adapter for ``settings.calendar_provider``.

    Raises:
        ValueError: if the provider is not supported
    """
    provider = settings.calendar_provider.lower()
    if provider == "google":
        from .google import GoogleCalendarAdapter

        return GoogleCalendarAdapter(
            credentials,
            base_url=settings.google_calendar_api_base,
            time_zone=settings.calendar_time_zone,
            duration_minutes=settings.meeting_duration_minutes,
            timeout=settings.calendar_timeout_seconds,
        )
    if provider in ("", "none", "disabled"):
        from .disabled import DisabledCalendarAdapter

        return DisabledCalendarAdapter()
    raise ValueError(f"Unsupported calendar provider: {settings.calendar_provider}")
