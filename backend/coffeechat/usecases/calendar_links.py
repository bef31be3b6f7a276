from datetime import datetime

from ..domain.errors import ValidationError
from ..domain.repositories import CalendarCredentialRepository, ProfileDirectory
from ..models import CalendarCredential
from ..utils.time import to_utc_naive


async def connect_calendar(
    credentials: CalendarCredentialRepository,
    directory: ProfileDirectory,
    *,
    principal_id: str,
    access_token: str,
    calendar_email: str | None,
    expires_at: datetime | None,
) -> CalendarCredential:
    if not access_token.strip():
        raise ValidationError("access token is required")
    expires_naive = to_utc_naive(expires_at) if expires_at is not None and expires_at.tzinfo else expires_at
    credential = await credentials.save(
        principal_id,
        access_token=access_token.strip(),
        calendar_email=calendar_email,
        expires_at=expires_naive,
    )
    await directory.set_calendar_connection(principal_id, connected=True, calendar_email=calendar_email)
    return credential


async def disconnect_calendar(
    credentials: CalendarCredentialRepository,
    directory: ProfileDirectory,
    *,
    principal_id: str,
) -> None:
    await credentials.delete(principal_id)
    await directory.set_calendar_connection(principal_id, connected=False, calendar_email=None)
