from fastapi import APIRouter, Depends

from ..deps import get_credential_repo, get_current_principal, get_directory
from ..domain.errors import DomainError
from ..domain.repositories import CalendarCredentialRepository, ProfileDirectory
from ..schemas import CalendarConnect, CalendarConnectionRead
from ..usecases import calendar_links as calendar_usecase
from .errors import audit_or_500, to_http_exception

router = APIRouter(prefix="/me/calendar", tags=["calendar"], dependencies=[Depends(get_current_principal)])


@router.put("", response_model=CalendarConnectionRead)
async def connect_calendar(
    payload: CalendarConnect,
    credentials: CalendarCredentialRepository = Depends(get_credential_repo),
    directory: ProfileDirectory = Depends(get_directory),
    principal_id: str = Depends(get_current_principal),
) -> CalendarConnectionRead:
    try:
        credential = await calendar_usecase.connect_calendar(
            credentials,
            directory,
            principal_id=principal_id,
            access_token=payload.access_token,
            calendar_email=payload.calendar_email,
            expires_at=payload.expires_at,
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc

    audit_or_500(action="calendar.connected", initiator="user", actor_id=principal_id)
    return CalendarConnectionRead(
        principal_id=principal_id,
        connected=True,
        calendar_email=credential.calendar_email,
    )


@router.delete("", response_model=CalendarConnectionRead)
async def disconnect_calendar(
    credentials: CalendarCredentialRepository = Depends(get_credential_repo),
    directory: ProfileDirectory = Depends(get_directory),
    principal_id: str = Depends(get_current_principal),
) -> CalendarConnectionRead:
    try:
        await calendar_usecase.disconnect_calendar(credentials, directory, principal_id=principal_id)
    except DomainError as exc:
        raise to_http_exception(exc) from exc

    audit_or_500(action="calendar.disconnected", initiator="user", actor_id=principal_id)
    return CalendarConnectionRead(principal_id=principal_id, connected=False)
