from functools import lru_cache
from typing import Awaitable, Callable

from fastapi import Depends, Header, HTTPException, status

from .calendars.base import CalendarAdapter
from .calendars.factory import get_adapter
from .config import get_settings
from .database import async_session
from .domain.errors import UnavailableError
from .domain.repositories import ProfileDirectory
from .infrastructure.repositories import (
    SqlAlchemyCalendarCredentialRepository,
    SqlAlchemyProfileDirectory,
    SqlAlchemyRankingRepository,
    SqlAlchemySlotRepository,
)
from .models import Role, User
from .usecases.bookings import BookingPolicy
from .utils.auth import decode_access_token


def _store_timeout() -> float:
    return get_settings().store_timeout_seconds


async def get_slot_repo() -> SqlAlchemySlotRepository:
    return SqlAlchemySlotRepository(async_session, timeout=_store_timeout())


async def get_ranking_repo() -> SqlAlchemyRankingRepository:
    return SqlAlchemyRankingRepository(async_session, timeout=_store_timeout())


async def get_directory() -> SqlAlchemyProfileDirectory:
    return SqlAlchemyProfileDirectory(async_session, timeout=_store_timeout())


async def get_credential_repo() -> SqlAlchemyCalendarCredentialRepository:
    return SqlAlchemyCalendarCredentialRepository(async_session, timeout=_store_timeout())


@lru_cache
def calendar_adapter() -> CalendarAdapter:
    """Process-wide adapter; credentials are looked up per call, not held here."""
    credentials = SqlAlchemyCalendarCredentialRepository(async_session, timeout=_store_timeout())
    return get_adapter(get_settings(), credentials)


async def get_calendar() -> CalendarAdapter:
    return calendar_adapter()


async def get_booking_policy() -> BookingPolicy:
    return BookingPolicy.from_settings(get_settings())


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    authorization: str | None = Header(default=None),
    directory: ProfileDirectory = Depends(get_directory),
) -> User:
    if authorization is None:
        raise _unauthorized("Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Bearer token required")

    settings = get_settings()
    try:
        principal_id = decode_access_token(
            token.strip(),
            secret=settings.auth_secret,
            algorithms=[settings.auth_algorithm],
        )
    except ValueError as exc:
        raise _unauthorized("invalid token") from exc

    try:
        profile = await directory.get(principal_id)
    except UnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="directory unavailable") from exc
    if profile is None:
        raise _unauthorized("unknown principal")
    return profile


async def get_current_principal(user: User = Depends(get_current_user)) -> str:
    return user.id


def require_roles(*roles: Role) -> Callable[..., Awaitable[str]]:
    """Dependency returning the caller's principal id, or 403 when their role is not in `roles`."""
    allowed = frozenset(roles)

    async def _principal_with_role(user: User = Depends(get_current_user)) -> str:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "forbidden",
                    "message": "requires role " + " or ".join(sorted(r.value for r in allowed)),
                },
            )
        return user.id

    return _principal_with_role
