from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime, time
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain.errors import CapacityExceededError, UnavailableError
from ..domain.repositories import (
    CalendarCredentialRepository,
    ProfileDirectory,
    QuotaChange,
    RankingRepository,
    SlotFilter,
    SlotRepository,
)
from ..models import BookingQuota, CalendarCredential, Ranking, Role, Slot, SlotStatus, User
from ..utils.time import utc_now_naive

T = TypeVar("T")

_NO_SYNC = {"synchronize_session": False}


class _StaleVersion(Exception):
    pass


class _TransactionalStore:
    """Runs each unit of work in its own transaction, bounded by a timeout."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession], *, timeout: Optional[float] = None) -> None:
        self.sessions = sessions
        self.timeout = timeout

    async def _run(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with asyncio.timeout(self.timeout):
                async with self.sessions.begin() as session:
                    return await work(session)
        except TimeoutError as exc:
            raise UnavailableError("document store timed out") from exc
        except (OperationalError, InterfaceError) as exc:
            raise UnavailableError("document store unavailable") from exc


class SqlAlchemySlotRepository(_TransactionalStore, SlotRepository):
    async def get(self, slot_id: str) -> Slot | None:
        async def _get(session: AsyncSession) -> Slot | None:
            return await session.get(Slot, slot_id)

        return await self._run(_get)

    async def create(
        self,
        *,
        host_id: str,
        host_display_name: str,
        slot_date: date,
        slot_time: time,
        location: str,
    ) -> Slot:
        now = utc_now_naive()
        slot = Slot(
            id=uuid.uuid4().hex,
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

        async def _create(session: AsyncSession) -> Slot:
            session.add(slot)
            await session.flush()
            return slot

        return await self._run(_create)

    async def list_slots(self, slot_filter: SlotFilter) -> list[Slot]:
        stmt = select(Slot).order_by(Slot.date, Slot.time, Slot.id)
        if slot_filter.status is not None:
            stmt = stmt.where(Slot.status == slot_filter.status)
        if slot_filter.host_id is not None:
            stmt = stmt.where(Slot.host_id == slot_filter.host_id)
        if slot_filter.occupant_id is not None:
            stmt = stmt.where(Slot.occupant_id == slot_filter.occupant_id)

        async def _list(session: AsyncSession) -> list[Slot]:
            return list((await session.scalars(stmt)).all())

        return await self._run(_list)

    async def count_active(self, occupant_id: str) -> int:
        stmt = select(func.count(Slot.id)).where(
            Slot.occupant_id == occupant_id,
            Slot.status == SlotStatus.BOOKED,
        )

        async def _count(session: AsyncSession) -> int:
            return int(await session.scalar(stmt) or 0)

        return await self._run(_count)

    async def compare_and_set(
        self,
        slot_id: str,
        *,
        expected_version: int,
        changes: Mapping[str, Any],
        quota: QuotaChange | None = None,
    ) -> Slot | None:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.version == expected_version)
            .values(**changes, version=expected_version + 1, updated_at=utc_now_naive())
            .execution_options(**_NO_SYNC)
        )

        async def _apply(session: AsyncSession) -> Slot | None:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                raise _StaleVersion()
            if quota is not None:
                await self._apply_quota(session, quota)
            return await session.get(Slot, slot_id, populate_existing=True)

        try:
            return await self._run(_apply)
        except _StaleVersion:
            return None

    async def delete(self, slot_id: str, *, expected_version: int) -> bool:
        stmt = (
            delete(Slot)
            .where(Slot.id == slot_id, Slot.version == expected_version)
            .execution_options(**_NO_SYNC)
        )

        async def _delete(session: AsyncSession) -> bool:
            result = await session.execute(stmt)
            return result.rowcount == 1

        return await self._run(_delete)

    async def set_external_ref(self, slot_id: str, *, occupant_id: str, ref: str) -> Slot | None:
        stmt = (
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.occupant_id == occupant_id,
                Slot.status == SlotStatus.BOOKED,
            )
            .values(external_event_ref=ref, version=Slot.version + 1, updated_at=utc_now_naive())
            .execution_options(**_NO_SYNC)
        )

        async def _attach(session: AsyncSession) -> Slot | None:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                return None
            return await session.get(Slot, slot_id, populate_existing=True)

        return await self._run(_attach)

    async def _apply_quota(self, session: AsyncSession, quota: QuotaChange) -> None:
        stmt = update(BookingQuota).where(BookingQuota.occupant_id == quota.occupant_id)
        if quota.delta > 0:
            await self._ensure_quota_row(session, quota.occupant_id)
            if quota.limit is not None:
                stmt = stmt.where(BookingQuota.active + quota.delta <= quota.limit)
        else:
            stmt = stmt.where(BookingQuota.active + quota.delta >= 0)
        result = await session.execute(
            stmt.values(active=BookingQuota.active + quota.delta).execution_options(**_NO_SYNC)
        )
        if quota.delta > 0 and result.rowcount != 1:
            raise CapacityExceededError("maximum active bookings reached")

    async def _ensure_quota_row(self, session: AsyncSession, occupant_id: str) -> None:
        existing = await session.scalar(
            select(BookingQuota.occupant_id).where(BookingQuota.occupant_id == occupant_id)
        )
        if existing is not None:
            return
        try:
            async with session.begin_nested():
                session.add(BookingQuota(occupant_id=occupant_id, active=0))
                await session.flush()
        except IntegrityError:
            # Row inserted by a concurrent transaction.
            return


class SqlAlchemyRankingRepository(_TransactionalStore, RankingRepository):
    async def upsert(self, ranker_id: str, candidate_ids: Sequence[str]) -> Ranking:
        async def _upsert(session: AsyncSession) -> Ranking:
            ranking = await session.merge(
                Ranking(ranker_id=ranker_id, candidate_ids=list(candidate_ids), updated_at=utc_now_naive())
            )
            await session.flush()
            return ranking

        return await self._run(_upsert)

    async def get(self, ranker_id: str) -> Ranking | None:
        async def _get(session: AsyncSession) -> Ranking | None:
            return await session.get(Ranking, ranker_id)

        return await self._run(_get)

    async def list_all(self) -> list[Ranking]:
        async def _list(session: AsyncSession) -> list[Ranking]:
            return list((await session.scalars(select(Ranking).order_by(Ranking.ranker_id))).all())

        return await self._run(_list)


class SqlAlchemyProfileDirectory(_TransactionalStore, ProfileDirectory):
    async def get(self, principal_id: str) -> User | None:
        async def _get(session: AsyncSession) -> User | None:
            return await session.get(User, principal_id)

        return await self._run(_get)

    async def list_candidate_ids(self) -> list[str]:
        stmt = select(User.id).where(User.role == Role.RUSHEE).order_by(User.id)

        async def _list(session: AsyncSession) -> list[str]:
            return list((await session.scalars(stmt)).all())

        return await self._run(_list)

    async def set_calendar_connection(
        self,
        principal_id: str,
        *,
        connected: bool,
        calendar_email: str | None,
    ) -> None:
        stmt = (
            update(User)
            .where(User.id == principal_id)
            .values(calendar_connected=connected, calendar_email=calendar_email, updated_at=utc_now_naive())
            .execution_options(**_NO_SYNC)
        )

        async def _set(session: AsyncSession) -> None:
            await session.execute(stmt)

        await self._run(_set)


class SqlAlchemyCalendarCredentialRepository(_TransactionalStore, CalendarCredentialRepository):
    async def get(self, principal_id: str) -> CalendarCredential | None:
        async def _get(session: AsyncSession) -> CalendarCredential | None:
            return await session.get(CalendarCredential, principal_id)

        return await self._run(_get)

    async def save(
        self,
        principal_id: str,
        *,
        access_token: str,
        calendar_email: str | None,
        expires_at: datetime | None,
    ) -> CalendarCredential:
        async def _save(session: AsyncSession) -> CalendarCredential:
            credential = await session.merge(
                CalendarCredential(
                    principal_id=principal_id,
                    access_token=access_token,
                    calendar_email=calendar_email,
                    expires_at=expires_at,
                    updated_at=utc_now_naive(),
                )
            )
            await session.flush()
            return credential

        return await self._run(_save)

    async def delete(self, principal_id: str) -> None:
        stmt = delete(CalendarCredential).where(CalendarCredential.principal_id == principal_id)

        async def _delete(session: AsyncSession) -> None:
            await session.execute(stmt.execution_options(**_NO_SYNC))

        await self._run(_delete)
