import datetime as dt
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.errors import ExternalSyncFailed
from .domain.services import LeaderboardEntry
from .models import Ranking, Slot, SlotStatus


class SlotCreate(BaseModel):
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    location: str = Field(default="", max_length=255)


class SlotOutcome(BaseModel):
    outcome: Literal["completed", "no-show"]


class SyncWarningRead(BaseModel):
    operation: str
    reason: str
    detail: str

    @classmethod
    def from_domain(cls, warning: ExternalSyncFailed) -> "SyncWarningRead":
        return cls(operation=warning.operation, reason=warning.reason, detail=warning.detail)


class SlotRead(BaseModel):
    slot_id: str
    host_id: str
    host_display_name: str
    date: dt.date
    time: dt.time
    location: str
    status: SlotStatus
    occupant_id: Optional[str]
    occupant_display_name: Optional[str]
    external_event_ref: Optional[str]
    version: int
    created_at: datetime

    @field_serializer("time")
    def _ser_time(self, value: dt.time) -> str:
        return value.strftime("%H:%M")

    @classmethod
    def from_db(cls, *, slot: Slot) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            host_id=slot.host_id,
            host_display_name=slot.host_display_name,
            date=slot.date,
            time=slot.time,
            location=slot.location,
            status=slot.status,
            occupant_id=slot.occupant_id,
            occupant_display_name=slot.occupant_display_name,
            external_event_ref=slot.external_event_ref,
            version=slot.version,
            created_at=slot.created_at,
        )


class BookingRead(BaseModel):
    slot: SlotRead
    warnings: list[SyncWarningRead] = Field(default_factory=list)

    @classmethod
    def from_result(cls, *, slot: Slot, warnings: list[ExternalSyncFailed]) -> "BookingRead":
        return cls(slot=SlotRead.from_db(slot=slot), warnings=[SyncWarningRead.from_domain(w) for w in warnings])


class RankingSubmit(BaseModel):
    candidate_ids: list[str]


class RankingRead(BaseModel):
    ranker_id: str
    candidate_ids: list[str]
    updated_at: Optional[datetime]

    @classmethod
    def from_db(cls, *, ranking: Ranking) -> "RankingRead":
        return cls(ranker_id=ranking.ranker_id, candidate_ids=list(ranking.candidate_ids), updated_at=ranking.updated_at)


class LeaderboardEntryRead(BaseModel):
    rank: int
    candidate_id: str
    score: int

    @classmethod
    def from_entries(cls, entries: list[LeaderboardEntry]) -> list["LeaderboardEntryRead"]:
        return [cls(rank=i + 1, candidate_id=e.candidate_id, score=e.score) for i, e in enumerate(entries)]


class CalendarConnect(BaseModel):
    access_token: str = Field(min_length=1)
    calendar_email: Optional[str] = None
    expires_at: Optional[datetime] = None


class CalendarConnectionRead(BaseModel):
    principal_id: str
    connected: bool
    calendar_email: Optional[str] = None
