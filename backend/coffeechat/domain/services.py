from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, Optional, Sequence

from ..models import SlotStatus
from .errors import ConflictError, ForbiddenError, ValidationError

OUTCOME_STATUSES = (SlotStatus.COMPLETED, SlotStatus.NO_SHOW)


@dataclass(frozen=True)
class SlotSnapshot:
    status: SlotStatus
    host_id: str
    occupant_id: Optional[str]


@dataclass(frozen=True)
class LeaderboardEntry:
    candidate_id: str
    score: int


def validate_slot_fields(
    slot_date: date | None, slot_time: time | None, location: str | None
) -> tuple[date, time, str]:
    """Returns (date, time, stripped location). Raises ValidationError on empty fields."""
    if slot_date is None:
        raise ValidationError("date is required")
    if slot_time is None:
        raise ValidationError("time is required")
    cleaned = (location or "").strip()
    if not cleaned:
        raise ValidationError("location is required")
    return slot_date, slot_time, cleaned


def validate_booking(snapshot: SlotSnapshot, *, occupant_id: str) -> None:
    if snapshot.status != SlotStatus.AVAILABLE:
        raise ConflictError("slot is no longer available")
    if snapshot.host_id == occupant_id:
        raise ForbiddenError("hosts cannot book their own slot")


def validate_cancellation(snapshot: SlotSnapshot, *, requester_id: str) -> str:
    """
    Pure validation for cancel: requester must be occupant or host, slot must be booked.
    Returns the occupant id being released.
    """
    if requester_id not in (snapshot.host_id, snapshot.occupant_id):
        raise ForbiddenError("only the occupant or the host can cancel")
    if snapshot.status != SlotStatus.BOOKED or snapshot.occupant_id is None:
        raise ConflictError(f"cannot cancel a slot in state {snapshot.status}")
    return snapshot.occupant_id


def parse_outcome(outcome: str | SlotStatus) -> SlotStatus:
    try:
        status = SlotStatus(outcome)
    except ValueError as exc:
        raise ValidationError(f"unknown outcome: {outcome}") from exc
    if status not in OUTCOME_STATUSES:
        raise ValidationError("outcome must be completed or no-show")
    return status


def validate_outcome(snapshot: SlotSnapshot, *, requester_id: str, outcome: str | SlotStatus) -> SlotStatus:
    status = parse_outcome(outcome)
    if requester_id != snapshot.host_id:
        raise ForbiddenError("only the host can record an outcome")
    if snapshot.status != SlotStatus.BOOKED:
        raise ConflictError(f"cannot record an outcome for a slot in state {snapshot.status}")
    return status


def validate_deletion(snapshot: SlotSnapshot, *, requester_id: str) -> None:
    if requester_id != snapshot.host_id:
        raise ForbiddenError("only the host can delete a slot")
    if snapshot.status != SlotStatus.AVAILABLE:
        raise ConflictError("only available slots can be deleted")


def validate_ranking(candidate_ids: Sequence[str], *, max_length: int) -> list[str]:
    """Returns the ids stripped of surrounding whitespace, in submitted order."""
    if len(candidate_ids) > max_length:
        raise ValidationError(f"a ranking holds at most {max_length} candidates")
    if any(not isinstance(c, str) or not c.strip() for c in candidate_ids):
        raise ValidationError("candidate ids must be non-empty strings")
    ordered = [c.strip() for c in candidate_ids]
    if len(set(ordered)) != len(ordered):
        raise ValidationError("a ranking cannot list the same candidate twice")
    return ordered


def compute_leaderboard(
    rankings: Iterable[Sequence[str]],
    candidate_universe: Optional[Iterable[str]] = None,
    *,
    limit: Optional[int] = None,
) -> list[LeaderboardEntry]:
    """
    Positional (Borda) count: in a ranking of length L the candidate at index i
    scores L - i. Unranked candidates of the universe score 0. Ranked ids outside
    the universe are ignored; without a universe every ranked id is included.
    Sorted by score descending, then candidate id ascending.
    """
    scores: dict[str, int] = defaultdict(int)
    for ordered in rankings:
        length = len(ordered)
        for index, candidate_id in enumerate(ordered):
            scores[candidate_id] += length - index

    universe = set(scores) if candidate_universe is None else set(candidate_universe)
    entries = [LeaderboardEntry(candidate_id=c, score=scores.get(c, 0)) for c in universe]
    entries.sort(key=lambda e: (-e.score, e.candidate_id))
    if limit is not None:
        entries = entries[:limit]
    return entries
