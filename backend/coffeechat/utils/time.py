from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def local_meeting_window(
    slot_date: date,
    slot_time: time,
    *,
    tz_name: str,
    duration_minutes: int,
) -> tuple[datetime, datetime]:
    """Return timezone-aware (start, end) for a slot held in `tz_name` local time."""
    start = datetime.combine(slot_date, slot_time, tzinfo=ZoneInfo(tz_name))
    return start, start + timedelta(minutes=duration_minutes)
