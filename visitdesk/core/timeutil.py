"""Clock and display helpers.

Timestamps are stored as naive UTC. Calendar days (filters, "today", exports)
are taken in the configured display timezone.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    # Millisecond precision keeps the QR payload and the stored row identical.
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds") + "Z"


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value: str) -> date:
    return date.fromisoformat(value.strip())


def local_date(value: datetime, tz_name: str) -> date:
    return value.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).date()


def day_bounds_utc(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """[start, end) of a local calendar day, as naive UTC."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


def format_display_time(value: datetime, tz_name: str) -> dict:
    local = value.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))
    date_str = local.strftime("%A, %d %B %Y")
    time_str = local.strftime("%I:%M %p")
    zone = local.strftime("%Z")
    return {
        "fullDateTime": f"{date_str} at {time_str} {zone}",
        "dateOnly": date_str,
        "timeOnly": time_str,
        "timestamp": local.strftime("%d/%m/%Y %I:%M %p"),
    }


def duration_minutes(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds() // 60), 0)


def format_duration(start: datetime, end: datetime) -> str:
    total = duration_minutes(start, end)
    hours, minutes = divmod(total, 60)
    minute_part = f"{minutes} minute{'' if minutes == 1 else 's'}"
    if hours > 0:
        return f"{hours} hour{'' if hours == 1 else 's'} {minute_part}"
    return minute_part
