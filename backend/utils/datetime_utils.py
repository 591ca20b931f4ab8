from datetime import datetime, date, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def _zone(tz_name: str | None) -> ZoneInfo | None:
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def today_for_tz(tz_name: str | None) -> date:
    """Return today's date in the user's timezone."""
    zone = _zone(tz_name)
    if zone is not None:
        return datetime.now(zone).date()
    return today_utc()


def start_of_week(d: date) -> date:
    """Return Monday of the week containing d."""
    return d - timedelta(days=d.weekday())


def sunday_based_weekday(d: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (d.weekday() + 1) % 7


def iter_days(start: date, end: date):
    """Yield every date from start through end, inclusive."""
    cursor = start
    while cursor <= end:
        yield cursor
        cursor += timedelta(days=1)


def parse_iso_date(value) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date; None when malformed."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_iso_datetime(value) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def local_minutes_since_midnight(moment: datetime, tz_name: str | None = None) -> int:
    """Minutes since local midnight of a timestamp, in the user's timezone (UTC fallback)."""
    zone = _zone(tz_name) or timezone.utc
    local = moment.astimezone(zone)
    return local.hour * 60 + local.minute


def parse_hhmm(value: str | None, default: str = "00:00") -> int:
    """Parse HH:MM into minutes since midnight, falling back to default."""
    for candidate in (value, default):
        if not candidate or ":" not in candidate:
            continue
        hours, _, minutes = candidate.partition(":")
        try:
            h, m = int(hours), int(minutes)
        except ValueError:
            continue
        if 0 <= h < 24 and 0 <= m < 60:
            return h * 60 + m
    return 0


def format_hhmm(total_minutes: int) -> str:
    total_minutes = int(total_minutes) % (24 * 60)
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"
