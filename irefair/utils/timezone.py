"""
Time helpers: UTC timestamps for storage and meeting time formatting.

Meeting date/time values are wall-clock times in the meeting's own
timezone ("2025-01-03", "14:30", "America/Toronto").
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

COMMON_TIMEZONES = [
    # Canada
    "America/St_Johns",
    "America/Halifax",
    "America/Moncton",
    "America/Toronto",
    "America/Montreal",
    "America/Winnipeg",
    "America/Regina",
    "America/Edmonton",
    "America/Calgary",
    "America/Vancouver",
    "America/Whitehorse",
    "America/Yellowknife",
    "America/Iqaluit",
    # United States
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Phoenix",
    "America/Los_Angeles",
    "America/Anchorage",
    "Pacific/Honolulu",
    # Europe
    "Europe/London",
    "Europe/Paris",
    "Europe/Berlin",
    "Europe/Amsterdam",
    "Europe/Madrid",
    "Europe/Rome",
    "Europe/Zurich",
    "Europe/Brussels",
    "Europe/Vienna",
    "Europe/Warsaw",
    "Europe/Stockholm",
    "Europe/Oslo",
    "Europe/Copenhagen",
    "Europe/Helsinki",
    "Europe/Athens",
    "Europe/Moscow",
    # Asia / Pacific
    "Asia/Dubai",
    "Asia/Kolkata",
    "Asia/Singapore",
    "Asia/Hong_Kong",
    "Asia/Tokyo",
    "Asia/Seoul",
    "Asia/Shanghai",
    "Australia/Sydney",
    "Australia/Melbourne",
    "Australia/Brisbane",
    "Australia/Perth",
    "Pacific/Auckland",
    "UTC",
]

_TIME_12H_RE = re.compile(r"(\d{1,2}):(\d{2})\s*(AM|PM)")
_TIME_24H_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat(timespec="milliseconds")


def iso_in(**delta) -> str:
    """ISO timestamp `timedelta(**delta)` from now."""
    return (utc_now() + timedelta(**delta)).isoformat(timespec="milliseconds")


def is_valid_timezone(tz: Optional[str]) -> bool:
    if not tz or not isinstance(tz, str):
        return False
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _parse_time(value: str):
    upper = value.strip().upper()
    if "AM" in upper or "PM" in upper:
        match = _TIME_12H_RE.search(upper)
        if not match:
            return None
        hours, minutes = int(match.group(1)), int(match.group(2))
        is_pm = match.group(3) == "PM"
        if hours == 12:
            hours = 12 if is_pm else 0
        elif is_pm:
            hours += 12
        return hours, minutes
    match = _TIME_24H_RE.match(upper)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def format_meeting_datetime(date: str, time: str, tz: str) -> str:
    """
    "Friday, January 3, 2025 at 2:30 PM (EST)".

    Falls back to "<date> at <time> (<tz>)" when any part cannot be parsed.
    """
    if not date or not time or not tz:
        return ""

    fallback = f"{date} at {time} ({tz})"
    try:
        year, month, day = (int(part) for part in date.split("-"))
        parsed_time = _parse_time(time)
        if parsed_time is None:
            return fallback
        local = datetime(year, month, day, parsed_time[0], parsed_time[1], tzinfo=ZoneInfo(tz))
    except (ValueError, ZoneInfoNotFoundError):
        return fallback

    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    date_part = f"{local:%A}, {local:%B} {local.day}, {local.year}"
    time_part = f"{hour}:{local.minute:02d} {suffix}"
    return f"{date_part} at {time_part} ({local.tzname() or tz})"
