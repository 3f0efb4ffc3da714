"""
Date arithmetic for scheduled blasts and reminders.

Day of week follows the portal convention: 0 = Sunday ... 6 = Saturday.
"""
import re
from datetime import datetime, timedelta
from typing import Optional, Tuple

from dateutil.relativedelta import relativedelta

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse ``HH:MM``; None when missing or malformed"""
    if not value:
        return None
    match = TIME_PATTERN.match(value.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def python_weekday(day_of_week: int) -> int:
    """Sunday-based index to datetime.weekday() (Monday = 0)"""
    return (day_of_week - 1) % 7


def at_time(moment: datetime, scheduled_time: Optional[str]) -> datetime:
    parsed = parse_time(scheduled_time)
    if parsed is None:
        return moment
    hours, minutes = parsed
    return moment.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def first_execution(
    scheduled_date: datetime,
    frequency: str,
    scheduled_time: Optional[str] = None,
    day_of_week: Optional[int] = None,
) -> datetime:
    """
    First run of a new schedule: the scheduled date at the scheduled time,
    moved forward to the requested weekday for weekly schedules.
    """
    start = at_time(scheduled_date, scheduled_time)
    if frequency == "weekly" and day_of_week is not None:
        start += timedelta(days=(python_weekday(day_of_week) - start.weekday()) % 7)
    return start


def next_execution(
    frequency: str,
    scheduled_time: Optional[str] = None,
    day_of_week: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Following run after an execution at ``now``. Returns None for one-time
    schedules.

    - daily: tomorrow at the scheduled time
    - weekly: the next target weekday strictly after today
    - monthly: same day next month
    """
    now = now or datetime.utcnow()

    if frequency == "daily":
        return at_time(now + timedelta(days=1), scheduled_time)

    if frequency == "weekly":
        target = python_weekday(day_of_week if day_of_week is not None else (now.weekday() + 1) % 7)
        days_ahead = (target - now.weekday()) % 7 or 7
        return at_time(now + timedelta(days=days_ahead), scheduled_time)

    if frequency == "monthly":
        return at_time(now + relativedelta(months=1), scheduled_time)

    return None
