"""
Recurrence evaluation for schedules and schedule groups.

`is_due()` is a pure function of (frequency, time of day, last run, now).
The scheduler ticks once a minute, so "now" matches the scheduled time of day
when the two are at most one minute apart.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)

# Allowed distance between now and the scheduled time of day
WINDOW_MINUTES = 1


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """
    Parse an 'HH:MM' string.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    try:
        hours_str, minutes_str = value.strip().split(':')[:2]
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")

    return hours, minutes


def minutes_of_day(hours: int, minutes: int) -> int:
    return hours * 60 + minutes


def in_window(time_of_day: str, now: datetime) -> bool:
    """Whether `now` is within the tolerance window of the scheduled time."""
    hours, minutes = parse_time_of_day(time_of_day)
    distance = abs(minutes_of_day(now.hour, now.minute) - minutes_of_day(hours, minutes))
    return distance <= WINDOW_MINUTES


def is_due(frequency: str, time_of_day: str, last_run: Optional[datetime], now: datetime) -> bool:
    """
    Decide whether a schedule or group should fire now.

    Args:
        frequency: 'hourly', 'daily', 'weekly' or 'monthly'
        time_of_day: Scheduled time as 'HH:MM'
        last_run: Previous dispatch time, None if never run
        now: Current time, in the same timezone as last_run

    Returns:
        True if the item is due

    Raises:
        ValueError: If time_of_day cannot be parsed
    """
    if not in_window(time_of_day, now):
        return False

    if last_run is None:
        return True

    elapsed = now - last_run

    if frequency == 'hourly':
        return elapsed >= ONE_HOUR

    if frequency == 'daily':
        # Day-of-month check keeps a matching minute from firing twice
        return elapsed >= ONE_DAY and last_run.day != now.day

    if frequency == 'weekly':
        return elapsed // ONE_DAY >= 7

    if frequency == 'monthly':
        different_month = (last_run.month, last_run.year) != (now.month, now.year)
        return different_month and elapsed >= ONE_DAY

    return False
