"""Pure time matching for reminder occurrences.

All comparisons use local wall-clock time: an "HH:MM" string is placed on
the same calendar day as the reference instant.
"""

import re
from datetime import date, datetime, timedelta
from typing import Optional

from . import config
from .models import Reminder, ReminderStatus, RepeatPattern

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value) -> Optional[tuple[int, int]]:
    """Parse "HH:MM" (24h). Returns None for anything unreadable."""
    if not isinstance(value, str):
        return None
    match = _HHMM.match(value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def scheduled_instant(entry_time: str, reference: datetime) -> Optional[datetime]:
    """Today's instant for ``entry_time`` on the reference's calendar day."""
    parsed = parse_hhmm(entry_time)
    if parsed is None:
        return None
    hour, minute = parsed
    return reference.replace(hour=hour, minute=minute, second=0, microsecond=0)


def is_due_now(
    entry_time: str,
    reference: datetime,
    tolerance_seconds: float = config.DUE_TOLERANCE_SECONDS
) -> bool:
    """True while ``reference`` is within the tolerance window of today's time."""
    target = scheduled_instant(entry_time, reference)
    if target is None:
        return False
    diff = abs((reference - target).total_seconds())
    # An exact hit is due even with zero tolerance
    return diff == 0 or diff < tolerance_seconds


def is_missed(
    entry_time: str,
    reference: datetime,
    grace_seconds: float = config.MISSED_GRACE_SECONDS,
    status: ReminderStatus = ReminderStatus.UPCOMING
) -> bool:
    """True once today's time plus grace has passed and the entry is still upcoming."""
    if status != ReminderStatus.UPCOMING:
        return False
    target = scheduled_instant(entry_time, reference)
    if target is None:
        return False
    return target + timedelta(seconds=grace_seconds) < reference


def applies_today(repeat: RepeatPattern, reference_date: date, once_date: Optional[date] = None) -> bool:
    """Whether a repeat pattern is active on ``reference_date``.

    ``once`` with a date applies on that date only; without one it falls
    back to every day (the entry stops alerting once completed).
    """
    if repeat.kind == "daily":
        return True
    if repeat.kind == "weekdays":
        return reference_date.weekday() < 5
    if repeat.kind == "once":
        return once_date is None or once_date == reference_date
    return reference_date.weekday() in repeat.days


def within_total_days(reminder: Reminder, reference_date: date) -> bool:
    """``totalDays`` counts calendar days from the creation date, inclusive."""
    if reminder.total_days is None or reminder.created_at is None:
        return True
    start = datetime.fromtimestamp(reminder.created_at / 1000).date()
    return 0 <= (reference_date - start).days < reminder.total_days


def is_active_on(reminder: Reminder, reference_date: date) -> bool:
    """Day-level applicability: enabled, repeat pattern, and day-count cap."""
    return (
        reminder.enabled
        and applies_today(reminder.repeat, reference_date, reminder.once_date)
        and within_total_days(reminder, reference_date)
    )
