"""User-driven reminder operations: create, edit, toggle, status, delete.

All writes go through the schedule store, so a running scheduler picks the
change up from its next snapshot.
"""

import time
from dataclasses import replace
from datetime import date, datetime
from typing import Optional, Union

from logger import logger
from .matcher import parse_hhmm
from .models import Prescription, Reminder, ReminderStatus, RepeatPattern, transition
from .store import ScheduleStore, collection_path, record_path


class ReminderValidationError(ValueError):
    """User supplied reminder fields are invalid."""


class ReminderNotFound(LookupError):
    """No reminder matches the given id."""


def _validate_times(times) -> tuple[str, ...]:
    if isinstance(times, str):
        times = [t for t in times.split(",")]
    cleaned = []
    for t in times or []:
        parsed = parse_hhmm(str(t))
        if parsed is None:
            raise ReminderValidationError(f"Invalid time {t!r}, expected HH:MM (24h)")
        cleaned.append(f"{parsed[0]:02d}:{parsed[1]:02d}")
    if not cleaned:
        raise ReminderValidationError("At least one time is required")
    # Keep order, drop duplicates
    return tuple(dict.fromkeys(cleaned))


def _validate_repeat(repeat) -> RepeatPattern:
    try:
        return RepeatPattern.parse(repeat)
    except ValueError as e:
        raise ReminderValidationError(str(e)) from e


def _validate_total_days(total_days) -> Optional[int]:
    if total_days in (None, ""):
        return None
    try:
        value = int(total_days)
    except (TypeError, ValueError):
        raise ReminderValidationError(f"Invalid day count {total_days!r}")
    if value <= 0:
        raise ReminderValidationError("Day count must be positive")
    return value


async def create_reminder(
    store: ScheduleStore,
    owner_id: str,
    title: str,
    times: Union[str, list[str]],
    repeat=None,
    dosage: Optional[str] = None,
    total_days: Optional[int] = None,
    linked_prescription_id: Optional[str] = None,
    once_date: Optional[date] = None,
    enabled: bool = True
) -> Reminder:
    """Validate and persist a new reminder.

    Raises:
        ReminderValidationError: If any field is invalid
    """
    title = (title or "").strip()
    if not title:
        raise ReminderValidationError("Title is required")

    reminder = Reminder(
        id="",
        title=title,
        times=_validate_times(times),
        repeat=_validate_repeat(repeat),
        enabled=enabled,
        dosage=(dosage or "").strip() or None,
        total_days=_validate_total_days(total_days),
        created_at=int(time.time() * 1000),
        linked_prescription_id=linked_prescription_id,
        once_date=once_date,
    )
    reminder_id = await store.create(collection_path(owner_id, "reminders"), reminder.to_record())
    logger.info(f"Created reminder {reminder_id} for {owner_id}: '{title}' at {', '.join(reminder.times)}")
    return replace(reminder, id=reminder_id)


async def list_reminders(store: ScheduleStore, owner_id: str) -> list[Reminder]:
    """All readable reminders, ordered by creation then first time of day."""
    snapshot = await store.get_once(collection_path(owner_id, "reminders")) or {}
    reminders = []
    for reminder_id, record in snapshot.items():
        try:
            reminders.append(Reminder.from_record(reminder_id, record or {}))
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed reminder {reminder_id}: {e}")

    def sort_key(r: Reminder):
        first = r.occurrences()[0].time
        return (r.created_at or 0, first)

    return sorted(reminders, key=sort_key)


async def get_reminder(store: ScheduleStore, owner_id: str, reminder_id: str) -> Reminder:
    """Look up a reminder by id, or by a unique id prefix.

    Raises:
        ReminderNotFound: If nothing (or more than one reminder) matches
    """
    reminders = await list_reminders(store, owner_id)
    exact = [r for r in reminders if r.id == reminder_id]
    if exact:
        return exact[0]
    matches = [r for r in reminders if r.id.startswith(reminder_id)]
    if len(matches) != 1:
        raise ReminderNotFound(reminder_id)
    return matches[0]


async def update_reminder(store: ScheduleStore, owner_id: str, reminder_id: str, **changes) -> None:
    """Edit title, times, repeat, dosage, totalDays or enabled.

    Raises:
        ReminderValidationError: If a changed field is invalid
    """
    fields = {}
    if "title" in changes:
        title = (changes["title"] or "").strip()
        if not title:
            raise ReminderValidationError("Title is required")
        fields["title"] = title
    if "times" in changes:
        fields["times"] = list(_validate_times(changes["times"]))
    if "repeat" in changes:
        fields["repeatPattern"] = _validate_repeat(changes["repeat"]).to_record()
    if "dosage" in changes:
        fields["dosage"] = (changes["dosage"] or "").strip() or None
    if "total_days" in changes:
        fields["totalDays"] = _validate_total_days(changes["total_days"])
    if "enabled" in changes:
        fields["enabled"] = bool(changes["enabled"])

    unknown = set(changes) - {"title", "times", "repeat", "dosage", "total_days", "enabled"}
    if unknown:
        raise ReminderValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    if not fields:
        return

    await store.update_fields(record_path(owner_id, "reminders", reminder_id), fields)
    logger.info(f"Updated reminder {reminder_id}: {sorted(fields)}")


async def set_enabled(store: ScheduleStore, owner_id: str, reminder_id: str, enabled: bool) -> None:
    await update_reminder(store, owner_id, reminder_id, enabled=enabled)


async def _set_status(
    store: ScheduleStore,
    owner_id: str,
    reminder: Reminder,
    new_status: ReminderStatus,
    completed_at: Optional[int] = None
) -> ReminderStatus:
    await store.update_fields(
        record_path(owner_id, "reminders", reminder.id),
        {"status": new_status.value, "completedAt": completed_at}
    )
    logger.info(f"Reminder {reminder.id}: {reminder.status.value} → {new_status.value}")
    return new_status


async def mark_completed(store: ScheduleStore, owner_id: str, reminder: Reminder) -> ReminderStatus:
    """upcoming/missed → completed, stamped with the time it was taken.

    A reminder still completed from an earlier day can be taken again.

    Raises:
        InvalidStatusTransition: If the reminder was already taken today
    """
    now = datetime.now()
    if reminder.status == ReminderStatus.COMPLETED and not reminder.completed_on(now.date()):
        new_status = ReminderStatus.COMPLETED
    else:
        new_status = transition(reminder.status, ReminderStatus.COMPLETED)
    return await _set_status(store, owner_id, reminder, new_status, int(now.timestamp() * 1000))


async def reset_status(store: ScheduleStore, owner_id: str, reminder: Reminder) -> ReminderStatus:
    """missed/completed → upcoming.

    Raises:
        InvalidStatusTransition: If the reminder is already upcoming
    """
    new_status = transition(reminder.status, ReminderStatus.UPCOMING)
    return await _set_status(store, owner_id, reminder, new_status)


async def delete_reminder(store: ScheduleStore, owner_id: str, reminder_id: str) -> None:
    await store.delete(record_path(owner_id, "reminders", reminder_id))
    logger.info(f"Deleted reminder {reminder_id} for {owner_id}")


async def resolve_prescription(store: ScheduleStore, owner_id: str, reminder: Reminder) -> Optional[Prescription]:
    """Follow a reminder's weak link to its prescription, if any."""
    if not reminder.linked_prescription_id:
        return None
    record = await store.get_once(record_path(owner_id, "prescriptions", reminder.linked_prescription_id))
    if not record:
        return None
    try:
        return Prescription.from_record(reminder.linked_prescription_id, record)
    except (ValueError, TypeError) as e:
        logger.warning(f"Linked prescription {reminder.linked_prescription_id} unreadable: {e}")
        return None
