"""Chat commands for managing reminders."""

import re
from typing import Optional

from logger import logger
from .dispatcher import AlertDispatcher
from .models import InvalidStatusTransition, Reminder, ReminderStatus
from .service import (
    ReminderNotFound,
    ReminderValidationError,
    create_reminder,
    delete_reminder,
    get_reminder,
    list_reminders,
    mark_completed,
    reset_status,
    resolve_prescription,
    set_enabled,
)
from .store import ScheduleStore

# add reminder 08:00,20:00 Metformin 500mg [daily|weekdays|once|mon,wed] [for 14 days]
_ADD_PATTERN = re.compile(
    r"^add reminder\s+(?P<times>\d{1,2}:\d{2}(?:\s*,\s*\d{1,2}:\d{2})*)\s+(?P<rest>.+)$",
    re.IGNORECASE
)
_DAYS_SUFFIX = re.compile(r"\s+for\s+(\d+)\s+days?$", re.IGNORECASE)
_DAY = r"(?:mon(?:day)?|tue(?:s(?:day)?)?|wed(?:nesday)?|thu(?:rs(?:day)?)?|fri(?:day)?|sat(?:urday)?|sun(?:day)?)"
_REPEAT_WORD = re.compile(
    rf"\s+(daily|weekdays|once|{_DAY}(?:,{_DAY})*)$",
    re.IGNORECASE
)

_STATUS_ICONS = {
    ReminderStatus.UPCOMING: "⏰",
    ReminderStatus.MISSED: "❌",
    ReminderStatus.COMPLETED: "✅",
}


def format_reminder(reminder: Reminder) -> str:
    state = "" if reminder.enabled else " (disabled)"
    icon = _STATUS_ICONS[reminder.status]
    line = f"{icon} **{reminder.label}** - {', '.join(reminder.times)} • {reminder.repeat.describe()}{state}"
    if reminder.total_days:
        line += f" • {reminder.total_days} days"
    return f"{line}\n  `{reminder.id[:8]}` {reminder.status.value}"


async def handle_reminder_command(
    content: str,
    owner_id: str,
    store: ScheduleStore,
    dispatcher: Optional[AlertDispatcher] = None
) -> Optional[str]:
    """Handle reminder-related chat commands.

    Args:
        content: Message content
        owner_id: Patient whose reminders are managed
        store: Schedule store
        dispatcher: Used by ``test alert``

    Returns:
        Response string if handled, None if not a reminder command
    """
    text = content.strip()
    lower = text.lower()

    if lower in ("reminders", "list reminders", "my reminders", "show reminders"):
        return await _list(store, owner_id)

    if lower == "test alert":
        if dispatcher is None:
            return "Alerts are not configured."
        return await dispatcher.test_alert()

    match = _ADD_PATTERN.match(text)
    if match:
        return await _add(store, owner_id, match.group("times"), match.group("rest"))

    parts = lower.split()
    if len(parts) < 2:
        return None
    command, reminder_ref = " ".join(parts[:-1]), text.split()[-1]

    actions = {
        "taken": _complete,
        "done": _complete,
        "reset": _reset,
        "enable": _enable,
        "disable": _disable,
        "delete reminder": _delete,
        "cancel reminder": _delete,
        "reminder": _show,
    }
    action = actions.get(command)
    if action is None:
        return None

    try:
        reminder = await get_reminder(store, owner_id, reminder_ref)
    except ReminderNotFound:
        return "Reminder not found. Use `reminders` to see your reminders."

    try:
        return await action(store, owner_id, reminder)
    except InvalidStatusTransition as e:
        return f"Can't do that: reminder is already {e.current.value}."
    except Exception as e:
        logger.error(f"Reminder command '{command}' failed: {e}")
        return f"Failed to update reminder: {e}"


async def _list(store: ScheduleStore, owner_id: str) -> str:
    reminders = await list_reminders(store, owner_id)
    if not reminders:
        return "No reminders yet. Add one with `add reminder 09:00 Morning medicine`."
    lines = ["**Your reminders:**\n"]
    lines.extend(format_reminder(r) for r in reminders)
    return "\n".join(lines)


async def _add(store: ScheduleStore, owner_id: str, times: str, rest: str) -> str:
    total_days = None
    days_match = _DAYS_SUFFIX.search(rest)
    if days_match:
        total_days = int(days_match.group(1))
        rest = rest[:days_match.start()]

    repeat = "daily"
    repeat_match = _REPEAT_WORD.search(rest)
    if repeat_match:
        repeat = repeat_match.group(1)
        rest = rest[:repeat_match.start()]

    try:
        reminder = await create_reminder(
            store, owner_id, title=rest, times=times, repeat=repeat, total_days=total_days
        )
    except ReminderValidationError as e:
        return f"Couldn't add reminder: {e}"
    except Exception as e:
        logger.error(f"Failed to add reminder: {e}")
        return f"Failed to add reminder: {e}"

    return f"**Reminder set**\n\n{format_reminder(reminder)}"


async def _complete(store, owner_id, reminder: Reminder) -> str:
    await mark_completed(store, owner_id, reminder)
    return f"Marked **{reminder.title}** as taken."


async def _reset(store, owner_id, reminder: Reminder) -> str:
    await reset_status(store, owner_id, reminder)
    return f"**{reminder.title}** is upcoming again."


async def _enable(store, owner_id, reminder: Reminder) -> str:
    await set_enabled(store, owner_id, reminder.id, True)
    return f"Enabled **{reminder.title}**."


async def _disable(store, owner_id, reminder: Reminder) -> str:
    await set_enabled(store, owner_id, reminder.id, False)
    return f"Disabled **{reminder.title}**."


async def _delete(store, owner_id, reminder: Reminder) -> str:
    await delete_reminder(store, owner_id, reminder.id)
    return f"Deleted reminder: {reminder.title}"


async def _show(store, owner_id, reminder: Reminder) -> str:
    text = format_reminder(reminder)
    prescription = await resolve_prescription(store, owner_id, reminder)
    if prescription:
        text += f"\n  Prescription: {prescription.name} {prescription.dose}".rstrip()
    return text
