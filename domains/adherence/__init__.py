"""Medication adherence: reminder scheduling, alerting and missed-dose tracking.

Uses an APScheduler interval job over a live snapshot of the patient's
reminders and prescriptions.
"""

from .models import (
    Reminder,
    Prescription,
    Occurrence,
    RepeatPattern,
    ReminderStatus,
    InvalidStatusTransition,
    transition,
)
from .matcher import parse_hhmm, is_due_now, is_missed, applies_today, is_active_on
from .gate import DedupGate
from .dispatcher import (
    AlertChannel,
    AlertDispatcher,
    DiscordAlertChannel,
    LogAlertChannel,
    build_alert_channel,
)
from .store import (
    ScheduleStore,
    ScheduleStoreError,
    InMemoryScheduleStore,
    SupabaseScheduleStore,
    parse_path,
    collection_path,
    record_path,
)
from .scheduler import AdherenceScheduler, SchedulerState
from .handler import handle_reminder_command

__all__ = [
    "Reminder",
    "Prescription",
    "Occurrence",
    "RepeatPattern",
    "ReminderStatus",
    "InvalidStatusTransition",
    "transition",
    "parse_hhmm",
    "is_due_now",
    "is_missed",
    "applies_today",
    "is_active_on",
    "DedupGate",
    "AlertChannel",
    "AlertDispatcher",
    "DiscordAlertChannel",
    "LogAlertChannel",
    "build_alert_channel",
    "ScheduleStore",
    "ScheduleStoreError",
    "InMemoryScheduleStore",
    "SupabaseScheduleStore",
    "parse_path",
    "collection_path",
    "record_path",
    "AdherenceScheduler",
    "SchedulerState",
    "handle_reminder_command",
]
