"""Reminder and prescription records for the adherence scheduler.

Records arrive from the store as plain dicts keyed in camelCase. Several
historical shapes are accepted (single ``time``, ``repeat`` instead of
``repeatPattern``, ``{"days": [...]}`` weekday sets with Sunday = 0) and
normalised into the dataclasses below.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from dateutil.parser import parse as parse_datetime


WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class ReminderStatus(Enum):
    """Reminder lifecycle states (independent of ``enabled``)."""
    UPCOMING = "upcoming"
    MISSED = "missed"
    COMPLETED = "completed"


class InvalidStatusTransition(Exception):
    """Raised when a status change is not allowed."""

    def __init__(self, current: ReminderStatus, target: ReminderStatus, automatic: bool):
        self.current = current
        self.target = target
        self.automatic = automatic
        kind = "automatic" if automatic else "user"
        super().__init__(f"Cannot move reminder from {current.value} to {target.value} ({kind})")


# Time-driven transitions made by the scheduler
_AUTOMATIC_TRANSITIONS = {
    ReminderStatus.UPCOMING: {ReminderStatus.MISSED},
}

# Transitions a user can make from chat
_USER_TRANSITIONS = {
    ReminderStatus.UPCOMING: {ReminderStatus.COMPLETED},
    ReminderStatus.MISSED: {ReminderStatus.COMPLETED, ReminderStatus.UPCOMING},
    ReminderStatus.COMPLETED: {ReminderStatus.UPCOMING},
}


def transition(current: ReminderStatus, target: ReminderStatus, automatic: bool = False) -> ReminderStatus:
    """Validate a status change and return the new status.

    Raises:
        InvalidStatusTransition: If the move is not allowed
    """
    allowed = (_AUTOMATIC_TRANSITIONS if automatic else _USER_TRANSITIONS).get(current, set())
    if target not in allowed:
        raise InvalidStatusTransition(current, target, automatic)
    return target


def _weekday_index(name: str) -> int:
    """Map 'mon' / 'Monday' to 0..6 (Monday = 0)."""
    key = name.strip().lower()
    if len(key) >= 3:
        for idx, full in enumerate(WEEKDAY_NAMES):
            if full.startswith(key):
                return idx
    raise ValueError(f"Unknown weekday: {name!r}")


@dataclass(frozen=True)
class RepeatPattern:
    """Which calendar days a schedule is active on.

    ``kind`` is one of daily, weekdays, once or custom; ``days`` holds
    Monday-based weekday numbers for custom patterns.
    """
    kind: str = "daily"
    days: frozenset = frozenset()

    @classmethod
    def parse(cls, value) -> "RepeatPattern":
        """Build a pattern from any stored or user-typed representation.

        Raises:
            ValueError: If the value is not a recognised pattern
        """
        if value is None or value == "":
            return cls("daily")

        if isinstance(value, dict):
            # Legacy shape: {"days": [1, 3, 5]} with Sunday = 0
            days = value.get("days") or []
            return cls("custom", frozenset((int(d) - 1) % 7 for d in days))

        if isinstance(value, (list, tuple, set, frozenset)):
            if not value:
                raise ValueError("Empty weekday set")
            return cls("custom", frozenset(_weekday_index(str(d)) for d in value))

        text = str(value).strip().lower()
        if text in ("daily", "weekdays", "once"):
            return cls(text)
        days = frozenset(_weekday_index(part) for part in text.split(",") if part.strip())
        if not days:
            raise ValueError(f"Unknown repeat pattern: {value!r}")
        return cls("custom", days)

    def to_record(self):
        """Stored representation: a keyword, or a list of weekday names."""
        if self.kind == "custom":
            return [WEEKDAY_NAMES[d] for d in sorted(self.days)]
        return self.kind

    def describe(self) -> str:
        if self.kind == "custom":
            return ", ".join(WEEKDAY_NAMES[d][:3].title() for d in sorted(self.days))
        return self.kind


def _coerce_millis(value) -> Optional[int]:
    """createdAt may be epoch millis or an ISO timestamp (Supabase)."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return int(parse_datetime(str(value)).timestamp() * 1000)


def _coerce_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_datetime(str(value)).date()


def _coerce_times(record: dict) -> tuple[str, ...]:
    times = record.get("times")
    if times is None:
        times = record.get("time")
    if isinstance(times, str):
        times = [times]
    if not times:
        raise ValueError("Schedule has no times")
    return tuple(str(t).strip() for t in times)


@dataclass(frozen=True)
class Reminder:
    """A user-authored medication cue."""
    id: str
    title: str
    times: tuple[str, ...]
    repeat: RepeatPattern = field(default_factory=RepeatPattern)
    enabled: bool = True
    status: ReminderStatus = ReminderStatus.UPCOMING
    dosage: Optional[str] = None
    total_days: Optional[int] = None
    created_at: Optional[int] = None  # epoch millis
    linked_prescription_id: Optional[str] = None
    once_date: Optional[date] = None  # only meaningful for "once"
    completed_at: Optional[int] = None  # epoch millis of the last "taken"
    virtual: bool = False

    @classmethod
    def from_record(cls, reminder_id: str, record: dict) -> "Reminder":
        """Normalise a stored record.

        Raises:
            ValueError: If required fields are missing or unreadable
        """
        title = record.get("title") or record.get("medicineName") or record.get("name")
        if not title:
            raise ValueError(f"Reminder {reminder_id} has no title")

        total_days = record.get("totalDays")
        return cls(
            id=str(reminder_id),
            title=str(title),
            times=_coerce_times(record),
            repeat=RepeatPattern.parse(record.get("repeatPattern", record.get("repeat"))),
            enabled=bool(record.get("enabled", True)),
            status=ReminderStatus(record.get("status") or "upcoming"),
            dosage=record.get("dosage") or None,
            total_days=int(total_days) if total_days not in (None, "") else None,
            created_at=_coerce_millis(record.get("createdAt")),
            linked_prescription_id=record.get("linkedPrescriptionId") or record.get("medicationId") or None,
            once_date=_coerce_date(record.get("date")),
            completed_at=_coerce_millis(record.get("completedAt")),
        )

    def to_record(self) -> dict:
        """camelCase dict suitable for ``ScheduleStore.create``."""
        record = {
            "title": self.title,
            "times": list(self.times),
            "repeatPattern": self.repeat.to_record(),
            "enabled": self.enabled,
            "status": self.status.value,
            "createdAt": self.created_at,
        }
        if self.dosage:
            record["dosage"] = self.dosage
        if self.total_days is not None:
            record["totalDays"] = self.total_days
        if self.linked_prescription_id:
            record["linkedPrescriptionId"] = self.linked_prescription_id
        if self.once_date is not None:
            record["date"] = self.once_date.isoformat()
        if self.completed_at is not None:
            record["completedAt"] = self.completed_at
        return record

    @property
    def label(self) -> str:
        return f"{self.title} • {self.dosage}" if self.dosage else self.title

    def completed_on(self, day: date) -> bool:
        """Whether the reminder was marked taken on ``day`` (local time).

        A completed status left over from an earlier day does not count.
        """
        if self.status != ReminderStatus.COMPLETED or self.completed_at is None:
            return False
        return datetime.fromtimestamp(self.completed_at / 1000).date() == day

    def occurrences(self) -> list["Occurrence"]:
        """One occurrence per time of day, earliest first; unreadable times last."""
        from .matcher import parse_hhmm

        def sort_key(t):
            parsed = parse_hhmm(t)
            return (parsed is None, parsed or (0, 0), t)

        return [Occurrence(self, t) for t in sorted(self.times, key=sort_key)]


@dataclass(frozen=True)
class Prescription:
    """A doctor-authored dosing plan. Read-only for the scheduler."""
    id: str
    name: str
    dose: str
    times: tuple[str, ...]
    repeat: RepeatPattern = field(default_factory=RepeatPattern)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    enabled: bool = True
    created_at: Optional[int] = None

    @classmethod
    def from_record(cls, prescription_id: str, record: dict) -> "Prescription":
        """Normalise a stored prescription.

        Raises:
            ValueError: If required fields are missing or unreadable
        """
        name = record.get("name")
        if not name:
            raise ValueError(f"Prescription {prescription_id} has no name")
        schedule = record.get("schedule") or {}
        return cls(
            id=str(prescription_id),
            name=str(name),
            dose=str(record.get("dose") or ""),
            times=_coerce_times(schedule),
            repeat=RepeatPattern.parse(schedule.get("repeatPattern", schedule.get("repeat"))),
            start_date=_coerce_date(record.get("startDate")),
            end_date=_coerce_date(record.get("endDate")),
            enabled=bool(record.get("enabled", True)),
            created_at=_coerce_millis(record.get("createdAt")),
        )

    def is_current(self, on: date) -> bool:
        """Whether ``on`` falls inside the start/end window."""
        if self.start_date and on < self.start_date:
            return False
        if self.end_date and on > self.end_date:
            return False
        return True

    def virtual_reminders(self) -> list[Reminder]:
        """Expand into one non-persisted reminder per time of day."""
        title = f"{self.name} • {self.dose}" if self.dose else self.name
        return [
            Reminder(
                id=f"pres_{self.id}_{t}",
                title=title,
                times=(t,),
                repeat=self.repeat,
                enabled=self.enabled,
                created_at=self.created_at,
                linked_prescription_id=self.id,
                virtual=True,
            )
            for t in self.times
        ]


@dataclass(frozen=True)
class Occurrence:
    """One (schedule, time-of-day) pair - the unit the matcher and gate work on."""
    reminder: Reminder
    time: str

    @property
    def key(self) -> str:
        return f"{self.reminder.id}#{self.time}"
