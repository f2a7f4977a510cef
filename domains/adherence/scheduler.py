"""Reminder scheduler loop.

States:
- IDLE: no owner, no subscription, no timer
- RUNNING: subscribed to the owner's reminders and prescriptions, tick job armed

Transitions:
- IDLE → RUNNING: start(owner_id) with a non-empty owner id
- RUNNING → IDLE: stop(), or start() with an empty owner id

Each tick walks the latest snapshot: every enabled reminder and every
current prescription is expanded into (schedule, time) occurrences, due
occurrences are alerted once per suppression window, and upcoming
reminders whose time has passed are marked missed in the store.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from logger import logger
from . import config
from .dispatcher import AlertDispatcher
from .gate import DedupGate
from .matcher import is_active_on, is_due_now, is_missed, scheduled_instant
from .models import (
    Occurrence,
    Prescription,
    Reminder,
    ReminderStatus,
    InvalidStatusTransition,
    transition,
)
from .store import ScheduleStore, collection_path, record_path


class SchedulerState(Enum):
    """Scheduler loop states."""
    IDLE = "idle"
    RUNNING = "running"


class AdherenceScheduler:
    """Polls the held reminder snapshot and fires alerts for one owner."""

    def __init__(
        self,
        store: ScheduleStore,
        dispatcher: AlertDispatcher,
        scheduler: AsyncIOScheduler,
        poll_interval: Optional[float] = None,
        due_tolerance: Optional[float] = None,
        missed_grace: Optional[float] = None,
        suppress_window_minutes: Optional[float] = None,
        track_missed: bool = True,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Initialize the loop (starts IDLE).

        Args:
            store: Schedule store to subscribe to and write status into
            dispatcher: Alert dispatcher for due occurrences
            scheduler: APScheduler instance that owns the tick job
            poll_interval: Seconds between ticks (default from config)
            due_tolerance: Due window half-width in seconds (default from config)
            missed_grace: Seconds after the scheduled time before "missed"
            suppress_window_minutes: Dedup window floor (default from config); never
                shorter than a full due window
            track_missed: Write upcoming → missed transitions back to the store
            clock: Returns "now"; defaults to local wall-clock

        Raises:
            ValueError: If the poll interval could step over a due window
        """
        self.store = store
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.poll_interval = poll_interval or config.POLL_INTERVAL_SECONDS
        self.due_tolerance = due_tolerance if due_tolerance is not None else config.DUE_TOLERANCE_SECONDS
        self.missed_grace = missed_grace if missed_grace is not None else config.MISSED_GRACE_SECONDS
        # The gate must outlast a whole due window (2 x tolerance) or a later
        # tick inside the same window fires again
        configured_window = (
            config.SUPPRESS_WINDOW_MINUTES if suppress_window_minutes is None else suppress_window_minutes
        )
        self.suppress_window_minutes = max(configured_window, 2 * self.due_tolerance / 60)
        self.track_missed = track_missed
        self._clock = clock

        if self.poll_interval >= 2 * self.due_tolerance:
            raise ValueError(
                f"Poll interval {self.poll_interval}s must be below twice the due tolerance "
                f"({self.due_tolerance}s) or due windows can be skipped"
            )

        self.state = SchedulerState.IDLE
        self.owner_id: Optional[str] = None
        self.gate = DedupGate(self.suppress_window_minutes)
        self._reminders: tuple[Reminder, ...] = ()
        self._prescriptions: tuple[Prescription, ...] = ()
        self._unsubscribers: list[Callable[[], None]] = []
        self._status_writes: dict[str, asyncio.Task] = {}
        # Bumped on every start/stop so late callbacks can tell they are stale
        self._generation = 0

    @property
    def job_id(self) -> str:
        return f"adherence_tick:{self.owner_id}"

    @property
    def reminders(self) -> tuple[Reminder, ...]:
        return self._reminders

    @property
    def prescriptions(self) -> tuple[Prescription, ...]:
        return self._prescriptions

    def _now(self) -> datetime:
        return self._clock() if self._clock else datetime.now()

    async def start(self, owner_id: Optional[str]) -> None:
        """Subscribe to the owner's schedules, evaluate once, then arm the timer."""
        if not owner_id:
            if self.state == SchedulerState.RUNNING:
                logger.info("Owner context lost, stopping reminder scheduler")
                self.stop()
            else:
                logger.info("No patient id available, reminder scheduler stays idle")
            return

        if self.state == SchedulerState.RUNNING:
            if owner_id == self.owner_id:
                return
            self.stop()

        self._generation += 1
        generation = self._generation
        self.owner_id = owner_id
        self.state = SchedulerState.RUNNING
        self.dispatcher.request_permission_once()

        reminders_unsub = await self.store.subscribe(
            collection_path(owner_id, "reminders"),
            lambda snapshot: self._on_reminders(generation, snapshot)
        )
        prescriptions_unsub = await self.store.subscribe(
            collection_path(owner_id, "prescriptions"),
            lambda snapshot: self._on_prescriptions(generation, snapshot)
        )

        # stop() ran while we were subscribing
        if generation != self._generation:
            reminders_unsub()
            prescriptions_unsub()
            return
        self._unsubscribers = [reminders_unsub, prescriptions_unsub]

        await self.tick()

        if generation != self._generation:
            return

        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.poll_interval),
            id=self.job_id,
            name=f"Reminder check for {owner_id}",
            replace_existing=True,
            coalesce=True,
            max_instances=1
        )
        logger.info(f"Reminder scheduler running for {owner_id} (every {self.poll_interval:g}s)")

    def stop(self) -> None:
        """Cancel the timer and drop subscriptions. Safe to call when idle."""
        if self.state == SchedulerState.IDLE:
            return

        try:
            self.scheduler.remove_job(self.job_id)
        except JobLookupError:
            pass

        for unsubscribe in self._unsubscribers:
            try:
                unsubscribe()
            except Exception as e:
                logger.warning(f"Unsubscribe failed: {e}")

        logger.info(f"Reminder scheduler stopped for {self.owner_id}")
        self._generation += 1
        self._unsubscribers = []
        self._reminders = ()
        self._prescriptions = ()
        self._status_writes = {}
        self.gate = DedupGate(self.suppress_window_minutes)
        self.owner_id = None
        self.state = SchedulerState.IDLE

    def _on_reminders(self, generation: int, snapshot: dict) -> None:
        if generation != self._generation:
            return
        parsed = []
        for reminder_id, record in (snapshot or {}).items():
            try:
                parsed.append(Reminder.from_record(reminder_id, record or {}))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed reminder {reminder_id}: {e}")
        self._reminders = tuple(parsed)

    def _on_prescriptions(self, generation: int, snapshot: dict) -> None:
        if generation != self._generation:
            return
        parsed = []
        for prescription_id, record in (snapshot or {}).items():
            try:
                parsed.append(Prescription.from_record(prescription_id, record or {}))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed prescription {prescription_id}: {e}")
        self._prescriptions = tuple(parsed)

    def occurrences(self, reminders, prescriptions, now: datetime) -> list[Occurrence]:
        """Occurrences eligible today, in snapshot order then time of day.

        Reminders taken today and disabled or out-of-window entries are left out.
        """
        today = now.date()
        entries = [r for r in reminders if not r.completed_on(today)]
        for prescription in prescriptions:
            if prescription.enabled and prescription.is_current(today):
                entries.extend(prescription.virtual_reminders())

        result = []
        for reminder in entries:
            try:
                if is_active_on(reminder, today):
                    result.extend(reminder.occurrences())
            except Exception as e:
                logger.warning(f"Skipping reminder {reminder.id}: {e}")
        return result

    async def tick(self, now: Optional[datetime] = None) -> list[Occurrence]:
        """Evaluate every occurrence once.

        Returns:
            The occurrences that were dispatched this tick
        """
        if self.state != SchedulerState.RUNNING:
            return []

        now = now or self._now()
        generation = self._generation
        gate = self.gate
        # Snapshot replacement during an await must not change this tick's view
        reminders, prescriptions = self._reminders, self._prescriptions
        dispatched = []

        for occurrence in self.occurrences(reminders, prescriptions, now):
            if generation != self._generation:
                break
            reminder = occurrence.reminder
            try:
                if is_due_now(occurrence.time, now, self.due_tolerance):
                    if gate.should_fire(occurrence.key, now):
                        await self.dispatcher.notify(
                            reminder.label,
                            f"Scheduled for {occurrence.time}",
                            tag=occurrence.key
                        )
                        gate.record_fired(occurrence.key, now)
                        dispatched.append(occurrence)
                elif (
                    self.track_missed
                    and not reminder.virtual
                    and is_missed(occurrence.time, now, self.missed_grace, reminder.status)
                    and self._created_before(reminder, occurrence.time, now)
                ):
                    self._mark_missed(reminder)
            except Exception as e:
                logger.error(f"Failed to evaluate {occurrence.key}: {e}")

        if dispatched:
            logger.info(f"Dispatched {len(dispatched)} reminder alert(s)")
        return dispatched

    @staticmethod
    def _created_before(reminder: Reminder, entry_time: str, now: datetime) -> bool:
        """A reminder cannot have missed a time that passed before it existed."""
        if reminder.created_at is None:
            return True
        target = scheduled_instant(entry_time, now)
        return target is not None and reminder.created_at <= target.timestamp() * 1000

    def _mark_missed(self, reminder: Reminder) -> None:
        """Fire-and-forget upcoming → missed write (one in flight per reminder)."""
        if reminder.id in self._status_writes:
            return
        try:
            transition(reminder.status, ReminderStatus.MISSED, automatic=True)
        except InvalidStatusTransition:
            return

        task = asyncio.create_task(self._write_missed(self._generation, self.owner_id, reminder.id))
        self._status_writes[reminder.id] = task

    async def _write_missed(self, generation: int, owner_id: str, reminder_id: str) -> None:
        try:
            await self.store.update_fields(
                record_path(owner_id, "reminders", reminder_id),
                {"status": ReminderStatus.MISSED.value}
            )
            if generation == self._generation:
                logger.info(f"Marked reminder {reminder_id} as missed")
        except Exception as e:
            if generation == self._generation:
                logger.error(f"Failed to mark reminder {reminder_id} missed: {e}")
        finally:
            if generation == self._generation:
                self._status_writes.pop(reminder_id, None)

    async def wait_for_status_writes(self) -> None:
        """Await in-flight status writes (tests and shutdown)."""
        tasks = list(self._status_writes.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
