"""Tests for user-driven reminder operations."""

from datetime import date

import pytest
from freezegun import freeze_time

from domains.adherence.models import InvalidStatusTransition, ReminderStatus, RepeatPattern
from domains.adherence.service import (
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
    update_reminder,
)

OWNER = "patient-1"


async def _stored(store, reminder_id):
    return await store.get_once(f"patients/{OWNER}/reminders/{reminder_id}")


class TestCreateReminder:

    @pytest.mark.asyncio
    async def test_persists_normalised_record(self, store):
        with freeze_time("2026-03-02 08:00:00"):
            reminder = await create_reminder(
                store, OWNER, " Metformin ", "8:00, 20:00,08:00",
                repeat="mon,fri", dosage="500 mg", total_days="14",
            )

        assert reminder.id
        assert reminder.times == ("08:00", "20:00")
        record = await _stored(store, reminder.id)
        assert record["title"] == "Metformin"
        assert record["times"] == ["08:00", "20:00"]
        assert record["repeatPattern"] == ["monday", "friday"]
        assert record["totalDays"] == 14
        assert record["status"] == "upcoming"
        assert record["enabled"] is True
        assert record["createdAt"] == 1772438400000

    @pytest.mark.asyncio
    async def test_defaults_to_daily(self, store):
        reminder = await create_reminder(store, OWNER, "Vitamin D", ["09:00"])
        assert reminder.repeat == RepeatPattern("daily")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"title": "", "times": "09:00"},
        {"title": "x", "times": ""},
        {"title": "x", "times": "9am"},
        {"title": "x", "times": "24:00"},
        {"title": "x", "times": "09:00", "repeat": "fortnightly"},
        {"title": "x", "times": "09:00", "total_days": 0},
        {"title": "x", "times": "09:00", "total_days": "a week"},
    ])
    async def test_rejects_invalid_fields(self, store, kwargs):
        with pytest.raises(ReminderValidationError):
            await create_reminder(store, OWNER, **kwargs)
        assert await store.get_once(f"patients/{OWNER}/reminders") == {}


class TestLookup:

    @pytest.mark.asyncio
    async def test_list_skips_malformed_records(self, store):
        await store.create(f"patients/{OWNER}/reminders", {"title": "no times"})
        good = await create_reminder(store, OWNER, "Good", "09:00")

        assert [r.id for r in await list_reminders(store, OWNER)] == [good.id]

    @pytest.mark.asyncio
    async def test_list_orders_by_creation(self, store):
        with freeze_time("2026-03-02 08:00:00"):
            first = await create_reminder(store, OWNER, "First", "21:00")
        with freeze_time("2026-03-02 09:00:00"):
            second = await create_reminder(store, OWNER, "Second", "07:00")

        assert [r.id for r in await list_reminders(store, OWNER)] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_get_by_unique_prefix(self, store):
        await store.create(f"patients/{OWNER}/reminders/abc123", {"title": "A", "times": ["09:00"]})
        await store.create(f"patients/{OWNER}/reminders/abd456", {"title": "B", "times": ["09:00"]})

        assert (await get_reminder(store, OWNER, "abc")).title == "A"
        with pytest.raises(ReminderNotFound):
            await get_reminder(store, OWNER, "ab")
        with pytest.raises(ReminderNotFound):
            await get_reminder(store, OWNER, "zzz")


class TestEdits:

    @pytest.mark.asyncio
    async def test_update_changes_only_named_fields(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00", dosage="1 tab")

        await update_reminder(store, OWNER, reminder.id, times="10:30", repeat="weekdays", total_days=None)

        record = await _stored(store, reminder.id)
        assert record["times"] == ["10:30"]
        assert record["repeatPattern"] == "weekdays"
        assert record["totalDays"] is None
        assert record["dosage"] == "1 tab"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_field(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00")
        with pytest.raises(ReminderValidationError):
            await update_reminder(store, OWNER, reminder.id, status="completed")

    @pytest.mark.asyncio
    async def test_disable_keeps_status(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00")
        await store.update_fields(f"patients/{OWNER}/reminders/{reminder.id}", {"status": "missed"})

        await set_enabled(store, OWNER, reminder.id, False)

        record = await _stored(store, reminder.id)
        assert record["enabled"] is False
        assert record["status"] == "missed"

    @pytest.mark.asyncio
    async def test_delete(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00")
        await delete_reminder(store, OWNER, reminder.id)
        assert await _stored(store, reminder.id) is None


class TestStatus:

    @pytest.mark.asyncio
    async def test_complete_then_reset(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00")

        assert await mark_completed(store, OWNER, reminder) == ReminderStatus.COMPLETED
        completed = await get_reminder(store, OWNER, reminder.id)
        assert completed.status == ReminderStatus.COMPLETED

        assert await reset_status(store, OWNER, completed) == ReminderStatus.UPCOMING
        assert (await _stored(store, reminder.id))["status"] == "upcoming"

    @pytest.mark.asyncio
    async def test_missed_can_be_completed(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00")
        await store.update_fields(f"patients/{OWNER}/reminders/{reminder.id}", {"status": "missed"})

        missed = await get_reminder(store, OWNER, reminder.id)
        await mark_completed(store, OWNER, missed)

        assert (await _stored(store, reminder.id))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_reset_upcoming_is_rejected(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00")
        with pytest.raises(InvalidStatusTransition):
            await reset_status(store, OWNER, reminder)


class TestResolvePrescription:

    @pytest.mark.asyncio
    async def test_follows_link(self, store):
        await store.create(f"patients/{OWNER}/prescriptions/rx1", {
            "name": "Atorvastatin", "dose": "10 mg", "schedule": {"times": ["21:00"]},
        })
        reminder = await create_reminder(store, OWNER, "Statin", "21:00", linked_prescription_id="rx1")

        prescription = await resolve_prescription(store, OWNER, reminder)

        assert prescription.name == "Atorvastatin"

    @pytest.mark.asyncio
    async def test_dangling_link_is_none(self, store):
        reminder = await create_reminder(store, OWNER, "Statin", "21:00", linked_prescription_id="gone")
        assert await resolve_prescription(store, OWNER, reminder) is None

    @pytest.mark.asyncio
    async def test_no_link(self, store):
        reminder = await create_reminder(store, OWNER, "Statin", "21:00")
        assert await resolve_prescription(store, OWNER, reminder) is None


class TestTakenPerDay:

    @pytest.mark.asyncio
    async def test_taken_is_stamped_and_reset_clears_it(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00")

        with freeze_time("2026-03-02 09:05:00"):
            await mark_completed(store, OWNER, reminder)
        record = await _stored(store, reminder.id)
        # 2026-03-02 09:05 UTC
        assert record["completedAt"] == 1772442300000

        await reset_status(store, OWNER, await get_reminder(store, OWNER, reminder.id))
        assert (await _stored(store, reminder.id))["completedAt"] is None

    @pytest.mark.asyncio
    async def test_can_take_again_on_a_later_day(self, store):
        reminder = await create_reminder(store, OWNER, "Pill", "09:00")
        with freeze_time("2026-03-02 09:05:00"):
            await mark_completed(store, OWNER, reminder)

        with freeze_time("2026-03-03 09:05:00"):
            yesterday = await get_reminder(store, OWNER, reminder.id)
            assert await mark_completed(store, OWNER, yesterday) == ReminderStatus.COMPLETED
            today = await get_reminder(store, OWNER, reminder.id)
            assert today.completed_on(date(2026, 3, 3))
            with pytest.raises(InvalidStatusTransition):
                await mark_completed(store, OWNER, today)
