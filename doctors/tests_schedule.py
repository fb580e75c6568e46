"""
Tests for the schedule override manager.

Covers:
- Blocking a date (safety check, force, past dates, replacing overrides)
- Date override CRUD and validation (overlap, order, operating hours)
- Bulk override upsert with per-date results
- Blocked-date set (duplicates, conflicts, unblock)
- Weekly template updates
- Admin inline window validation
- Schedule API endpoints and doctor-only access
"""

from datetime import time, timedelta

from django.contrib.auth import get_user_model
from django.forms import inlineformset_factory
from django.http import Http404
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from appointments.exceptions import BlockConflictError, ScheduleValidationError
from appointments.models import Appointment, generate_appointment_number
from doctors.forms import TimeWindowFormSet
from doctors.models import (
    AvailabilityWindow,
    BlockedDate,
    DateOverride,
    DoctorAvailability,
    DoctorProfile,
)
from doctors.services import (
    block_date,
    block_dates,
    bulk_upsert_date_overrides,
    create_date_override,
    delete_date_override,
    find_conflicting_appointments,
    get_available_slots,
    get_schedule,
    unblock_dates,
    update_date_override,
    update_weekly_schedule,
)

User = get_user_model()


class ScheduleTestMixin:
    """Approved doctor with a Monday 09:00-12:00 template and one pending booking."""

    def setUp(self):
        self.doctor = User.objects.create_user(
            phone="0591000002",
            password="testpass123",
            name="Dr. Ahmad",
            role="DOCTOR",
        )
        self.patient = User.objects.create_user(
            phone="0591000003",
            password="testpass123",
            name="Patient Ali",
            role="PATIENT",
        )
        DoctorProfile.objects.create(user=self.doctor, is_approved=True)

        today = timezone.localdate()
        days_ahead = 0 - today.weekday()
        if days_ahead <= 0:
            days_ahead += 7
        self.next_monday = today + timedelta(days=days_ahead)
        self.yesterday = today - timedelta(days=1)

        update_weekly_schedule(
            self.doctor,
            [{"day_of_week": 0, "windows": [{"start": "09:00", "end": "12:00"}]}],
        )

    def book(self, start=time(9, 0), end=time(9, 30), on_date=None):
        on_date = on_date or self.next_monday
        return Appointment.objects.create(
            appointment_number=generate_appointment_number(on_date),
            patient=self.patient,
            doctor=self.doctor,
            appointment_date=on_date,
            start_time=start,
            end_time=end,
        )


# ═══════════════════════════════════════════════════════════════════
#  Blocking
# ═══════════════════════════════════════════════════════════════════


class BlockDateTests(ScheduleTestMixin, TestCase):
    """Tests for block_date()."""

    def test_block_free_date(self):
        override = block_date(self.doctor, self.next_monday, reason="Conference")
        self.assertTrue(override.is_blocked)
        self.assertFalse(override.is_available)
        self.assertEqual(get_available_slots(self.doctor.id, self.next_monday), [])

    def test_block_with_pending_appointment_rejected(self):
        """Without force, a date holding a live booking cannot be blocked."""
        appointment = self.book()

        with self.assertRaises(BlockConflictError) as ctx:
            block_date(self.doctor, self.next_monday)

        self.assertEqual(ctx.exception.code, "HAS_EXISTING_APPOINTMENTS")
        self.assertEqual(ctx.exception.extra["conflicting_appointments"], [appointment.appointment_number])
        self.assertFalse(DateOverride.objects.filter(doctor=self.doctor, date=self.next_monday).exists())
        appointment.refresh_from_db()
        self.assertEqual(appointment.status, Appointment.Status.PENDING)

    def test_cancelled_appointment_does_not_conflict(self):
        appointment = self.book()
        appointment.status = Appointment.Status.CANCELLED
        appointment.save()
        block_date(self.doctor, self.next_monday)

    def test_forced_block_leaves_appointments_untouched(self):
        appointment = self.book()

        block_date(self.doctor, self.next_monday, force=True)

        appointment.refresh_from_db()
        self.assertEqual(appointment.status, Appointment.Status.PENDING)
        self.assertEqual(appointment.start_time, time(9, 0))

    def test_block_past_date_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            block_date(self.doctor, self.yesterday)

    def test_block_replaces_existing_override(self):
        create_date_override(
            self.doctor,
            date=self.next_monday,
            windows=[{"start": "13:00", "end": "14:00"}],
        )
        override = block_date(self.doctor, self.next_monday)

        self.assertEqual(DateOverride.objects.filter(doctor=self.doctor, date=self.next_monday).count(), 1)
        self.assertTrue(override.is_blocked)
        self.assertEqual(override.windows.count(), 0)

    def test_blocked_signal_sent_after_commit(self):
        from appointments.signals import schedule_date_blocked

        received = []

        def receiver(sender, **kwargs):
            received.append(kwargs)

        schedule_date_blocked.connect(receiver)
        self.addCleanup(schedule_date_blocked.disconnect, receiver)

        with self.captureOnCommitCallbacks(execute=True):
            block_date(self.doctor, self.next_monday, reason="Leave")

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0]["date"], self.next_monday)
        self.assertEqual(received[0]["reason"], "Leave")


# ═══════════════════════════════════════════════════════════════════
#  Date Overrides
# ═══════════════════════════════════════════════════════════════════


class DateOverrideTests(ScheduleTestMixin, TestCase):
    """Tests for date override create / update / delete."""

    def test_create_override_with_windows(self):
        override = create_date_override(
            self.doctor,
            date=self.next_monday,
            windows=[{"start": "13:00", "end": "14:00"}, {"start": "09:00", "end": "10:00"}],
        )
        self.assertEqual(override.windows.count(), 2)
        self.assertEqual(
            [slot["start"] for slot in get_available_slots(self.doctor.id, self.next_monday)],
            ["09:00", "09:30", "13:00", "13:30"],
        )

    def test_overlapping_windows_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            create_date_override(
                self.doctor,
                date=self.next_monday,
                windows=[{"start": "09:00", "end": "11:00"}, {"start": "10:30", "end": "12:00"}],
            )

    def test_start_after_end_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            create_date_override(self.doctor, date=self.next_monday, windows=[{"start": "11:00", "end": "10:00"}])

    def test_malformed_time_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            create_date_override(self.doctor, date=self.next_monday, windows=[{"start": "9am", "end": "10:00"}])

    @override_settings(SCHEDULING={"OPERATING_HOURS": ("08:00", "18:00")})
    def test_window_outside_operating_hours_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            create_date_override(self.doctor, date=self.next_monday, windows=[{"start": "07:00", "end": "09:00"}])

    def test_past_date_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            create_date_override(self.doctor, date=self.yesterday, windows=[{"start": "09:00", "end": "10:00"}])

    def test_duplicate_date_rejected(self):
        create_date_override(self.doctor, date=self.next_monday, windows=[{"start": "09:00", "end": "10:00"}])
        with self.assertRaises(ScheduleValidationError):
            create_date_override(self.doctor, date=self.next_monday)

    def test_override_dropping_booked_slot_rejected(self):
        """Reduced hours that no longer cover a booking need force."""
        self.book(time(11, 0), time(11, 30))
        with self.assertRaises(BlockConflictError):
            create_date_override(self.doctor, date=self.next_monday, windows=[{"start": "09:00", "end": "10:00"}])

    def test_override_still_covering_booking_allowed(self):
        self.book(time(9, 0), time(9, 30))
        create_date_override(self.doctor, date=self.next_monday, windows=[{"start": "09:00", "end": "10:00"}])

    def test_update_replaces_windows(self):
        override = create_date_override(
            self.doctor, date=self.next_monday, windows=[{"start": "09:00", "end": "10:00"}]
        )
        update_date_override(self.doctor, override.pk, windows=[{"start": "15:00", "end": "16:00"}])
        self.assertEqual(
            [slot["start"] for slot in get_available_slots(self.doctor.id, self.next_monday)],
            ["15:00", "15:30"],
        )

    def test_update_keeps_windows_when_omitted(self):
        override = create_date_override(
            self.doctor, date=self.next_monday, windows=[{"start": "09:00", "end": "10:00"}]
        )
        update_date_override(self.doctor, override.pk, reason="Short day")
        override.refresh_from_db()
        self.assertEqual(override.reason, "Short day")
        self.assertEqual(override.windows.count(), 1)

    def test_update_to_blocked_checks_conflicts(self):
        override = create_date_override(
            self.doctor, date=self.next_monday, windows=[{"start": "09:00", "end": "10:00"}]
        )
        self.book()
        with self.assertRaises(BlockConflictError):
            update_date_override(self.doctor, override.pk, is_blocked=True)

    def test_other_doctors_override_not_found(self):
        other = User.objects.create_user(phone="0591000009", password="x", name="Dr. Other", role="DOCTOR")
        override = create_date_override(self.doctor, date=self.next_monday)
        with self.assertRaises(Http404):
            update_date_override(other, override.pk, reason="nope")

    def test_delete_restores_weekly_template(self):
        override = create_date_override(self.doctor, date=self.next_monday)
        self.assertEqual(get_available_slots(self.doctor.id, self.next_monday), [])

        delete_date_override(self.doctor, override.pk)

        self.assertEqual(len(get_available_slots(self.doctor.id, self.next_monday)), 6)

    def test_find_conflicting_appointments(self):
        inside = self.book(time(9, 0), time(9, 30))
        outside = self.book(time(11, 0), time(11, 30))
        conflicts = find_conflicting_appointments(self.doctor, self.next_monday, [(540, 600)])
        self.assertEqual(conflicts, [outside])
        self.assertNotIn(inside, conflicts)


class BulkDateOverrideTests(ScheduleTestMixin, TestCase):
    """Tests for bulk_upsert_date_overrides()."""

    def test_creates_updates_and_reports_errors(self):
        existing = create_date_override(self.doctor, date=self.next_monday)
        next_tuesday = self.next_monday + timedelta(days=1)

        result = bulk_upsert_date_overrides(
            self.doctor,
            [
                {"date": self.next_monday, "windows": [{"start": "10:00", "end": "11:00"}]},
                {"date": next_tuesday, "windows": [{"start": "09:00", "end": "10:00"}]},
                {"date": self.yesterday, "windows": [{"start": "09:00", "end": "10:00"}]},
            ],
        )

        self.assertEqual([o.pk for o in result["updated"]], [existing.pk])
        self.assertEqual([o.date for o in result["created"]], [next_tuesday])
        self.assertEqual(len(result["errors"]), 1)
        self.assertEqual(result["errors"][0]["date"], self.yesterday)
        self.assertEqual(result["errors"][0]["code"], "VALIDATION_ERROR")

    def test_conflicting_entry_does_not_undo_others(self):
        self.book()
        next_tuesday = self.next_monday + timedelta(days=1)

        result = bulk_upsert_date_overrides(
            self.doctor,
            [
                {"date": self.next_monday, "is_blocked": True},
                {"date": next_tuesday, "windows": [{"start": "09:00", "end": "10:00"}]},
            ],
        )

        self.assertEqual(result["errors"][0]["code"], "HAS_EXISTING_APPOINTMENTS")
        self.assertTrue(DateOverride.objects.filter(doctor=self.doctor, date=next_tuesday).exists())
        self.assertFalse(DateOverride.objects.filter(doctor=self.doctor, date=self.next_monday).exists())


# ═══════════════════════════════════════════════════════════════════
#  Blocked Dates
# ═══════════════════════════════════════════════════════════════════


class BlockedDatesTests(ScheduleTestMixin, TestCase):
    """Tests for block_dates() / unblock_dates()."""

    def test_block_and_skip_duplicates(self):
        next_tuesday = self.next_monday + timedelta(days=1)
        block_dates(self.doctor, [self.next_monday])

        created = block_dates(self.doctor, [self.next_monday, next_tuesday, next_tuesday])

        self.assertEqual([b.date for b in created], [next_tuesday])
        self.assertEqual(BlockedDate.objects.filter(doctor=self.doctor).count(), 2)

    def test_blocked_date_removes_slots(self):
        block_dates(self.doctor, [self.next_monday])
        self.assertEqual(get_available_slots(self.doctor.id, self.next_monday), [])

    def test_conflict_reports_dates(self):
        self.book()
        with self.assertRaises(BlockConflictError) as ctx:
            block_dates(self.doctor, [self.next_monday])
        self.assertEqual(ctx.exception.extra["conflicting_dates"], [self.next_monday.isoformat()])
        self.assertFalse(BlockedDate.objects.exists())

    def test_past_date_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            block_dates(self.doctor, [self.yesterday])

    def test_unblock(self):
        block_dates(self.doctor, [self.next_monday])
        self.assertEqual(unblock_dates(self.doctor, [self.next_monday]), 1)
        self.assertEqual(len(get_available_slots(self.doctor.id, self.next_monday)), 6)


# ═══════════════════════════════════════════════════════════════════
#  Weekly Template
# ═══════════════════════════════════════════════════════════════════


class WeeklyScheduleTests(ScheduleTestMixin, TestCase):
    """Tests for update_weekly_schedule() and get_schedule()."""

    def test_replaces_listed_days_only(self):
        update_weekly_schedule(
            self.doctor,
            [{"day_of_week": 1, "windows": [{"start": "14:00", "end": "16:00"}]}],
        )
        monday = DoctorAvailability.objects.get(doctor=self.doctor, day_of_week=0)
        tuesday = DoctorAvailability.objects.get(doctor=self.doctor, day_of_week=1)
        self.assertEqual(monday.windows.count(), 1)
        self.assertEqual(tuesday.windows.get().start_time, time(14, 0))

    def test_windows_replaced_not_appended(self):
        update_weekly_schedule(
            self.doctor,
            [{"day_of_week": 0, "windows": [{"start": "10:00", "end": "11:00"}]}],
        )
        monday = DoctorAvailability.objects.get(doctor=self.doctor, day_of_week=0)
        self.assertEqual([w.start_time for w in monday.windows.all()], [time(10, 0)])

    def test_invalid_day_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            update_weekly_schedule(self.doctor, [{"day_of_week": 7, "windows": []}])

    def test_duplicate_day_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            update_weekly_schedule(self.doctor, [{"day_of_week": 2}, {"day_of_week": 2}])

    def test_get_schedule_range(self):
        create_date_override(self.doctor, date=self.next_monday)
        later = self.next_monday + timedelta(days=14)
        create_date_override(self.doctor, date=later)

        schedule = get_schedule(self.doctor, end_date=self.next_monday + timedelta(days=7))

        self.assertEqual([o.date for o in schedule["date_overrides"]], [self.next_monday])
        self.assertEqual(schedule["weekly"].count(), 1)


class TimeWindowFormSetTests(ScheduleTestMixin, TestCase):
    """Admin inline windows follow the same rules as the schedule API."""

    def setUp(self):
        super().setUp()
        self.monday = DoctorAvailability.objects.get(doctor=self.doctor, day_of_week=0)
        self.existing = self.monday.windows.get()
        self.FormSet = inlineformset_factory(
            DoctorAvailability,
            AvailabilityWindow,
            formset=TimeWindowFormSet,
            fields=["start_time", "end_time", "is_available"],
            extra=1,
        )

    def bound_formset(self, new_start, new_end, delete_existing=False):
        data = {
            "windows-TOTAL_FORMS": "2",
            "windows-INITIAL_FORMS": "1",
            "windows-MIN_NUM_FORMS": "0",
            "windows-MAX_NUM_FORMS": "1000",
            "windows-0-id": str(self.existing.pk),
            "windows-0-start_time": "09:00",
            "windows-0-end_time": "12:00",
            "windows-0-is_available": "on",
            "windows-1-start_time": new_start,
            "windows-1-end_time": new_end,
            "windows-1-is_available": "on",
        }
        if delete_existing:
            data["windows-0-DELETE"] = "on"
        return self.FormSet(data, instance=self.monday, prefix="windows")

    def test_overlapping_window_rejected(self):
        formset = self.bound_formset("11:00", "13:00")
        self.assertFalse(formset.is_valid())
        self.assertIn("overlap", formset.non_form_errors()[0])

    def test_adjacent_window_accepted(self):
        formset = self.bound_formset("12:00", "13:00")
        self.assertTrue(formset.is_valid(), formset.errors)
        formset.save()

        slots = get_available_slots(self.doctor.id, self.next_monday)
        self.assertEqual(slots[-1], {"start": "12:30", "end": "13:00"})

    def test_deleted_window_ignored(self):
        formset = self.bound_formset("11:00", "13:00", delete_existing=True)
        self.assertTrue(formset.is_valid(), formset.errors)

    @override_settings(SCHEDULING={"OPERATING_HOURS": ("08:00", "18:00")})
    def test_window_outside_operating_hours_rejected(self):
        formset = self.bound_formset("17:00", "19:00")
        self.assertFalse(formset.is_valid())


# ═══════════════════════════════════════════════════════════════════
#  API Endpoints
# ═══════════════════════════════════════════════════════════════════


class ScheduleAPITests(ScheduleTestMixin, TestCase):
    """Tests for the doctor schedule endpoints."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.doctor)

    def test_block_date_endpoint(self):
        response = self.client.put(
            reverse("doctors:api_block_date"),
            {"date": self.next_monday.isoformat(), "reason": "Conference"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_blocked"])
        self.assertEqual(response.data["windows"], [])

    def test_block_date_conflict_returns_409(self):
        self.book()
        response = self.client.put(
            reverse("doctors:api_block_date"),
            {"date": self.next_monday.isoformat()},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "HAS_EXISTING_APPOINTMENTS")

    def test_block_date_forced(self):
        self.book()
        response = self.client.put(
            reverse("doctors:api_block_date"),
            {"date": self.next_monday.isoformat(), "force": True},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_patient_cannot_manage_schedule(self):
        client = APIClient()
        client.force_authenticate(user=self.patient)
        response = client.put(
            reverse("doctors:api_block_date"),
            {"date": self.next_monday.isoformat()},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_create_and_fetch_override(self):
        response = self.client.post(
            reverse("doctors:api_date_overrides"),
            {
                "date": self.next_monday.isoformat(),
                "windows": [{"start": "13:00", "end": "14:00"}],
                "reason": "Afternoon only",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["windows"], [{"start": "13:00", "end": "14:00", "is_available": True}])

        detail = self.client.get(reverse("doctors:api_date_override_detail", args=[response.data["id"]]))
        self.assertEqual(detail.status_code, status.HTTP_200_OK)
        self.assertEqual(detail.data["reason"], "Afternoon only")

    def test_override_validation_error(self):
        response = self.client.post(
            reverse("doctors:api_date_overrides"),
            {"date": self.next_monday.isoformat(), "windows": [{"start": "14:00", "end": "13:00"}]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")

    def test_malformed_block_dates_body(self):
        response = self.client.post(reverse("doctors:api_blocked_dates"), {"dates": "soon"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")
        self.assertIn("dates", response.data["errors"])

    def test_delete_override(self):
        override = create_date_override(self.doctor, date=self.next_monday)
        response = self.client.delete(reverse("doctors:api_date_override_detail", args=[override.pk]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(DateOverride.objects.filter(pk=override.pk).exists())

    def test_bulk_overrides(self):
        response = self.client.post(
            reverse("doctors:api_date_overrides_bulk"),
            {
                "overrides": [
                    {"date": self.next_monday.isoformat(), "windows": [{"start": "09:00", "end": "10:00"}]},
                    {"date": self.yesterday.isoformat()},
                ]
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data["created"]), 1)
        self.assertEqual(response.data["errors"][0]["date"], self.yesterday.isoformat())

    def test_weekly_schedule_endpoint(self):
        response = self.client.put(
            reverse("doctors:api_schedule_weekly"),
            {"days": [{"day_of_week": 2, "windows": [{"start": "08:00", "end": "09:00"}]}]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([d["day_of_week"] for d in response.data["results"]], [0, 2])

    def test_block_and_unblock_dates_endpoint(self):
        url = reverse("doctors:api_blocked_dates")
        response = self.client.post(url, {"dates": [self.next_monday.isoformat()]}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data["results"]), 1)

        response = self.client.delete(url, {"dates": [self.next_monday.isoformat()]}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["removed"], 1)

    def test_get_schedule_endpoint(self):
        block_dates(self.doctor, [self.next_monday])
        response = self.client.get(reverse("doctors:api_schedule"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data["weekly"]), 1)
        self.assertEqual(response.data["blocked_dates"][0]["date"], self.next_monday.isoformat())
