"""
Tests for slot generation and availability resolution.

Covers:
- Pure slot generator (windows, duration, today filtering, validation)
- Availability resolver (override > blocked date > weekly template)
- Full slot pipeline (duration, booked slots, past dates, unknown doctors)
- API endpoint (GET /doctors/api/<doctor_id>/available-slots/)
"""

from datetime import datetime, time, timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from appointments.exceptions import DoctorNotFoundError, ScheduleValidationError
from appointments.models import Appointment, generate_appointment_number
from doctors.models import (
    AvailabilityWindow,
    BlockedDate,
    DateOverride,
    DateOverrideWindow,
    DoctorAvailability,
    DoctorProfile,
)
from doctors.services import get_available_slots, resolve_availability
from doctors.slots import check_windows, format_hhmm, generate_slots, parse_hhmm

User = get_user_model()


def next_weekday(weekday):
    """First date strictly after today falling on ``weekday`` (0=Monday)."""
    today = timezone.localdate()
    days_ahead = weekday - today.weekday()
    if days_ahead <= 0:
        days_ahead += 7
    return today + timedelta(days=days_ahead)


def starts(slots):
    return [slot["start"] for slot in slots]


class AvailabilityTestMixin:
    """Approved doctor working Mondays 09:00-10:30 in 30-minute slots."""

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
        self.profile = DoctorProfile.objects.create(
            user=self.doctor,
            consultation_duration=30,
            consultation_fee=Decimal("100.00"),
            is_approved=True,
        )

        self.next_monday = next_weekday(0)

        monday = DoctorAvailability.objects.create(doctor=self.doctor, day_of_week=0)
        AvailabilityWindow.objects.create(
            availability=monday,
            start_time=time(9, 0),
            end_time=time(10, 30),
        )

    def make_appointment(self, start, end, status=Appointment.Status.PENDING, on_date=None):
        on_date = on_date or self.next_monday
        return Appointment.objects.create(
            appointment_number=generate_appointment_number(on_date),
            patient=self.patient,
            doctor=self.doctor,
            appointment_date=on_date,
            start_time=start,
            end_time=end,
            status=status,
        )


# ═══════════════════════════════════════════════════════════════════
#  Slot Generator
# ═══════════════════════════════════════════════════════════════════


class SlotGeneratorTests(SimpleTestCase):
    """Tests for the pure generate_slots() function."""

    def test_window_split_into_duration_slots(self):
        """09:00-10:00 with 30 minutes gives two back-to-back slots."""
        slots = generate_slots([(parse_hhmm("09:00"), parse_hhmm("10:00"))], 30)
        self.assertEqual(
            slots,
            [
                {"start": "09:00", "end": "09:30"},
                {"start": "09:30", "end": "10:00"},
            ],
        )

    def test_window_shorter_than_duration_yields_nothing(self):
        """09:00-09:20 cannot hold a 30-minute slot."""
        self.assertEqual(generate_slots([(540, 560)], 30), [])

    def test_partial_trailing_slot_dropped(self):
        """09:00-10:10 with 30 minutes stops at 10:00."""
        self.assertEqual(starts(generate_slots([(540, 610)], 30)), ["09:00", "09:30"])

    def test_today_filter_is_strict(self):
        """At 14:05, 14:00 has started and is dropped; 14:30 remains."""
        slots = generate_slots([(parse_hhmm("14:00"), parse_hhmm("15:00"))], 30, now_minutes=parse_hhmm("14:05"))
        self.assertEqual(starts(slots), ["14:30"])

    def test_slot_starting_exactly_now_dropped(self):
        slots = generate_slots([(840, 900)], 30, now_minutes=840)
        self.assertEqual(starts(slots), ["14:30"])

    def test_multiple_windows_ordered(self):
        """Windows are processed in start order regardless of input order."""
        slots = generate_slots([(parse_hhmm("14:00"), parse_hhmm("15:00")), (540, 600)], 60)
        self.assertEqual(starts(slots), ["09:00", "14:00"])

    def test_touching_windows_allowed(self):
        self.assertEqual(check_windows([(600, 660), (540, 600)]), [(540, 600), (600, 660)])

    def test_overlapping_windows_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            generate_slots([(540, 620), (600, 660)], 30)

    def test_inverted_window_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            check_windows([(600, 540)])

    def test_non_positive_duration_rejected(self):
        for duration in (0, -15):
            with self.assertRaises(ScheduleValidationError):
                generate_slots([(540, 600)], duration)

    def test_parse_hhmm_rejects_malformed(self):
        """Only zero-padded 24-hour HH:MM is accepted."""
        for value in ("9:00", "24:00", "12:60", "12-00", "", None):
            with self.assertRaises(ScheduleValidationError):
                parse_hhmm(value)

    def test_format_hhmm_zero_pads(self):
        self.assertEqual(format_hhmm(65), "01:05")
        self.assertEqual(format_hhmm(0), "00:00")


# ═══════════════════════════════════════════════════════════════════
#  Availability Resolver
# ═══════════════════════════════════════════════════════════════════


class AvailabilityResolverTests(AvailabilityTestMixin, TestCase):
    """Tests for resolve_availability()."""

    def test_weekly_template_used_without_override(self):
        day = resolve_availability(self.doctor.id, self.next_monday)
        self.assertFalse(day.blocked)
        self.assertEqual(day.source, "weekly")
        self.assertEqual(day.windows, [(540, 630)])

    def test_missing_weekday_entry_is_unavailable(self):
        """No template row for Tuesday means the doctor does not work."""
        day = resolve_availability(self.doctor.id, self.next_monday + timedelta(days=1))
        self.assertTrue(day.blocked)
        self.assertEqual(day.windows, [])

    def test_day_switched_off(self):
        DoctorAvailability.objects.filter(doctor=self.doctor, day_of_week=0).update(is_available=False)
        self.assertTrue(resolve_availability(self.doctor.id, self.next_monday).blocked)

    def test_unavailable_weekly_window_ignored(self):
        monday = DoctorAvailability.objects.get(doctor=self.doctor, day_of_week=0)
        AvailabilityWindow.objects.create(
            availability=monday,
            start_time=time(14, 0),
            end_time=time(15, 0),
            is_available=False,
        )
        day = resolve_availability(self.doctor.id, self.next_monday)
        self.assertEqual(day.windows, [(540, 630)])

    def test_override_replaces_weekly_windows(self):
        """Override hours are used as-is, never merged with the template."""
        override = DateOverride.objects.create(doctor=self.doctor, date=self.next_monday)
        DateOverrideWindow.objects.create(override=override, start_time=time(13, 0), end_time=time(14, 0))

        day = resolve_availability(self.doctor.id, self.next_monday)
        self.assertEqual(day.source, "override")
        self.assertEqual(day.windows, [(780, 840)])

    def test_override_without_windows_blocks_date(self):
        """An override with an empty window list is fully blocked."""
        DateOverride.objects.create(doctor=self.doctor, date=self.next_monday)
        day = resolve_availability(self.doctor.id, self.next_monday)
        self.assertTrue(day.blocked)
        self.assertEqual(day.windows, [])

    def test_blocked_override_ignores_its_windows(self):
        override = DateOverride.objects.create(
            doctor=self.doctor,
            date=self.next_monday,
            is_blocked=True,
            reason="Conference",
        )
        DateOverrideWindow.objects.create(override=override, start_time=time(13, 0), end_time=time(14, 0))

        day = resolve_availability(self.doctor.id, self.next_monday)
        self.assertTrue(day.blocked)
        self.assertEqual(day.reason, "Conference")

    def test_override_on_unscheduled_weekday_opens_it(self):
        tuesday = self.next_monday + timedelta(days=1)
        override = DateOverride.objects.create(doctor=self.doctor, date=tuesday)
        DateOverrideWindow.objects.create(override=override, start_time=time(9, 0), end_time=time(10, 0))
        self.assertFalse(resolve_availability(self.doctor.id, tuesday).blocked)

    def test_blocked_date_blocks_weekly_day(self):
        BlockedDate.objects.create(doctor=self.doctor, date=self.next_monday, reason="Holiday")
        day = resolve_availability(self.doctor.id, self.next_monday)
        self.assertTrue(day.blocked)
        self.assertEqual(day.source, "blocked_date")

    def test_override_checked_before_blocked_date(self):
        BlockedDate.objects.create(doctor=self.doctor, date=self.next_monday)
        override = DateOverride.objects.create(doctor=self.doctor, date=self.next_monday)
        DateOverrideWindow.objects.create(override=override, start_time=time(9, 0), end_time=time(10, 0))

        day = resolve_availability(self.doctor.id, self.next_monday)
        self.assertFalse(day.blocked)
        self.assertEqual(day.source, "override")


# ═══════════════════════════════════════════════════════════════════
#  Slot Pipeline
# ═══════════════════════════════════════════════════════════════════


class AvailableSlotsTests(AvailabilityTestMixin, TestCase):
    """Tests for get_available_slots()."""

    def test_weekly_slots(self):
        slots = get_available_slots(self.doctor.id, self.next_monday)
        self.assertEqual(starts(slots), ["09:00", "09:30", "10:00"])

    def test_uses_doctor_consultation_duration(self):
        self.profile.consultation_duration = 45
        self.profile.save()
        slots = get_available_slots(self.doctor.id, self.next_monday)
        self.assertEqual(slots, [{"start": "09:00", "end": "09:45"}, {"start": "09:45", "end": "10:30"}])

    def test_booked_slot_removed(self):
        """[09:00, 09:30, 10:00] minus a pending 09:30 leaves [09:00, 10:00]."""
        self.make_appointment(time(9, 30), time(10, 0))
        self.assertEqual(starts(get_available_slots(self.doctor.id, self.next_monday)), ["09:00", "10:00"])

    def test_cancelled_appointment_frees_slot(self):
        self.make_appointment(time(9, 30), time(10, 0), status=Appointment.Status.CANCELLED)
        self.assertEqual(
            starts(get_available_slots(self.doctor.id, self.next_monday)),
            ["09:00", "09:30", "10:00"],
        )

    def test_excluded_appointment_does_not_occupy(self):
        appointment = self.make_appointment(time(9, 30), time(10, 0))
        slots = get_available_slots(self.doctor.id, self.next_monday, exclude_appointment_id=appointment.pk)
        self.assertIn("09:30", starts(slots))

    def test_today_filter_uses_current_time(self):
        """When the date is today, only slots starting after now are listed."""
        override = DateOverride.objects.create(doctor=self.doctor, date=self.next_monday)
        DateOverrideWindow.objects.create(override=override, start_time=time(14, 0), end_time=time(15, 0))
        now = timezone.make_aware(datetime.combine(self.next_monday, time(14, 5)))

        slots = get_available_slots(self.doctor.id, self.next_monday, now=now)
        self.assertEqual(starts(slots), ["14:30"])

    def test_past_date_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            get_available_slots(self.doctor.id, timezone.localdate() - timedelta(days=1))

    def test_unapproved_doctor_not_found(self):
        self.profile.is_approved = False
        self.profile.save()
        with self.assertRaises(DoctorNotFoundError):
            get_available_slots(self.doctor.id, self.next_monday)

    def test_unknown_doctor_not_found(self):
        with self.assertRaises(DoctorNotFoundError):
            get_available_slots(999999, self.next_monday)


class DoctorProfileTests(AvailabilityTestMixin, TestCase):
    """Consultation duration bounds come from SCHEDULING settings."""

    def test_duration_within_default_bounds(self):
        self.profile.consultation_duration = 180
        self.profile.full_clean()

    @override_settings(SCHEDULING={"MIN_CONSULTATION_DURATION": 10, "MAX_CONSULTATION_DURATION": 60})
    def test_duration_outside_configured_bounds(self):
        self.profile.consultation_duration = 90
        with self.assertRaises(ValidationError):
            self.profile.full_clean()


# ═══════════════════════════════════════════════════════════════════
#  API Endpoint
# ═══════════════════════════════════════════════════════════════════


class AvailableSlotsAPITests(AvailabilityTestMixin, TestCase):
    """Tests for GET /doctors/api/<doctor_id>/available-slots/."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.patient)
        self.url = reverse("doctors:api_doctor_available_slots", args=[self.doctor.id])

    def test_lists_slots(self):
        response = self.client.get(self.url, {"date": self.next_monday.isoformat()})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["day_of_week"], "Monday")
        self.assertEqual(
            response.data["results"],
            [
                {"start": "09:00", "end": "09:30"},
                {"start": "09:30", "end": "10:00"},
                {"start": "10:00", "end": "10:30"},
            ],
        )

    def test_date_required(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")
        self.assertIn("date", response.data["errors"])

    def test_invalid_date_format(self):
        response = self.client.get(self.url, {"date": "20-02-2026"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")

    def test_impossible_date_returns_validation_error(self):
        response = self.client.get(self.url, {"date": "2026-13-40"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")

    def test_past_date_returns_validation_error(self):
        yesterday = timezone.localdate() - timedelta(days=1)
        response = self.client.get(self.url, {"date": yesterday.isoformat()})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")

    def test_unknown_doctor_returns_404(self):
        url = reverse("doctors:api_doctor_available_slots", args=[999999])
        response = self.client.get(url, {"date": self.next_monday.isoformat()})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "DOCTOR_NOT_FOUND")

    def test_requires_authentication(self):
        response = APIClient().get(self.url, {"date": self.next_monday.isoformat()})
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
