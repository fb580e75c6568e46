"""
Tests for the appointment booking feature.

Covers:
- Conflict detector (occupied start times, cancelled appointments)
- Booking service (happy path, validations, idempotency)
- Concurrency: the unique constraint alone arbitrates a contested slot
  (threaded variant runs on PostgreSQL only)
- Admin: no manual appointment creation
- API endpoints (POST /appointments/api/book/, GET /appointments/api/<id>/)
"""

import threading
from datetime import time, timedelta
from decimal import Decimal
from unittest import skipUnless
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from appointments.conflicts import filter_booked_slots, occupied_start_times
from appointments.exceptions import (
    DoctorNotFoundError,
    ScheduleValidationError,
    SlotUnavailableError,
)
from appointments.models import Appointment
from appointments.services import book_appointment
from doctors.models import AvailabilityWindow, DoctorAvailability, DoctorProfile

User = get_user_model()


class BookingTestMixin:
    """Shared setup for booking tests."""

    def setUp(self):
        # Users
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
        self.patient2 = User.objects.create_user(
            phone="0591000004",
            password="testpass123",
            name="Patient Sara",
            role="PATIENT",
        )
        self.profile = DoctorProfile.objects.create(
            user=self.doctor,
            consultation_duration=30,
            consultation_fee=Decimal("100.00"),
            is_approved=True,
        )

        # Find next Monday for consistent test dates
        today = timezone.localdate()
        days_ahead = 0 - today.weekday()  # Monday is 0
        if days_ahead <= 0:
            days_ahead += 7
        self.next_monday = today + timedelta(days=days_ahead)

        # Doctor availability: Monday 09:00-12:00
        monday = DoctorAvailability.objects.create(doctor=self.doctor, day_of_week=0)
        AvailabilityWindow.objects.create(
            availability=monday,
            start_time=time(9, 0),
            end_time=time(12, 0),
        )

    def book(self, patient=None, start="09:00", **kwargs):
        return book_appointment(
            patient=patient or self.patient,
            doctor_id=self.doctor.id,
            appointment_date=self.next_monday,
            slot={"start": start},
            **kwargs,
        )


# ═══════════════════════════════════════════════════════════════════
#  Conflict Detector
# ═══════════════════════════════════════════════════════════════════


class ConflictDetectorTests(BookingTestMixin, TestCase):
    """Tests for occupied_start_times() / filter_booked_slots()."""

    candidates = [
        {"start": "09:00", "end": "09:30"},
        {"start": "09:30", "end": "10:00"},
        {"start": "10:00", "end": "10:30"},
    ]

    def test_booked_start_removed(self):
        self.book(start="09:30")
        available = filter_booked_slots(self.doctor.id, self.next_monday, self.candidates)
        self.assertEqual([s["start"] for s in available], ["09:00", "10:00"])

    def test_cancelled_booking_removes_nothing(self):
        appointment = self.book(start="09:30")
        Appointment.objects.filter(pk=appointment.pk).update(status=Appointment.Status.CANCELLED)
        available = filter_booked_slots(self.doctor.id, self.next_monday, self.candidates)
        self.assertEqual(available, self.candidates)

    def test_other_dates_ignored(self):
        self.book(start="09:30")
        next_week = self.next_monday + timedelta(days=7)
        self.assertEqual(occupied_start_times(self.doctor.id, next_week), set())

    def test_exclude_appointment(self):
        appointment = self.book(start="09:30")
        self.assertEqual(
            occupied_start_times(self.doctor.id, self.next_monday, exclude_appointment_id=appointment.pk),
            set(),
        )

    def test_empty_candidates(self):
        self.assertEqual(filter_booked_slots(self.doctor.id, self.next_monday, []), [])


# ═══════════════════════════════════════════════════════════════════
#  Service Layer Tests
# ═══════════════════════════════════════════════════════════════════


class BookingServiceTests(BookingTestMixin, TestCase):
    """Tests for the book_appointment service function."""

    def test_successful_booking(self):
        """Happy path: patient books an available slot."""
        appointment = self.book(reason_for_visit="Annual checkup")

        self.assertIsNotNone(appointment.id)
        self.assertEqual(appointment.patient, self.patient)
        self.assertEqual(appointment.doctor, self.doctor)
        self.assertEqual(appointment.appointment_date, self.next_monday)
        self.assertEqual(appointment.start_time, time(9, 0))
        self.assertEqual(appointment.end_time, time(9, 30))
        self.assertEqual(appointment.status, Appointment.Status.PENDING)
        self.assertEqual(appointment.payment_status, Appointment.PaymentStatus.PENDING)
        self.assertEqual(appointment.reason_for_visit, "Annual checkup")
        self.assertEqual(appointment.version, 1)

    def test_appointment_number_format(self):
        appointment = self.book()
        prefix = f"APT-{self.next_monday:%Y%m%d}-"
        self.assertTrue(appointment.appointment_number.startswith(prefix))
        self.assertEqual(len(appointment.appointment_number), len(prefix) + 8)

    def test_fee_copied_from_profile(self):
        appointment = self.book()
        self.profile.consultation_fee = Decimal("250.00")
        self.profile.save()
        appointment.refresh_from_db()
        self.assertEqual(appointment.consultation_fee, Decimal("100.00"))

    def test_end_time_must_match_slot(self):
        with self.assertRaises(SlotUnavailableError):
            book_appointment(
                patient=self.patient,
                doctor_id=self.doctor.id,
                appointment_date=self.next_monday,
                slot={"start": "09:00", "end": "10:00"},
            )

    def test_already_booked_slot(self):
        self.book()
        with self.assertRaises(SlotUnavailableError):
            self.book(patient=self.patient2)

    def test_cancelled_slot_can_be_rebooked(self):
        first = self.book()
        Appointment.objects.filter(pk=first.pk).update(status=Appointment.Status.CANCELLED)
        second = self.book(patient=self.patient2)
        self.assertNotEqual(first.pk, second.pk)

    def test_off_grid_time_unavailable(self):
        with self.assertRaises(SlotUnavailableError):
            self.book(start="09:15")

    def test_unscheduled_day_unavailable(self):
        with self.assertRaises(SlotUnavailableError):
            book_appointment(
                patient=self.patient,
                doctor_id=self.doctor.id,
                appointment_date=self.next_monday + timedelta(days=1),
                slot="09:00",
            )

    def test_past_date_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            book_appointment(
                patient=self.patient,
                doctor_id=self.doctor.id,
                appointment_date=self.next_monday - timedelta(days=7),
                slot="09:00",
            )

    def test_malformed_slot_rejected(self):
        for slot in ("9:00", {"end": "09:30"}, None):
            with self.assertRaises(ScheduleValidationError):
                book_appointment(
                    patient=self.patient,
                    doctor_id=self.doctor.id,
                    appointment_date=self.next_monday,
                    slot=slot,
                )

    def test_unapproved_doctor(self):
        self.profile.is_approved = False
        self.profile.save()
        with self.assertRaises(DoctorNotFoundError):
            self.book()

    def test_booked_event_sent_on_commit(self):
        from appointments.signals import appointment_booked

        received = []

        def receiver(sender, appointment, **kwargs):
            received.append(appointment.pk)

        appointment_booked.connect(receiver)
        self.addCleanup(appointment_booked.disconnect, receiver)

        with self.captureOnCommitCallbacks(execute=True):
            appointment = self.book()

        self.assertEqual(received, [appointment.pk])

    def test_failing_receiver_does_not_fail_booking(self):
        from appointments.signals import appointment_booked

        def broken(sender, **kwargs):
            raise RuntimeError("notification service down")

        appointment_booked.connect(broken)
        self.addCleanup(appointment_booked.disconnect, broken)

        with self.captureOnCommitCallbacks(execute=True):
            appointment = self.book()

        self.assertTrue(Appointment.objects.filter(pk=appointment.pk).exists())


class IdempotencyTests(BookingTestMixin, TestCase):
    """Repeated requests with the same idempotency key."""

    def test_same_key_returns_original(self):
        first = self.book(idempotency_key="req-1")
        second = self.book(idempotency_key="req-1")
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Appointment.objects.count(), 1)

    def test_key_scoped_per_patient(self):
        first = self.book(idempotency_key="req-1")
        second = self.book(patient=self.patient2, start="09:30", idempotency_key="req-1")
        self.assertNotEqual(first.pk, second.pk)

    def test_different_key_books_again(self):
        self.book(idempotency_key="req-1")
        self.book(start="09:30", idempotency_key="req-2")
        self.assertEqual(Appointment.objects.count(), 2)

    def test_duplicate_losing_insert_race_returns_original(self):
        """The lookup misses, the insert collides, the retry lookup finds the winner."""
        original = self.book(idempotency_key="req-1")

        with patch(
            "appointments.services.booking_service._find_idempotent",
            side_effect=[None, original],
        ), patch(
            "appointments.services.booking_service.get_available_slots",
            return_value=[{"start": "09:00", "end": "09:30"}],
        ):
            replay = self.book(idempotency_key="req-1")

        self.assertEqual(replay.pk, original.pk)
        self.assertEqual(Appointment.objects.count(), 1)

    def test_overlong_key_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            self.book(idempotency_key="x" * 65)


# ═══════════════════════════════════════════════════════════════════
#  Concurrency
# ═══════════════════════════════════════════════════════════════════


class DoubleBookingTests(BookingTestMixin, TestCase):
    """
    Simulates N requests that all passed the availability pre-check.

    With the pre-check patched to always report the slot free, only the
    partial unique constraint can stop the extra inserts.
    """

    def test_exactly_one_booking_wins(self):
        patients = [self.patient, self.patient2] + [
            User.objects.create_user(
                phone=f"05920000{i:02d}",
                password="testpass123",
                name=f"Patient {i}",
                role="PATIENT",
            )
            for i in range(6)
        ]

        successes, failures = [], []
        with patch(
            "appointments.services.booking_service.get_available_slots",
            return_value=[{"start": "09:00", "end": "09:30"}],
        ):
            for patient in patients:
                try:
                    successes.append(self.book(patient=patient))
                except SlotUnavailableError:
                    failures.append(patient)

        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), len(patients) - 1)
        self.assertEqual(
            Appointment.objects.filter(
                doctor=self.doctor,
                appointment_date=self.next_monday,
                start_time=time(9, 0),
            ).count(),
            1,
        )

    def test_cancelled_rows_do_not_hold_slot(self):
        first = self.book()
        Appointment.objects.filter(pk=first.pk).update(status=Appointment.Status.CANCELLED)
        with patch(
            "appointments.services.booking_service.get_available_slots",
            return_value=[{"start": "09:00", "end": "09:30"}],
        ):
            self.book(patient=self.patient2)
        self.assertEqual(Appointment.objects.filter(start_time=time(9, 0)).count(), 2)


@skipUnless(connection.vendor == "postgresql", "Concurrent inserts need PostgreSQL.")
class ConcurrentBookingTests(BookingTestMixin, TransactionTestCase):
    """Real parallel bookings, each thread on its own database connection."""

    def test_parallel_bookings_for_one_slot(self):
        patients = [self.patient, self.patient2] + [
            User.objects.create_user(
                phone=f"05930000{i:02d}",
                password="testpass123",
                name=f"Patient {i}",
                role="PATIENT",
            )
            for i in range(6)
        ]
        barrier = threading.Barrier(len(patients))
        successes, failures = [], []

        def attempt(patient):
            try:
                barrier.wait()
                successes.append(self.book(patient=patient))
            except SlotUnavailableError:
                failures.append(patient)
            finally:
                connection.close()

        threads = [threading.Thread(target=attempt, args=(p,)) for p in patients]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), len(patients) - 1)
        self.assertEqual(
            Appointment.objects.filter(doctor=self.doctor, start_time=time(9, 0)).count(),
            1,
        )


class AppointmentAdminTests(BookingTestMixin, TestCase):
    """Appointments cannot be added from the admin."""

    def test_add_view_forbidden(self):
        admin_user = User.objects.create_superuser(phone="0591000099", password="adminpass123")
        self.client.force_login(admin_user)

        response = self.client.get(reverse("admin:appointments_appointment_add"))

        self.assertEqual(response.status_code, 403)

    def test_changelist_still_available(self):
        admin_user = User.objects.create_superuser(phone="0591000099", password="adminpass123")
        self.client.force_login(admin_user)
        self.book()

        response = self.client.get(reverse("admin:appointments_appointment_changelist"))

        self.assertEqual(response.status_code, 200)


# ═══════════════════════════════════════════════════════════════════
#  API Endpoint Tests
# ═══════════════════════════════════════════════════════════════════


class BookAppointmentAPITests(BookingTestMixin, TestCase):
    """Tests for POST /appointments/api/book/."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.patient)
        self.url = reverse("appointments:api_book_appointment")

    def payload(self, **overrides):
        data = {
            "doctor_id": self.doctor.id,
            "appointment_date": self.next_monday.isoformat(),
            "slot": {"start": "09:00", "end": "09:30"},
            "reason_for_visit": "Checkup",
        }
        data.update(overrides)
        return data

    def test_book_success(self):
        response = self.client.post(self.url, self.payload(), format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], "pending")
        self.assertEqual(response.data["time_slot"], {"start": "09:00", "end": "09:30"})
        self.assertEqual(response.data["start_time"], "09:00")

    def test_slot_taken_returns_409(self):
        self.book(patient=self.patient2)
        response = self.client.post(self.url, self.payload(), format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "SLOT_UNAVAILABLE")

    def test_malformed_time_returns_validation_error(self):
        response = self.client.post(self.url, self.payload(slot={"start": "9.00"}), format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")

    def test_missing_fields(self):
        response = self.client.post(self.url, {"doctor_id": self.doctor.id}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")
        self.assertIn("appointment_date", response.data["errors"])
        self.assertIn("slot", response.data["errors"])

    def test_impossible_date_returns_validation_error(self):
        response = self.client.post(self.url, self.payload(appointment_date="2026-13-40"), format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")
        self.assertIn("appointment_date", response.data["errors"])

    def test_unknown_doctor_returns_404(self):
        response = self.client.post(self.url, self.payload(doctor_id=999999), format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "DOCTOR_NOT_FOUND")

    def test_doctor_cannot_book(self):
        client = APIClient()
        client.force_authenticate(user=self.doctor)
        response = client.post(self.url, self.payload(), format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_idempotency_key_header(self):
        first = self.client.post(self.url, self.payload(), format="json", HTTP_IDEMPOTENCY_KEY="abc")
        second = self.client.post(self.url, self.payload(), format="json", HTTP_IDEMPOTENCY_KEY="abc")
        self.assertEqual(first.data["id"], second.data["id"])
        self.assertEqual(Appointment.objects.count(), 1)


class AppointmentDetailAPITests(BookingTestMixin, TestCase):
    """Tests for GET /appointments/api/<id>/."""

    def setUp(self):
        super().setUp()
        self.appointment = self.book()
        self.url = reverse("appointments:api_appointment_detail", args=[self.appointment.pk])

    def test_patient_sees_own_appointment(self):
        client = APIClient()
        client.force_authenticate(user=self.patient)
        response = client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["appointment_number"], self.appointment.appointment_number)

    def test_doctor_sees_own_appointment(self):
        client = APIClient()
        client.force_authenticate(user=self.doctor)
        self.assertEqual(client.get(self.url).status_code, status.HTTP_200_OK)

    def test_other_patient_gets_404(self):
        client = APIClient()
        client.force_authenticate(user=self.patient2)
        response = client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "APPOINTMENT_NOT_FOUND")
