"""
Tests for the appointment lifecycle.

Covers:
- Transition table (legal / illegal / unknown actions)
- Confirm, complete, cancel through transition_appointment()
- Reschedule requests and rescheduling (slot reacquisition, lost races)
- Optimistic concurrency (stale versions)
- API endpoint (PUT /appointments/api/<id>/transition/)
"""

from datetime import time, timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from appointments.exceptions import (
    AppointmentNotFoundError,
    InvalidTransitionError,
    ScheduleValidationError,
    SlotUnavailableError,
    StaleAppointmentError,
)
from appointments.models import Appointment
from appointments.services import (
    book_appointment,
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    request_reschedule,
    reschedule_appointment,
    transition_appointment,
)
from appointments.state_machine import allowed_actions, next_status
from doctors.models import AvailabilityWindow, DoctorAvailability, DoctorProfile

User = get_user_model()
Status = Appointment.Status


class LifecycleTestMixin:
    """Approved doctor on Mondays 09:00-12:00 and one pending 09:00 booking."""

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
        self.patient2 = User.objects.create_user(
            phone="0591000004",
            password="testpass123",
            name="Patient Sara",
            role="PATIENT",
        )
        DoctorProfile.objects.create(user=self.doctor, is_approved=True)

        today = timezone.localdate()
        days_ahead = 0 - today.weekday()
        if days_ahead <= 0:
            days_ahead += 7
        self.next_monday = today + timedelta(days=days_ahead)

        monday = DoctorAvailability.objects.create(doctor=self.doctor, day_of_week=0)
        AvailabilityWindow.objects.create(availability=monday, start_time=time(9, 0), end_time=time(12, 0))

        self.appointment = self.book(self.patient, "09:00")

    def book(self, patient, start, on_date=None):
        return book_appointment(
            patient=patient,
            doctor_id=self.doctor.id,
            appointment_date=on_date or self.next_monday,
            slot=start,
        )


# ═══════════════════════════════════════════════════════════════════
#  Transition Table
# ═══════════════════════════════════════════════════════════════════


class StateMachineTests(SimpleTestCase):
    """Tests for the pure transition rules."""

    def test_legal_transitions(self):
        cases = [
            ("confirm", Status.PENDING, Status.CONFIRMED),
            ("confirm", Status.RESCHEDULE_REQUESTED, Status.CONFIRMED),
            ("complete", Status.CONFIRMED, Status.COMPLETED),
            ("cancel", Status.PENDING, Status.CANCELLED),
            ("cancel", Status.CONFIRMED, Status.CANCELLED),
            ("request_reschedule", Status.PENDING, Status.RESCHEDULE_REQUESTED),
            ("request_reschedule", Status.CONFIRMED, Status.RESCHEDULE_REQUESTED),
            ("reschedule", Status.RESCHEDULE_REQUESTED, Status.CONFIRMED),
        ]
        for action, current, expected in cases:
            with self.subTest(action=action, current=current):
                self.assertEqual(next_status(action, current), expected)

    def test_terminal_states_reject_everything(self):
        for current in (Status.COMPLETED, Status.CANCELLED):
            self.assertEqual(allowed_actions(current), [])
            for action in ("confirm", "cancel", "complete", "request_reschedule", "reschedule"):
                with self.subTest(action=action, current=current):
                    with self.assertRaises(InvalidTransitionError):
                        next_status(action, current)

    def test_pending_cannot_complete(self):
        with self.assertRaises(InvalidTransitionError):
            next_status("complete", Status.PENDING)

    def test_unknown_action(self):
        with self.assertRaises(InvalidTransitionError):
            next_status("archive", Status.PENDING)


# ═══════════════════════════════════════════════════════════════════
#  Status Transitions
# ═══════════════════════════════════════════════════════════════════


class TransitionServiceTests(LifecycleTestMixin, TestCase):
    """Tests for transition_appointment() on plain status changes."""

    def test_pending_confirmed_completed(self):
        confirmed = confirm_appointment(self.appointment.pk)
        self.assertEqual(confirmed.status, Status.CONFIRMED)
        self.assertEqual(confirmed.version, 2)

        completed = complete_appointment(self.appointment.pk)
        self.assertEqual(completed.status, Status.COMPLETED)
        self.assertEqual(completed.version, 3)

    def test_completed_cannot_be_cancelled(self):
        confirm_appointment(self.appointment.pk)
        complete_appointment(self.appointment.pk)

        with self.assertRaises(InvalidTransitionError):
            cancel_appointment(self.appointment.pk)

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.status, Status.COMPLETED)

    def test_cancel_records_reason_and_frees_slot(self):
        cancelled = cancel_appointment(self.appointment.pk, reason="Feeling better")
        self.assertEqual(cancelled.status, Status.CANCELLED)
        self.assertEqual(cancelled.cancellation_reason, "Feeling better")

        rebooked = self.book(self.patient2, "09:00")
        self.assertEqual(rebooked.start_time, time(9, 0))

    def test_unknown_appointment(self):
        with self.assertRaises(AppointmentNotFoundError):
            confirm_appointment(999999)

    def test_transition_event_sent_on_commit(self):
        from appointments.signals import appointment_transitioned

        received = []

        def receiver(sender, appointment, action, previous_status, **kwargs):
            received.append((action, previous_status, appointment.status))

        appointment_transitioned.connect(receiver)
        self.addCleanup(appointment_transitioned.disconnect, receiver)

        with self.captureOnCommitCallbacks(execute=True):
            confirm_appointment(self.appointment.pk, actor=self.doctor)

        self.assertEqual(received, [("confirm", Status.PENDING, Status.CONFIRMED)])


# ═══════════════════════════════════════════════════════════════════
#  Rescheduling
# ═══════════════════════════════════════════════════════════════════


class RescheduleTests(LifecycleTestMixin, TestCase):
    """Tests for request_reschedule / reschedule."""

    def test_reschedule_to_free_slot(self):
        moved = reschedule_appointment(self.appointment.pk, self.next_monday, "10:00", reason="Traffic")

        self.assertEqual(moved.status, Status.CONFIRMED)
        self.assertEqual(moved.start_time, time(10, 0))
        self.assertEqual(moved.end_time, time(10, 30))
        self.assertEqual(moved.original_date, self.next_monday)
        self.assertEqual(moved.original_start_time, time(9, 0))
        self.assertIsNotNone(moved.rescheduled_at)

        # Old slot is free again
        self.book(self.patient2, "09:00")

    def test_reschedule_to_other_date(self):
        next_week = self.next_monday + timedelta(days=7)
        moved = reschedule_appointment(self.appointment.pk, next_week.isoformat(), {"start": "11:00"})
        self.assertEqual(moved.appointment_date, next_week)

    def test_reschedule_into_taken_slot_leaves_appointment(self):
        """Moving A onto B's slot fails and A stays where it was."""
        self.book(self.patient2, "09:30")

        with self.assertRaises(SlotUnavailableError):
            reschedule_appointment(self.appointment.pk, self.next_monday, "09:30")

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.start_time, time(9, 0))
        self.assertEqual(self.appointment.status, Status.PENDING)
        self.assertEqual(self.appointment.version, 1)

    def test_reschedule_losing_race_on_constraint(self):
        """The pre-check saw the slot free, but another booking holds it at write time."""
        self.book(self.patient2, "09:30")

        with patch(
            "appointments.services.lifecycle_service.get_available_slots",
            return_value=[{"start": "09:30", "end": "10:00"}],
        ):
            with self.assertRaises(SlotUnavailableError):
                reschedule_appointment(self.appointment.pk, self.next_monday, "09:30")

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.start_time, time(9, 0))

    def test_reschedule_into_unavailable_day(self):
        tuesday = self.next_monday + timedelta(days=1)
        with self.assertRaises(SlotUnavailableError):
            reschedule_appointment(self.appointment.pk, tuesday, "09:00")

    def test_reschedule_requires_target(self):
        with self.assertRaises(ScheduleValidationError):
            reschedule_appointment(self.appointment.pk)

    def test_request_then_reschedule(self):
        requested = request_reschedule(self.appointment.pk, self.next_monday, "11:00", reason="Meeting")
        self.assertEqual(requested.status, Status.RESCHEDULE_REQUESTED)
        self.assertEqual(requested.requested_start_time, time(11, 0))
        self.assertEqual(requested.start_time, time(9, 0))

        moved = reschedule_appointment(self.appointment.pk)
        self.assertEqual(moved.status, Status.CONFIRMED)
        self.assertEqual(moved.start_time, time(11, 0))
        self.assertIsNone(moved.requested_date)

    def test_confirm_declines_request_keeping_slot(self):
        request_reschedule(self.appointment.pk, self.next_monday, "11:00")
        confirmed = confirm_appointment(self.appointment.pk)
        self.assertEqual(confirmed.status, Status.CONFIRMED)
        self.assertEqual(confirmed.start_time, time(9, 0))
        self.assertIsNone(confirmed.requested_date)
        self.assertIsNone(confirmed.requested_start_time)

    def test_declined_request_is_not_reused(self):
        """After a declined request, rescheduling needs an explicit target again."""
        request_reschedule(self.appointment.pk, self.next_monday, "11:00")
        confirm_appointment(self.appointment.pk)

        with self.assertRaises(ScheduleValidationError):
            reschedule_appointment(self.appointment.pk)

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.start_time, time(9, 0))

    def test_cancelled_cannot_be_rescheduled(self):
        cancel_appointment(self.appointment.pk)
        with self.assertRaises(InvalidTransitionError):
            reschedule_appointment(self.appointment.pk, self.next_monday, "10:00")


# ═══════════════════════════════════════════════════════════════════
#  Optimistic Concurrency
# ═══════════════════════════════════════════════════════════════════


class StaleWriteTests(LifecycleTestMixin, TestCase):
    """Two writers on one appointment: the second sees StaleAppointmentError."""

    def test_expected_version_mismatch(self):
        confirm_appointment(self.appointment.pk)
        with self.assertRaises(StaleAppointmentError):
            transition_appointment(self.appointment.pk, "cancel", {"version": 1})

    def test_matching_version_accepted_as_string(self):
        confirmed = transition_appointment(self.appointment.pk, "confirm", {"version": "1"})
        self.assertEqual(confirmed.version, 2)

    def test_non_numeric_version_rejected(self):
        with self.assertRaises(ScheduleValidationError):
            transition_appointment(self.appointment.pk, "confirm", {"version": "abc"})

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.status, Status.PENDING)
        self.assertEqual(self.appointment.version, 1)

    def test_concurrent_writer_detected(self):
        stale_copy = Appointment.objects.get(pk=self.appointment.pk)
        confirm_appointment(self.appointment.pk)

        with patch(
            "appointments.services.lifecycle_service._get_appointment",
            return_value=stale_copy,
        ):
            with self.assertRaises(StaleAppointmentError):
                cancel_appointment(self.appointment.pk)

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.status, Status.CONFIRMED)
        self.assertEqual(self.appointment.version, 2)


# ═══════════════════════════════════════════════════════════════════
#  API Endpoint
# ═══════════════════════════════════════════════════════════════════


class TransitionAPITests(LifecycleTestMixin, TestCase):
    """Tests for PUT /appointments/api/<id>/transition/."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.doctor)
        self.url = reverse("appointments:api_appointment_transition", args=[self.appointment.pk])

    def test_confirm(self):
        response = self.client.put(self.url, {"action": "confirm"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "confirmed")
        self.assertEqual(response.data["version"], 2)

    def test_invalid_transition_returns_400(self):
        response = self.client.put(self.url, {"action": "complete"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "INVALID_TRANSITION")

    def test_unknown_action_rejected(self):
        response = self.client.put(self.url, {"action": "archive"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "VALIDATION_ERROR")
        self.assertIn("action", response.data["errors"])

    def test_reschedule_conflict_returns_409(self):
        self.book(self.patient2, "09:30")
        response = self.client.put(
            self.url,
            {"action": "reschedule", "date": self.next_monday.isoformat(), "slot": {"start": "09:30"}},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "SLOT_UNAVAILABLE")

    def test_reschedule(self):
        response = self.client.put(
            self.url,
            {"action": "reschedule", "date": self.next_monday.isoformat(), "slot": {"start": "10:30"}},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["time_slot"], {"start": "10:30", "end": "11:00"})

    def test_stale_version_returns_409(self):
        self.client.put(self.url, {"action": "confirm"}, format="json")
        response = self.client.put(self.url, {"action": "cancel", "version": 1}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "STALE_APPOINTMENT")

    def test_other_patient_gets_404(self):
        client = APIClient()
        client.force_authenticate(user=self.patient2)
        response = client.put(self.url, {"action": "cancel"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
