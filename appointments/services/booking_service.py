"""
Appointment booking service.

Handles the complete booking flow:
1. Validate the requested slot shape ("HH:MM" start, optional end)
2. Return the original appointment for a repeated idempotency key
3. Re-compute fresh availability for the doctor and date
4. Create the appointment inside a savepoint
5. Translate a lost race on the slot's unique constraint into
   SlotUnavailableError

No row locks are taken. The partial unique constraint on
(doctor, appointment_date, start_time) over non-cancelled rows is what
makes two concurrent bookings of the same slot mutually exclusive.
"""

import logging
from datetime import date

from django.db import IntegrityError, transaction

from appointments.exceptions import ScheduleValidationError, SlotUnavailableError
from appointments.models import Appointment, generate_appointment_number
from appointments.signals import appointment_booked, send_on_commit
from doctors.services import get_approved_doctor, get_available_slots
from doctors.slots import format_hhmm, minutes_to_time, parse_hhmm

logger = logging.getLogger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 64


def normalize_slot(slot):
    """
    Accept ``{"start": "HH:MM", "end": "HH:MM"}`` or a bare ``"HH:MM"``.

    Returns (start, end) as canonical "HH:MM" strings; end is None when the
    caller did not send one.
    """
    if isinstance(slot, str):
        slot = {"start": slot}
    if not isinstance(slot, dict) or "start" not in slot:
        raise ScheduleValidationError("Slot must include a start time in HH:MM format.")

    start = format_hhmm(parse_hhmm(slot["start"]))
    end = slot.get("end")
    if end is not None:
        end = format_hhmm(parse_hhmm(end))
    return start, end


def _find_idempotent(patient, idempotency_key):
    if not idempotency_key:
        return None
    return Appointment.objects.filter(patient=patient, idempotency_key=idempotency_key).first()


def slot_is_held(doctor_id, appointment_date, start_time, exclude_appointment_id=None):
    held = Appointment.objects.filter(
        doctor_id=doctor_id,
        appointment_date=appointment_date,
        start_time=start_time,
    ).exclude(status=Appointment.Status.CANCELLED)
    if exclude_appointment_id is not None:
        held = held.exclude(pk=exclude_appointment_id)
    return held.exists()


def book_appointment(
    *,
    patient,
    doctor_id: int,
    appointment_date: date,
    slot,
    reason_for_visit: str = "",
    symptoms: str = "",
    idempotency_key: str | None = None,
    now=None,
) -> Appointment:
    """
    Book an appointment for a patient.

    This function is the single entry point for creating appointments.

    Args:
        patient: The User instance (patient) booking the appointment.
        doctor_id: The doctor's user ID.
        appointment_date: The desired date.
        slot: {"start": "HH:MM", "end": "HH:MM"} or "HH:MM".
        reason_for_visit: Optional reason for visit.
        symptoms: Optional free-text symptoms.
        idempotency_key: Optional client key; retries with the same key
            return the first appointment instead of booking again.
        now: Aware datetime used as the current time (defaults to now).

    Returns:
        The created (or, for a repeated key, the original) Appointment.

    Raises:
        ScheduleValidationError: Malformed slot, key, or a past date.
        DoctorNotFoundError: Unknown or unapproved doctor.
        SlotUnavailableError: The slot is not in the fresh available set,
            or a concurrent booking took it first.
    """

    # ── 1. Input shape ────────────────────────────────────────────────
    start, end = normalize_slot(slot)
    if idempotency_key is not None and len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ScheduleValidationError(
            f"Idempotency key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters."
        )

    # ── 2. Repeated request ───────────────────────────────────────────
    existing = _find_idempotent(patient, idempotency_key)
    if existing is not None:
        logger.info(
            "[BOOKING] Idempotent replay key=%s returns %s",
            idempotency_key,
            existing.appointment_number,
        )
        return existing

    # ── 3. Fresh availability ─────────────────────────────────────────
    profile = get_approved_doctor(doctor_id)
    available = get_available_slots(doctor_id, appointment_date, now=now)
    matching_slot = next((s for s in available if s["start"] == start), None)
    if matching_slot is None or (end is not None and end != matching_slot["end"]):
        logger.info(
            "[BOOKING] Slot not available doctor_id=%s date=%s start=%s",
            doctor_id,
            appointment_date,
            start,
        )
        raise SlotUnavailableError()

    start_time = minutes_to_time(parse_hhmm(matching_slot["start"]))
    end_time = minutes_to_time(parse_hhmm(matching_slot["end"]))

    # ── 4. Create; the unique constraint arbitrates concurrent inserts ─
    try:
        with transaction.atomic():
            appointment = Appointment.objects.create(
                appointment_number=generate_appointment_number(appointment_date),
                patient=patient,
                doctor_id=doctor_id,
                appointment_date=appointment_date,
                start_time=start_time,
                end_time=end_time,
                status=Appointment.Status.PENDING,
                payment_status=Appointment.PaymentStatus.PENDING,
                consultation_fee=profile.consultation_fee,
                reason_for_visit=reason_for_visit,
                symptoms=symptoms,
                idempotency_key=idempotency_key or None,
            )
            send_on_commit(appointment_booked, sender=Appointment, appointment=appointment)
    except IntegrityError:
        # A concurrent duplicate of this very request won the insert.
        existing = _find_idempotent(patient, idempotency_key)
        if existing is not None:
            return existing
        if slot_is_held(doctor_id, appointment_date, start_time):
            logger.info(
                "[BOOKING] Lost race doctor_id=%s date=%s start=%s",
                doctor_id,
                appointment_date,
                start,
            )
            raise SlotUnavailableError()
        raise

    logger.info(
        "[BOOKING] Booked %s doctor_id=%s patient_id=%s date=%s start=%s",
        appointment.appointment_number,
        doctor_id,
        patient.id,
        appointment_date,
        start,
    )
    return appointment
