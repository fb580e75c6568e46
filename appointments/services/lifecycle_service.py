"""
Appointment lifecycle service.

Every status change is a single conditional UPDATE filtered on the
appointment's pk, current status and version, which increments version.
Zero rows updated means another writer got there first.
"""

import logging
from datetime import date

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_date

from appointments.exceptions import (
    AppointmentNotFoundError,
    ScheduleValidationError,
    SlotUnavailableError,
    StaleAppointmentError,
)
from appointments.models import Appointment
from appointments.signals import appointment_transitioned, send_on_commit
from appointments.state_machine import (
    CANCEL,
    COMPLETE,
    CONFIRM,
    REQUEST_RESCHEDULE,
    RESCHEDULE,
    next_status,
)
from appointments.services.booking_service import slot_is_held, normalize_slot
from doctors.services import get_available_slots
from doctors.slots import minutes_to_time, parse_hhmm

logger = logging.getLogger(__name__)


def _get_appointment(appointment_id):
    try:
        return Appointment.objects.get(pk=appointment_id)
    except (Appointment.DoesNotExist, ValueError):
        raise AppointmentNotFoundError()


def _coerce_date(value):
    if isinstance(value, date):
        return value
    parsed = parse_date(value) if isinstance(value, str) else None
    if parsed is None:
        raise ScheduleValidationError(f"Invalid date {value!r}. Use YYYY-MM-DD.")
    return parsed


def _coerce_version(value):
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ScheduleValidationError("version must be an integer.")


def _reschedule_target(appointment, payload):
    """Pick the new (date, slot) from the payload, else from the pending request."""
    if payload.get("date") and payload.get("slot"):
        return _coerce_date(payload["date"]), payload["slot"]
    if appointment.requested_date and appointment.requested_start_time:
        return appointment.requested_date, appointment.requested_start_time.strftime("%H:%M")
    raise ScheduleValidationError("Reschedule needs a new date and slot.")


def _reschedule_changes(appointment, payload, now):
    target_date, slot = _reschedule_target(appointment, payload)
    start, end = normalize_slot(slot)

    available = get_available_slots(
        appointment.doctor_id,
        target_date,
        now=now,
        exclude_appointment_id=appointment.pk,
    )
    matching_slot = next((s for s in available if s["start"] == start), None)
    if matching_slot is None or (end is not None and end != matching_slot["end"]):
        raise SlotUnavailableError()

    return {
        "appointment_date": target_date,
        "start_time": minutes_to_time(parse_hhmm(matching_slot["start"])),
        "end_time": minutes_to_time(parse_hhmm(matching_slot["end"])),
        "original_date": appointment.original_date or appointment.appointment_date,
        "original_start_time": appointment.original_start_time or appointment.start_time,
        "rescheduled_at": timezone.now() if now is None else now,
        "reschedule_reason": payload.get("reason", appointment.reschedule_reason),
        "requested_date": None,
        "requested_start_time": None,
        "requested_end_time": None,
    }


def _request_reschedule_changes(payload):
    changes = {"reschedule_reason": payload.get("reason", "")}
    if payload.get("date") and payload.get("slot"):
        start, end = normalize_slot(payload["slot"])
        changes["requested_date"] = _coerce_date(payload["date"])
        changes["requested_start_time"] = minutes_to_time(parse_hhmm(start))
        changes["requested_end_time"] = minutes_to_time(parse_hhmm(end)) if end else None
    return changes


def transition_appointment(appointment_id, action, payload=None, actor=None, *, now=None):
    """
    Apply a lifecycle action to an appointment.

    Args:
        appointment_id: PK of the Appointment.
        action: confirm | cancel | complete | request_reschedule | reschedule
        payload: Action-specific data:
            cancel             - {"reason"}
            request_reschedule - {"date", "slot", "reason"} (all optional)
            reschedule         - {"date", "slot", "reason"}; date/slot fall
                                 back to the pending reschedule request
            any action         - {"version"} to require the caller's copy
                                 to be current
        actor: The user performing the action (passed to receivers).
        now: Aware datetime used as the current time (defaults to now).

    Returns:
        The updated Appointment.

    Raises:
        AppointmentNotFoundError: Unknown appointment.
        InvalidTransitionError: Action not allowed from the current status.
        SlotUnavailableError: Reschedule target is not free.
        StaleAppointmentError: A concurrent writer changed the appointment.
        ScheduleValidationError: Malformed payload.
    """
    payload = payload or {}
    appointment = _get_appointment(appointment_id)
    previous_status = appointment.status
    expected_version = _coerce_version(payload.get("version"))
    if expected_version is not None and expected_version != appointment.version:
        raise StaleAppointmentError()

    changes = {"status": next_status(action, previous_status)}
    if action == CONFIRM:
        # Confirming declines any pending request.
        changes.update(requested_date=None, requested_start_time=None, requested_end_time=None)
    elif action == CANCEL:
        changes["cancellation_reason"] = payload.get("reason", "")
    elif action == REQUEST_RESCHEDULE:
        changes.update(_request_reschedule_changes(payload))
    elif action == RESCHEDULE:
        changes.update(_reschedule_changes(appointment, payload, now))

    with transaction.atomic():
        try:
            with transaction.atomic():
                updated = Appointment.objects.filter(
                    pk=appointment.pk,
                    status=previous_status,
                    version=appointment.version,
                ).update(
                    version=F("version") + 1,
                    updated_at=timezone.now(),
                    **changes,
                )
        except IntegrityError:
            if action == RESCHEDULE and slot_is_held(
                appointment.doctor_id,
                changes["appointment_date"],
                changes["start_time"],
                exclude_appointment_id=appointment.pk,
            ):
                logger.info(
                    "[LIFECYCLE] Reschedule lost race for %s to %s %s",
                    appointment.appointment_number,
                    changes["appointment_date"],
                    changes["start_time"].strftime("%H:%M"),
                )
                raise SlotUnavailableError()
            raise

        if updated == 0:
            logger.info(
                "[LIFECYCLE] Stale write on %s action=%s version=%s",
                appointment.appointment_number,
                action,
                appointment.version,
            )
            raise StaleAppointmentError()

        appointment.refresh_from_db()
        send_on_commit(
            appointment_transitioned,
            sender=Appointment,
            appointment=appointment,
            action=action,
            previous_status=previous_status,
            actor=actor,
        )

    logger.info(
        "[LIFECYCLE] %s %s: %s -> %s (version %s)",
        appointment.appointment_number,
        action,
        previous_status,
        appointment.status,
        appointment.version,
    )
    return appointment


def confirm_appointment(appointment_id, actor=None):
    return transition_appointment(appointment_id, CONFIRM, actor=actor)


def cancel_appointment(appointment_id, reason="", actor=None):
    return transition_appointment(appointment_id, CANCEL, {"reason": reason}, actor=actor)


def complete_appointment(appointment_id, actor=None):
    return transition_appointment(appointment_id, COMPLETE, actor=actor)


def request_reschedule(appointment_id, new_date=None, slot=None, reason="", actor=None):
    payload = {"reason": reason}
    if new_date is not None and slot is not None:
        payload.update({"date": new_date, "slot": slot})
    return transition_appointment(appointment_id, REQUEST_RESCHEDULE, payload, actor=actor)


def reschedule_appointment(appointment_id, new_date=None, slot=None, reason="", actor=None, now=None):
    payload = {"reason": reason}
    if new_date is not None and slot is not None:
        payload.update({"date": new_date, "slot": slot})
    return transition_appointment(appointment_id, RESCHEDULE, payload, actor=actor, now=now)
