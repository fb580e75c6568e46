"""
Availability resolution and slot listing.

Pipeline for one doctor and one calendar date:

1. resolve_availability()  - which windows apply on that date
2. generate_slots()        - cut the windows into consultation-sized slots
3. filter_booked_slots()   - drop slots already held by live appointments

Resolution order (first match wins):
    DateOverride for the date  →  BlockedDate entry  →  weekly template.

An override fully replaces the weekly template; it is never merged with it.
Missing data means unavailable.
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from django.utils import timezone

from appointments.conflicts import filter_booked_slots
from appointments.exceptions import DoctorNotFoundError, ScheduleValidationError
from doctors.conf import scheduling_setting
from doctors.models import BlockedDate, DateOverride, DoctorAvailability, DoctorProfile
from doctors.slots import generate_slots, time_to_minutes

logger = logging.getLogger(__name__)

SOURCE_OVERRIDE = "override"
SOURCE_BLOCKED_DATE = "blocked_date"
SOURCE_WEEKLY = "weekly"


@dataclass(frozen=True)
class DayAvailability:
    """Resolved availability for one doctor on one date."""

    windows: list = field(default_factory=list)  # [(start_minute, end_minute), ...]
    blocked: bool = True
    source: str = SOURCE_WEEKLY
    reason: str = ""


def _available_windows(windows):
    return sorted(
        (time_to_minutes(w.start_time), time_to_minutes(w.end_time))
        for w in windows
        if w.is_available
    )


def get_approved_doctor(doctor_id) -> DoctorProfile:
    """Return the approved DoctorProfile for a doctor user ID."""
    try:
        return DoctorProfile.objects.select_related("user").get(
            user_id=doctor_id,
            is_approved=True,
            user__is_active=True,
        )
    except DoctorProfile.DoesNotExist:
        raise DoctorNotFoundError()


def resolve_availability(doctor_id, target_date: date) -> DayAvailability:
    """Return the authoritative availability windows for one date."""

    override = (
        DateOverride.objects.filter(doctor_id=doctor_id, date=target_date)
        .prefetch_related("windows")
        .first()
    )
    if override is not None:
        if override.is_blocked or not override.is_available:
            windows = []
        else:
            windows = _available_windows(override.windows.all())
        return DayAvailability(
            windows=windows,
            blocked=not windows,
            source=SOURCE_OVERRIDE,
            reason=override.reason,
        )

    blocked_date = BlockedDate.objects.filter(doctor_id=doctor_id, date=target_date).first()
    if blocked_date is not None:
        return DayAvailability(
            blocked=True,
            source=SOURCE_BLOCKED_DATE,
            reason=blocked_date.reason,
        )

    day = (
        DoctorAvailability.objects.filter(doctor_id=doctor_id, day_of_week=target_date.weekday())
        .prefetch_related("windows")
        .first()
    )
    if day is None or not day.is_available:
        return DayAvailability(blocked=True, source=SOURCE_WEEKLY)

    windows = _available_windows(day.windows.all())
    return DayAvailability(windows=windows, blocked=not windows, source=SOURCE_WEEKLY)


def get_available_slots(doctor_id, target_date: date, now=None, exclude_appointment_id=None) -> list[dict]:
    """
    Compute the bookable slots for a doctor on a date.

    Args:
        doctor_id: The doctor's user ID.
        target_date: The date to list slots for.
        now: Aware datetime to treat as the current time (defaults to now).
        exclude_appointment_id: Appointment whose own slot should count as
            free (used when rescheduling it).

    Returns:
        [{"start": "HH:MM", "end": "HH:MM"}, ...] ascending by start.

    Raises:
        DoctorNotFoundError: Unknown or unapproved doctor.
        ScheduleValidationError: target_date is in the past.
    """
    profile = get_approved_doctor(doctor_id)

    local_now = timezone.localtime(now)
    today = local_now.date()
    if target_date < today:
        raise ScheduleValidationError("Cannot view slots for past dates.")

    day = resolve_availability(doctor_id, target_date)
    if day.blocked:
        logger.debug(
            "[SCHEDULE] doctor_id=%s date=%s unavailable (source=%s)",
            doctor_id,
            target_date,
            day.source,
        )
        return []

    now_minutes = time_to_minutes(local_now.time()) if target_date == today else None
    duration = profile.consultation_duration or scheduling_setting("DEFAULT_CONSULTATION_DURATION")
    candidates = generate_slots(day.windows, duration, now_minutes)
    return filter_booked_slots(doctor_id, target_date, candidates, exclude_appointment_id)
