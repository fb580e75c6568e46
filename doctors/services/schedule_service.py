"""
Schedule override manager.

Writes to a doctor's weekly template, date overrides and blocked dates.

Any write that can reduce availability on a date first looks for live
appointments that would fall outside the new windows. Those writes are
rejected with BlockConflictError unless force=True; forcing never touches
the existing appointments.
"""

import logging
from datetime import date

from django.db import transaction
from django.shortcuts import get_object_or_404
from django.utils import timezone

from appointments.exceptions import BlockConflictError, ScheduleValidationError, SchedulingError
from appointments.models import Appointment
from appointments.signals import schedule_date_blocked, send_on_commit
from doctors.conf import operating_hours
from doctors.models import (
    AvailabilityWindow,
    BlockedDate,
    DateOverride,
    DateOverrideWindow,
    DoctorAvailability,
)
from doctors.slots import check_windows, format_hhmm, minutes_to_time, parse_hhmm, time_to_minutes

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Validation helpers
# ═══════════════════════════════════════════════════════════════════


def parse_windows(windows):
    """
    Validate raw window payloads.

    Args:
        windows: [{"start": "HH:MM", "end": "HH:MM", "is_available": bool}, ...]
            ``is_available`` defaults to True.

    Returns:
        [(start_minute, end_minute, is_available), ...] sorted by start.

    Raises:
        ScheduleValidationError: bad format, start >= end, overlapping
            windows, or a window outside the operating hours.
    """
    open_minute, close_minute = operating_hours()

    parsed = []
    for window in windows or []:
        try:
            start = parse_hhmm(window["start"])
            end = parse_hhmm(window["end"])
        except (KeyError, TypeError):
            raise ScheduleValidationError("Each window needs a start and an end time.")
        if start < open_minute or end > close_minute:
            raise ScheduleValidationError(
                f"Window {window['start']}-{window['end']} is outside operating hours "
                f"({format_hhmm(open_minute)}-{format_hhmm(close_minute)})."
            )
        parsed.append((start, end, bool(window.get("is_available", True))))

    check_windows([(start, end) for start, end, _ in parsed])
    return sorted(parsed)


def ensure_not_past(target_date: date, now=None):
    if target_date < timezone.localdate(now):
        raise ScheduleValidationError(f"Cannot modify the schedule for a past date ({target_date}).")


def _live_appointments(doctor, target_dates):
    return (
        Appointment.objects.filter(doctor=doctor, appointment_date__in=target_dates)
        .exclude(status=Appointment.Status.CANCELLED)
        .order_by("appointment_date", "start_time")
    )


def find_conflicting_appointments(doctor, target_date: date, available_windows) -> list:
    """
    Return live appointments on ``target_date`` that do not fit any window.

    ``available_windows`` is a list of (start_minute, end_minute) pairs; an
    empty list means the whole date becomes unavailable.
    """
    conflicts = []
    for appointment in _live_appointments(doctor, [target_date]):
        start = time_to_minutes(appointment.start_time)
        end = time_to_minutes(appointment.end_time)
        if not any(w_start <= start and end <= w_end for w_start, w_end in available_windows):
            conflicts.append(appointment)
    return conflicts


def _raise_on_conflicts(doctor, target_date, available_windows, force):
    conflicts = find_conflicting_appointments(doctor, target_date, available_windows)
    if not conflicts:
        return
    if force:
        logger.warning(
            "[SCHEDULE] Forced change on doctor_id=%s date=%s leaves %d appointment(s) outside availability",
            doctor.id,
            target_date,
            len(conflicts),
        )
        return
    raise BlockConflictError(
        f"Cannot change availability for {target_date}: {len(conflicts)} existing appointment(s).",
        conflicting_appointments=[a.appointment_number for a in conflicts],
    )


def _effective_windows(is_available, is_blocked, parsed_windows):
    if is_blocked or not is_available:
        return []
    return [(start, end) for start, end, available in parsed_windows if available]


def _replace_override_windows(override, parsed_windows):
    override.windows.all().delete()
    DateOverrideWindow.objects.bulk_create(
        [
            DateOverrideWindow(
                override=override,
                start_time=minutes_to_time(start),
                end_time=minutes_to_time(end),
                is_available=available,
            )
            for start, end, available in parsed_windows
        ]
    )


def _announce_if_blocked(doctor, override, effective_windows, forced):
    if effective_windows:
        return
    send_on_commit(
        schedule_date_blocked,
        sender=DateOverride,
        doctor=doctor,
        date=override.date,
        reason=override.reason,
        forced=forced,
        override=override,
    )


# ═══════════════════════════════════════════════════════════════════
#  Reading
# ═══════════════════════════════════════════════════════════════════


def get_schedule(doctor, start_date=None, end_date=None):
    """
    Return the doctor's weekly template, blocked dates and date overrides.

    Overrides and blocked dates are limited to [start_date, end_date] when
    either bound is given.
    """
    overrides = DateOverride.objects.filter(doctor=doctor).prefetch_related("windows")
    blocked = BlockedDate.objects.filter(doctor=doctor)
    if start_date:
        overrides = overrides.filter(date__gte=start_date)
        blocked = blocked.filter(date__gte=start_date)
    if end_date:
        overrides = overrides.filter(date__lte=end_date)
        blocked = blocked.filter(date__lte=end_date)

    return {
        "weekly": DoctorAvailability.objects.filter(doctor=doctor).prefetch_related("windows"),
        "blocked_dates": blocked,
        "date_overrides": overrides,
    }


# ═══════════════════════════════════════════════════════════════════
#  Weekly template
# ═══════════════════════════════════════════════════════════════════


@transaction.atomic
def update_weekly_schedule(doctor, days):
    """
    Replace the weekly template for the given weekdays.

    Args:
        doctor: Doctor user.
        days: [{"day_of_week": 0-6, "is_available": bool, "windows": [...]}, ...]
            Weekdays not listed keep their current template.

    Returns:
        The doctor's full weekly template queryset.
    """
    seen = set()
    for entry in days:
        day_of_week = entry.get("day_of_week")
        if day_of_week not in range(7):
            raise ScheduleValidationError(f"Invalid day_of_week: {day_of_week!r}.")
        if day_of_week in seen:
            raise ScheduleValidationError(f"day_of_week {day_of_week} listed twice.")
        seen.add(day_of_week)

        parsed = parse_windows(entry.get("windows", []))
        is_available = bool(entry.get("is_available", True))

        availability, _ = DoctorAvailability.objects.update_or_create(
            doctor=doctor,
            day_of_week=day_of_week,
            defaults={"is_available": is_available},
        )
        availability.windows.all().delete()
        AvailabilityWindow.objects.bulk_create(
            [
                AvailabilityWindow(
                    availability=availability,
                    start_time=minutes_to_time(start),
                    end_time=minutes_to_time(end),
                    is_available=available,
                )
                for start, end, available in parsed
            ]
        )

    logger.info("[SCHEDULE] Weekly template updated doctor_id=%s days=%s", doctor.id, sorted(seen))
    return DoctorAvailability.objects.filter(doctor=doctor).prefetch_related("windows")


# ═══════════════════════════════════════════════════════════════════
#  Date overrides
# ═══════════════════════════════════════════════════════════════════


@transaction.atomic
def create_date_override(
    doctor,
    *,
    date,
    windows=None,
    is_available=True,
    is_blocked=False,
    reason="",
    force=False,
    updated_by=None,
    now=None,
):
    ensure_not_past(date, now)
    parsed = parse_windows(windows)

    if DateOverride.objects.filter(doctor=doctor, date=date).exists():
        raise ScheduleValidationError(f"A date override already exists for {date}.")

    effective = _effective_windows(is_available, is_blocked, parsed)
    _raise_on_conflicts(doctor, date, effective, force)

    override = DateOverride.objects.create(
        doctor=doctor,
        date=date,
        is_available=is_available,
        is_blocked=is_blocked,
        reason=reason,
        updated_by=updated_by,
    )
    _replace_override_windows(override, parsed)
    _announce_if_blocked(doctor, override, effective, force)

    logger.info(
        "[SCHEDULE] Override created doctor_id=%s date=%s windows=%d blocked=%s",
        doctor.id,
        date,
        len(effective),
        not effective,
    )
    return override


@transaction.atomic
def update_date_override(
    doctor,
    override_id,
    *,
    date=None,
    windows=None,
    is_available=None,
    is_blocked=None,
    reason=None,
    force=False,
    updated_by=None,
    now=None,
):
    """
    Update an override in place. Arguments left as None keep their value;
    ``windows`` replaces the whole window list when given.
    """
    override = get_object_or_404(DateOverride.objects.select_for_update(), pk=override_id, doctor=doctor)
    ensure_not_past(override.date, now)

    if date is not None and date != override.date:
        ensure_not_past(date, now)
        if DateOverride.objects.filter(doctor=doctor, date=date).exclude(pk=override.pk).exists():
            raise ScheduleValidationError(f"A date override already exists for {date}.")
        override.date = date

    if windows is None:
        parsed = [
            (time_to_minutes(w.start_time), time_to_minutes(w.end_time), w.is_available)
            for w in override.windows.all()
        ]
    else:
        parsed = parse_windows(windows)

    if is_available is not None:
        override.is_available = is_available
    if is_blocked is not None:
        override.is_blocked = is_blocked
    if reason is not None:
        override.reason = reason

    effective = _effective_windows(override.is_available, override.is_blocked, parsed)
    _raise_on_conflicts(doctor, override.date, effective, force)

    override.updated_by = updated_by
    override.save()
    if windows is not None:
        _replace_override_windows(override, parsed)
    _announce_if_blocked(doctor, override, effective, force)

    logger.info("[SCHEDULE] Override updated doctor_id=%s date=%s", doctor.id, override.date)
    return override


def delete_date_override(doctor, override_id):
    """Remove an override; the date falls back to blocked dates / the weekly template."""
    override = get_object_or_404(DateOverride, pk=override_id, doctor=doctor)
    override_date = override.date
    override.delete()
    logger.info("[SCHEDULE] Override deleted doctor_id=%s date=%s", doctor.id, override_date)


def bulk_upsert_date_overrides(doctor, entries, *, force=False, updated_by=None, now=None):
    """
    Create or update many overrides, one date at a time.

    Each entry is applied in its own savepoint, so one bad entry does not
    undo the others.

    Returns:
        {"created": [DateOverride], "updated": [DateOverride],
         "errors": [{"date": ..., "detail": ..., "code": ...}]}
    """
    result = {"created": [], "updated": [], "errors": []}

    for entry in entries:
        entry_date = entry.get("date")
        fields = {
            "windows": entry.get("windows"),
            "is_available": entry.get("is_available", True),
            "is_blocked": entry.get("is_blocked", False),
            "reason": entry.get("reason", ""),
            "force": force,
            "updated_by": updated_by,
            "now": now,
        }
        try:
            if entry_date is None:
                raise ScheduleValidationError("Each override needs a date.")
            with transaction.atomic():
                existing = DateOverride.objects.filter(doctor=doctor, date=entry_date).first()
                if existing is None:
                    result["created"].append(create_date_override(doctor, date=entry_date, **fields))
                else:
                    if fields["windows"] is None:
                        fields["windows"] = []
                    result["updated"].append(update_date_override(doctor, existing.pk, **fields))
        except SchedulingError as e:
            result["errors"].append({"date": entry_date, **e.as_dict()})

    logger.info(
        "[SCHEDULE] Bulk overrides doctor_id=%s created=%d updated=%d errors=%d",
        doctor.id,
        len(result["created"]),
        len(result["updated"]),
        len(result["errors"]),
    )
    return result


# ═══════════════════════════════════════════════════════════════════
#  Blocking
# ═══════════════════════════════════════════════════════════════════


@transaction.atomic
def block_date(doctor, target_date, *, reason="", force=False, updated_by=None, now=None):
    """
    Block a whole date by creating (or replacing) its override.

    Raises:
        ScheduleValidationError: target_date is in the past.
        BlockConflictError: live appointments exist on that date and
            force is False.
    """
    ensure_not_past(target_date, now)
    _raise_on_conflicts(doctor, target_date, [], force)

    override, created = DateOverride.objects.select_for_update().get_or_create(
        doctor=doctor,
        date=target_date,
        defaults={
            "is_available": False,
            "is_blocked": True,
            "reason": reason,
            "updated_by": updated_by,
        },
    )
    if not created:
        override.is_available = False
        override.is_blocked = True
        override.reason = reason
        override.updated_by = updated_by
        override.save()
        override.windows.all().delete()

    _announce_if_blocked(doctor, override, [], force)
    logger.info(
        "[SCHEDULE] Date blocked doctor_id=%s date=%s forced=%s",
        doctor.id,
        target_date,
        force,
    )
    return override


@transaction.atomic
def block_dates(doctor, dates, *, reason="", force=False, now=None):
    """
    Add dates to the doctor's blocked-date set.

    Dates already blocked are skipped. Returns the newly created rows.
    """
    dates = sorted(set(dates))
    for target_date in dates:
        ensure_not_past(target_date, now)

    conflicts = list(_live_appointments(doctor, dates))
    if conflicts and not force:
        raise BlockConflictError(
            "Cannot block dates with existing appointments.",
            conflicting_dates=sorted({a.appointment_date.isoformat() for a in conflicts}),
        )

    already_blocked = set(
        BlockedDate.objects.filter(doctor=doctor, date__in=dates).values_list("date", flat=True)
    )
    created = []
    for target_date in dates:
        if target_date in already_blocked:
            continue
        created.append(BlockedDate.objects.create(doctor=doctor, date=target_date, reason=reason))
        send_on_commit(
            schedule_date_blocked,
            sender=BlockedDate,
            doctor=doctor,
            date=target_date,
            reason=reason,
            forced=force,
            override=None,
        )

    logger.info(
        "[SCHEDULE] Blocked dates doctor_id=%s added=%d skipped=%d",
        doctor.id,
        len(created),
        len(already_blocked),
    )
    return created


def unblock_dates(doctor, dates):
    """Remove dates from the blocked-date set. Returns how many were removed."""
    deleted, _ = BlockedDate.objects.filter(doctor=doctor, date__in=list(dates)).delete()
    logger.info("[SCHEDULE] Unblocked dates doctor_id=%s removed=%d", doctor.id, deleted)
    return deleted
