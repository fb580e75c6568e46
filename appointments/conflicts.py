"""
Conflict detection against existing bookings.

A candidate slot conflicts when a non-cancelled appointment for the same
doctor and date already starts at the same "HH:MM". Slots are generated on
a fixed grid, so start-time equality is enough.
"""

from appointments.models import Appointment


def occupied_start_times(doctor_id, target_date, exclude_appointment_id=None):
    """Return the set of "HH:MM" start times held by live appointments."""
    appointments = Appointment.objects.filter(
        doctor_id=doctor_id,
        appointment_date=target_date,
    ).exclude(status=Appointment.Status.CANCELLED)

    if exclude_appointment_id is not None:
        appointments = appointments.exclude(pk=exclude_appointment_id)

    return {
        start.strftime("%H:%M")
        for start in appointments.values_list("start_time", flat=True)
    }


def filter_booked_slots(doctor_id, target_date, candidate_slots, exclude_appointment_id=None):
    """
    Drop candidate slots whose start time is already booked.

    Args:
        doctor_id: The doctor's user ID.
        target_date: Calendar date of the candidates.
        candidate_slots: [{"start": "HH:MM", "end": "HH:MM"}, ...]
        exclude_appointment_id: Appointment to ignore (the one being moved
            during a reschedule).

    Returns:
        The candidates that are still free, in their original order.
    """
    if not candidate_slots:
        return []

    occupied = occupied_start_times(doctor_id, target_date, exclude_appointment_id)
    return [slot for slot in candidate_slots if slot["start"] not in occupied]
