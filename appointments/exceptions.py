"""
Error taxonomy for the scheduling core.

Every error carries a human-readable ``message`` and a stable ``code`` that
the API layer returns to the caller unchanged. Storage errors that are not
caused by the booking uniqueness constraint are never wrapped here; they
propagate as-is.
"""


class SchedulingError(Exception):
    """Base exception for scheduling failures."""

    default_message = "Scheduling request failed."
    default_code = "SCHEDULING_ERROR"

    def __init__(self, message=None, code=None, **extra):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.extra = extra
        super().__init__(self.message)

    def as_dict(self):
        payload = {"detail": self.message, "code": self.code}
        payload.update(self.extra)
        return payload


class ScheduleValidationError(SchedulingError):
    """Malformed date / time / duration input. Fix the input and retry."""

    default_message = "Invalid scheduling input."
    default_code = "VALIDATION_ERROR"


class SlotUnavailableError(SchedulingError):
    """The slot is not free (any more). Re-fetch availability and retry."""

    default_message = "This time slot is no longer available. Please select another slot."
    default_code = "SLOT_UNAVAILABLE"


class InvalidTransitionError(SchedulingError):
    """Lifecycle rule violation. Not retryable."""

    default_message = "This action is not allowed for the appointment's current status."
    default_code = "INVALID_TRANSITION"


class BlockConflictError(SchedulingError):
    """Blocking a date that still holds bookings, without force."""

    default_message = "Cannot block a date with existing appointments."
    default_code = "HAS_EXISTING_APPOINTMENTS"


class StaleAppointmentError(SchedulingError):
    """Another writer changed the appointment first."""

    default_message = "The appointment was modified by another request. Reload and try again."
    default_code = "STALE_APPOINTMENT"


class DoctorNotFoundError(SchedulingError):
    default_message = "Doctor not found or not approved."
    default_code = "DOCTOR_NOT_FOUND"


class AppointmentNotFoundError(SchedulingError):
    default_message = "Appointment not found."
    default_code = "APPOINTMENT_NOT_FOUND"
