# appointments/services package
#
#   booking_service   - the only code path that creates appointments
#   lifecycle_service - status transitions, cancel and reschedule

from appointments.services.booking_service import (  # noqa: F401
    book_appointment,
    normalize_slot,
)

from appointments.services.lifecycle_service import (  # noqa: F401
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    request_reschedule,
    reschedule_appointment,
    transition_appointment,
)
