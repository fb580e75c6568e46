# doctors/services package
#
#   availability_service - date resolution and the bookable-slot pipeline
#   schedule_service     - weekly template, date overrides and blocked dates

from doctors.services.availability_service import (  # noqa: F401
    DayAvailability,
    get_approved_doctor,
    get_available_slots,
    resolve_availability,
)

from doctors.services.schedule_service import (  # noqa: F401
    block_date,
    block_dates,
    bulk_upsert_date_overrides,
    create_date_override,
    delete_date_override,
    find_conflicting_appointments,
    get_schedule,
    unblock_dates,
    update_date_override,
    update_weekly_schedule,
)
