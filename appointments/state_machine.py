"""
Appointment lifecycle rules.

    pending ──confirm──▶ confirmed ──complete──▶ completed
       │                    │
       ├─request_reschedule─┤──▶ reschedule_requested ──confirm/reschedule──▶ confirmed
       │                    │
       └──────cancel────────┴──▶ cancelled

completed and cancelled are terminal. This module only decides whether an
action is legal; persistence lives in appointments.services.lifecycle_service.
"""

from appointments.exceptions import InvalidTransitionError
from appointments.models import Appointment

Status = Appointment.Status

CONFIRM = "confirm"
CANCEL = "cancel"
COMPLETE = "complete"
REQUEST_RESCHEDULE = "request_reschedule"
RESCHEDULE = "reschedule"

# action -> (allowed source statuses, target status)
TRANSITIONS = {
    CONFIRM: (
        frozenset({Status.PENDING, Status.RESCHEDULE_REQUESTED}),
        Status.CONFIRMED,
    ),
    CANCEL: (
        frozenset({Status.PENDING, Status.CONFIRMED, Status.RESCHEDULE_REQUESTED}),
        Status.CANCELLED,
    ),
    COMPLETE: (
        frozenset({Status.CONFIRMED}),
        Status.COMPLETED,
    ),
    REQUEST_RESCHEDULE: (
        frozenset({Status.PENDING, Status.CONFIRMED}),
        Status.RESCHEDULE_REQUESTED,
    ),
    RESCHEDULE: (
        frozenset({Status.PENDING, Status.CONFIRMED, Status.RESCHEDULE_REQUESTED}),
        Status.CONFIRMED,
    ),
}

ACTIONS = tuple(TRANSITIONS)


def next_status(action, current_status):
    """Return the status ``action`` moves ``current_status`` to, or raise."""
    if action not in TRANSITIONS:
        raise InvalidTransitionError(
            f"Unknown action {action!r}. Expected one of: {', '.join(ACTIONS)}."
        )
    sources, target = TRANSITIONS[action]
    if current_status not in sources:
        raise InvalidTransitionError(
            f"Cannot {action.replace('_', ' ')} an appointment that is {current_status}."
        )
    return target


def allowed_actions(current_status):
    return [action for action, (sources, _) in TRANSITIONS.items() if current_status in sources]
