"""
Post-commit scheduling events.

The core never calls notification or audit code directly. It sends these
signals through transaction.on_commit(), so receivers only ever see
committed state and a failing receiver cannot undo a booking.
"""

import logging

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

# kwargs: appointment
appointment_booked = Signal()

# kwargs: appointment, action, previous_status, actor
appointment_transitioned = Signal()

# kwargs: doctor, date, reason, forced, override
schedule_date_blocked = Signal()


def send_on_commit(signal, sender, **kwargs):
    """Send ``signal`` once the surrounding transaction commits."""

    def _send():
        for receiver, response in signal.send_robust(sender=sender, **kwargs):
            if isinstance(response, Exception):
                logger.error(
                    "[EVENT] Receiver %r failed for %s: %r",
                    receiver,
                    sender.__name__,
                    response,
                )

    transaction.on_commit(_send)
