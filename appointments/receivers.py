import logging

from django.dispatch import receiver

from .signals import appointment_booked, appointment_transitioned, schedule_date_blocked

logger = logging.getLogger(__name__)


@receiver(appointment_booked)
def log_appointment_booked(sender, appointment, **kwargs):
    logger.info(
        "[EVENT] appointment_booked number=%s doctor_id=%s patient_id=%s date=%s start=%s",
        appointment.appointment_number,
        appointment.doctor_id,
        appointment.patient_id,
        appointment.appointment_date,
        appointment.start_time.strftime("%H:%M"),
    )


@receiver(appointment_transitioned)
def log_appointment_transitioned(sender, appointment, action, previous_status, actor=None, **kwargs):
    logger.info(
        "[EVENT] appointment_transitioned number=%s action=%s %s->%s actor_id=%s",
        appointment.appointment_number,
        action,
        previous_status,
        appointment.status,
        actor.id if actor else None,
    )


@receiver(schedule_date_blocked)
def log_schedule_date_blocked(sender, doctor, date, forced=False, **kwargs):
    logger.info(
        "[EVENT] schedule_date_blocked doctor_id=%s date=%s forced=%s",
        doctor.id,
        date,
        forced,
    )
