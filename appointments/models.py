import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q


def generate_appointment_number(appointment_date):
    """Human-readable, globally unique booking reference: APT-YYYYMMDD-XXXXXXXX."""
    return f"APT-{appointment_date:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


class Appointment(models.Model):
    """
    Core appointment booking record.

    Never deleted: cancellation is a status transition. At most one
    non-cancelled appointment may hold a (doctor, date, start_time) slot;
    the partial unique constraint below is what makes concurrent bookings
    of the same slot mutually exclusive.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        RESCHEDULE_REQUESTED = "reschedule_requested", "Reschedule Requested"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"
        REFUNDED = "refunded", "Refunded"
        PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"

    appointment_number = models.CharField(max_length=32, unique=True, editable=False)
    patient = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="appointments_as_patient"
    )
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="appointments_as_doctor"
    )
    appointment_date = models.DateField()
    start_time = models.TimeField()
    end_time = models.TimeField()
    status = models.CharField(max_length=24, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=24, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    consultation_fee = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    reason_for_visit = models.TextField(blank=True)
    symptoms = models.TextField(blank=True)
    idempotency_key = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Client-supplied key; a retried booking with the same key returns the original.",
    )
    version = models.PositiveIntegerField(
        default=1,
        help_text="Bumped on every lifecycle write; used for optimistic concurrency.",
    )

    # Reschedule bookkeeping
    requested_date = models.DateField(null=True, blank=True)
    requested_start_time = models.TimeField(null=True, blank=True)
    requested_end_time = models.TimeField(null=True, blank=True)
    original_date = models.DateField(null=True, blank=True)
    original_start_time = models.TimeField(null=True, blank=True)
    rescheduled_at = models.DateTimeField(null=True, blank=True)
    reschedule_reason = models.TextField(blank=True)

    cancellation_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-appointment_date", "-start_time"]
        verbose_name = "Appointment"
        verbose_name_plural = "Appointments"
        constraints = [
            models.UniqueConstraint(
                fields=["doctor", "appointment_date", "start_time"],
                condition=~Q(status="cancelled"),
                name="unique_active_booking_per_doctor_slot",
            ),
            models.UniqueConstraint(
                fields=["patient", "idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="unique_booking_idempotency_key",
            ),
        ]
        indexes = [
            models.Index(fields=["doctor", "appointment_date"], name="appt_doctor_date_idx"),
            models.Index(fields=["patient", "appointment_date"], name="appt_patient_date_idx"),
        ]

    def __str__(self):
        return f"{self.appointment_number} - {self.patient.name} with {self.doctor.name} on {self.appointment_date}"

    @property
    def time_slot(self):
        return {
            "start": self.start_time.strftime("%H:%M"),
            "end": self.end_time.strftime("%H:%M"),
        }

    @property
    def is_terminal(self):
        return self.status in (self.Status.COMPLETED, self.Status.CANCELLED)
