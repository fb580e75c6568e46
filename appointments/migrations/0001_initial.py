import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Appointment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("appointment_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("appointment_date", models.DateField()),
                ("start_time", models.TimeField()),
                ("end_time", models.TimeField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("confirmed", "Confirmed"),
                            ("reschedule_requested", "Reschedule Requested"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=24,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                        ],
                        default="pending",
                        max_length=24,
                    ),
                ),
                ("consultation_fee", models.DecimalField(decimal_places=2, default=0, max_digits=8)),
                ("reason_for_visit", models.TextField(blank=True)),
                ("symptoms", models.TextField(blank=True)),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Client-supplied key; a retried booking with the same key returns the original.",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Bumped on every lifecycle write; used for optimistic concurrency.",
                    ),
                ),
                ("requested_date", models.DateField(blank=True, null=True)),
                ("requested_start_time", models.TimeField(blank=True, null=True)),
                ("requested_end_time", models.TimeField(blank=True, null=True)),
                ("original_date", models.DateField(blank=True, null=True)),
                ("original_start_time", models.TimeField(blank=True, null=True)),
                ("rescheduled_at", models.DateTimeField(blank=True, null=True)),
                ("reschedule_reason", models.TextField(blank=True)),
                ("cancellation_reason", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "doctor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="appointments_as_doctor",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="appointments_as_patient",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Appointment",
                "verbose_name_plural": "Appointments",
                "ordering": ["-appointment_date", "-start_time"],
                "indexes": [
                    models.Index(fields=["doctor", "appointment_date"], name="appt_doctor_date_idx"),
                    models.Index(fields=["patient", "appointment_date"], name="appt_patient_date_idx"),
                ],
            },
        ),
        migrations.AddConstraint(
            model_name="appointment",
            constraint=models.UniqueConstraint(
                condition=models.Q(("status", "cancelled"), _negated=True),
                fields=("doctor", "appointment_date", "start_time"),
                name="unique_active_booking_per_doctor_slot",
            ),
        ),
        migrations.AddConstraint(
            model_name="appointment",
            constraint=models.UniqueConstraint(
                condition=models.Q(("idempotency_key__isnull", False)),
                fields=("patient", "idempotency_key"),
                name="unique_booking_idempotency_key",
            ),
        ),
    ]
