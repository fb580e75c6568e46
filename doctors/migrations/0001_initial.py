import django.core.validators
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
            name="DoctorProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("bio", models.TextField(blank=True, help_text="Public bio displayed on the booking page.")),
                (
                    "consultation_fee",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Copied onto each appointment at booking time.",
                        max_digits=8,
                    ),
                ),
                (
                    "consultation_duration",
                    models.PositiveIntegerField(
                        default=30,
                        help_text="Length of one bookable slot, in minutes.",
                        validators=[
                            django.core.validators.MinValueValidator(5),
                            django.core.validators.MaxValueValidator(180),
                        ],
                    ),
                ),
                ("is_approved", models.BooleanField(default=False, help_text="Unapproved doctors cannot be booked.")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        limit_choices_to={"role": "DOCTOR"},
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="doctor_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Doctor Profile",
                "verbose_name_plural": "Doctor Profiles",
            },
        ),
        migrations.CreateModel(
            name="DoctorAvailability",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "day_of_week",
                    models.IntegerField(
                        choices=[
                            (0, "Monday"),
                            (1, "Tuesday"),
                            (2, "Wednesday"),
                            (3, "Thursday"),
                            (4, "Friday"),
                            (5, "Saturday"),
                            (6, "Sunday"),
                        ]
                    ),
                ),
                (
                    "is_available",
                    models.BooleanField(default=True, help_text="Switch off the whole day without deleting its windows."),
                ),
                (
                    "doctor",
                    models.ForeignKey(
                        help_text="The doctor this availability belongs to.",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="weekly_availability",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Doctor Availability",
                "verbose_name_plural": "Doctor Availabilities",
                "ordering": ["day_of_week"],
            },
        ),
        migrations.CreateModel(
            name="AvailabilityWindow",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("start_time", models.TimeField()),
                ("end_time", models.TimeField()),
                ("is_available", models.BooleanField(default=True)),
                (
                    "availability",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="windows",
                        to="doctors.doctoravailability",
                    ),
                ),
            ],
            options={
                "verbose_name": "Availability Window",
                "verbose_name_plural": "Availability Windows",
                "ordering": ["start_time"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="DateOverride",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("is_available", models.BooleanField(default=True)),
                ("is_blocked", models.BooleanField(default=False)),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "doctor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="date_overrides",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "updated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Date Override",
                "verbose_name_plural": "Date Overrides",
                "ordering": ["date"],
            },
        ),
        migrations.CreateModel(
            name="DateOverrideWindow",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("start_time", models.TimeField()),
                ("end_time", models.TimeField()),
                ("is_available", models.BooleanField(default=True)),
                (
                    "override",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="windows",
                        to="doctors.dateoverride",
                    ),
                ),
            ],
            options={
                "verbose_name": "Date Override Window",
                "verbose_name_plural": "Date Override Windows",
                "ordering": ["start_time"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="BlockedDate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "doctor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="blocked_dates",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Blocked Date",
                "verbose_name_plural": "Blocked Dates",
                "ordering": ["date"],
            },
        ),
        migrations.AddConstraint(
            model_name="doctoravailability",
            constraint=models.UniqueConstraint(fields=("doctor", "day_of_week"), name="unique_doctor_weekday"),
        ),
        migrations.AddConstraint(
            model_name="dateoverride",
            constraint=models.UniqueConstraint(fields=("doctor", "date"), name="unique_override_per_doctor_date"),
        ),
        migrations.AddConstraint(
            model_name="blockeddate",
            constraint=models.UniqueConstraint(fields=("doctor", "date"), name="unique_blocked_date_per_doctor"),
        ),
    ]
