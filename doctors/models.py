from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from .conf import scheduling_setting


class DoctorProfile(models.Model):
    """
    Scheduling-relevant profile for doctor users.

    CustomUser (auth/identity) ← OneToOne → DoctorProfile (domain data).
    Only approved doctors expose bookable slots.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="doctor_profile",
        limit_choices_to={"role": "DOCTOR"},
    )
    bio = models.TextField(
        blank=True,
        help_text="Public bio displayed on the booking page.",
    )
    consultation_fee = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        default=0,
        help_text="Copied onto each appointment at booking time.",
    )
    consultation_duration = models.PositiveIntegerField(
        default=30,
        validators=[MinValueValidator(5), MaxValueValidator(180)],
        help_text="Length of one bookable slot, in minutes.",
    )
    is_approved = models.BooleanField(
        default=False,
        help_text="Unapproved doctors cannot be booked.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Doctor Profile"
        verbose_name_plural = "Doctor Profiles"

    def __str__(self):
        return f"Dr. {self.user.name}"

    def clean(self):
        super().clean()
        low = scheduling_setting("MIN_CONSULTATION_DURATION")
        high = scheduling_setting("MAX_CONSULTATION_DURATION")
        if self.consultation_duration is not None and not low <= self.consultation_duration <= high:
            raise ValidationError(
                {"consultation_duration": f"Consultation duration must be between {low} and {high} minutes."}
            )


class TimeWindow(models.Model):
    """A [start_time, end_time) window inside one day."""

    start_time = models.TimeField()
    end_time = models.TimeField()
    is_available = models.BooleanField(default=True)

    class Meta:
        abstract = True
        ordering = ["start_time"]

    def clean(self):
        super().clean()
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValidationError({"end_time": "End time must be after start time."})

    def __str__(self):
        return f"{self.start_time:%H:%M}-{self.end_time:%H:%M}"


class DoctorAvailability(models.Model):
    """
    One day of a doctor's recurring weekly template.

    day_of_week uses Python's weekday() convention:
        0 = Monday, 1 = Tuesday, ..., 6 = Sunday

    A missing row, or is_available=False, means the doctor does not work
    that weekday.
    """

    DAY_CHOICES = [
        (0, "Monday"),
        (1, "Tuesday"),
        (2, "Wednesday"),
        (3, "Thursday"),
        (4, "Friday"),
        (5, "Saturday"),
        (6, "Sunday"),
    ]

    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="weekly_availability",
        help_text="The doctor this availability belongs to.",
    )
    day_of_week = models.IntegerField(choices=DAY_CHOICES)
    is_available = models.BooleanField(
        default=True,
        help_text="Switch off the whole day without deleting its windows.",
    )

    class Meta:
        verbose_name = "Doctor Availability"
        verbose_name_plural = "Doctor Availabilities"
        ordering = ["day_of_week"]
        constraints = [
            models.UniqueConstraint(
                fields=["doctor", "day_of_week"],
                name="unique_doctor_weekday",
            )
        ]

    def __str__(self):
        return f"{self.doctor.name} - {self.get_day_of_week_display()}"


class AvailabilityWindow(TimeWindow):
    availability = models.ForeignKey(
        DoctorAvailability,
        on_delete=models.CASCADE,
        related_name="windows",
    )

    class Meta(TimeWindow.Meta):
        verbose_name = "Availability Window"
        verbose_name_plural = "Availability Windows"


class DateOverride(models.Model):
    """
    Date-specific availability that fully replaces the weekly template.

    An override with is_blocked=True, is_available=False, or without any
    available window makes the whole date unavailable.
    """

    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="date_overrides",
    )
    date = models.DateField()
    is_available = models.BooleanField(default=True)
    is_blocked = models.BooleanField(default=False)
    reason = models.CharField(max_length=255, blank=True)
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Date Override"
        verbose_name_plural = "Date Overrides"
        ordering = ["date"]
        constraints = [
            models.UniqueConstraint(
                fields=["doctor", "date"],
                name="unique_override_per_doctor_date",
            )
        ]

    def __str__(self):
        state = "blocked" if self.is_blocked else "custom hours"
        return f"{self.doctor.name} - {self.date} ({state})"

    @property
    def day_of_week(self):
        return self.date.strftime("%A").lower()


class DateOverrideWindow(TimeWindow):
    override = models.ForeignKey(
        DateOverride,
        on_delete=models.CASCADE,
        related_name="windows",
    )

    class Meta(TimeWindow.Meta):
        verbose_name = "Date Override Window"
        verbose_name_plural = "Date Override Windows"


class BlockedDate(models.Model):
    """A whole day off, without a full override record."""

    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="blocked_dates",
    )
    date = models.DateField()
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Blocked Date"
        verbose_name_plural = "Blocked Dates"
        ordering = ["date"]
        constraints = [
            models.UniqueConstraint(
                fields=["doctor", "date"],
                name="unique_blocked_date_per_doctor",
            )
        ]

    def __str__(self):
        return f"{self.doctor.name} - {self.date}"
