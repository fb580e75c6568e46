from rest_framework import serializers

from .models import AvailabilityWindow, BlockedDate, DateOverride, DateOverrideWindow, DoctorAvailability


# ── Input ────────────────────────────────────────────────────────────


class TimeWindowInputSerializer(serializers.Serializer):
    """
    One availability window as sent by the client.

    Times stay "HH:MM" strings here; range, ordering and overlap checks
    happen in the schedule service.
    """

    start = serializers.CharField(max_length=5)
    end = serializers.CharField(max_length=5)
    is_available = serializers.BooleanField(required=False, default=True)


class WeeklyDaySerializer(serializers.Serializer):
    day_of_week = serializers.ChoiceField(choices=DoctorAvailability.DAY_CHOICES)
    is_available = serializers.BooleanField(required=False, default=True)
    windows = TimeWindowInputSerializer(many=True, required=False, default=list)


class WeeklyScheduleSerializer(serializers.Serializer):
    days = WeeklyDaySerializer(many=True, allow_empty=False)


class DateOverrideInputSerializer(serializers.Serializer):
    date = serializers.DateField(help_text="Date in YYYY-MM-DD format.")
    windows = TimeWindowInputSerializer(many=True, required=False)
    is_available = serializers.BooleanField(required=False, default=True)
    is_blocked = serializers.BooleanField(required=False, default=False)
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    force = serializers.BooleanField(
        required=False,
        default=False,
        help_text="Apply even if existing appointments fall outside the new hours.",
    )


class BulkDateOverrideSerializer(serializers.Serializer):
    overrides = DateOverrideInputSerializer(many=True, allow_empty=False)
    force = serializers.BooleanField(required=False, default=False)


class BlockDateSerializer(serializers.Serializer):
    date = serializers.DateField(help_text="Date in YYYY-MM-DD format.")
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    force = serializers.BooleanField(required=False, default=False)


class BlockDatesSerializer(serializers.Serializer):
    dates = serializers.ListField(child=serializers.DateField(), allow_empty=False)
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    force = serializers.BooleanField(required=False, default=False)


class UnblockDatesSerializer(serializers.Serializer):
    dates = serializers.ListField(child=serializers.DateField(), allow_empty=False)


# ── Output ───────────────────────────────────────────────────────────


class AvailabilityWindowSerializer(serializers.ModelSerializer):
    start = serializers.TimeField(source="start_time", format="%H:%M")
    end = serializers.TimeField(source="end_time", format="%H:%M")

    class Meta:
        model = AvailabilityWindow
        fields = ["start", "end", "is_available"]


class DateOverrideWindowSerializer(AvailabilityWindowSerializer):
    class Meta(AvailabilityWindowSerializer.Meta):
        model = DateOverrideWindow


class DoctorAvailabilitySerializer(serializers.ModelSerializer):
    """Serializer for one day of the doctor's weekly template."""

    day_name = serializers.CharField(source="get_day_of_week_display", read_only=True)
    windows = AvailabilityWindowSerializer(many=True, read_only=True)

    class Meta:
        model = DoctorAvailability
        fields = ["id", "day_of_week", "day_name", "is_available", "windows"]
        read_only_fields = fields


class DateOverrideSerializer(serializers.ModelSerializer):
    day_of_week = serializers.CharField(read_only=True)
    windows = DateOverrideWindowSerializer(many=True, read_only=True)

    class Meta:
        model = DateOverride
        fields = [
            "id",
            "date",
            "day_of_week",
            "is_available",
            "is_blocked",
            "reason",
            "windows",
            "updated_by",
            "updated_at",
        ]
        read_only_fields = fields


class BlockedDateSerializer(serializers.ModelSerializer):
    class Meta:
        model = BlockedDate
        fields = ["id", "date", "reason", "created_at"]
        read_only_fields = fields


class AvailableSlotSerializer(serializers.Serializer):
    """
    Serializer for computed time slots.
    These are not database records; they are generated on the fly from
    the resolved availability minus existing appointments.
    """

    start = serializers.CharField()
    end = serializers.CharField()
