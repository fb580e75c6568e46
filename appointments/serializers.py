from rest_framework import serializers

from .models import Appointment
from .state_machine import ACTIONS


class SlotInputSerializer(serializers.Serializer):
    start = serializers.CharField(max_length=5, help_text="Start time in HH:MM format.")
    end = serializers.CharField(max_length=5, required=False, help_text="End time in HH:MM format.")


class BookAppointmentSerializer(serializers.Serializer):
    """
    Request serializer for booking an appointment.

    Validates incoming data from the patient before passing
    to the booking service for business-logic validation.
    """

    doctor_id = serializers.IntegerField()
    appointment_date = serializers.DateField(
        help_text="Desired date in YYYY-MM-DD format.",
    )
    slot = SlotInputSerializer()
    reason_for_visit = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        help_text="Optional reason for visit.",
    )
    symptoms = serializers.CharField(required=False, allow_blank=True, default="")
    idempotency_key = serializers.CharField(
        required=False,
        allow_null=True,
        default=None,
        max_length=64,
        help_text="Optional; may also be sent as the Idempotency-Key header.",
    )


class TransitionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=ACTIONS)
    date = serializers.DateField(required=False, help_text="New date (reschedule actions).")
    slot = SlotInputSerializer(required=False)
    reason = serializers.CharField(required=False, allow_blank=True)
    version = serializers.IntegerField(
        required=False,
        min_value=1,
        help_text="Reject the action if the appointment changed since this version.",
    )


class AppointmentResponseSerializer(serializers.ModelSerializer):
    """
    Response serializer for an appointment.

    Times are rendered as "HH:MM".
    """

    doctor_name = serializers.CharField(source="doctor.name", read_only=True)
    patient_name = serializers.CharField(source="patient.name", read_only=True)
    start_time = serializers.TimeField(format="%H:%M", read_only=True)
    end_time = serializers.TimeField(format="%H:%M", read_only=True)
    time_slot = serializers.DictField(read_only=True)
    requested_start_time = serializers.TimeField(format="%H:%M", read_only=True)
    requested_end_time = serializers.TimeField(format="%H:%M", read_only=True)
    original_start_time = serializers.TimeField(format="%H:%M", read_only=True)
    status_display = serializers.CharField(
        source="get_status_display", read_only=True
    )

    class Meta:
        model = Appointment
        fields = [
            "id",
            "appointment_number",
            "patient",
            "patient_name",
            "doctor",
            "doctor_name",
            "appointment_date",
            "start_time",
            "end_time",
            "time_slot",
            "status",
            "status_display",
            "payment_status",
            "consultation_fee",
            "reason_for_visit",
            "symptoms",
            "version",
            "requested_date",
            "requested_start_time",
            "requested_end_time",
            "original_date",
            "original_start_time",
            "rescheduled_at",
            "reschedule_reason",
            "cancellation_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
