from django.contrib import admin
from .models import Appointment


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = [
        "appointment_number",
        "patient",
        "doctor",
        "appointment_date",
        "start_time",
        "status",
        "payment_status",
        "created_at",
    ]
    list_filter = ["status", "payment_status", "appointment_date"]
    search_fields = ["appointment_number", "patient__name", "doctor__name"]
    raw_id_fields = ["patient", "doctor"]
    readonly_fields = ["appointment_number", "version", "created_at", "updated_at"]
    date_hierarchy = "appointment_date"

    fieldsets = (
        (None, {"fields": ("appointment_number", "patient", "doctor")}),
        ("Slot", {"fields": ("appointment_date", "start_time", "end_time", "status", "version")}),
        ("Visit", {"fields": ("reason_for_visit", "symptoms", "consultation_fee", "payment_status")}),
        (
            "Rescheduling",
            {
                "classes": ("collapse",),
                "fields": (
                    "requested_date",
                    "requested_start_time",
                    "requested_end_time",
                    "original_date",
                    "original_start_time",
                    "rescheduled_at",
                    "reschedule_reason",
                ),
            },
        ),
        ("Cancellation", {"fields": ("cancellation_reason",)}),
        (None, {"fields": ("created_at", "updated_at")}),
    )

    def has_add_permission(self, request):
        # New appointments are created through book_appointment only.
        return False
