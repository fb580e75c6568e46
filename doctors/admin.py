from django.contrib import admin
from .forms import TimeWindowFormSet
from .models import (
    AvailabilityWindow,
    BlockedDate,
    DateOverride,
    DateOverrideWindow,
    DoctorAvailability,
    DoctorProfile,
)


@admin.register(DoctorProfile)
class DoctorProfileAdmin(admin.ModelAdmin):
    list_display = ["user", "consultation_duration", "consultation_fee", "is_approved"]
    list_filter = ["is_approved"]
    search_fields = ["user__name", "user__phone"]
    list_editable = ["is_approved"]
    raw_id_fields = ["user"]


class AvailabilityWindowInline(admin.TabularInline):
    model = AvailabilityWindow
    formset = TimeWindowFormSet
    extra = 1
    min_num = 0
    fields = ["start_time", "end_time", "is_available"]


@admin.register(DoctorAvailability)
class DoctorAvailabilityAdmin(admin.ModelAdmin):
    list_display = ["doctor", "get_day_display", "window_count", "is_available"]
    list_filter = ["day_of_week", "is_available"]
    search_fields = ["doctor__name", "doctor__phone"]
    list_editable = ["is_available"]
    ordering = ["doctor", "day_of_week"]
    raw_id_fields = ["doctor"]
    inlines = [AvailabilityWindowInline]

    def get_day_display(self, obj):
        return obj.get_day_of_week_display()
    get_day_display.short_description = "Day"
    get_day_display.admin_order_field = "day_of_week"

    def window_count(self, obj):
        return obj.windows.count()
    window_count.short_description = "Windows"


# ─── Date-specific changes ───────────────────────────────────────────────


class DateOverrideWindowInline(admin.TabularInline):
    model = DateOverrideWindow
    formset = TimeWindowFormSet
    extra = 0
    fields = ["start_time", "end_time", "is_available"]


@admin.register(DateOverride)
class DateOverrideAdmin(admin.ModelAdmin):
    list_display = ["doctor", "date", "is_available", "is_blocked", "reason", "updated_at"]
    list_filter = ["is_blocked", "is_available"]
    search_fields = ["doctor__name", "reason"]
    raw_id_fields = ["doctor", "updated_by"]
    readonly_fields = ["created_at", "updated_at"]
    date_hierarchy = "date"
    inlines = [DateOverrideWindowInline]


@admin.register(BlockedDate)
class BlockedDateAdmin(admin.ModelAdmin):
    list_display = ["doctor", "date", "reason", "created_at"]
    search_fields = ["doctor__name", "reason"]
    raw_id_fields = ["doctor"]
    date_hierarchy = "date"
