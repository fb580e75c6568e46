from django.urls import path
from . import api_views

app_name = "doctors"

urlpatterns = [
    # --- Patient-facing ---
    path(
        "api/<int:doctor_id>/available-slots/",
        api_views.DoctorAvailableSlotsAPIView.as_view(),
        name="api_doctor_available_slots",
    ),
    # --- Doctor's own schedule ---
    path(
        "api/schedule/",
        api_views.ScheduleAPIView.as_view(),
        name="api_schedule",
    ),
    path(
        "api/schedule/weekly/",
        api_views.WeeklyScheduleAPIView.as_view(),
        name="api_schedule_weekly",
    ),
    path(
        "api/schedule/overrides/",
        api_views.DateOverrideListAPIView.as_view(),
        name="api_date_overrides",
    ),
    path(
        "api/schedule/overrides/bulk/",
        api_views.BulkDateOverrideAPIView.as_view(),
        name="api_date_overrides_bulk",
    ),
    path(
        "api/schedule/overrides/<int:override_id>/",
        api_views.DateOverrideDetailAPIView.as_view(),
        name="api_date_override_detail",
    ),
    path(
        "api/schedule/block-date/",
        api_views.BlockDateAPIView.as_view(),
        name="api_block_date",
    ),
    path(
        "api/schedule/block-dates/",
        api_views.BlockedDatesAPIView.as_view(),
        name="api_blocked_dates",
    ),
]
