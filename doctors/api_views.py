from django.utils.dateparse import parse_date
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsDoctor
from appointments.api_errors import scheduling_error_response, validation_error_response
from appointments.exceptions import SchedulingError
from .models import DateOverride
from .serializers import (
    AvailableSlotSerializer,
    BlockDateSerializer,
    BlockDatesSerializer,
    BlockedDateSerializer,
    BulkDateOverrideSerializer,
    DateOverrideInputSerializer,
    DateOverrideSerializer,
    DoctorAvailabilitySerializer,
    UnblockDatesSerializer,
    WeeklyScheduleSerializer,
)
from .services import (
    block_date,
    block_dates,
    bulk_upsert_date_overrides,
    create_date_override,
    delete_date_override,
    get_available_slots,
    get_schedule,
    unblock_dates,
    update_date_override,
    update_weekly_schedule,
)


def _parse_query_date(value):
    """Parse YYYY-MM-DD, returning None for anything else."""
    try:
        return parse_date(value or "")
    except ValueError:
        return None


def _windows_payload(validated):
    windows = validated.get("windows")
    if windows is None:
        return None
    return [dict(window) for window in windows]


class DoctorAvailableSlotsAPIView(APIView):
    """
    GET /doctors/api/<doctor_id>/available-slots/?date=YYYY-MM-DD

    Returns computed bookable time slots for a specific date.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, doctor_id):
        date_str = request.query_params.get("date")
        if not date_str:
            return validation_error_response(
                {"date": ["This query parameter is required (format: YYYY-MM-DD)."]},
                detail="The date query parameter is required.",
            )

        target_date = _parse_query_date(date_str)
        if target_date is None:
            return validation_error_response(
                {"date": ["Invalid date format. Use YYYY-MM-DD."]},
                detail="Invalid date format. Use YYYY-MM-DD.",
            )

        try:
            slots = get_available_slots(doctor_id, target_date)
        except SchedulingError as e:
            return scheduling_error_response(e)

        return Response(
            {
                "date": date_str,
                "day_of_week": target_date.strftime("%A"),
                "doctor_id": doctor_id,
                "results": AvailableSlotSerializer(slots, many=True).data,
            },
            status=status.HTTP_200_OK,
        )


# --- Doctor's own schedule ---


class ScheduleAPIView(APIView):
    """
    GET /doctors/api/schedule/?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD

    Weekly template, blocked dates and date overrides of the current doctor.
    """

    permission_classes = [IsAuthenticated, IsDoctor]

    def get(self, request):
        start_date = _parse_query_date(request.query_params.get("start_date"))
        end_date = _parse_query_date(request.query_params.get("end_date"))
        schedule = get_schedule(request.user, start_date, end_date)
        return Response(
            {
                "weekly": DoctorAvailabilitySerializer(schedule["weekly"], many=True).data,
                "blocked_dates": BlockedDateSerializer(schedule["blocked_dates"], many=True).data,
                "date_overrides": DateOverrideSerializer(schedule["date_overrides"], many=True).data,
            },
            status=status.HTTP_200_OK,
        )


class WeeklyScheduleAPIView(APIView):
    """
    PUT /doctors/api/schedule/weekly/

    Request body:
        {"days": [{"day_of_week": 0, "is_available": true,
                   "windows": [{"start": "09:00", "end": "12:00"}]}]}
    """

    permission_classes = [IsAuthenticated, IsDoctor]

    def put(self, request):
        serializer = WeeklyScheduleSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        days = [
            {**day, "windows": [dict(w) for w in day["windows"]]}
            for day in serializer.validated_data["days"]
        ]
        try:
            weekly = update_weekly_schedule(request.user, days)
        except SchedulingError as e:
            return scheduling_error_response(e)

        return Response(
            {"results": DoctorAvailabilitySerializer(weekly, many=True).data},
            status=status.HTTP_200_OK,
        )


class DateOverrideListAPIView(APIView):
    """
    GET  /doctors/api/schedule/overrides/
    POST /doctors/api/schedule/overrides/
    """

    permission_classes = [IsAuthenticated, IsDoctor]

    def get(self, request):
        overrides = DateOverride.objects.filter(doctor=request.user).prefetch_related("windows")
        return Response(
            {"results": DateOverrideSerializer(overrides, many=True).data},
            status=status.HTTP_200_OK,
        )

    def post(self, request):
        serializer = DateOverrideInputSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        data = serializer.validated_data
        try:
            override = create_date_override(
                request.user,
                date=data["date"],
                windows=_windows_payload(data),
                is_available=data["is_available"],
                is_blocked=data["is_blocked"],
                reason=data["reason"],
                force=data["force"],
                updated_by=request.user,
            )
        except SchedulingError as e:
            return scheduling_error_response(e)

        return Response(DateOverrideSerializer(override).data, status=status.HTTP_201_CREATED)


class DateOverrideDetailAPIView(APIView):
    """
    GET    /doctors/api/schedule/overrides/<override_id>/
    PUT    /doctors/api/schedule/overrides/<override_id>/   (partial)
    DELETE /doctors/api/schedule/overrides/<override_id>/
    """

    permission_classes = [IsAuthenticated, IsDoctor]

    def get(self, request, override_id):
        try:
            override = DateOverride.objects.get(pk=override_id, doctor=request.user)
        except DateOverride.DoesNotExist:
            return Response({"detail": "Date override not found."}, status=status.HTTP_404_NOT_FOUND)
        return Response(DateOverrideSerializer(override).data, status=status.HTTP_200_OK)

    def put(self, request, override_id):
        serializer = DateOverrideInputSerializer(data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        data = serializer.validated_data
        try:
            override = update_date_override(
                request.user,
                override_id,
                date=data.get("date"),
                windows=_windows_payload(data),
                is_available=data.get("is_available"),
                is_blocked=data.get("is_blocked"),
                reason=data.get("reason"),
                force=data.get("force", False),
                updated_by=request.user,
            )
        except SchedulingError as e:
            return scheduling_error_response(e)

        return Response(DateOverrideSerializer(override).data, status=status.HTTP_200_OK)

    def delete(self, request, override_id):
        delete_date_override(request.user, override_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class BulkDateOverrideAPIView(APIView):
    """
    POST /doctors/api/schedule/overrides/bulk/

    Returns per-date results; one failing entry does not fail the others.
    """

    permission_classes = [IsAuthenticated, IsDoctor]

    def post(self, request):
        serializer = BulkDateOverrideSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        entries = [
            {**entry, "windows": _windows_payload(entry)}
            for entry in serializer.validated_data["overrides"]
        ]
        result = bulk_upsert_date_overrides(
            request.user,
            entries,
            force=serializer.validated_data["force"],
            updated_by=request.user,
        )
        return Response(
            {
                "created": DateOverrideSerializer(result["created"], many=True).data,
                "updated": DateOverrideSerializer(result["updated"], many=True).data,
                "errors": [
                    {**error, "date": error["date"].isoformat() if error["date"] else None}
                    for error in result["errors"]
                ],
            },
            status=status.HTTP_200_OK,
        )


class BlockDateAPIView(APIView):
    """
    PUT /doctors/api/schedule/block-date/

    Request body:
        {"date": "2026-02-20", "reason": "Conference", "force": false}

    Error Responses:
        400: Past date or malformed input.
        409: Live appointments on that date (HAS_EXISTING_APPOINTMENTS).
    """

    permission_classes = [IsAuthenticated, IsDoctor]

    def put(self, request):
        serializer = BlockDateSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        data = serializer.validated_data
        try:
            override = block_date(
                request.user,
                data["date"],
                reason=data["reason"],
                force=data["force"],
                updated_by=request.user,
            )
        except SchedulingError as e:
            return scheduling_error_response(e)

        return Response(DateOverrideSerializer(override).data, status=status.HTTP_200_OK)


class BlockedDatesAPIView(APIView):
    """
    POST   /doctors/api/schedule/block-dates/   {"dates": [...], "reason", "force"}
    DELETE /doctors/api/schedule/block-dates/   {"dates": [...]}
    """

    permission_classes = [IsAuthenticated, IsDoctor]

    def post(self, request):
        serializer = BlockDatesSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        data = serializer.validated_data
        try:
            created = block_dates(
                request.user,
                data["dates"],
                reason=data["reason"],
                force=data["force"],
            )
        except SchedulingError as e:
            return scheduling_error_response(e)

        return Response(
            {"results": BlockedDateSerializer(created, many=True).data},
            status=status.HTTP_201_CREATED,
        )

    def delete(self, request):
        serializer = UnblockDatesSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        removed = unblock_dates(request.user, serializer.validated_data["dates"])
        return Response({"removed": removed}, status=status.HTTP_200_OK)
