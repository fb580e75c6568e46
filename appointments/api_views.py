from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsPatient
from .api_errors import scheduling_error_response, validation_error_response
from .exceptions import AppointmentNotFoundError, SchedulingError
from .models import Appointment
from .serializers import AppointmentResponseSerializer, BookAppointmentSerializer, TransitionSerializer
from .services import book_appointment, transition_appointment


def _get_visible_appointment(user, appointment_id):
    """Patients and doctors only see their own appointments; staff see all."""
    appointment = (
        Appointment.objects.select_related("patient", "doctor")
        .filter(pk=appointment_id)
        .first()
    )
    if appointment is None:
        raise AppointmentNotFoundError()
    if not user.is_staff and user.pk not in (appointment.patient_id, appointment.doctor_id):
        raise AppointmentNotFoundError()
    return appointment


class BookAppointmentAPIView(APIView):
    """
    POST /appointments/api/book/

    Book an appointment as a patient.

    Request body:
        {
            "doctor_id": 5,
            "appointment_date": "2026-02-20",
            "slot": {"start": "10:00", "end": "10:30"},
            "reason_for_visit": "Annual checkup",  (optional)
            "idempotency_key": "c0ffee"            (optional)
        }

    Success Response (201):
        Full appointment details via AppointmentResponseSerializer.
        A repeated idempotency key returns the original appointment.

    Error Responses:
        400: Validation errors (VALIDATION_ERROR).
        404: Doctor not found or not approved (DOCTOR_NOT_FOUND).
        409: Slot no longer available (SLOT_UNAVAILABLE).
    """

    permission_classes = [IsAuthenticated, IsPatient]

    def post(self, request):
        serializer = BookAppointmentSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        data = serializer.validated_data
        idempotency_key = data["idempotency_key"] or request.headers.get("Idempotency-Key")
        try:
            appointment = book_appointment(
                patient=request.user,
                doctor_id=data["doctor_id"],
                appointment_date=data["appointment_date"],
                slot=dict(data["slot"]),
                reason_for_visit=data["reason_for_visit"],
                symptoms=data["symptoms"],
                idempotency_key=idempotency_key,
            )
        except SchedulingError as e:
            return scheduling_error_response(e)

        response_serializer = AppointmentResponseSerializer(appointment)
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class AppointmentDetailAPIView(APIView):
    """
    GET /appointments/api/<appointment_id>/
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, appointment_id):
        try:
            appointment = _get_visible_appointment(request.user, appointment_id)
        except SchedulingError as e:
            return scheduling_error_response(e)
        return Response(AppointmentResponseSerializer(appointment).data, status=status.HTTP_200_OK)


class AppointmentTransitionAPIView(APIView):
    """
    PUT /appointments/api/<appointment_id>/transition/

    Request body:
        {
            "action": "confirm" | "cancel" | "complete" | "request_reschedule" | "reschedule",
            "date": "2026-02-21",                     (reschedule actions)
            "slot": {"start": "11:00"},               (reschedule actions)
            "reason": "...",                          (optional)
            "version": 3                              (optional)
        }

    Error Responses:
        400: INVALID_TRANSITION or VALIDATION_ERROR.
        404: APPOINTMENT_NOT_FOUND.
        409: SLOT_UNAVAILABLE or STALE_APPOINTMENT.
    """

    permission_classes = [IsAuthenticated]

    def put(self, request, appointment_id):
        serializer = TransitionSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        payload = dict(serializer.validated_data)
        action = payload.pop("action")
        if "slot" in payload:
            payload["slot"] = dict(payload["slot"])

        try:
            appointment = _get_visible_appointment(request.user, appointment_id)
            appointment = transition_appointment(
                appointment.pk,
                action,
                payload,
                actor=request.user,
            )
        except SchedulingError as e:
            return scheduling_error_response(e)

        return Response(AppointmentResponseSerializer(appointment).data, status=status.HTTP_200_OK)
