from rest_framework import status
from rest_framework.response import Response

from .exceptions import (
    AppointmentNotFoundError,
    BlockConflictError,
    DoctorNotFoundError,
    ScheduleValidationError,
    SlotUnavailableError,
    StaleAppointmentError,
)

_STATUS_BY_ERROR = (
    (SlotUnavailableError, status.HTTP_409_CONFLICT),
    (BlockConflictError, status.HTTP_409_CONFLICT),
    (StaleAppointmentError, status.HTTP_409_CONFLICT),
    (DoctorNotFoundError, status.HTTP_404_NOT_FOUND),
    (AppointmentNotFoundError, status.HTTP_404_NOT_FOUND),
)


def scheduling_error_response(error):
    """Render a SchedulingError as {"detail", "code", ...} with its HTTP status."""
    for error_class, http_status in _STATUS_BY_ERROR:
        if isinstance(error, error_class):
            return Response(error.as_dict(), status=http_status)
    return Response(error.as_dict(), status=status.HTTP_400_BAD_REQUEST)


def validation_error_response(errors, detail="Invalid request data."):
    """Render serializer or query-parameter errors with code VALIDATION_ERROR."""
    error = ScheduleValidationError(detail, errors=errors)
    return Response(error.as_dict(), status=status.HTTP_400_BAD_REQUEST)
