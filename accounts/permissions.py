from rest_framework import permissions

from .models import CustomUser


class IsPatient(permissions.BasePermission):
    """
    Allows access only to authenticated users with the 'PATIENT' role.
    """

    message = "Only patients can perform this action."

    def has_permission(self, request, view):
        return bool(
            request.user
            and request.user.is_authenticated
            and request.user.role == CustomUser.Role.PATIENT
        )


class IsDoctor(permissions.BasePermission):
    """
    Allows access only to authenticated users with the 'DOCTOR' role.
    """

    message = "Only doctors can manage a schedule."

    def has_permission(self, request, view):
        return bool(
            request.user
            and request.user.is_authenticated
            and request.user.role == CustomUser.Role.DOCTOR
        )
