"""
Clinical permissions for API endpoints.

BUSINESS RULE: Reception books and moves appointments but cannot read or
write clinical text (history entries, final summaries).
"""
from rest_framework import permissions

from apps.authz.models import RoleChoices
from apps.authz.permissions import get_user_roles

ALL_STAFF = {RoleChoices.ADMIN, RoleChoices.DOCTOR, RoleChoices.RECEPTION}
CLINICAL_STAFF = {RoleChoices.ADMIN, RoleChoices.DOCTOR}


class IsClinicalStaff(permissions.BasePermission):
    """
    Admin and Doctor only. Used for history entries.

    - Admin: Full access
    - Doctor: Full access
    - Reception: NO ACCESS (business rule)
    """

    def has_permission(self, request, view):
        return bool(get_user_roles(request.user) & CLINICAL_STAFF)


class PatientPermission(permissions.BasePermission):
    """
    - Admin, Doctor, Reception: read, create, update
    - pardon-no-shows: Admin and Reception only
    - Delete: nobody (patients are deactivated, not deleted)
    """

    def has_permission(self, request, view):
        user_roles = get_user_roles(request.user)
        if not user_roles & ALL_STAFF:
            return False

        if getattr(view, 'action', None) == 'pardon_no_shows':
            return bool(user_roles & {RoleChoices.ADMIN, RoleChoices.RECEPTION})

        return request.method != 'DELETE'


class MedicalOrderPermission(permissions.BasePermission):
    """
    - Admin, Doctor, Reception: read (booking needs the session pool)
    - Admin, Doctor: create orders, discharge, final summary
    """

    def has_permission(self, request, view):
        user_roles = get_user_roles(request.user)

        if request.method in permissions.SAFE_METHODS:
            return bool(user_roles & ALL_STAFF)

        return bool(user_roles & CLINICAL_STAFF)


class AppointmentPermission(permissions.BasePermission):
    """
    - Admin, Doctor, Reception: read, book, lifecycle actions
    - PATCH details of a pending booking: Admin, Doctor, Reception
    - undo, reassign-order: Admin only (they can give sessions back to an order)
    - Delete: nobody
    """

    def has_permission(self, request, view):
        user_roles = get_user_roles(request.user)
        if not user_roles & ALL_STAFF:
            return False

        if getattr(view, 'action', None) in ('undo', 'reassign_order'):
            return RoleChoices.ADMIN in user_roles

        return request.method in permissions.SAFE_METHODS or request.method in ('POST', 'PATCH')
