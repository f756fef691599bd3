"""
Authz permissions shared by the API apps.
"""
from rest_framework import permissions
from apps.authz.models import RoleChoices


def get_user_roles(user):
    """Return the set of RoleChoices held by the user."""
    if not user or not user.is_authenticated:
        return set()
    return {
        RoleChoices(name)
        for name in user.user_roles.values_list('role__name', flat=True)
    }


class IsAdmin(permissions.BasePermission):
    """Only Admin role users."""

    def has_permission(self, request, view):
        return RoleChoices.ADMIN in get_user_roles(request.user)


class DoctorPermission(permissions.BasePermission):
    """
    Permission for Doctor endpoints based on role.

    - Admin: Full CRUD
    - Doctor, Reception: Read-only
    """

    def has_permission(self, request, view):
        user_roles = get_user_roles(request.user)
        if not user_roles:
            return False

        if request.method in permissions.SAFE_METHODS:
            return bool(user_roles & {RoleChoices.ADMIN, RoleChoices.DOCTOR, RoleChoices.RECEPTION})

        return RoleChoices.ADMIN in user_roles

    def has_object_permission(self, request, view, obj):
        return self.has_permission(request, view)
