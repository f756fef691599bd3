"""
Authz views for Doctor.
"""
from rest_framework import viewsets
from apps.authz.models import Doctor
from apps.authz.serializers import DoctorSerializer, DoctorWriteSerializer
from apps.authz.permissions import DoctorPermission


class DoctorViewSet(viewsets.ModelViewSet):
    """
    ViewSet for Doctor endpoints.

    Endpoints:
    - GET /api/v1/doctors/ - List doctors (active only unless ?include_inactive=true)
    - GET /api/v1/doctors/{id}/
    - POST /api/v1/doctors/ - Admin only
    - PATCH /api/v1/doctors/{id}/ - Admin only
    """
    permission_classes = [DoctorPermission]
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_queryset(self):
        queryset = Doctor.objects.select_related('user').all()

        include_inactive = self.request.query_params.get('include_inactive', 'false').lower() == 'true'
        if not include_inactive:
            queryset = queryset.filter(is_active=True)

        q = self.request.query_params.get('q')
        if q:
            queryset = queryset.filter(display_name__icontains=q)

        return queryset.order_by('display_name')

    def get_serializer_class(self):
        if self.action in ('list', 'retrieve'):
            return DoctorSerializer
        return DoctorWriteSerializer
