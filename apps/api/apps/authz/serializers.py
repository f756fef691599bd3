"""
Authz serializers for Doctor.
"""
from rest_framework import serializers
from apps.authz.models import Doctor


class DoctorSerializer(serializers.ModelSerializer):
    """
    Read serializer for doctors.

    Used by reception to pick the doctor when booking.
    """
    user_email = serializers.EmailField(source='user.email', read_only=True)

    class Meta:
        model = Doctor
        fields = [
            'id',
            'user',
            'user_email',
            'display_name',
            'specialty',
            'license_number',
            'is_active',
            'created_at',
        ]
        read_only_fields = fields


class DoctorWriteSerializer(serializers.ModelSerializer):
    """Serializer for Doctor create/update (Admin only)."""

    class Meta:
        model = Doctor
        fields = [
            'id',
            'user',
            'display_name',
            'specialty',
            'license_number',
            'is_active',
        ]
        read_only_fields = ['id']

    def validate_user(self, value):
        """Validate user doesn't already have a doctor record."""
        if self.instance is None and hasattr(value, 'doctor'):
            raise serializers.ValidationError(
                f"User {value.email} already has a doctor record"
            )
        return value
