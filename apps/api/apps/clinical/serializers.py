"""
Clinical serializers: patients, medical orders, appointments and history.

Read serializers expose models; *RequestSerializer classes only validate
the payload of an engine operation and never save.
"""
from rest_framework import serializers

from apps.authz.models import Doctor
from apps.clinical.conf import engine_setting
from apps.clinical.models import (
    Appointment,
    AppointmentStatusHistory,
    MedicalHistoryEntry,
    MedicalOrder,
    NoShowReset,
    Patient,
    UnifiedMedicalHistory,
)
from apps.clinical.services_history import FINAL_SUMMARY_FIELDS
from apps.clinical.services_sessions import get_order_session_info


# ============================================================================
# Patients
# ============================================================================

class PatientSerializer(serializers.ModelSerializer):
    full_name = serializers.SerializerMethodField()

    class Meta:
        model = Patient
        fields = [
            'id',
            'first_name',
            'last_name',
            'full_name',
            'document_number',
            'email',
            'phone',
            'is_active',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    def get_full_name(self, obj):
        return f"{obj.first_name} {obj.last_name}"


class NoShowResetSerializer(serializers.ModelSerializer):
    reset_by_name = serializers.CharField(source='reset_by.display_name', read_only=True)

    class Meta:
        model = NoShowReset
        fields = ['id', 'patient', 'reset_by', 'reset_by_name', 'reason', 'appointments_affected', 'created_at']
        read_only_fields = fields


class PardonRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


# ============================================================================
# Medical orders
# ============================================================================

class MedicalOrderSerializer(serializers.ModelSerializer):
    """
    Medical order with its session pool.

    The pool counters are read-only; they only move through engine operations.
    """
    doctor = serializers.PrimaryKeyRelatedField(
        queryset=Doctor.objects.filter(is_active=True),
        required=False,
        allow_null=True
    )
    sessions_remaining = serializers.SerializerMethodField()

    class Meta:
        model = MedicalOrder
        fields = [
            'id',
            'patient',
            'doctor',
            'description',
            'order_type',
            'total_sessions',
            'sessions_used',
            'sessions_remaining',
            'completed',
            'completed_at',
            'early_discharge',
            'results',
            'row_version',
            'created_at',
            'updated_at',
        ]
        read_only_fields = [
            'id',
            'sessions_used',
            'completed',
            'completed_at',
            'early_discharge',
            'results',
            'row_version',
            'created_at',
            'updated_at',
        ]

    def get_sessions_remaining(self, obj):
        return get_order_session_info(obj)['sessions_remaining']

    def validate_total_sessions(self, value):
        if value < 1:
            raise serializers.ValidationError('total_sessions must be at least 1')
        return value


class DischargeRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=True)


class FinalSummaryRequestSerializer(serializers.Serializer):
    initial_assessment = serializers.CharField(required=False, allow_blank=True)
    treatment_objectives = serializers.CharField(required=False, allow_blank=True)
    sessions_summary = serializers.CharField(required=False, allow_blank=True)
    patient_evolution = serializers.CharField(required=False, allow_blank=True)
    final_recommendations = serializers.CharField(required=False, allow_blank=True)
    treatment_outcome = serializers.CharField(required=False, allow_blank=True)
    discharge_notes = serializers.CharField(required=False, allow_blank=True)
    attachment = serializers.FileField(required=False, allow_null=True)

    def summary_fields(self):
        return {
            field: self.validated_data[field]
            for field in FINAL_SUMMARY_FIELDS
            if field in self.validated_data
        }


class UnifiedMedicalHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = UnifiedMedicalHistory
        fields = ['id', 'patient', 'medical_order', 'template_data', 'final_summary_file', 'created_at', 'updated_at']
        read_only_fields = fields


# ============================================================================
# Appointments
# ============================================================================

class AppointmentSerializer(serializers.ModelSerializer):
    """Read-only appointment representation, including the reschedule chain."""
    patient_name = serializers.CharField(source='patient.__str__', read_only=True)
    doctor_name = serializers.CharField(source='doctor.display_name', read_only=True)
    rescheduled_to = serializers.SerializerMethodField()

    class Meta:
        model = Appointment
        fields = [
            'id',
            'patient',
            'patient_name',
            'doctor',
            'doctor_name',
            'medical_order',
            'session_order',
            'appointment_date',
            'appointment_time',
            'duration_minutes',
            'status',
            'reason',
            'notes',
            'no_show_reason',
            'session_deducted',
            'pardoned_by',
            'pardoned_at',
            'pardon_reason',
            'rescheduled_from',
            'rescheduled_to',
            'rescheduled_at',
            'rescheduled_by',
            'reschedule_reason',
            'row_version',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_rescheduled_to(self, obj):
        replacement = getattr(obj, 'rescheduled_to', None)
        return str(replacement.id) if replacement else None


class AppointmentBookingSerializer(serializers.Serializer):
    patient = serializers.PrimaryKeyRelatedField(queryset=Patient.objects.filter(is_active=True))
    doctor = serializers.PrimaryKeyRelatedField(queryset=Doctor.objects.filter(is_active=True))
    medical_order = serializers.PrimaryKeyRelatedField(
        queryset=MedicalOrder.objects.all(),
        required=False,
        allow_null=True
    )
    appointment_date = serializers.DateField()
    appointment_time = serializers.TimeField()
    duration_minutes = serializers.IntegerField(required=False, min_value=1)
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class SlotSerializer(serializers.Serializer):
    appointment_date = serializers.DateField()
    appointment_time = serializers.TimeField()


class AppointmentSeriesSerializer(serializers.Serializer):
    patient = serializers.PrimaryKeyRelatedField(queryset=Patient.objects.filter(is_active=True))
    doctor = serializers.PrimaryKeyRelatedField(queryset=Doctor.objects.filter(is_active=True))
    medical_order = serializers.PrimaryKeyRelatedField(queryset=MedicalOrder.objects.all())
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    slots = SlotSerializer(many=True)

    def validate_slots(self, value):
        max_sessions = engine_setting('MAX_SERIES_SESSIONS')
        if not 1 <= len(value) <= max_sessions:
            raise serializers.ValidationError(
                f'A series must have between 1 and {max_sessions} sessions'
            )
        return [(slot['appointment_date'], slot['appointment_time']) for slot in value]


class TransitionRequestSerializer(serializers.Serializer):
    """Body of the simple lifecycle actions (confirm, attend, complete, cancel...)."""
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)


class NoShowRequestSerializer(TransitionRequestSerializer):
    # Unknown options are rejected by the engine with code invalid_no_show_option
    option = serializers.CharField()


class RescheduleRequestSerializer(serializers.Serializer):
    new_date = serializers.DateField()
    new_time = serializers.TimeField()
    new_doctor = serializers.PrimaryKeyRelatedField(
        queryset=Doctor.objects.filter(is_active=True),
        required=False,
        allow_null=True
    )
    reason = serializers.CharField(allow_blank=True)
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)


class UndoRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=True)


class AppointmentUpdateSerializer(serializers.Serializer):
    """Body of PATCH /appointments/{id}/. Only the fields sent are changed."""
    appointment_date = serializers.DateField(required=False)
    appointment_time = serializers.TimeField(required=False)
    doctor = serializers.PrimaryKeyRelatedField(
        queryset=Doctor.objects.filter(is_active=True),
        required=False
    )
    duration_minutes = serializers.IntegerField(required=False, min_value=1)
    reason = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)


class ReassignOrderRequestSerializer(serializers.Serializer):
    medical_order = serializers.PrimaryKeyRelatedField(queryset=MedicalOrder.objects.all())
    reason = serializers.CharField(allow_blank=True)


class AppointmentStatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = AppointmentStatusHistory
        fields = [
            'id',
            'old_status',
            'new_status',
            'action_type',
            'reason',
            'changed_by',
            'changed_at',
            'reverted_at',
            'reverted_by',
            'revert_reason',
        ]
        read_only_fields = fields


# ============================================================================
# History entries
# ============================================================================

class MedicalHistoryEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = MedicalHistoryEntry
        fields = [
            'id',
            'unified_history',
            'appointment',
            'patient',
            'doctor',
            'professional_name',
            'appointment_date',
            'observations',
            'evolution',
            'notes',
            'created_at',
            'updated_at',
        ]
        read_only_fields = [
            'id',
            'unified_history',
            'appointment',
            'patient',
            'doctor',
            'professional_name',
            'appointment_date',
            'notes',
            'created_at',
            'updated_at',
        ]
