from django.contrib import admin
from .models import (
    Patient, MedicalOrder, Appointment, AppointmentStatusHistory,
    UnifiedMedicalHistory, MedicalHistoryEntry, NoShowReset
)


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['first_name', 'last_name', 'document_number', 'phone', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['first_name', 'last_name', 'document_number', 'email', 'phone']
    readonly_fields = ['id', 'created_at', 'updated_at']


@admin.register(MedicalOrder)
class MedicalOrderAdmin(admin.ModelAdmin):
    list_display = ['patient', 'order_type', 'sessions_used', 'total_sessions', 'completed', 'early_discharge', 'created_at']
    list_filter = ['completed', 'early_discharge']
    search_fields = ['patient__first_name', 'patient__last_name', 'description']
    # Pool counters only move through engine operations
    readonly_fields = [
        'id', 'sessions_used', 'completed', 'completed_at', 'early_discharge',
        'row_version', 'created_at', 'updated_at',
    ]
    autocomplete_fields = ['patient']


class AppointmentStatusHistoryInline(admin.TabularInline):
    model = AppointmentStatusHistory
    fk_name = 'appointment'
    extra = 0
    can_delete = False
    readonly_fields = [
        'old_status', 'new_status', 'action_type', 'reason', 'changed_by', 'changed_at',
        'reverted_at', 'reverted_by', 'revert_reason',
    ]

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ['appointment_date', 'appointment_time', 'patient', 'doctor', 'status', 'session_deducted']
    list_filter = ['status', 'session_deducted']
    search_fields = ['patient__first_name', 'patient__last_name']
    readonly_fields = [
        'id', 'status', 'session_deducted', 'session_order', 'rescheduled_from',
        'row_version', 'created_at', 'updated_at',
    ]
    autocomplete_fields = ['patient']
    date_hierarchy = 'appointment_date'
    inlines = [AppointmentStatusHistoryInline]


@admin.register(UnifiedMedicalHistory)
class UnifiedMedicalHistoryAdmin(admin.ModelAdmin):
    list_display = ['medical_order', 'patient', 'created_at', 'updated_at']
    search_fields = ['patient__first_name', 'patient__last_name']
    readonly_fields = ['id', 'row_version', 'created_at', 'updated_at']


@admin.register(MedicalHistoryEntry)
class MedicalHistoryEntryAdmin(admin.ModelAdmin):
    list_display = ['appointment_date', 'patient', 'professional_name']
    search_fields = ['patient__first_name', 'patient__last_name', 'professional_name']
    readonly_fields = ['id', 'appointment', 'created_at', 'updated_at']


@admin.register(NoShowReset)
class NoShowResetAdmin(admin.ModelAdmin):
    list_display = ['patient', 'appointments_affected', 'reset_by', 'created_at']
    readonly_fields = ['id', 'patient', 'reset_by', 'reason', 'appointments_affected', 'created_at']

    def has_change_permission(self, request, obj=None):
        return False
