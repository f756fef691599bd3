"""
Clinical models: patient, medical_order, appointment, unified history,
history entries, no-show resets and appointment status history.
"""
import uuid
from django.db import models
from django.conf import settings

from apps.clinical.exceptions import InvalidTransition


# ============================================================================
# Enums
# ============================================================================

class AppointmentStatusChoices(models.TextChoices):
    """
    Appointment status. Transitions are driven by AppointmentEventChoices
    through Appointment.TRANSITIONS:
    - scheduled -> confirmed | in_progress | no_show_* | rescheduled | cancelled | discharged
    - confirmed -> in_progress | no_show_* | rescheduled | cancelled | discharged
    - in_progress -> completed | confirmed (revert) | cancelled
    - no_show -> rescheduled | cancelled (legacy plain no-show)
    - no_show_rescheduled -> rescheduled
    - completed, cancelled, discharged, no_show_session_lost, rescheduled are terminal
    """
    SCHEDULED = 'scheduled', 'Scheduled'
    CONFIRMED = 'confirmed', 'Confirmed'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    NO_SHOW = 'no_show', 'No Show'
    NO_SHOW_RESCHEDULED = 'no_show_rescheduled', 'No Show (to reschedule)'
    NO_SHOW_SESSION_LOST = 'no_show_session_lost', 'No Show (session lost)'
    RESCHEDULED = 'rescheduled', 'Rescheduled'
    DISCHARGED = 'discharged', 'Discharged'


class AppointmentEventChoices(models.TextChoices):
    """Events accepted by the appointment state machine."""
    CONFIRM = 'confirm', 'Confirm'
    MARK_ATTENDED = 'mark_attended', 'Mark attended'
    REVERT_ATTENDANCE = 'revert_attendance', 'Revert attendance'
    COMPLETE = 'complete', 'Complete'
    NO_SHOW_RESCHEDULE = 'no_show_reschedule', 'No-show (reschedule)'
    NO_SHOW_SESSION_LOST = 'no_show_session_lost', 'No-show (session lost)'
    RESCHEDULE = 'reschedule', 'Reschedule'
    CANCEL = 'cancel', 'Cancel'
    DISCHARGE = 'discharge', 'Discharge'


class NoShowOptionChoices(models.TextChoices):
    RESCHEDULE = 'reschedule', 'Reschedule'
    SESSION_LOST = 'session_lost', 'Session lost'


class StatusHistoryActionChoices(models.TextChoices):
    STATUS_CHANGE = 'status_change', 'Status change'
    RESCHEDULE = 'reschedule', 'Reschedule'
    REVERT = 'revert', 'Revert'
    REASSIGN_ORDER = 'reassign_order', 'Order reassignment'


S = AppointmentStatusChoices
E = AppointmentEventChoices

# Statuses that count as a no-show for alerting and pardons
NO_SHOW_STATUSES = (S.NO_SHOW, S.NO_SHOW_RESCHEDULED, S.NO_SHOW_SESSION_LOST)

# Statuses that count as attended for history finalization
ATTENDED_STATUSES = (S.COMPLETED, S.IN_PROGRESS)

# Booked against an order but not yet consumed
PENDING_STATUSES = (S.SCHEDULED, S.CONFIRMED)

TERMINAL_STATUSES = (
    S.COMPLETED, S.CANCELLED, S.DISCHARGED, S.NO_SHOW_SESSION_LOST, S.RESCHEDULED,
)


# ============================================================================
# Patients
# ============================================================================

class Patient(models.Model):
    """
    Patient identity. Registration and demographics are owned elsewhere;
    the engine only relates orders and appointments to it.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    document_number = models.CharField(max_length=50, blank=True, null=True)
    email = models.EmailField(blank=True, null=True)
    phone = models.CharField(max_length=50, blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patient'
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'
        indexes = [
            models.Index(fields=['last_name', 'first_name'], name='idx_patient_name'),
            models.Index(fields=['document_number'], name='idx_patient_document'),
        ]

    def __str__(self):
        return f"{self.first_name} {self.last_name}"


# ============================================================================
# Medical orders (session pool)
# ============================================================================

class MedicalOrder(models.Model):
    """
    A prescription authorizing a fixed number of treatment sessions.

    Session pool:
    - 0 <= sessions_used <= total_sessions (also enforced by CHECK constraints)
    - sessions_used only grows, except through the correction tooling (undo, reassignment)
    - completed is set when the pool is exhausted or on early discharge
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='medical_orders'
    )
    doctor = models.ForeignKey(
        'authz.Doctor',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='prescribed_orders',
        help_text='Prescribing doctor'
    )
    description = models.TextField(blank=True, default='')
    order_type = models.CharField(max_length=50, blank=True, default='')
    total_sessions = models.PositiveIntegerField()
    sessions_used = models.PositiveIntegerField(default=0)
    completed = models.BooleanField(default=False)
    completed_at = models.DateTimeField(blank=True, null=True)
    early_discharge = models.BooleanField(default=False)
    results = models.TextField(blank=True, default='')

    # Concurrency control
    row_version = models.IntegerField(default=1)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='created_medical_orders'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'medical_order'
        verbose_name = 'Medical Order'
        verbose_name_plural = 'Medical Orders'
        indexes = [
            models.Index(fields=['patient', 'completed'], name='idx_order_patient_open'),
            models.Index(fields=['created_at'], name='idx_order_created'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_sessions__gte=1),
                name='chk_order_total_sessions_positive',
            ),
            models.CheckConstraint(
                condition=models.Q(sessions_used__lte=models.F('total_sessions')),
                name='chk_order_sessions_within_pool',
            ),
        ]

    def __str__(self):
        return f"Order {self.sessions_used}/{self.total_sessions} - {self.patient}"

    @property
    def has_sessions_available(self):
        return self.sessions_used < self.total_sessions

    @property
    def is_active(self):
        """Open for booking and for session deduction."""
        return not self.completed and self.has_sessions_available


# ============================================================================
# Appointments
# ============================================================================

class Appointment(models.Model):
    """
    A booked slot for a patient with a doctor.

    Reschedule chain: rescheduled_from is one-to-one, so each appointment has
    at most one predecessor and at most one successor (reverse accessor
    `rescheduled_to`).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    doctor = models.ForeignKey(
        'authz.Doctor',
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    medical_order = models.ForeignKey(
        'MedicalOrder',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='appointments',
        help_text='Order the booking was made against'
    )
    session_order = models.ForeignKey(
        'MedicalOrder',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='debited_appointments',
        help_text='Order actually debited for this appointment'
    )

    appointment_date = models.DateField()
    appointment_time = models.TimeField()
    duration_minutes = models.PositiveIntegerField(default=30)
    status = models.CharField(
        max_length=30,
        choices=AppointmentStatusChoices.choices,
        default=AppointmentStatusChoices.SCHEDULED
    )
    reason = models.TextField(blank=True, default='')
    notes = models.TextField(blank=True, default='')
    no_show_reason = models.TextField(blank=True, null=True)
    session_deducted = models.BooleanField(default=False)

    # Pardon
    pardoned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='pardoned_appointments'
    )
    pardoned_at = models.DateTimeField(blank=True, null=True)
    pardon_reason = models.TextField(blank=True, null=True)

    # Reschedule chain
    rescheduled_from = models.OneToOneField(
        'self',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='rescheduled_to'
    )
    rescheduled_at = models.DateTimeField(blank=True, null=True)
    rescheduled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='rescheduled_appointments'
    )
    reschedule_reason = models.TextField(blank=True, null=True)

    # Concurrency control
    row_version = models.IntegerField(default=1)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='created_appointments'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'appointment'
        verbose_name = 'Appointment'
        verbose_name_plural = 'Appointments'
        indexes = [
            models.Index(fields=['patient', 'status'], name='idx_appointment_patient_st'),
            models.Index(
                fields=['doctor', 'appointment_date', 'appointment_time'],
                name='idx_appointment_slot'
            ),
            models.Index(fields=['appointment_date'], name='idx_appointment_date'),
            models.Index(fields=['status'], name='idx_appointment_status'),
        ]

    # BUSINESS RULE: event -> (allowed source statuses, target status)
    TRANSITIONS = {
        E.CONFIRM: ((S.SCHEDULED,), S.CONFIRMED),
        E.MARK_ATTENDED: ((S.SCHEDULED, S.CONFIRMED), S.IN_PROGRESS),
        E.REVERT_ATTENDANCE: ((S.IN_PROGRESS,), S.CONFIRMED),
        E.COMPLETE: ((S.IN_PROGRESS,), S.COMPLETED),
        E.NO_SHOW_RESCHEDULE: ((S.SCHEDULED, S.CONFIRMED), S.NO_SHOW_RESCHEDULED),
        E.NO_SHOW_SESSION_LOST: ((S.SCHEDULED, S.CONFIRMED), S.NO_SHOW_SESSION_LOST),
        E.RESCHEDULE: (
            (S.SCHEDULED, S.CONFIRMED, S.NO_SHOW, S.NO_SHOW_RESCHEDULED),
            S.RESCHEDULED,
        ),
        E.CANCEL: ((S.SCHEDULED, S.CONFIRMED, S.IN_PROGRESS, S.NO_SHOW), S.CANCELLED),
        E.DISCHARGE: ((S.SCHEDULED, S.CONFIRMED), S.DISCHARGED),
    }

    def __str__(self):
        return f"Appointment {self.appointment_date} {self.appointment_time} - {self.patient}"

    @classmethod
    def target_status(cls, event, current_status):
        """
        Resolve the status an event leads to from current_status.

        Raises:
            InvalidTransition: event unknown or not allowed from current_status
        """
        try:
            event = AppointmentEventChoices(event)
        except ValueError:
            raise InvalidTransition(f'Unknown appointment event "{event}"')

        allowed_from, to_status = cls.TRANSITIONS[event]
        if current_status not in allowed_from:
            raise InvalidTransition(
                f'Cannot {event.label.lower()} an appointment '
                f'in status "{current_status}". '
                f'Allowed from: {", ".join(allowed_from)}'
            )
        return to_status

    @classmethod
    def reverting_event(cls, current_status, previous_status):
        """
        The event that moved an appointment from previous_status to
        current_status, which is what an undo reverses.

        Raises:
            InvalidTransition: no event leads from previous_status to current_status
        """
        for event, (allowed_from, to_status) in cls.TRANSITIONS.items():
            if to_status == current_status and previous_status in allowed_from:
                return event
        raise InvalidTransition(
            f'No transition leads from "{previous_status}" to "{current_status}"; '
            f'the change cannot be reverted'
        )

    def can_apply(self, event):
        try:
            allowed_from, _ = self.TRANSITIONS[AppointmentEventChoices(event)]
        except ValueError:
            return False
        return self.status in allowed_from

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES


class AppointmentStatusHistory(models.Model):
    """
    Audit trail of appointment status changes. Drives the undo feature.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    appointment = models.ForeignKey(
        'Appointment',
        on_delete=models.CASCADE,
        related_name='status_history'
    )
    old_status = models.CharField(
        max_length=30,
        choices=AppointmentStatusChoices.choices,
        blank=True,
        null=True
    )
    new_status = models.CharField(max_length=30, choices=AppointmentStatusChoices.choices)
    action_type = models.CharField(
        max_length=20,
        choices=StatusHistoryActionChoices.choices,
        default=StatusHistoryActionChoices.STATUS_CHANGE
    )
    reason = models.TextField(blank=True, null=True)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='appointment_status_changes'
    )
    changed_at = models.DateTimeField()
    reverted_at = models.DateTimeField(blank=True, null=True)
    reverted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='reverted_status_changes'
    )
    revert_reason = models.TextField(blank=True, null=True)

    class Meta:
        db_table = 'appointment_status_history'
        verbose_name = 'Appointment Status History'
        verbose_name_plural = 'Appointment Status History'
        ordering = ['-changed_at']
        indexes = [
            models.Index(fields=['appointment', 'changed_at'], name='idx_status_hist_appt'),
        ]

    def __str__(self):
        return f"{self.appointment_id}: {self.old_status} -> {self.new_status}"


# ============================================================================
# Medical history
# ============================================================================

class UnifiedMedicalHistory(models.Model):
    """
    One clinical history container per medical order.

    template_data keys written by the engine:
    - discharge_summary: set on early discharge
    - final_summary, completed_at, total_sessions_completed: set on finalization
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='medical_histories'
    )
    medical_order = models.OneToOneField(
        'MedicalOrder',
        on_delete=models.CASCADE,
        related_name='unified_history'
    )
    template_data = models.JSONField(default=dict, blank=True)
    final_summary_file = models.FileField(
        upload_to='final_summaries/%Y/%m/',
        blank=True,
        null=True
    )
    row_version = models.IntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'unified_medical_history'
        verbose_name = 'Unified Medical History'
        verbose_name_plural = 'Unified Medical Histories'

    def __str__(self):
        return f"History for {self.medical_order_id}"


class MedicalHistoryEntry(models.Model):
    """One clinical entry per attended appointment."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    unified_history = models.ForeignKey(
        'UnifiedMedicalHistory',
        on_delete=models.CASCADE,
        related_name='entries',
        blank=True,
        null=True
    )
    appointment = models.OneToOneField(
        'Appointment',
        on_delete=models.CASCADE,
        related_name='history_entry'
    )
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='history_entries'
    )
    doctor = models.ForeignKey(
        'authz.Doctor',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='history_entries'
    )
    professional_name = models.CharField(max_length=255)
    appointment_date = models.DateField()
    observations = models.TextField(blank=True, null=True)
    evolution = models.TextField(blank=True, null=True)
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'medical_history_entry'
        verbose_name = 'Medical History Entry'
        verbose_name_plural = 'Medical History Entries'
        ordering = ['appointment_date', 'created_at']
        indexes = [
            models.Index(fields=['patient', 'appointment_date'], name='idx_hist_entry_patient'),
        ]

    def __str__(self):
        return f"Entry {self.appointment_date} - {self.professional_name}"


# ============================================================================
# No-show pardons
# ============================================================================

class NoShowReset(models.Model):
    """
    Audit record of a bulk no-show pardon. Immutable once created.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='no_show_resets'
    )
    reset_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='no_show_resets'
    )
    reason = models.TextField()
    appointments_affected = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'patient_noshow_reset'
        verbose_name = 'No-show Reset'
        verbose_name_plural = 'No-show Resets'
        ordering = ['-created_at']

    def __str__(self):
        return f"Reset {self.appointments_affected} no-shows for {self.patient}"

    def save(self, *args, **kwargs):
        from django.core.exceptions import ValidationError

        if not self._state.adding:
            raise ValidationError('No-show reset records cannot be modified')
        super().save(*args, **kwargs)
