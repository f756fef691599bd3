"""
No-show and reschedule resolver.

A no-show either keeps the session (the patient will be rescheduled) or
loses it. Rescheduling never touches the session pool. Pardons only clear
the no-show counter used for alerts.
"""
from typing import NamedTuple

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.clinical.conf import engine_setting
from apps.clinical.exceptions import (
    InvalidNoShowOption,
    NothingToPardon,
    ReasonTooShort,
    SessionEngineError,
)
from apps.clinical.instrumentation import engine_operation
from apps.clinical.ledger import ledger
from apps.clinical.models import (
    NO_SHOW_STATUSES,
    PENDING_STATUSES,
    Appointment,
    AppointmentEventChoices,
    NoShowOptionChoices,
    StatusHistoryActionChoices,
)
from apps.clinical.services import apply_event, check_order_capacity, check_slot, lock_doctor
from apps.clinical.services_sessions import consume_session
from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import (
    log_booking_rejected,
    log_no_shows_pardoned,
    log_reschedule,
)

logger = get_sanitized_logger(__name__)

DEFAULT_PARDON_REASON = 'No-show counter reset'


class RescheduleOutcome(NamedTuple):
    original: Appointment
    replacement: Appointment


# ============================================================================
# No-show resolution
# ============================================================================

def find_active_order(appointment):
    """
    Order to debit for a session-lost no-show.

    The appointment's own order while it is open, otherwise the patient's
    most recently created open order. None when the patient has no open order.
    """
    if appointment.medical_order_id:
        linked = ledger.get_order(appointment.medical_order_id, lock=False)
        if linked.is_active:
            return linked

    return ledger.query_orders(
        patient_id=appointment.patient_id,
        completed=False,
    ).order_by('-created_at').first()


@engine_operation('resolve_no_show')
@transaction.atomic
def resolve_no_show(appointment_id, option, actor, reason=None, expected_version=None):
    """
    Record that the patient did not show up.

    Args:
        option: 'reschedule' keeps the session, 'session_lost' debits one
        reason: Stored as no_show_reason

    Returns:
        Appointment

    Raises:
        InvalidNoShowOption: Unknown option
        InvalidTransition: Appointment not scheduled/confirmed
    """
    try:
        option = NoShowOptionChoices(option)
    except ValueError:
        raise InvalidNoShowOption(f'Unknown no-show option "{option}"')

    appointment = ledger.get_appointment(appointment_id)

    if option == NoShowOptionChoices.RESCHEDULE:
        # A session already debited by an earlier attendance stays debited
        apply_event(
            appointment, AppointmentEventChoices.NO_SHOW_RESCHEDULE, actor,
            reason=reason,
            expected_version=expected_version,
            no_show_reason=reason,
            session_deducted=appointment.session_deducted,
        )
    else:
        Appointment.target_status(AppointmentEventChoices.NO_SHOW_SESSION_LOST, appointment.status)

        patch = {'no_show_reason': reason, 'session_deducted': True}
        if not appointment.session_deducted:
            order = find_active_order(appointment)
            if order is not None:
                consume_session(order.id, trigger='no_show', appointment_id=appointment.id)
                patch['session_order_id'] = order.id
            else:
                logger.info(
                    'No open medical order for session-lost no-show; nothing debited',
                    extra={
                        'event': 'no_show_without_order',
                        'appointment_id': str(appointment.id),
                        'patient_id': str(appointment.patient_id),
                    }
                )

        apply_event(
            appointment, AppointmentEventChoices.NO_SHOW_SESSION_LOST, actor,
            reason=reason,
            expected_version=expected_version,
            **patch
        )

    metrics.no_show_resolutions_total.labels(
        option=str(option),
        deducted=str(appointment.session_deducted).lower(),
    ).inc()
    return appointment


# ============================================================================
# Reschedule
# ============================================================================

@engine_operation('reschedule_appointment')
@transaction.atomic
def reschedule_appointment(original_id, new_date, new_time, actor, reason,
                           new_doctor=None, expected_version=None):
    """
    Replace an appointment with a new one at another slot.

    The original becomes 'rescheduled' and points to the replacement via
    rescheduled_to; the replacement starts 'scheduled' and copies the
    patient, reason, duration and medical order of the original.

    Returns:
        RescheduleOutcome(original, replacement)

    Raises:
        InvalidTransition: The original cannot be rescheduled (including a
            second reschedule of the same original)
        ReasonTooShort: reason shorter than RESCHEDULE_REASON_MIN_LENGTH
        SessionsExhausted: A no-show original whose order has no room left
        DuplicateBooking, SlotSaturated: The new slot is taken
    """
    original = ledger.get_appointment(original_id)
    Appointment.target_status(AppointmentEventChoices.RESCHEDULE, original.status)

    reason = (reason or '').strip()
    min_length = engine_setting('RESCHEDULE_REASON_MIN_LENGTH')
    if len(reason) < min_length:
        raise ReasonTooShort(
            f'The reschedule reason must have at least {min_length} characters'
        )

    doctor = lock_doctor(new_doctor if new_doctor is not None else original.doctor_id)

    try:
        # A no-show original no longer holds a place in its order
        if original.status not in PENDING_STATUSES and original.medical_order_id:
            check_order_capacity(ledger.get_order(original.medical_order_id))
        check_slot(original.patient_id, doctor.pk, new_date, new_time, exclude_id=original.id)
    except SessionEngineError as e:
        metrics.appointment_reschedules_total.labels(result=e.code).inc()
        log_booking_rejected(original.patient_id, doctor.pk, e.code, original_id=str(original.id))
        raise

    now = timezone.now()
    apply_event(
        original, AppointmentEventChoices.RESCHEDULE, actor,
        reason=reason,
        expected_version=expected_version,
        action_type=StatusHistoryActionChoices.RESCHEDULE,
        rescheduled_at=now,
        rescheduled_by=actor,
        reschedule_reason=reason,
    )

    replacement = ledger.insert_appointment(
        patient_id=original.patient_id,
        doctor=doctor,
        medical_order_id=original.medical_order_id,
        appointment_date=new_date,
        appointment_time=new_time,
        duration_minutes=original.duration_minutes,
        reason=original.reason,
        rescheduled_from=original,
        rescheduled_at=now,
        rescheduled_by=actor,
        reschedule_reason=reason,
        created_by=actor,
    )

    metrics.appointment_reschedules_total.labels(result='success').inc()
    log_reschedule(original, replacement, actor)
    return RescheduleOutcome(original, replacement)


# ============================================================================
# Pardon and alerts
# ============================================================================

def _unpardoned_no_shows(patient_id):
    return ledger.query_appointments(
        patient_id=patient_id,
        status__in=NO_SHOW_STATUSES,
        pardoned_by__isnull=True,
    )


def count_no_shows(patient_id):
    """No-shows of the patient that have not been pardoned."""
    return _unpardoned_no_shows(patient_id).count()


def has_no_show_alert(patient_id):
    return count_no_shows(patient_id) >= engine_setting('NO_SHOW_ALERT_THRESHOLD')


@engine_operation('pardon_no_shows')
@transaction.atomic
def pardon_no_shows(patient_id, actor, reason=None):
    """
    Pardon every outstanding no-show of a patient.

    Sessions already lost stay lost; only the counter is reset.

    Returns:
        NoShowReset audit row

    Raises:
        NothingToPardon: The patient has no unpardoned no-shows
    """
    appointment_ids = list(
        _unpardoned_no_shows(patient_id).select_for_update().values_list('id', flat=True)
    )
    if not appointment_ids:
        raise NothingToPardon()

    reason = reason or DEFAULT_PARDON_REASON
    affected = ledger.query_appointments(pk__in=appointment_ids).update(
        pardoned_by=actor,
        pardoned_at=timezone.now(),
        pardon_reason=reason,
        row_version=F('row_version') + 1,
        updated_at=timezone.now(),
    )

    reset = ledger.insert_no_show_reset(
        patient_id=patient_id,
        reset_by=actor,
        reason=reason,
        appointments_affected=affected,
    )

    metrics.no_show_pardons_total.inc()
    metrics.no_show_pardoned_appointments_total.inc(affected)
    log_no_shows_pardoned(reset)
    return reset
