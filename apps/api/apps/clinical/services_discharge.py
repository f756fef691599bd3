"""
Early discharge of a patient from a treatment.
"""
from django.db import transaction
from django.utils import timezone

from apps.clinical.exceptions import NoActiveOrder, ReasonRequired
from apps.clinical.instrumentation import engine_operation
from apps.clinical.ledger import ledger
from apps.clinical.models import PENDING_STATUSES, AppointmentEventChoices, MedicalOrder
from apps.clinical.services import apply_event
from apps.clinical.services_sessions import finalize_early
from apps.core.observability import metrics
from apps.core.observability.events import log_discharge_completed

DISCHARGE_NOTE_TEMPLATE = 'Early discharge: {reason}'


@engine_operation('discharge_early')
@transaction.atomic
def discharge_early(patient_id, medical_order_id, reason, actor):
    """
    Close a treatment before its sessions are used up.

    Steps:
    1. Every upcoming scheduled/confirmed appointment of the patient
       becomes discharged, with a note
    2. The order is finalized early with its current sessions_used
    3. A discharge_summary is stored in the order's unified history

    Returns:
        int: number of appointments discharged

    Raises:
        ReasonRequired: Empty reason
        NoActiveOrder: Order missing, owned by another patient, or completed
    """
    reason = (reason or '').strip()
    if not reason:
        raise ReasonRequired('A reason is required for an early discharge')

    try:
        order = ledger.get_order(medical_order_id)
    except MedicalOrder.DoesNotExist:
        raise NoActiveOrder(f'Medical order {medical_order_id} does not exist')
    if str(order.patient_id) != str(patient_id) or order.completed:
        raise NoActiveOrder()

    today = timezone.localdate()
    upcoming = ledger.query_appointments(
        patient_id=patient_id,
        appointment_date__gte=today,
        status__in=PENDING_STATUSES,
    ).select_for_update().order_by('appointment_date', 'appointment_time')

    note = DISCHARGE_NOTE_TEMPLATE.format(reason=reason)
    discharged = 0
    for appointment in upcoming:
        apply_event(
            appointment, AppointmentEventChoices.DISCHARGE, actor,
            reason=reason,
            notes=f'{appointment.notes}\n{note}' if appointment.notes else note,
        )
        discharged += 1

    order = finalize_early(order.id, reason, order.sessions_used)

    ledger.upsert_unified_history(order, {
        'discharge_summary': {
            'discharge_date': today.isoformat(),
            'reason': reason,
            'sessions_completed': order.sessions_used,
            'total_sessions': order.total_sessions,
            'early_discharge': True,
            'cancelled_appointments': discharged,
        }
    })

    metrics.discharges_total.inc()
    metrics.discharge_cancelled_appointments_total.inc(discharged)
    log_discharge_completed(order, discharged, actor)
    return discharged
