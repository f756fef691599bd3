"""
Correction tooling for the session ledger.

- undo the last status change of an appointment
- move an attended appointment to another medical order

These are the only paths that give a session back to a medical order.
"""
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from apps.clinical.conf import engine_setting
from apps.clinical.exceptions import (
    InvalidOrderSelection,
    InvalidReassignment,
    NothingToUndo,
    ReasonRequired,
    SessionsExhausted,
    UndoWindowExpired,
)
from apps.clinical.instrumentation import engine_operation
from apps.clinical.ledger import ledger
from apps.clinical.models import (
    ATTENDED_STATUSES,
    NO_SHOW_STATUSES,
    PENDING_STATUSES,
    AppointmentStatusChoices,
    MedicalHistoryEntry,
    MedicalOrder,
    StatusHistoryActionChoices,
)
from apps.clinical.services import check_order_capacity, check_slot, revert_status
from apps.clinical.services_sessions import consume_session, restore_session
from apps.core.observability import metrics, log_domain_event

S = AppointmentStatusChoices

UNDOABLE_STATUSES = (S.COMPLETED, S.NO_SHOW, S.NO_SHOW_SESSION_LOST, S.CANCELLED)


def _require_reason(reason, action):
    reason = (reason or '').strip()
    if not reason:
        raise ReasonRequired(f'A reason is required to {action}')
    return reason


# ============================================================================
# Undo
# ============================================================================

def _latest_undoable_change(appointment):
    change = (
        appointment.status_history
        .select_for_update()
        .filter(
            action_type=StatusHistoryActionChoices.STATUS_CHANGE,
            new_status=appointment.status,
            reverted_at__isnull=True,
        )
        .order_by('-changed_at')
        .first()
    )
    if change is None or change.new_status not in UNDOABLE_STATUSES:
        raise NothingToUndo()
    return change


@engine_operation('undo_last_status_change')
@transaction.atomic
def undo_last_status_change(appointment_id, actor, reason):
    """
    Put an appointment back in the status it had before its last change.

    Only completed, cancelled and no-show changes made within
    UNDO_WINDOW_HOURS can be undone. A session debited by a no-show is
    restored to the order it was taken from. An appointment that becomes
    a pending booking again needs a free place in its slot and its order.

    Returns:
        Appointment

    Raises:
        ReasonRequired: Empty reason
        NothingToUndo: No undoable change on record
        UndoWindowExpired: The change is older than the window
        InvalidTransition: The recorded change is not an edge of the state machine
        DuplicateBooking, SlotSaturated: Un-cancelling into a slot that has
            been taken since
        SessionsExhausted: The order has no room left for the booking
    """
    reason = _require_reason(reason, 'undo a status change')

    appointment = ledger.get_appointment(appointment_id)
    change = _latest_undoable_change(appointment)

    window = timedelta(hours=engine_setting('UNDO_WINDOW_HOURS'))
    now = timezone.now()
    if now - change.changed_at > window:
        raise UndoWindowExpired(
            f'Status changes can only be undone within {engine_setting("UNDO_WINDOW_HOURS")} hours'
        )

    reverted_status = appointment.status
    restored_status = change.old_status

    if reverted_status == S.CANCELLED:
        check_slot(
            appointment.patient_id,
            appointment.doctor_id,
            appointment.appointment_date,
            appointment.appointment_time,
            exclude_id=appointment.id,
        )

    patch = {}
    if (reverted_status in NO_SHOW_STATUSES
            and appointment.session_deducted
            and appointment.session_order_id):
        restore_session(appointment.session_order_id, appointment_id=appointment.id)
        patch.update(session_deducted=False, session_order_id=None)

    if restored_status in PENDING_STATUSES and appointment.medical_order_id:
        check_order_capacity(ledger.get_order(appointment.medical_order_id))

    revert_status(appointment, restored_status, actor, reason, **patch)

    change.reverted_at = now
    change.reverted_by = actor
    change.revert_reason = reason
    change.save(update_fields=['reverted_at', 'reverted_by', 'revert_reason'])

    metrics.appointment_undo_total.labels(reverted_status=str(reverted_status)).inc()
    log_domain_event(
        'appointment_status_reverted',
        entity_type='Appointment',
        entity_id=str(appointment.id),
        entity_ids={'patient_id': str(appointment.patient_id)},
        result='warning',
        from_status=str(reverted_status),
        to_status=str(restored_status),
        actor_id=str(actor.id),
    )
    return appointment


# ============================================================================
# Order reassignment
# ============================================================================

@engine_operation('reassign_appointment_order')
@transaction.atomic
def reassign_appointment_order(appointment_id, target_order_id, actor, reason):
    """
    Move an attended appointment's session to another medical order.

    The session goes back to the order that was debited and is taken from
    the target; medical_order and session_order both point to the target
    afterwards, and the history entry follows the appointment.

    Returns:
        Appointment

    Raises:
        ReasonRequired: Empty reason
        InvalidReassignment: The appointment is not attended
        InvalidOrderSelection: Unknown target, another patient's order, or
            the order already debited
        SessionsExhausted: The target has no sessions left or is closed
    """
    reason = _require_reason(reason, 'move an appointment to another order')

    appointment = ledger.get_appointment(appointment_id)
    if appointment.status not in ATTENDED_STATUSES:
        raise InvalidReassignment(
            f'Appointment in status "{appointment.status}" has no session to move'
        )

    try:
        target = ledger.get_order(target_order_id)
    except MedicalOrder.DoesNotExist:
        raise InvalidOrderSelection(f'Medical order {target_order_id} does not exist')

    source_order_id = (
        appointment.session_order_id if appointment.session_deducted
        else appointment.medical_order_id
    )
    if target.patient_id != appointment.patient_id or target.id == source_order_id:
        raise InvalidOrderSelection()
    if not target.is_active:
        raise SessionsExhausted(f'Medical order {target.id} has no sessions left')

    consume_session(target.id, trigger='reassignment', appointment_id=appointment.id)
    if appointment.session_deducted and appointment.session_order_id:
        restore_session(appointment.session_order_id, appointment_id=appointment.id)

    ledger.update_appointment(
        appointment,
        medical_order=target,
        session_order=target,
        session_deducted=True,
    )
    entries = MedicalHistoryEntry.objects.filter(appointment=appointment)
    if entries.exists():
        entries.update(
            unified_history=ledger.get_unified_history(target),
            updated_at=timezone.now(),
        )
    ledger.insert_status_history(
        appointment,
        old_status=appointment.status,
        new_status=appointment.status,
        actor=actor,
        action_type=StatusHistoryActionChoices.REASSIGN_ORDER,
        reason=reason,
    )

    metrics.appointment_reassignments_total.inc()
    log_domain_event(
        'appointment_order_reassigned',
        entity_type='Appointment',
        entity_id=str(appointment.id),
        entity_ids={
            'appointment_id': str(appointment.id),
            'patient_id': str(appointment.patient_id),
            'order_id': str(target.id),
        },
        result='warning',
        previous_order_id=str(source_order_id) if source_order_id else None,
        actor_id=str(actor.id),
    )
    return appointment
