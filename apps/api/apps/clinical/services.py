"""
Appointment lifecycle service.

Booking guards and the state machine events that do not belong to the
no-show resolver or the discharge coordinator. Every public function is one
transaction; status changes always go through apply_event(), and the undo
tooling reverses one with revert_status().
"""
from datetime import date, time
from typing import Iterable, List, Optional, Tuple

from django.db import transaction
from django.db.models import F

from apps.authz.models import Doctor
from apps.clinical.conf import engine_setting
from apps.clinical.exceptions import (
    AppointmentNotEditable,
    BookingValidationError,
    DuplicateBooking,
    InvalidOrderSelection,
    MedicalOrderRequired,
    SessionEngineError,
    SessionsExhausted,
    SlotSaturated,
)
from apps.clinical.instrumentation import engine_operation
from apps.clinical.ledger import ledger
from apps.clinical.models import (
    Appointment,
    AppointmentEventChoices,
    AppointmentStatusChoices,
    PENDING_STATUSES,
    MedicalOrder,
    StatusHistoryActionChoices,
)
from apps.clinical.services_history import append_entry_note, record_history_entry
from apps.clinical.services_sessions import consume_session, get_order_session_info
from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import log_appointment_transition, log_booking_rejected

logger = get_sanitized_logger(__name__)

SERIES_NOTE_TEMPLATE = 'Session {index} of {count}'
ATTENDANCE_REVERTED_NOTE = 'Attendance reverted: {reason}'


# ============================================================================
# State machine
# ============================================================================

def apply_event(appointment, event, actor, reason=None, expected_version=None,
                action_type=StatusHistoryActionChoices.STATUS_CHANGE, **patch):
    """
    Move an appointment to the status the event leads to.

    Validates the transition against Appointment.TRANSITIONS, writes the
    new status (plus any extra fields in **patch) with a version check,
    and records the audit row. Must run inside the caller's transaction.

    Raises:
        InvalidTransition: The event is not allowed from the current status
        StaleRecordError: expected_version no longer matches
    """
    from_status = appointment.status
    to_status = Appointment.target_status(event, from_status)

    ledger.update_appointment(
        appointment,
        expected_version=expected_version,
        status=to_status,
        **patch
    )
    ledger.insert_status_history(
        appointment,
        old_status=from_status,
        new_status=to_status,
        actor=actor,
        action_type=action_type,
        reason=reason,
    )

    metrics.appointment_transitions_total.labels(
        event=str(event),
        from_status=str(from_status),
        to_status=str(to_status),
    ).inc()
    log_appointment_transition(appointment, event, from_status, to_status, actor=actor)
    return appointment


def revert_status(appointment, restored_status, actor, reason, **patch):
    """
    Put an appointment back in restored_status, reversing one transition.

    The undo counterpart of apply_event: the pair (restored_status, current
    status) must be an edge of Appointment.TRANSITIONS. Writes a 'revert'
    audit row. Must run inside the caller's transaction.

    Raises:
        InvalidTransition: No event leads from restored_status to the current status
    """
    from_status = appointment.status
    event = Appointment.reverting_event(from_status, restored_status)

    ledger.update_appointment(appointment, status=restored_status, **patch)
    ledger.insert_status_history(
        appointment,
        old_status=from_status,
        new_status=restored_status,
        actor=actor,
        action_type=StatusHistoryActionChoices.REVERT,
        reason=reason,
    )

    metrics.appointment_transitions_total.labels(
        event=f'undo_{event.value}',
        from_status=str(from_status),
        to_status=str(restored_status),
    ).inc()
    log_appointment_transition(appointment, f'undo_{event.value}', from_status, restored_status, actor=actor)
    return appointment


# ============================================================================
# Booking
# ============================================================================

def _resolve_order(patient, medical_order):
    """Return the selected order locked, or None when nothing was selected."""
    if medical_order is None:
        return None

    order_id = medical_order.pk if isinstance(medical_order, MedicalOrder) else medical_order
    try:
        order = ledger.get_order(order_id)
    except MedicalOrder.DoesNotExist:
        raise InvalidOrderSelection(f'Medical order {order_id} does not exist')

    if order.patient_id != patient.pk or not order.is_active:
        raise InvalidOrderSelection()
    return order


def check_order_capacity(order, needed=1):
    """
    Raise SessionsExhausted unless the order can take `needed` more bookings.

    Pending bookings (scheduled/confirmed, not yet debited) count against
    the pool, so an order is never overbooked.
    """
    if not order.is_active:
        raise SessionsExhausted(f'Medical order {order.id} is closed')

    info = get_order_session_info(order)
    if info['sessions_remaining'] < needed:
        raise SessionsExhausted(
            f'Medical order {order.id} has {info["sessions_remaining"]} sessions left '
            f'({info["sessions_used"]} used, {info["pending_appointments"]} booked); '
            f'{needed} requested'
        )


def _check_order_required(patient):
    has_open_order = ledger.query_orders(
        patient=patient,
        completed=False,
        sessions_used__lt=F('total_sessions'),
    ).exists()
    if has_open_order:
        raise MedicalOrderRequired()


def check_slot(patient_id, doctor_id, appointment_date, appointment_time, exclude_id=None):
    """
    Duplicate and capacity guards for one doctor/date/time slot.

    Cancelled appointments do not hold the slot. exclude_id leaves one
    appointment out of both counts (the original of a reschedule).

    Raises:
        DuplicateBooking: The patient already holds the slot
        SlotSaturated: SLOT_CAPACITY appointments already hold the slot
    """
    occupying = ledger.query_appointments(
        doctor_id=doctor_id,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
    ).exclude(status=AppointmentStatusChoices.CANCELLED)
    if exclude_id is not None:
        occupying = occupying.exclude(pk=exclude_id)

    if occupying.filter(patient_id=patient_id).exists():
        raise DuplicateBooking()

    capacity = engine_setting('SLOT_CAPACITY')
    if occupying.count() >= capacity:
        raise SlotSaturated(
            f'The slot {appointment_date} {appointment_time} already has {capacity} appointments'
        )


def lock_doctor(doctor):
    """Serialize bookings against one doctor's calendar."""
    doctor_id = doctor.pk if isinstance(doctor, Doctor) else doctor
    return Doctor.objects.select_for_update().get(pk=doctor_id)


def _reject_booking(error, patient, doctor):
    metrics.appointment_bookings_total.labels(result=error.code).inc()
    log_booking_rejected(patient.pk, doctor.pk, error.code)


@engine_operation('book_appointment')
@transaction.atomic
def book_appointment(
    patient,
    doctor,
    appointment_date: date,
    appointment_time: time,
    actor,
    medical_order=None,
    reason: str = '',
    notes: str = '',
    duration_minutes: Optional[int] = None,
) -> Appointment:
    """
    Book one appointment.

    Guards run in this order:
    1. selected order belongs to the patient, is open and has capacity
    2. an order must be selected when the patient holds an open one
    3. no duplicate booking for patient/doctor/date/time
    4. slot capacity

    Returns:
        Appointment in status scheduled

    Raises:
        InvalidOrderSelection, SessionsExhausted, MedicalOrderRequired,
        DuplicateBooking, SlotSaturated
    """
    doctor = lock_doctor(doctor)

    try:
        order = _resolve_order(patient, medical_order)
        if order is not None:
            check_order_capacity(order)
        else:
            _check_order_required(patient)
        check_slot(patient.pk, doctor.pk, appointment_date, appointment_time)
    except SessionEngineError as e:
        _reject_booking(e, patient, doctor)
        raise

    appointment = ledger.insert_appointment(
        patient=patient,
        doctor=doctor,
        medical_order=order,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        duration_minutes=duration_minutes or engine_setting('DEFAULT_APPOINTMENT_DURATION'),
        reason=reason or '',
        notes=notes or '',
        created_by=actor,
    )
    metrics.appointment_bookings_total.labels(result='success').inc()
    logger.info(
        'Appointment booked',
        extra={
            'event': 'appointment_booked',
            'appointment_id': str(appointment.id),
            'patient_id': str(patient.pk),
            'doctor_id': str(doctor.pk),
            'order_id': str(order.id) if order else None,
            'actor_id': str(actor.id),
        }
    )
    return appointment


@engine_operation('book_appointment_series')
@transaction.atomic
def book_appointment_series(
    patient,
    doctor,
    slots: Iterable[Tuple[date, time]],
    medical_order,
    actor,
    reason: str = '',
) -> List[Appointment]:
    """
    Book several sessions of one order at once. All or nothing.

    Args:
        slots: (appointment_date, appointment_time) pairs, in session order

    Raises:
        BookingValidationError: Fewer than 1 or more than MAX_SERIES_SESSIONS slots
        MedicalOrderRequired: No order given
        SessionsExhausted: The order cannot cover every slot
        DuplicateBooking, SlotSaturated: For any slot; nothing is booked
    """
    slots = list(slots)
    doctor = lock_doctor(doctor)
    max_sessions = engine_setting('MAX_SERIES_SESSIONS')

    try:
        if not 1 <= len(slots) <= max_sessions:
            raise BookingValidationError(
                f'A series must have between 1 and {max_sessions} sessions',
                code='invalid_series_size',
            )
        if medical_order is None:
            raise MedicalOrderRequired()

        order = _resolve_order(patient, medical_order)
        check_order_capacity(order, needed=len(slots))

        appointments = []
        count = len(slots)
        for index, (appointment_date, appointment_time) in enumerate(slots, start=1):
            check_slot(patient.pk, doctor.pk, appointment_date, appointment_time)
            appointments.append(ledger.insert_appointment(
                patient=patient,
                doctor=doctor,
                medical_order=order,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
                duration_minutes=engine_setting('DEFAULT_APPOINTMENT_DURATION'),
                reason=reason or '',
                notes=SERIES_NOTE_TEMPLATE.format(index=index, count=count),
                created_by=actor,
            ))
    except SessionEngineError as e:
        _reject_booking(e, patient, doctor)
        raise

    metrics.appointment_bookings_total.labels(result='success').inc(len(appointments))
    logger.info(
        'Appointment series booked',
        extra={
            'event': 'appointment_series_booked',
            'patient_id': str(patient.pk),
            'doctor_id': str(doctor.pk),
            'order_id': str(order.id),
            'appointments_created': len(appointments),
            'actor_id': str(actor.id),
        }
    )
    return appointments


# ============================================================================
# Lifecycle events
# ============================================================================

@engine_operation('confirm_appointment')
@transaction.atomic
def confirm_appointment(appointment_id, actor, expected_version=None):
    appointment = ledger.get_appointment(appointment_id)
    return apply_event(
        appointment, AppointmentEventChoices.CONFIRM, actor,
        expected_version=expected_version,
    )


@engine_operation('mark_attended')
@transaction.atomic
def mark_attended(appointment_id, actor, expected_version=None):
    """
    Mark the patient as attended (status in_progress).

    Debits one session from the appointment's medical order the first time
    only; session_deducted stays set across a revert, so re-marking after a
    revert does not debit again. Creates the session's history entry.

    Raises:
        InvalidTransition: Not scheduled/confirmed
        SessionsExhausted: The linked order has no sessions left
    """
    appointment = ledger.get_appointment(appointment_id)
    Appointment.target_status(AppointmentEventChoices.MARK_ATTENDED, appointment.status)

    patch = {}
    if appointment.medical_order_id and not appointment.session_deducted:
        consume_session(
            appointment.medical_order_id,
            trigger='attendance',
            appointment_id=appointment.id,
        )
        patch = {
            'session_deducted': True,
            'session_order_id': appointment.medical_order_id,
        }

    apply_event(
        appointment, AppointmentEventChoices.MARK_ATTENDED, actor,
        expected_version=expected_version,
        **patch
    )
    record_history_entry(appointment, actor)
    return appointment


@engine_operation('revert_attendance')
@transaction.atomic
def revert_attendance(appointment_id, actor, reason='', expected_version=None):
    """
    Undo a mark-attended: back to confirmed, history entry kept with a note.

    The consumed session is not refunded; use the correction tooling for that.
    """
    appointment = ledger.get_appointment(appointment_id)
    apply_event(
        appointment, AppointmentEventChoices.REVERT_ATTENDANCE, actor,
        reason=reason or None,
        expected_version=expected_version,
    )

    entry = getattr(appointment, 'history_entry', None)
    if entry is not None:
        append_entry_note(
            entry,
            ATTENDANCE_REVERTED_NOTE.format(reason=reason or 'no reason given'),
        )
    return appointment


@engine_operation('complete_appointment')
@transaction.atomic
def complete_appointment(appointment_id, actor, expected_version=None):
    appointment = ledger.get_appointment(appointment_id)
    return apply_event(
        appointment, AppointmentEventChoices.COMPLETE, actor,
        expected_version=expected_version,
    )


@engine_operation('cancel_appointment')
@transaction.atomic
def cancel_appointment(appointment_id, actor, reason='', expected_version=None):
    """Cancel an appointment. The slot is released for new bookings."""
    appointment = ledger.get_appointment(appointment_id)
    return apply_event(
        appointment, AppointmentEventChoices.CANCEL, actor,
        reason=reason or None,
        expected_version=expected_version,
    )


# ============================================================================
# Edits
# ============================================================================

EDITABLE_FIELDS = (
    'appointment_date',
    'appointment_time',
    'doctor',
    'duration_minutes',
    'reason',
    'notes',
)
SLOT_FIELDS = ('appointment_date', 'appointment_time', 'doctor')


@engine_operation('update_appointment_details')
@transaction.atomic
def update_appointment_details(appointment_id, actor, expected_version=None, **fields):
    """
    Edit the details of a booking that has not happened yet.

    Moving the appointment (date, time or doctor) re-runs the slot guards
    with the appointment itself left out. A client that read an older
    row_version loses to whatever changed the row since.

    Raises:
        StaleRecordError: expected_version no longer matches
        AppointmentNotEditable: Not scheduled/confirmed
        BookingValidationError: A field that cannot be edited
        DuplicateBooking, SlotSaturated: The new slot is taken
    """
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise BookingValidationError(
            f'Fields cannot be edited: {", ".join(sorted(unknown))}',
            code='non_editable_field',
        )

    appointment = ledger.get_appointment(appointment_id)
    ledger.ensure_version(appointment, expected_version)

    if appointment.status not in PENDING_STATUSES:
        raise AppointmentNotEditable(
            f'Appointment in status "{appointment.status}" cannot be edited'
        )

    patch = {}
    for name, value in fields.items():
        if name in ('reason', 'notes'):
            patch[name] = value or ''
        elif value is not None:
            patch[name] = value

    if any(name in patch for name in SLOT_FIELDS):
        doctor = lock_doctor(patch.get('doctor', appointment.doctor_id))
        patch['doctor'] = doctor
        try:
            check_slot(
                appointment.patient_id,
                doctor.pk,
                patch.get('appointment_date', appointment.appointment_date),
                patch.get('appointment_time', appointment.appointment_time),
                exclude_id=appointment.id,
            )
        except SessionEngineError as e:
            metrics.appointment_edits_total.labels(result=e.code).inc()
            log_booking_rejected(
                appointment.patient_id, doctor.pk, e.code, appointment_id=str(appointment.id)
            )
            raise

    if patch:
        ledger.update_appointment(appointment, **patch)

    metrics.appointment_edits_total.labels(result='success').inc()
    logger.info(
        'Appointment details updated',
        extra={
            'event': 'appointment_updated',
            'appointment_id': str(appointment.id),
            'changed_fields': sorted(patch),
            'actor_id': str(actor.id),
        }
    )
    return appointment
