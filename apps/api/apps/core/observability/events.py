"""
Domain events logging helpers.

Provides structured event logging for appointment and session-ledger
operations.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'appointment_transition', 'session_consumed')
        entity_type: Type of entity (e.g., 'Appointment', 'MedicalOrder')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, blocked, ...)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'session_consumed',
            entity_type='MedicalOrder',
            entity_id=str(order.id),
            entity_ids={'order_id': str(order.id)},
            sessions_used=4,
            total_sessions=10
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    # Log at appropriate level based on result
    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'conflict']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_consistency_checkpoint(
    checkpoint_name: str,
    entity_ids: Dict[str, str],
    checks_passed: Dict[str, bool],
    **extra_fields
):
    """
    Log a consistency checkpoint event.

    Used to verify ledger integrity after writes.

    Example:
        log_consistency_checkpoint(
            'session_pool_invariant',
            entity_ids={'order_id': str(order.id)},
            checks_passed={
                'used_within_pool': True,
                'completed_when_exhausted': True,
            },
        )
    """
    all_passed = all(checks_passed.values())

    event_data = {
        'event': 'consistency_checkpoint',
        'checkpoint': checkpoint_name,
        'status': 'passed' if all_passed else 'failed',
        'checks': checks_passed,
    }
    event_data.update(entity_ids)
    event_data.update(sanitize_dict(extra_fields))

    if all_passed:
        logger.info(f'Checkpoint passed: {checkpoint_name}', extra=event_data)
    else:
        logger.error(f'Checkpoint FAILED: {checkpoint_name}', extra=event_data)


def log_appointment_transition(appointment, event, from_status, to_status, actor=None, **extra):
    """Log appointment status transition event."""
    log_domain_event(
        'appointment_transition',
        entity_type='Appointment',
        entity_id=str(appointment.id),
        entity_ids={
            'appointment_id': str(appointment.id),
            'patient_id': str(appointment.patient_id),
        },
        appointment_event=str(event),
        from_status=str(from_status),
        to_status=str(to_status),
        actor_id=str(actor.id) if actor else None,
        **extra
    )


def log_booking_rejected(patient_id, doctor_id, error_code, **extra):
    """Log a booking rejected by a guard."""
    log_domain_event(
        'appointment_booking_rejected',
        entity_type='Appointment',
        entity_ids={
            'patient_id': str(patient_id),
            'doctor_id': str(doctor_id),
        },
        result='blocked',
        error_code=error_code,
        **extra
    )


def log_session_consumed(order, trigger, appointment_id=None):
    """Log a session deducted from a medical order."""
    log_domain_event(
        'session_consumed',
        entity_type='MedicalOrder',
        entity_id=str(order.id),
        entity_ids={
            'order_id': str(order.id),
            'appointment_id': str(appointment_id) if appointment_id else None,
        },
        trigger=trigger,
        sessions_used=order.sessions_used,
        total_sessions=order.total_sessions,
        order_completed=order.completed,
    )


def log_session_restored(order, appointment_id=None):
    """Log a session given back by the correction tooling."""
    log_domain_event(
        'session_restored',
        entity_type='MedicalOrder',
        entity_id=str(order.id),
        entity_ids={
            'order_id': str(order.id),
            'appointment_id': str(appointment_id) if appointment_id else None,
        },
        result='warning',
        sessions_used=order.sessions_used,
        total_sessions=order.total_sessions,
    )


def log_reschedule(original, replacement, actor):
    """Log a reschedule chain link."""
    log_domain_event(
        'appointment_rescheduled',
        entity_type='Appointment',
        entity_id=str(original.id),
        entity_ids={
            'original_id': str(original.id),
            'replacement_id': str(replacement.id),
            'patient_id': str(original.patient_id),
        },
        actor_id=str(actor.id),
        new_doctor_id=str(replacement.doctor_id),
    )


def log_no_shows_pardoned(reset):
    """Log a bulk no-show pardon."""
    log_domain_event(
        'no_shows_pardoned',
        entity_type='NoShowReset',
        entity_id=str(reset.id),
        entity_ids={
            'patient_id': str(reset.patient_id),
            'reset_id': str(reset.id),
        },
        appointments_affected=reset.appointments_affected,
        actor_id=str(reset.reset_by_id),
    )


def log_discharge_completed(order, cancelled_count, actor):
    """Log an early discharge."""
    log_domain_event(
        'early_discharge_completed',
        entity_type='MedicalOrder',
        entity_id=str(order.id),
        entity_ids={
            'order_id': str(order.id),
            'patient_id': str(order.patient_id),
        },
        cancelled_appointments=cancelled_count,
        sessions_used=order.sessions_used,
        total_sessions=order.total_sessions,
        actor_id=str(actor.id),
    )


def log_stale_record(model_name, record_id, expected_version):
    """Log an optimistic lock conflict."""
    log_domain_event(
        'stale_record_detected',
        entity_type=model_name,
        entity_id=str(record_id),
        result='conflict',
        expected_version=expected_version,
    )
