"""
Session accounting: the session pool on MedicalOrder.

Every function here runs in its own transaction (or joins the caller's)
and locks the order row before touching the counters, so concurrent
consumption on one order is serialized.
"""
from django.db import transaction
from django.utils import timezone

from apps.clinical.exceptions import SessionsExhausted
from apps.clinical.ledger import ledger
from apps.clinical.models import PENDING_STATUSES
from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import (
    log_consistency_checkpoint,
    log_session_consumed,
    log_session_restored,
)
from apps.core.observability.tracing import trace_span

logger = get_sanitized_logger(__name__)

EARLY_DISCHARGE_RESULTS_TEMPLATE = 'Early discharge: {reason}. Sessions completed: {used}/{total}'


def _check_pool_invariant(order):
    log_consistency_checkpoint(
        'session_pool_invariant',
        entity_ids={'order_id': str(order.id)},
        checks_passed={
            'used_within_pool': 0 <= order.sessions_used <= order.total_sessions,
            'completed_when_exhausted': (
                order.completed or order.sessions_used < order.total_sessions
            ),
        },
        sessions_used=order.sessions_used,
        total_sessions=order.total_sessions,
    )


@metrics.track_duration('consume_session')
@transaction.atomic
def consume_session(order_id, trigger='attendance', appointment_id=None):
    """
    Deduct one session from a medical order.

    Args:
        order_id: MedicalOrder id
        trigger: What caused the deduction ('attendance', 'no_show'), for metrics
        appointment_id: Appointment the session is debited for, for logs

    Returns:
        MedicalOrder: The updated order

    Raises:
        SessionsExhausted: If sessions_used >= total_sessions before the call
        MedicalOrder.DoesNotExist: If the order does not exist
    """
    with trace_span('consume_session', attributes={'order_id': str(order_id), 'trigger': trigger}):
        order = ledger.get_order(order_id)

        if order.sessions_used >= order.total_sessions:
            logger.warning(
                'Session requested from exhausted order',
                extra={
                    'event': 'session_consume_rejected',
                    'order_id': str(order.id),
                    'sessions_used': order.sessions_used,
                    'total_sessions': order.total_sessions,
                }
            )
            raise SessionsExhausted(
                f'Medical order {order.id} has used all {order.total_sessions} sessions'
            )

        new_used = order.sessions_used + 1
        patch = {'sessions_used': new_used}
        if new_used >= order.total_sessions:
            patch['completed'] = True
            patch['completed_at'] = order.completed_at or timezone.now()

        ledger.update_order(order, **patch)

        metrics.sessions_consumed_total.labels(trigger=trigger).inc()
        if patch.get('completed'):
            metrics.orders_completed_total.labels(reason='exhausted').inc()

        log_session_consumed(order, trigger, appointment_id=appointment_id)
        _check_pool_invariant(order)
        return order


@transaction.atomic
def finalize_early(order_id, reason, actual_used):
    """
    Close an order before its pool is exhausted.

    sessions_used is set to actual_used clamped to [0, total_sessions] and a
    results note is appended. Only the discharge coordinator calls this.
    """
    with trace_span('finalize_early', attributes={'order_id': str(order_id)}):
        order = ledger.get_order(order_id)

        used = max(0, min(int(actual_used), order.total_sessions))
        note = EARLY_DISCHARGE_RESULTS_TEMPLATE.format(
            reason=reason, used=used, total=order.total_sessions
        )
        results = f'{order.results}\n{note}' if order.results else note

        ledger.update_order(
            order,
            sessions_used=used,
            completed=True,
            completed_at=timezone.now(),
            early_discharge=True,
            results=results,
        )
        metrics.orders_completed_total.labels(reason='early_discharge').inc()
        _check_pool_invariant(order)
        return order


@transaction.atomic
def restore_session(order_id, appointment_id=None):
    """
    Give one session back to an order. Correction tooling only.

    An order completed by exhaustion is re-opened when it drops below its
    total; an early-discharged order stays closed.
    """
    with trace_span('restore_session', attributes={'order_id': str(order_id)}):
        order = ledger.get_order(order_id)

        new_used = max(0, order.sessions_used - 1)
        patch = {'sessions_used': new_used}
        if order.completed and not order.early_discharge and new_used < order.total_sessions:
            patch['completed'] = False
            patch['completed_at'] = None

        ledger.update_order(order, **patch)
        metrics.sessions_restored_total.inc()
        log_session_restored(order, appointment_id=appointment_id)
        _check_pool_invariant(order)
        return order


def count_pending_appointments(order):
    """Appointments booked against the order that have not consumed a session yet."""
    return ledger.query_appointments(
        medical_order=order,
        status__in=PENDING_STATUSES,
        session_deducted=False,
    ).count()


def get_order_session_info(order):
    """
    Session pool snapshot used by booking screens.

    Returns:
        dict with total_sessions, sessions_used, pending_appointments and
        sessions_remaining (never negative)
    """
    pending = count_pending_appointments(order)
    return {
        'order_id': str(order.id),
        'total_sessions': order.total_sessions,
        'sessions_used': order.sessions_used,
        'pending_appointments': pending,
        'sessions_remaining': max(0, order.total_sessions - order.sessions_used - pending),
        'completed': order.completed,
    }
