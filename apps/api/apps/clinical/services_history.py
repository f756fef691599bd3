"""
Medical history compiler.

Builds the per-session clinical entries and the final summary of a
treatment. The final summary is gated on the session pool being done.
"""
from django.db import transaction
from django.utils import timezone

from apps.clinical.exceptions import SessionsIncomplete
from apps.clinical.instrumentation import engine_operation
from apps.clinical.ledger import ledger
from apps.clinical.models import ATTENDED_STATUSES, MedicalHistoryEntry
from apps.core.observability import metrics, log_domain_event, get_sanitized_logger

logger = get_sanitized_logger(__name__)

FINAL_SUMMARY_FIELDS = (
    'initial_assessment',
    'treatment_objectives',
    'sessions_summary',
    'patient_evolution',
    'final_recommendations',
    'treatment_outcome',
    'discharge_notes',
)

NO_OBSERVATIONS = 'No observations recorded'
NO_EVOLUTION = 'No evolution recorded'


# ============================================================================
# Per-session entries
# ============================================================================

def record_history_entry(appointment, actor):
    """
    Get or create the history entry for an attended appointment.

    The entry hangs off the unified history of the appointment's medical
    order when it has one. Must run inside the caller's transaction.

    Returns:
        tuple: (MedicalHistoryEntry, created)
    """
    existing = MedicalHistoryEntry.objects.filter(appointment=appointment).first()
    if existing:
        return existing, False

    unified_history = None
    if appointment.medical_order_id:
        unified_history = ledger.get_unified_history(appointment.medical_order)

    doctor = appointment.doctor
    entry = ledger.insert_history_entry(
        unified_history=unified_history,
        appointment=appointment,
        patient_id=appointment.patient_id,
        doctor=doctor,
        professional_name=doctor.display_name,
        appointment_date=appointment.appointment_date,
    )
    logger.info(
        'History entry created',
        extra={
            'event': 'history_entry_created',
            'entry_id': str(entry.id),
            'appointment_id': str(appointment.id),
            'actor_id': str(actor.id),
        }
    )
    return entry, True


def append_entry_note(entry, note):
    """Append a line to an entry's notes without touching the clinical text."""
    entry.notes = f'{entry.notes}\n{note}' if entry.notes else note
    entry.save(update_fields=['notes', 'updated_at'])
    return entry


@engine_operation('update_history_entry')
@transaction.atomic
def update_history_entry(entry_id, actor, observations=None, evolution=None):
    """
    Update the clinical text of one session entry.

    Only the fields passed (not None) are changed.
    """
    entry = MedicalHistoryEntry.objects.select_for_update().get(pk=entry_id)

    update_fields = ['updated_at']
    if observations is not None:
        entry.observations = observations
        update_fields.append('observations')
    if evolution is not None:
        entry.evolution = evolution
        update_fields.append('evolution')

    entry.save(update_fields=update_fields)
    log_domain_event(
        'history_entry_updated',
        entity_type='MedicalHistoryEntry',
        entity_id=str(entry.id),
        actor_id=str(actor.id),
        fields=update_fields[1:],
    )
    return entry


# ============================================================================
# Finalization
# ============================================================================

def can_finalize_history(order_id):
    """
    True when the patient has attended as many sessions as the order grants,
    or the order is already completed.
    """
    order = ledger.get_order(order_id, lock=False)
    if order.completed:
        return True

    attended = ledger.query_appointments(
        patient_id=order.patient_id,
        status__in=ATTENDED_STATUSES,
    ).count()
    return attended >= order.total_sessions


def generate_sessions_summary_text(entries):
    """
    Render session entries as a chronological plain-text summary.

    Entries are ordered by (appointment_date, id) so the output depends only
    on the set of entries, not on the order they were passed in.

    Example block:
        Session 1 (05/03/2025):
        Observations: Reduced pain on flexion
        Evolution: Good
    """
    ordered = sorted(entries, key=lambda e: (e.appointment_date, str(e.id)))

    blocks = []
    for number, entry in enumerate(ordered, start=1):
        blocks.append(
            f'Session {number} ({entry.appointment_date.strftime("%d/%m/%Y")}):\n'
            f'Observations: {entry.observations or NO_OBSERVATIONS}\n'
            f'Evolution: {entry.evolution or NO_EVOLUTION}\n'
        )
    return '\n'.join(blocks)


@engine_operation('save_final_summary')
@transaction.atomic
def save_final_summary(order_id, summary_fields, actor, attachment=None):
    """
    Persist the final clinical summary and close the order.

    Args:
        order_id: MedicalOrder id
        summary_fields: dict; keys outside FINAL_SUMMARY_FIELDS are dropped.
            sessions_summary defaults to the generated sessions text.
        actor: User saving the summary
        attachment: Optional uploaded file stored on the unified history

    Returns:
        UnifiedMedicalHistory

    Raises:
        SessionsIncomplete: If can_finalize_history() is False
    """
    order = ledger.get_order(order_id)

    if not can_finalize_history(order.id):
        raise SessionsIncomplete(
            f'Medical order {order.id} has {order.sessions_used}/{order.total_sessions} sessions; '
            f'the final summary requires all sessions to be attended'
        )

    summary = {
        field: summary_fields.get(field) or ''
        for field in FINAL_SUMMARY_FIELDS
    }
    history = ledger.get_unified_history(order)
    if not summary['sessions_summary']:
        summary['sessions_summary'] = generate_sessions_summary_text(history.entries.all())

    now = timezone.now()
    extra_fields = {}
    if attachment is not None:
        stored_name = history.final_summary_file.storage.save(
            history.final_summary_file.field.generate_filename(history, attachment.name),
            attachment,
        )
        extra_fields['final_summary_file'] = stored_name

    history = ledger.upsert_unified_history(
        order,
        {
            'final_summary': summary,
            'completed_at': now.isoformat(),
            'total_sessions_completed': order.sessions_used,
        },
        **extra_fields
    )

    if not order.completed:
        ledger.update_order(order, completed=True, completed_at=order.completed_at or now)
        metrics.orders_completed_total.labels(reason='final_summary').inc()

    log_domain_event(
        'final_summary_saved',
        entity_type='UnifiedMedicalHistory',
        entity_id=str(history.id),
        entity_ids={'order_id': str(order.id), 'patient_id': str(order.patient_id)},
        actor_id=str(actor.id),
        has_attachment=attachment is not None,
    )
    return history
