"""
Tests for the medical history compiler.

Covers the sessions summary text, the finalization gate and the
final summary persistence.
"""
from datetime import date, time, timedelta

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from apps.clinical.exceptions import SessionsIncomplete
from apps.clinical.models import MedicalHistoryEntry, UnifiedMedicalHistory
from apps.clinical.services import mark_attended
from apps.clinical.services_history import (
    can_finalize_history,
    generate_sessions_summary_text,
    save_final_summary,
    update_history_entry,
)


# ============================================================================
# Summary text
# ============================================================================

class TestSessionsSummaryText:

    def _entry(self, entry_id, day, observations=None, evolution=None):
        return MedicalHistoryEntry(
            id=entry_id,
            appointment_date=day,
            observations=observations,
            evolution=evolution,
        )

    def test_renders_blocks_in_date_order(self):
        entries = [
            self._entry('00000000-0000-0000-0000-000000000002', date(2025, 3, 12), 'Less pain', 'Good'),
            self._entry('00000000-0000-0000-0000-000000000001', date(2025, 3, 5), 'Limited flexion', 'Fair'),
        ]

        text = generate_sessions_summary_text(entries)

        assert text == (
            'Session 1 (05/03/2025):\n'
            'Observations: Limited flexion\n'
            'Evolution: Fair\n'
            '\n'
            'Session 2 (12/03/2025):\n'
            'Observations: Less pain\n'
            'Evolution: Good\n'
        )

    def test_missing_text_uses_defaults(self):
        text = generate_sessions_summary_text([
            self._entry('00000000-0000-0000-0000-000000000001', date(2025, 1, 2)),
        ])

        assert 'Observations: No observations recorded\n' in text
        assert 'Evolution: No evolution recorded\n' in text

    def test_same_day_entries_are_ordered_by_id(self):
        day = date(2025, 6, 1)
        a = self._entry('00000000-0000-0000-0000-00000000000a', day, 'first')
        b = self._entry('00000000-0000-0000-0000-00000000000b', day, 'second')

        assert generate_sessions_summary_text([b, a]) == generate_sessions_summary_text([a, b])
        assert generate_sessions_summary_text([b, a]).index('first') < generate_sessions_summary_text([b, a]).index('second')

    def test_no_entries_renders_empty_text(self):
        assert generate_sessions_summary_text([]) == ''


# ============================================================================
# Finalization
# ============================================================================

@pytest.fixture
def four_of_five(order_factory, appointment_factory, slot_date):
    """Order with 5 sessions, 4 of them attended and completed."""
    order = order_factory(total_sessions=5, sessions_used=4)
    for index in range(4):
        appointment_factory(
            medical_order=order,
            status='completed',
            session_deducted=True,
            session_order=order,
            appointment_date=slot_date - timedelta(days=10 - index),
        )
    fifth = appointment_factory(medical_order=order, status='confirmed', appointment_time=time(18, 0))
    return order, fifth


@pytest.mark.django_db
class TestFinalSummary:

    def test_cannot_finalize_before_last_session(self, four_of_five, doctor_user):
        order, _ = four_of_five

        assert can_finalize_history(order.id) is False
        with pytest.raises(SessionsIncomplete):
            save_final_summary(order.id, {'treatment_outcome': 'Good'}, doctor_user)

        order.refresh_from_db()
        assert order.completed is False

    def test_finalize_after_last_attendance(self, four_of_five, doctor_user):
        order, fifth = four_of_five

        mark_attended(fifth.id, doctor_user)

        order.refresh_from_db()
        assert order.sessions_used == 5
        assert order.completed is True
        assert can_finalize_history(order.id) is True

        history = save_final_summary(
            order.id,
            {
                'initial_assessment': 'Lumbar pain 8/10',
                'treatment_outcome': 'Pain 2/10',
                'favourite_colour': 'blue',
            },
            doctor_user,
        )

        data = history.template_data
        assert data['total_sessions_completed'] == 5
        assert 'completed_at' in data
        summary = data['final_summary']
        assert summary['initial_assessment'] == 'Lumbar pain 8/10'
        assert summary['treatment_outcome'] == 'Pain 2/10'
        assert 'favourite_colour' not in summary
        assert summary['sessions_summary'].startswith('Session 1 (')

    def test_completed_order_can_always_be_finalized(self, order_factory, doctor_user):
        order = order_factory(total_sessions=8, sessions_used=2, completed=True, early_discharge=True)

        assert can_finalize_history(order.id) is True
        history = save_final_summary(order.id, {'discharge_notes': 'Early discharge'}, doctor_user)
        assert history.template_data['final_summary']['discharge_notes'] == 'Early discharge'

    def test_final_summary_keeps_discharge_summary(self, order_factory, doctor_user):
        order = order_factory(total_sessions=3, sessions_used=3, completed=True)
        UnifiedMedicalHistory.objects.create(
            patient=order.patient,
            medical_order=order,
            template_data={'discharge_summary': {'reason': 'Goals reached'}},
        )

        history = save_final_summary(order.id, {}, doctor_user)

        assert history.template_data['discharge_summary'] == {'reason': 'Goals reached'}
        assert 'final_summary' in history.template_data

    def test_final_summary_stores_attachment(self, order_factory, doctor_user, settings, tmp_path):
        settings.MEDIA_ROOT = tmp_path
        order = order_factory(total_sessions=1, sessions_used=1, completed=True)
        upload = SimpleUploadedFile('summary.pdf', b'%PDF-1.4 test', content_type='application/pdf')

        save_final_summary(order.id, {}, doctor_user, attachment=upload)

        history = UnifiedMedicalHistory.objects.get(medical_order=order)
        assert history.final_summary_file.name.startswith('final_summaries/')
        assert history.final_summary_file.name.endswith('.pdf')


@pytest.mark.django_db
class TestHistoryEntries:

    def test_update_only_given_fields(self, appointment_factory, doctor_user):
        appointment = appointment_factory()
        mark_attended(appointment.id, doctor_user)
        entry = MedicalHistoryEntry.objects.get(appointment=appointment)

        update_history_entry(entry.id, doctor_user, observations='Reduced swelling')
        update_history_entry(entry.id, doctor_user, evolution='Favourable')

        entry.refresh_from_db()
        assert entry.observations == 'Reduced swelling'
        assert entry.evolution == 'Favourable'
