"""
Tests for no-show counting, alerts and pardons.
"""
import pytest
from django.core.exceptions import ValidationError

from apps.clinical.exceptions import NothingToPardon
from apps.clinical.models import Appointment, NoShowReset
from apps.clinical.services_noshow import count_no_shows, has_no_show_alert, pardon_no_shows


@pytest.fixture
def no_show_history(appointment_factory, order_factory):
    """Three no-shows of different kinds plus one attended appointment."""
    order = order_factory(total_sessions=10, sessions_used=1)
    return {
        'order': order,
        'appointments': [
            appointment_factory(status='no_show'),
            appointment_factory(status='no_show_rescheduled'),
            appointment_factory(status='no_show_session_lost', session_deducted=True, session_order=order),
            appointment_factory(status='completed'),
        ],
    }


@pytest.mark.django_db
class TestNoShowAlert:

    def test_count_includes_every_no_show_kind(self, patient, no_show_history):
        assert count_no_shows(patient.id) == 3

    def test_alert_threshold(self, patient, appointment_factory):
        assert has_no_show_alert(patient.id) is False

        appointment_factory(status='no_show_rescheduled')
        assert has_no_show_alert(patient.id) is False

        appointment_factory(status='no_show_session_lost')
        assert has_no_show_alert(patient.id) is True

    def test_pardoned_no_shows_do_not_count(self, patient, no_show_history, admin_user):
        pardon_no_shows(patient.id, admin_user)

        assert count_no_shows(patient.id) == 0
        assert has_no_show_alert(patient.id) is False


@pytest.mark.django_db
class TestPardon:

    def test_pardon_marks_appointments_and_writes_audit(self, patient, no_show_history, reception_user):
        reset = pardon_no_shows(patient.id, reception_user, reason='Family emergency')

        assert reset.appointments_affected == 3
        assert reset.reset_by == reception_user
        assert reset.reason == 'Family emergency'

        pardoned = Appointment.objects.filter(pardoned_by=reception_user)
        assert pardoned.count() == 3
        assert all(a.pardon_reason == 'Family emergency' for a in pardoned)
        assert all(a.pardoned_at is not None for a in pardoned)
        assert not Appointment.objects.filter(status='completed', pardoned_by__isnull=False).exists()

    def test_pardon_default_reason(self, patient, no_show_history, reception_user):
        reset = pardon_no_shows(patient.id, reception_user)

        assert reset.reason == 'No-show counter reset'

    def test_pardon_never_touches_sessions(self, patient, no_show_history, reception_user):
        order = no_show_history['order']

        pardon_no_shows(patient.id, reception_user)

        order.refresh_from_db()
        assert order.sessions_used == 1
        lost = Appointment.objects.get(status='no_show_session_lost')
        assert lost.session_deducted is True

    def test_second_pardon_has_nothing_to_pardon(self, patient, no_show_history, reception_user):
        pardon_no_shows(patient.id, reception_user)

        with pytest.raises(NothingToPardon):
            pardon_no_shows(patient.id, reception_user)

        assert NoShowReset.objects.count() == 1

    def test_pardon_is_per_patient(self, patient, other_patient, no_show_history, reception_user):
        with pytest.raises(NothingToPardon):
            pardon_no_shows(other_patient.id, reception_user)

        assert count_no_shows(patient.id) == 3

    def test_reset_records_are_immutable(self, patient, no_show_history, reception_user):
        reset = pardon_no_shows(patient.id, reception_user)
        reset.reason = 'Rewritten'

        with pytest.raises(ValidationError):
            reset.save()
