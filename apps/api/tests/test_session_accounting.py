"""
Tests for session accounting on MedicalOrder.

Covers:
- consume_session: increments, completion at exhaustion, refusal when exhausted
- finalize_early: clamping and results note
- restore_session: correction path, re-opening orders
- get_order_session_info: pending-aware remaining sessions
"""
import pytest
from django.db import IntegrityError, transaction

from apps.clinical.exceptions import SessionsExhausted
from apps.clinical.models import MedicalOrder
from apps.clinical.services_sessions import (
    consume_session,
    finalize_early,
    get_order_session_info,
    restore_session,
)


@pytest.mark.django_db
class TestConsumeSession:

    def test_consume_increments_sessions_used(self, medical_order):
        order = consume_session(medical_order.id)

        assert order.sessions_used == 1
        assert order.completed is False
        medical_order.refresh_from_db()
        assert medical_order.sessions_used == 1
        assert medical_order.row_version == 2

    def test_last_session_completes_order(self, order_factory):
        order = order_factory(total_sessions=3, sessions_used=2)

        consume_session(order.id)

        order.refresh_from_db()
        assert order.sessions_used == 3
        assert order.completed is True
        assert order.completed_at is not None
        assert order.early_discharge is False

    def test_exhausted_order_rejects_consumption(self, order_factory):
        order = order_factory(total_sessions=2, sessions_used=2, completed=True)

        with pytest.raises(SessionsExhausted) as exc_info:
            consume_session(order.id)

        assert exc_info.value.code == 'sessions_exhausted'
        order.refresh_from_db()
        assert order.sessions_used == 2

    def test_consume_missing_order_raises_does_not_exist(self, db):
        with pytest.raises(MedicalOrder.DoesNotExist):
            consume_session('00000000-0000-0000-0000-000000000000')

    def test_pool_never_exceeds_total(self, order_factory):
        order = order_factory(total_sessions=2)

        consume_session(order.id)
        consume_session(order.id)
        with pytest.raises(SessionsExhausted):
            consume_session(order.id)

        order.refresh_from_db()
        assert order.sessions_used == order.total_sessions
        assert order.completed is True

    def test_database_rejects_used_above_total(self, order_factory):
        order = order_factory(total_sessions=2)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                MedicalOrder.objects.filter(pk=order.pk).update(sessions_used=3)


@pytest.mark.django_db
class TestFinalizeEarly:

    def test_finalize_early_keeps_used_and_appends_note(self, order_factory):
        order = order_factory(total_sessions=10, sessions_used=3, results='Initial evaluation done')

        finalize_early(order.id, 'Patient moved abroad', 3)

        order.refresh_from_db()
        assert order.completed is True
        assert order.early_discharge is True
        assert order.sessions_used == 3
        assert order.results == (
            'Initial evaluation done\n'
            'Early discharge: Patient moved abroad. Sessions completed: 3/10'
        )

    def test_finalize_early_clamps_actual_used(self, order_factory):
        order = order_factory(total_sessions=4, sessions_used=1)

        finalize_early(order.id, 'Pain resolved', 9)
        order.refresh_from_db()
        assert order.sessions_used == 4

        other = order_factory(total_sessions=4, sessions_used=1)
        finalize_early(other.id, 'Pain resolved', -2)
        other.refresh_from_db()
        assert other.sessions_used == 0


@pytest.mark.django_db
class TestRestoreSession:

    def test_restore_reopens_exhausted_order(self, order_factory):
        order = order_factory(total_sessions=2, sessions_used=2, completed=True)

        restore_session(order.id)

        order.refresh_from_db()
        assert order.sessions_used == 1
        assert order.completed is False
        assert order.completed_at is None

    def test_restore_keeps_early_discharged_order_closed(self, order_factory):
        order = order_factory(total_sessions=5, sessions_used=2, completed=True, early_discharge=True)

        restore_session(order.id)

        order.refresh_from_db()
        assert order.sessions_used == 1
        assert order.completed is True

    def test_restore_never_goes_below_zero(self, medical_order):
        restore_session(medical_order.id)

        medical_order.refresh_from_db()
        assert medical_order.sessions_used == 0


@pytest.mark.django_db
class TestOrderSessionInfo:

    def test_pending_appointments_reduce_remaining(self, order_factory, appointment_factory):
        order = order_factory(total_sessions=5, sessions_used=1)
        appointment_factory(medical_order=order, status='scheduled')
        appointment_factory(medical_order=order, status='confirmed')
        appointment_factory(medical_order=order, status='cancelled')
        appointment_factory(medical_order=order, status='confirmed', session_deducted=True)

        info = get_order_session_info(order)

        assert info['total_sessions'] == 5
        assert info['sessions_used'] == 1
        assert info['pending_appointments'] == 2
        assert info['sessions_remaining'] == 2
        assert info['completed'] is False

    def test_remaining_is_never_negative(self, order_factory, appointment_factory):
        order = order_factory(total_sessions=1)
        appointment_factory(medical_order=order)
        appointment_factory(medical_order=order)

        assert get_order_session_info(order)['sessions_remaining'] == 0
