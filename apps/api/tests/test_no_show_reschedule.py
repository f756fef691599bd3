"""
Tests for no-show resolution and rescheduling.
"""
from datetime import time, timedelta

import pytest

from apps.clinical.exceptions import (
    InvalidNoShowOption,
    InvalidTransition,
    ReasonTooShort,
    SessionsExhausted,
    SlotSaturated,
)
from apps.clinical.models import Appointment, AppointmentStatusChoices as S, Patient
from apps.clinical.services import mark_attended
from apps.clinical.services_noshow import reschedule_appointment, resolve_no_show
from apps.clinical.services_sessions import get_order_session_info


# ============================================================================
# No-show options
# ============================================================================

@pytest.mark.django_db
class TestResolveNoShow:

    def test_reschedule_option_keeps_the_session(self, appointment_factory, medical_order, reception_user):
        appointment = appointment_factory(medical_order=medical_order)

        resolve_no_show(appointment.id, 'reschedule', reception_user, reason='Bus strike')

        appointment.refresh_from_db()
        medical_order.refresh_from_db()
        assert appointment.status == S.NO_SHOW_RESCHEDULED
        assert appointment.no_show_reason == 'Bus strike'
        assert appointment.session_deducted is False
        assert medical_order.sessions_used == 0

    def test_session_lost_debits_exactly_one_session(
        self, appointment_factory, medical_order, reception_user
    ):
        appointment = appointment_factory(medical_order=medical_order, status='confirmed')

        resolve_no_show(appointment.id, 'session_lost', reception_user)

        appointment.refresh_from_db()
        medical_order.refresh_from_db()
        assert appointment.status == S.NO_SHOW_SESSION_LOST
        assert appointment.session_deducted is True
        assert appointment.session_order_id == medical_order.id
        assert medical_order.sessions_used == 1

    def test_session_lost_falls_back_to_latest_open_order(
        self, appointment_factory, order_factory, reception_user
    ):
        closed = order_factory(total_sessions=2, sessions_used=2, completed=True)
        order_factory(total_sessions=4)
        latest = order_factory(total_sessions=6)
        appointment = appointment_factory(medical_order=closed)

        resolve_no_show(appointment.id, 'session_lost', reception_user)

        latest.refresh_from_db()
        closed.refresh_from_db()
        appointment.refresh_from_db()
        assert latest.sessions_used == 1
        assert closed.sessions_used == 2
        assert appointment.session_order_id == latest.id

    def test_session_lost_without_open_order_skips_debit(self, appointment_factory, reception_user):
        appointment = appointment_factory()

        resolve_no_show(appointment.id, 'session_lost', reception_user)

        appointment.refresh_from_db()
        assert appointment.status == S.NO_SHOW_SESSION_LOST
        assert appointment.session_deducted is True
        assert appointment.session_order is None

    def test_unknown_option_is_rejected(self, appointment_factory, reception_user):
        appointment = appointment_factory()

        with pytest.raises(InvalidNoShowOption) as exc_info:
            resolve_no_show(appointment.id, 'forgive', reception_user)

        assert exc_info.value.code == 'invalid_no_show_option'
        appointment.refresh_from_db()
        assert appointment.status == S.SCHEDULED

    def test_no_show_after_attendance_is_rejected(self, appointment_factory, reception_user):
        appointment = appointment_factory(status='in_progress')

        with pytest.raises(InvalidTransition):
            resolve_no_show(appointment.id, 'session_lost', reception_user)


# ============================================================================
# Reschedule
# ============================================================================

@pytest.mark.django_db
class TestReschedule:

    def test_reschedule_links_both_appointments(
        self, appointment_factory, medical_order, reception_user, slot_date
    ):
        original = appointment_factory(
            medical_order=medical_order,
            reason='Shoulder rehab',
            duration_minutes=45,
        )
        new_date = slot_date + timedelta(days=1)

        outcome = reschedule_appointment(
            original.id, new_date, time(15, 0), reception_user, '  Patient travel  '
        )

        original.refresh_from_db()
        replacement = Appointment.objects.get(pk=outcome.replacement.id)
        assert original.status == S.RESCHEDULED
        assert original.rescheduled_to == replacement
        assert replacement.rescheduled_from == original
        assert replacement.status == S.SCHEDULED
        assert replacement.appointment_date == new_date
        assert replacement.appointment_time == time(15, 0)
        assert replacement.patient_id == original.patient_id
        assert replacement.doctor_id == original.doctor_id
        assert replacement.medical_order == medical_order
        assert replacement.reason == 'Shoulder rehab'
        assert replacement.duration_minutes == 45
        assert replacement.reschedule_reason == 'Patient travel'
        assert replacement.rescheduled_by == reception_user
        assert original.rescheduled_by == reception_user
        assert original.rescheduled_at is not None

    def test_reschedule_never_consumes_sessions(
        self, appointment_factory, medical_order, reception_user, slot_date
    ):
        original = appointment_factory(medical_order=medical_order)

        reschedule_appointment(original.id, slot_date, time(18, 0), reception_user, 'Work meeting')

        medical_order.refresh_from_db()
        assert medical_order.sessions_used == 0

    def test_reschedule_to_other_doctor(
        self, appointment_factory, other_doctor, reception_user, slot_date
    ):
        original = appointment_factory()

        outcome = reschedule_appointment(
            original.id, slot_date, time(9, 0), reception_user, 'Doctor on leave',
            new_doctor=other_doctor,
        )

        assert outcome.replacement.doctor == other_doctor

    def test_reschedule_after_no_show(self, appointment_factory, reception_user, slot_date):
        original = appointment_factory()
        resolve_no_show(original.id, 'reschedule', reception_user)

        outcome = reschedule_appointment(original.id, slot_date, time(17, 0), reception_user, 'Missed bus')

        assert outcome.original.status == S.RESCHEDULED

    def test_second_reschedule_of_same_original_fails(self, appointment_factory, reception_user, slot_date):
        original = appointment_factory()
        reschedule_appointment(original.id, slot_date, time(17, 0), reception_user, 'First move')

        with pytest.raises(InvalidTransition):
            reschedule_appointment(original.id, slot_date, time(18, 0), reception_user, 'Second move')

        assert Appointment.objects.count() == 2

    def test_short_reason_is_rejected(self, appointment_factory, reception_user, slot_date):
        original = appointment_factory()

        with pytest.raises(ReasonTooShort):
            reschedule_appointment(original.id, slot_date, time(17, 0), reception_user, ' abc  ')

        original.refresh_from_db()
        assert original.status == S.SCHEDULED
        assert Appointment.objects.count() == 1

    def test_session_lost_cannot_be_rescheduled(self, appointment_factory, reception_user, slot_date):
        original = appointment_factory(status='no_show_session_lost')

        with pytest.raises(InvalidTransition):
            reschedule_appointment(original.id, slot_date, time(17, 0), reception_user, 'Another try')

    def test_target_slot_guards_apply(self, appointment_factory, doctor, reception_user, slot_date):
        original = appointment_factory(appointment_time=time(9, 0))
        for index in range(3):
            Appointment.objects.create(
                patient=Patient.objects.create(first_name=f'P{index}', last_name='Busy'),
                doctor=doctor,
                appointment_date=slot_date,
                appointment_time=time(12, 0),
            )

        with pytest.raises(SlotSaturated):
            reschedule_appointment(original.id, slot_date, time(12, 0), reception_user, 'Prefers noon')

        original.refresh_from_db()
        assert original.status == S.SCHEDULED

    def test_original_does_not_block_its_own_slot(self, appointment_factory, reception_user, slot_date):
        original = appointment_factory(appointment_time=time(9, 0))

        outcome = reschedule_appointment(
            original.id, slot_date, time(9, 0), reception_user, 'Same slot, new booking'
        )

        assert outcome.replacement.appointment_time == time(9, 0)

    def test_no_show_original_cannot_overbook_its_order(
        self, appointment_factory, order_factory, reception_user, slot_date
    ):
        order = order_factory(total_sessions=2)
        missed = appointment_factory(medical_order=order)
        appointment_factory(medical_order=order)
        resolve_no_show(missed.id, 'reschedule', reception_user, reason='Flat tyre')
        # The freed place is taken by a new booking
        appointment_factory(medical_order=order)

        with pytest.raises(SessionsExhausted):
            reschedule_appointment(missed.id, slot_date, time(18, 0), reception_user, 'Missed bus')

        missed.refresh_from_db()
        assert missed.status == S.NO_SHOW_RESCHEDULED
        info = get_order_session_info(order)
        assert info['pending_appointments'] == 2
        assert info['sessions_remaining'] == 0

    def test_no_show_original_reschedules_into_free_place(
        self, appointment_factory, order_factory, reception_user, doctor_user, slot_date
    ):
        order = order_factory(total_sessions=2)
        missed = appointment_factory(medical_order=order)
        other = appointment_factory(medical_order=order)
        resolve_no_show(missed.id, 'reschedule', reception_user, reason='Flat tyre')

        outcome = reschedule_appointment(
            missed.id, slot_date, time(18, 0), reception_user, 'Missed bus'
        )
        mark_attended(other.id, doctor_user)
        mark_attended(outcome.replacement.id, doctor_user)

        order.refresh_from_db()
        assert order.sessions_used == 2
        assert order.completed
