"""
Tests for booking guards.

Guard order:
1. selected order belongs to the patient, is open and has capacity
2. an order must be selected when the patient has an open one
3. duplicate booking (patient + doctor + date + time)
4. slot capacity (3 non-cancelled appointments per doctor slot)
"""
from datetime import time, timedelta

import pytest

from apps.clinical.exceptions import (
    AppointmentNotEditable,
    BookingValidationError,
    DuplicateBooking,
    InvalidOrderSelection,
    MedicalOrderRequired,
    SessionsExhausted,
    SlotSaturated,
    StaleRecordError,
)
from apps.clinical.models import Appointment, Patient
from apps.clinical.services import (
    book_appointment,
    book_appointment_series,
    confirm_appointment,
    update_appointment_details,
)

NINE = time(9, 0)


def _make_patient(index):
    return Patient.objects.create(first_name=f'Patient{index}', last_name='Slot')


@pytest.mark.django_db
class TestOrderSelection:

    def test_booking_without_any_order(self, patient, doctor, reception_user, slot_date):
        appointment = book_appointment(patient, doctor, slot_date, NINE, reception_user)

        assert appointment.status == 'scheduled'
        assert appointment.medical_order is None
        assert appointment.duration_minutes == 30
        assert appointment.created_by == reception_user

    def test_open_order_must_be_selected(self, patient, doctor, reception_user, slot_date, medical_order):
        with pytest.raises(MedicalOrderRequired):
            book_appointment(patient, doctor, slot_date, NINE, reception_user)

        assert not Appointment.objects.exists()

    def test_completed_order_does_not_require_selection(
        self, patient, doctor, reception_user, slot_date, order_factory
    ):
        order_factory(total_sessions=2, sessions_used=2, completed=True)

        appointment = book_appointment(patient, doctor, slot_date, NINE, reception_user)
        assert appointment.medical_order is None

    def test_booking_with_selected_order(self, patient, doctor, reception_user, slot_date, medical_order):
        appointment = book_appointment(
            patient, doctor, slot_date, NINE, reception_user,
            medical_order=medical_order,
            reason='Lumbar pain',
        )

        assert appointment.medical_order == medical_order
        assert appointment.session_deducted is False
        medical_order.refresh_from_db()
        assert medical_order.sessions_used == 0

    def test_order_of_another_patient_is_rejected(
        self, other_patient, doctor, reception_user, slot_date, medical_order
    ):
        with pytest.raises(InvalidOrderSelection):
            book_appointment(other_patient, doctor, slot_date, NINE, reception_user, medical_order=medical_order)

    def test_completed_order_is_rejected(self, patient, doctor, reception_user, slot_date, order_factory):
        order = order_factory(total_sessions=1, sessions_used=1, completed=True)

        with pytest.raises(InvalidOrderSelection):
            book_appointment(patient, doctor, slot_date, NINE, reception_user, medical_order=order)

    def test_pending_bookings_count_against_order(
        self, patient, doctor, reception_user, slot_date, order_factory
    ):
        order = order_factory(total_sessions=3, sessions_used=1)
        book_appointment(patient, doctor, slot_date, time(9, 0), reception_user, medical_order=order)
        book_appointment(patient, doctor, slot_date, time(10, 0), reception_user, medical_order=order)

        with pytest.raises(SessionsExhausted):
            book_appointment(patient, doctor, slot_date, time(11, 0), reception_user, medical_order=order)


@pytest.mark.django_db
class TestSlotGuards:

    def test_duplicate_booking_is_rejected(self, patient, doctor, reception_user, slot_date):
        book_appointment(patient, doctor, slot_date, NINE, reception_user)

        with pytest.raises(DuplicateBooking) as exc_info:
            book_appointment(patient, doctor, slot_date, NINE, reception_user)
        assert exc_info.value.code == 'duplicate_booking'

    def test_cancelled_appointment_frees_the_slot(
        self, patient, doctor, reception_user, slot_date, appointment_factory
    ):
        appointment_factory(appointment_time=NINE, status='cancelled')

        appointment = book_appointment(patient, doctor, slot_date, NINE, reception_user)
        assert appointment.status == 'scheduled'

    def test_same_time_with_other_doctor_is_not_duplicate(
        self, patient, doctor, other_doctor, reception_user, slot_date
    ):
        book_appointment(patient, doctor, slot_date, NINE, reception_user)
        appointment = book_appointment(patient, other_doctor, slot_date, NINE, reception_user)

        assert appointment.doctor == other_doctor

    def test_third_booking_fits_fourth_saturates(self, doctor, reception_user, slot_date):
        for index in range(3):
            book_appointment(_make_patient(index), doctor, slot_date, NINE, reception_user)

        with pytest.raises(SlotSaturated) as exc_info:
            book_appointment(_make_patient(3), doctor, slot_date, NINE, reception_user)

        assert exc_info.value.code == 'slot_saturated'
        assert Appointment.objects.filter(doctor=doctor).count() == 3

    def test_slot_capacity_is_configurable(self, doctor, reception_user, slot_date, settings):
        settings.CLINICAL_ENGINE = {'SLOT_CAPACITY': 1}
        book_appointment(_make_patient(0), doctor, slot_date, NINE, reception_user)

        with pytest.raises(SlotSaturated):
            book_appointment(_make_patient(1), doctor, slot_date, NINE, reception_user)

    def test_duplicate_is_reported_before_saturation(self, patient, doctor, reception_user, slot_date):
        book_appointment(patient, doctor, slot_date, NINE, reception_user)
        book_appointment(_make_patient(1), doctor, slot_date, NINE, reception_user)
        book_appointment(_make_patient(2), doctor, slot_date, NINE, reception_user)

        with pytest.raises(DuplicateBooking):
            book_appointment(patient, doctor, slot_date, NINE, reception_user)


@pytest.mark.django_db
class TestSeriesBooking:

    def _slots(self, start, count):
        return [(start + timedelta(days=i), NINE) for i in range(count)]

    def test_series_books_every_session(self, patient, doctor, reception_user, slot_date, medical_order):
        appointments = book_appointment_series(
            patient, doctor, self._slots(slot_date, 3), medical_order, reception_user,
            reason='Knee rehab',
        )

        assert [a.notes for a in appointments] == [
            'Session 1 of 3', 'Session 2 of 3', 'Session 3 of 3',
        ]
        assert all(a.medical_order == medical_order for a in appointments)
        assert all(a.reason == 'Knee rehab' for a in appointments)

    def test_series_larger_than_order_is_rejected(
        self, patient, doctor, reception_user, slot_date, order_factory
    ):
        order = order_factory(total_sessions=2)

        with pytest.raises(SessionsExhausted):
            book_appointment_series(patient, doctor, self._slots(slot_date, 3), order, reception_user)

        assert not Appointment.objects.exists()

    def test_series_is_all_or_nothing(
        self, patient, doctor, reception_user, slot_date, medical_order
    ):
        busy_day = slot_date + timedelta(days=2)
        for index in range(3):
            Appointment.objects.create(
                patient=_make_patient(index),
                doctor=doctor,
                appointment_date=busy_day,
                appointment_time=NINE,
            )

        with pytest.raises(SlotSaturated):
            book_appointment_series(patient, doctor, self._slots(slot_date, 4), medical_order, reception_user)

        assert not Appointment.objects.filter(patient=patient).exists()

    def test_series_size_limits(self, patient, doctor, reception_user, slot_date, order_factory):
        order = order_factory(total_sessions=30)

        with pytest.raises(BookingValidationError) as exc_info:
            book_appointment_series(patient, doctor, [], order, reception_user)
        assert exc_info.value.code == 'invalid_series_size'

        with pytest.raises(BookingValidationError):
            book_appointment_series(patient, doctor, self._slots(slot_date, 21), order, reception_user)

    def test_series_requires_an_order(self, patient, doctor, reception_user, slot_date):
        with pytest.raises(MedicalOrderRequired):
            book_appointment_series(patient, doctor, self._slots(slot_date, 2), None, reception_user)


# ============================================================================
# Edits
# ============================================================================

@pytest.mark.django_db
class TestAppointmentEdits:

    def test_edit_reruns_slot_capacity(self, doctor, reception_user, slot_date, appointment_factory):
        appointment = appointment_factory(appointment_time=time(8, 0))
        for index in range(3):
            Appointment.objects.create(
                patient=_make_patient(index),
                doctor=doctor,
                appointment_date=slot_date,
                appointment_time=NINE,
            )

        with pytest.raises(SlotSaturated):
            update_appointment_details(appointment.id, reception_user, appointment_time=NINE)

        appointment.refresh_from_db()
        assert appointment.appointment_time == time(8, 0)

    def test_appointment_keeps_its_own_slot(self, reception_user, appointment_factory):
        appointment = appointment_factory(appointment_time=NINE)

        update_appointment_details(
            appointment.id, reception_user, appointment_time=NINE, reason='Knee pain'
        )

        appointment.refresh_from_db()
        assert appointment.reason == 'Knee pain'
        assert appointment.row_version == 2

    def test_confirmed_appointment_can_be_edited(self, reception_user, appointment_factory, slot_date):
        appointment = appointment_factory()
        confirm_appointment(appointment.id, reception_user)
        new_date = slot_date + timedelta(days=3)

        update_appointment_details(appointment.id, reception_user, appointment_date=new_date)

        appointment.refresh_from_db()
        assert appointment.appointment_date == new_date
        assert appointment.status == 'confirmed'

    def test_finished_appointment_cannot_be_edited(self, reception_user, appointment_factory):
        appointment = appointment_factory(status='completed')

        with pytest.raises(AppointmentNotEditable):
            update_appointment_details(appointment.id, reception_user, notes='Too late')

    def test_stale_version_is_rejected_before_state_checks(self, reception_user, appointment_factory):
        appointment = appointment_factory(status='cancelled', row_version=4)

        with pytest.raises(StaleRecordError):
            update_appointment_details(
                appointment.id, reception_user, expected_version=3, notes='Old copy'
            )

    def test_status_cannot_be_edited(self, reception_user, appointment_factory):
        appointment = appointment_factory()

        with pytest.raises(BookingValidationError) as exc_info:
            update_appointment_details(appointment.id, reception_user, status='completed')
        assert exc_info.value.code == 'non_editable_field'
