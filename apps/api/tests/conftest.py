"""
Global test fixtures for pytest.

Provides reusable fixtures for API and engine testing:
- Authenticated API clients by role
- Model instances (Patient, Doctor, MedicalOrder, Appointment)
"""
from datetime import time, timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from apps.authz.models import User, Role, UserRole, Doctor, RoleChoices
from apps.clinical.models import Patient, MedicalOrder, Appointment


def _user_with_role(email, role_name, **extra):
    user = User.objects.create_user(
        email=email,
        password='testpass123',
        is_active=True,
        **extra
    )
    role, _ = Role.objects.get_or_create(name=role_name)
    UserRole.objects.create(user=user, role=role)
    return user


def _client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


# ============================================================================
# Users
# ============================================================================

@pytest.fixture
def admin_user(db):
    return _user_with_role('admin@test.com', RoleChoices.ADMIN, is_staff=True, is_superuser=True)


@pytest.fixture
def doctor_user(db):
    return _user_with_role(
        'doctor@test.com', RoleChoices.DOCTOR, first_name='Ana', last_name='Rivas'
    )


@pytest.fixture
def reception_user(db):
    return _user_with_role('reception@test.com', RoleChoices.RECEPTION)


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def admin_client(admin_user):
    return _client_for(admin_user)


@pytest.fixture
def doctor_client(doctor_user):
    return _client_for(doctor_user)


@pytest.fixture
def reception_client(reception_user):
    """Reception books and moves appointments but has no clinical access."""
    return _client_for(reception_user)


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def doctor(doctor_user):
    return Doctor.objects.create(
        user=doctor_user,
        display_name='Dr. Ana Rivas',
        specialty='Kinesiology',
        license_number='MN-1234',
    )


@pytest.fixture
def other_doctor(db):
    user = _user_with_role('doctor2@test.com', RoleChoices.DOCTOR)
    return Doctor.objects.create(user=user, display_name='Dr. Luis Paz')


@pytest.fixture
def patient(db):
    return Patient.objects.create(
        first_name='John',
        last_name='Doe',
        document_number='30111222',
        phone='+5491100000000',
    )


@pytest.fixture
def other_patient(db):
    return Patient.objects.create(first_name='Jane', last_name='Roe')


@pytest.fixture
def order_factory(db, patient, doctor):
    """
    Usage:
        order = order_factory(total_sessions=10, sessions_used=3)
    """
    def _create_order(**kwargs):
        defaults = {
            'patient': patient,
            'doctor': doctor,
            'description': 'Lumbar rehabilitation',
            'total_sessions': 5,
        }
        defaults.update(kwargs)
        return MedicalOrder.objects.create(**defaults)

    return _create_order


@pytest.fixture
def medical_order(order_factory):
    """Open order with 5 sessions, none used."""
    return order_factory()


@pytest.fixture
def slot_date():
    """A date one week ahead, so appointments count as upcoming."""
    return timezone.localdate() + timedelta(days=7)


@pytest.fixture
def appointment_factory(db, patient, doctor, slot_date):
    """
    Creates appointments directly, bypassing booking guards.

    Usage:
        apt = appointment_factory(status='confirmed', medical_order=order)
    """
    created = []

    def _create_appointment(**kwargs):
        defaults = {
            'patient': patient,
            'doctor': doctor,
            'appointment_date': slot_date,
            'appointment_time': time(9 + len(created) % 8, 0),
            'status': 'scheduled',
        }
        defaults.update(kwargs)
        appointment = Appointment.objects.create(**defaults)
        created.append(appointment)
        return appointment

    return _create_appointment
