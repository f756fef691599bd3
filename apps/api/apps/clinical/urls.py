"""
Clinical URLs - Patients, Medical Orders, Appointments, History Entries
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    PatientViewSet,
    MedicalOrderViewSet,
    AppointmentViewSet,
    MedicalHistoryEntryViewSet,
)

router = DefaultRouter()
router.register(r'patients', PatientViewSet, basename='patient')
router.register(r'medical-orders', MedicalOrderViewSet, basename='medical-order')
router.register(r'appointments', AppointmentViewSet, basename='appointment')
router.register(r'history-entries', MedicalHistoryEntryViewSet, basename='history-entry')

urlpatterns = [
    path('', include(router.urls)),
]
