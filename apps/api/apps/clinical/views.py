"""
Clinical viewsets: patients, medical orders, appointments, history entries.

Views are thin: they validate the payload, call one engine operation and
serialize the result. Engine errors are translated in EngineErrorMixin.
"""
from django.core.exceptions import ObjectDoesNotExist
from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response

from apps.clinical.exceptions import EngineStateError, SessionEngineError, StaleRecordError
from apps.clinical.models import Appointment, MedicalHistoryEntry, MedicalOrder, Patient
from apps.clinical.permissions import (
    AppointmentPermission,
    IsClinicalStaff,
    MedicalOrderPermission,
    PatientPermission,
)
from apps.clinical.serializers import (
    AppointmentBookingSerializer,
    AppointmentSerializer,
    AppointmentSeriesSerializer,
    AppointmentStatusHistorySerializer,
    AppointmentUpdateSerializer,
    DischargeRequestSerializer,
    FinalSummaryRequestSerializer,
    MedicalHistoryEntrySerializer,
    MedicalOrderSerializer,
    NoShowRequestSerializer,
    NoShowResetSerializer,
    PardonRequestSerializer,
    PatientSerializer,
    ReassignOrderRequestSerializer,
    RescheduleRequestSerializer,
    TransitionRequestSerializer,
    UndoRequestSerializer,
    UnifiedMedicalHistorySerializer,
)
from apps.clinical.services import (
    book_appointment,
    book_appointment_series,
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    mark_attended,
    revert_attendance,
    update_appointment_details,
)
from apps.clinical.services_corrections import reassign_appointment_order, undo_last_status_change
from apps.clinical.services_discharge import discharge_early
from apps.clinical.services_history import (
    can_finalize_history,
    save_final_summary,
    update_history_entry,
)
from apps.clinical.services_noshow import (
    count_no_shows,
    has_no_show_alert,
    pardon_no_shows,
    reschedule_appointment,
    resolve_no_show,
)
from apps.clinical.services_sessions import get_order_session_info
from apps.core.observability import get_sanitized_logger

logger = get_sanitized_logger(__name__)


def engine_error_response(exc):
    """
    Map an engine error to an HTTP response.

    - EngineStateError, StaleRecordError -> 409
    - every other engine error (validation) -> 400
    """
    if isinstance(exc, (EngineStateError, StaleRecordError)):
        http_status = status.HTTP_409_CONFLICT
    else:
        http_status = status.HTTP_400_BAD_REQUEST
    return Response({'error': exc.messages[0], 'code': exc.code}, status=http_status)


class EngineErrorMixin:
    """Translate engine errors and missing rows raised by services."""

    def handle_exception(self, exc):
        if isinstance(exc, SessionEngineError):
            return engine_error_response(exc)
        if isinstance(exc, ObjectDoesNotExist):
            return Response(
                {'error': str(exc) or 'Not found', 'code': 'not_found'},
                status=status.HTTP_404_NOT_FOUND
            )
        return super().handle_exception(exc)


# ============================================================================
# Patients
# ============================================================================

class PatientViewSet(EngineErrorMixin, viewsets.ModelViewSet):
    """
    Endpoints:
    - GET/POST /api/v1/clinical/patients/
    - GET/PATCH /api/v1/clinical/patients/{id}/
    - GET /api/v1/clinical/patients/{id}/no-shows/
    - POST /api/v1/clinical/patients/{id}/pardon-no-shows/ (Admin, Reception)
    """
    serializer_class = PatientSerializer
    permission_classes = [PatientPermission]
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_queryset(self):
        queryset = Patient.objects.all()

        q = self.request.query_params.get('q')
        if q:
            queryset = queryset.filter(
                Q(first_name__icontains=q) | Q(last_name__icontains=q) | Q(document_number__icontains=q)
            )

        return queryset.order_by('last_name', 'first_name')

    @action(detail=True, methods=['get'], url_path='no-shows')
    def no_shows(self, request, pk=None):
        patient = self.get_object()
        return Response({
            'patient_id': str(patient.id),
            'no_show_count': count_no_shows(patient.id),
            'alert': has_no_show_alert(patient.id),
        })

    @action(detail=True, methods=['post'], url_path='pardon-no-shows')
    def pardon_no_shows(self, request, pk=None):
        patient = self.get_object()
        serializer = PardonRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reset = pardon_no_shows(
            patient.id,
            request.user,
            reason=serializer.validated_data['reason'] or None,
        )
        return Response(NoShowResetSerializer(reset).data, status=status.HTTP_201_CREATED)


# ============================================================================
# Medical orders
# ============================================================================

class MedicalOrderViewSet(EngineErrorMixin, viewsets.ModelViewSet):
    """
    Endpoints:
    - GET/POST /api/v1/clinical/medical-orders/
    - GET /api/v1/clinical/medical-orders/{id}/
    - GET /api/v1/clinical/medical-orders/{id}/session-info/
    - GET /api/v1/clinical/medical-orders/{id}/can-finalize/
    - POST /api/v1/clinical/medical-orders/{id}/final-summary/ (multipart allowed)
    - POST /api/v1/clinical/medical-orders/{id}/discharge/
    """
    serializer_class = MedicalOrderSerializer
    permission_classes = [MedicalOrderPermission]
    http_method_names = ['get', 'post', 'head', 'options']

    def get_queryset(self):
        queryset = MedicalOrder.objects.select_related('patient', 'doctor')

        patient_id = self.request.query_params.get('patient_id')
        if patient_id:
            queryset = queryset.filter(patient_id=patient_id)

        completed = self.request.query_params.get('completed')
        if completed is not None:
            queryset = queryset.filter(completed=completed.lower() == 'true')

        return queryset.order_by('-created_at')

    def perform_create(self, serializer):
        serializer.save(created_by=self.request.user)

    @action(detail=True, methods=['get'], url_path='session-info')
    def session_info(self, request, pk=None):
        return Response(get_order_session_info(self.get_object()))

    @action(detail=True, methods=['get'], url_path='can-finalize')
    def can_finalize(self, request, pk=None):
        order = self.get_object()
        return Response({
            'order_id': str(order.id),
            'can_finalize': can_finalize_history(order.id),
        })

    @action(
        detail=True,
        methods=['post'],
        url_path='final-summary',
        parser_classes=[JSONParser, MultiPartParser, FormParser],
    )
    def final_summary(self, request, pk=None):
        order = self.get_object()
        serializer = FinalSummaryRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        history = save_final_summary(
            order.id,
            serializer.summary_fields(),
            request.user,
            attachment=serializer.validated_data.get('attachment'),
        )
        return Response(UnifiedMedicalHistorySerializer(history).data)

    @action(detail=True, methods=['post'], url_path='discharge')
    def discharge(self, request, pk=None):
        order = self.get_object()
        serializer = DischargeRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        discharged = discharge_early(
            order.patient_id,
            order.id,
            serializer.validated_data['reason'],
            request.user,
        )
        order.refresh_from_db()
        return Response({
            'cancelled_appointments': discharged,
            'order': MedicalOrderSerializer(order).data,
        })


# ============================================================================
# Appointments
# ============================================================================

class AppointmentViewSet(EngineErrorMixin, viewsets.ReadOnlyModelViewSet):
    """
    Appointments are created by booking; details of a pending booking are
    edited with PATCH, everything else changes through actions.

    Endpoints:
    - GET /api/v1/clinical/appointments/
    - POST /api/v1/clinical/appointments/ (book one)
    - POST /api/v1/clinical/appointments/series/
    - PATCH /api/v1/clinical/appointments/{id}/ (date, time, doctor, duration, reason, notes)
    - POST /api/v1/clinical/appointments/{id}/confirm|attend|revert-attendance|complete|cancel/
    - POST /api/v1/clinical/appointments/{id}/no-show/
    - POST /api/v1/clinical/appointments/{id}/reschedule/
    - POST /api/v1/clinical/appointments/{id}/undo/ (Admin)
    - POST /api/v1/clinical/appointments/{id}/reassign-order/ (Admin)
    - GET /api/v1/clinical/appointments/{id}/history/
    """
    serializer_class = AppointmentSerializer
    permission_classes = [AppointmentPermission]

    def get_queryset(self):
        queryset = Appointment.objects.select_related('patient', 'doctor', 'medical_order')

        for param, lookup in (
            ('patient_id', 'patient_id'),
            ('doctor_id', 'doctor_id'),
            ('medical_order_id', 'medical_order_id'),
            ('status', 'status'),
            ('date_from', 'appointment_date__gte'),
            ('date_to', 'appointment_date__lte'),
        ):
            value = self.request.query_params.get(param)
            if value:
                queryset = queryset.filter(**{lookup: value})

        return queryset.order_by('-appointment_date', '-appointment_time')

    def create(self, request, *args, **kwargs):
        serializer = AppointmentBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        appointment = book_appointment(
            data['patient'],
            data['doctor'],
            data['appointment_date'],
            data['appointment_time'],
            request.user,
            medical_order=data.get('medical_order'),
            reason=data['reason'],
            notes=data['notes'],
            duration_minutes=data.get('duration_minutes'),
        )
        return Response(AppointmentSerializer(appointment).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, *args, **kwargs):
        """
        Request body (every field optional):
        {
            "appointment_date": "2025-03-10",
            "appointment_time": "10:30",
            "doctor": "<doctor id>",
            "notes": "Bring previous X-rays",
            "expected_version": 3
        }
        """
        appointment = self.get_object()
        serializer = AppointmentUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        expected_version = fields.pop('expected_version')

        appointment = update_appointment_details(
            appointment.id,
            request.user,
            expected_version=expected_version,
            **fields
        )
        return Response(AppointmentSerializer(appointment).data)

    @action(detail=False, methods=['post'], url_path='series')
    def series(self, request):
        serializer = AppointmentSeriesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        appointments = book_appointment_series(
            data['patient'],
            data['doctor'],
            data['slots'],
            data['medical_order'],
            request.user,
            reason=data['reason'],
        )
        return Response(
            AppointmentSerializer(appointments, many=True).data,
            status=status.HTTP_201_CREATED
        )

    def _transition(self, request, operation, with_reason=False):
        appointment = self.get_object()
        serializer = TransitionRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        kwargs = {'expected_version': serializer.validated_data['expected_version']}
        if with_reason:
            kwargs['reason'] = serializer.validated_data['reason']

        appointment = operation(appointment.id, request.user, **kwargs)
        return Response(AppointmentSerializer(appointment).data)

    @action(detail=True, methods=['post'], url_path='confirm')
    def confirm(self, request, pk=None):
        return self._transition(request, confirm_appointment)

    @action(detail=True, methods=['post'], url_path='attend')
    def attend(self, request, pk=None):
        return self._transition(request, mark_attended)

    @action(detail=True, methods=['post'], url_path='revert-attendance')
    def revert_attendance(self, request, pk=None):
        return self._transition(request, revert_attendance, with_reason=True)

    @action(detail=True, methods=['post'], url_path='complete')
    def complete(self, request, pk=None):
        return self._transition(request, complete_appointment)

    @action(detail=True, methods=['post'], url_path='cancel')
    def cancel(self, request, pk=None):
        return self._transition(request, cancel_appointment, with_reason=True)

    @action(detail=True, methods=['post'], url_path='no-show')
    def no_show(self, request, pk=None):
        """
        Request body:
        {
            "option": "reschedule" | "session_lost",
            "reason": "Did not answer the phone"
        }
        """
        appointment = self.get_object()
        serializer = NoShowRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        appointment = resolve_no_show(
            appointment.id,
            data['option'],
            request.user,
            reason=data['reason'] or None,
            expected_version=data['expected_version'],
        )
        return Response(AppointmentSerializer(appointment).data)

    @action(detail=True, methods=['post'], url_path='reschedule')
    def reschedule(self, request, pk=None):
        appointment = self.get_object()
        serializer = RescheduleRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        outcome = reschedule_appointment(
            appointment.id,
            data['new_date'],
            data['new_time'],
            request.user,
            data['reason'],
            new_doctor=data.get('new_doctor'),
            expected_version=data['expected_version'],
        )
        return Response(
            {
                'original': AppointmentSerializer(outcome.original).data,
                'replacement': AppointmentSerializer(outcome.replacement).data,
            },
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['post'], url_path='undo')
    def undo(self, request, pk=None):
        appointment = self.get_object()
        serializer = UndoRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        appointment = undo_last_status_change(
            appointment.id,
            request.user,
            serializer.validated_data['reason'],
        )
        return Response(AppointmentSerializer(appointment).data)

    @action(detail=True, methods=['post'], url_path='reassign-order')
    def reassign_order(self, request, pk=None):
        appointment = self.get_object()
        serializer = ReassignOrderRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        appointment = reassign_appointment_order(
            appointment.id,
            data['medical_order'].id,
            request.user,
            data['reason'],
        )
        return Response(AppointmentSerializer(appointment).data)

    @action(detail=True, methods=['get'], url_path='history')
    def history(self, request, pk=None):
        appointment = self.get_object()
        rows = appointment.status_history.order_by('changed_at')
        return Response(AppointmentStatusHistorySerializer(rows, many=True).data)


# ============================================================================
# History entries
# ============================================================================

class MedicalHistoryEntryViewSet(EngineErrorMixin, viewsets.ModelViewSet):
    """
    Endpoints:
    - GET /api/v1/clinical/history-entries/?patient_id=&medical_order_id=
    - GET/PATCH /api/v1/clinical/history-entries/{id}/ (observations, evolution)
    """
    serializer_class = MedicalHistoryEntrySerializer
    permission_classes = [IsClinicalStaff]
    http_method_names = ['get', 'patch', 'head', 'options']

    def get_queryset(self):
        queryset = MedicalHistoryEntry.objects.select_related('doctor', 'unified_history')

        patient_id = self.request.query_params.get('patient_id')
        if patient_id:
            queryset = queryset.filter(patient_id=patient_id)

        order_id = self.request.query_params.get('medical_order_id')
        if order_id:
            queryset = queryset.filter(unified_history__medical_order_id=order_id)

        return queryset.order_by('appointment_date', 'created_at')

    def partial_update(self, request, *args, **kwargs):
        entry = self.get_object()
        serializer = self.get_serializer(entry, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        entry = update_history_entry(
            entry.id,
            request.user,
            observations=serializer.validated_data.get('observations'),
            evolution=serializer.validated_data.get('evolution'),
        )
        return Response(self.get_serializer(entry).data)
