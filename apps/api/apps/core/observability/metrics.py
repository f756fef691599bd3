"""
Metrics instrumentation (Prometheus).

All application metrics are declared once on the global `metrics`
registry and exposed by MetricsView.
"""
import logging
import time
from functools import wraps

from django.http import HttpResponse
from django.views import View
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class MetricsRegistry:
    """
    Central metrics registry.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.http_requests_total = self._create_counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'status']
        )

        self.exceptions_total = self._create_counter(
            'exceptions_total',
            'Total exceptions',
            ['exception_type', 'location']
        )

        # ===================================================================
        # Appointment Metrics
        # ===================================================================
        self.appointment_bookings_total = self._create_counter(
            'appointment_bookings_total',
            'Appointment booking attempts',
            ['result']  # success, duplicate_booking, slot_saturated, ...
        )

        self.appointment_transitions_total = self._create_counter(
            'appointment_transitions_total',
            'Appointment status transitions',
            ['event', 'from_status', 'to_status']
        )

        self.appointment_reschedules_total = self._create_counter(
            'appointment_reschedules_total',
            'Appointments rescheduled',
            ['result']
        )

        self.appointment_undo_total = self._create_counter(
            'appointment_undo_total',
            'Status changes reverted by the correction tooling',
            ['reverted_status']
        )

        self.appointment_edits_total = self._create_counter(
            'appointment_edits_total',
            'Appointment detail edits',
            ['result']  # success, duplicate_booking, slot_saturated
        )

        self.appointment_reassignments_total = self._create_counter(
            'appointment_reassignments_total',
            'Attended appointments moved to another medical order'
        )

        # ===================================================================
        # Session Ledger Metrics
        # ===================================================================
        self.sessions_consumed_total = self._create_counter(
            'sessions_consumed_total',
            'Sessions deducted from medical orders',
            ['trigger']  # attendance, no_show
        )

        self.sessions_restored_total = self._create_counter(
            'sessions_restored_total',
            'Sessions given back by the correction tooling'
        )

        self.orders_completed_total = self._create_counter(
            'orders_completed_total',
            'Medical orders closed',
            ['reason']  # exhausted, early_discharge, final_summary
        )

        self.stale_record_conflicts_total = self._create_counter(
            'stale_record_conflicts_total',
            'Optimistic lock conflicts detected',
            ['model']
        )

        # ===================================================================
        # No-show / Discharge Metrics
        # ===================================================================
        self.no_show_resolutions_total = self._create_counter(
            'no_show_resolutions_total',
            'No-show resolutions',
            ['option', 'deducted']
        )

        self.no_show_pardons_total = self._create_counter(
            'no_show_pardons_total',
            'No-show pardon events'
        )

        self.no_show_pardoned_appointments_total = self._create_counter(
            'no_show_pardoned_appointments_total',
            'Appointments cleared by pardon events'
        )

        self.discharges_total = self._create_counter(
            'discharges_total',
            'Early discharges'
        )

        self.discharge_cancelled_appointments_total = self._create_counter(
            'discharge_cancelled_appointments_total',
            'Future appointments cancelled by early discharge'
        )

        # ===================================================================
        # Engine Errors and Durations
        # ===================================================================
        self.engine_errors_total = self._create_counter(
            'clinical_engine_errors_total',
            'Typed errors raised by the session engine',
            ['operation', 'error']
        )

        self.engine_operation_duration_seconds = self._create_histogram(
            'clinical_engine_operation_duration_seconds',
            'Duration of session engine operations',
            ['operation'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
        )

    def track_duration(self, operation):
        """
        Decorator to track the duration of an engine operation.

        Usage:
            @metrics.track_duration('consume_session')
            def consume_session(order_id):
                ...
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return func(*args, **kwargs)
                finally:
                    duration = time.time() - start_time
                    self.engine_operation_duration_seconds.labels(operation=operation).observe(duration)
            return wrapper
        return decorator


class MetricsView(View):
    """Prometheus exposition endpoint."""

    def get(self, request):
        return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)


# Global metrics instance
metrics = MetricsRegistry()
