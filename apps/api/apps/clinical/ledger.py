"""
Ledger store: the persistence boundary used by the session engine.

All methods expect to run inside transaction.atomic(). Reads lock rows
with select_for_update(); writes are compare-and-swap on row_version so a
lost update surfaces as StaleRecordError instead of silently overwriting.
"""
from django.db.models import F
from django.utils import timezone

from apps.clinical.exceptions import StaleRecordError
from apps.clinical.models import (
    Appointment,
    AppointmentStatusHistory,
    MedicalHistoryEntry,
    MedicalOrder,
    NoShowReset,
    UnifiedMedicalHistory,
)
from apps.core.observability import metrics
from apps.core.observability.events import log_stale_record


class LedgerStore:
    """
    Django ORM implementation of the engine's persistence interface.

    Stateless; services use the module-level `ledger` instance.
    """

    # =========================================================================
    # Medical orders
    # =========================================================================

    def get_order(self, order_id, lock=True):
        """
        Fetch a medical order, locking its row by default.

        Raises:
            MedicalOrder.DoesNotExist
        """
        queryset = MedicalOrder.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        return queryset.get(pk=order_id)

    def update_order(self, order, expected_version=None, **patch):
        return self._compare_and_swap(order, expected_version, patch)

    def query_orders(self, **filters):
        return MedicalOrder.objects.filter(**filters)

    # =========================================================================
    # Appointments
    # =========================================================================

    def get_appointment(self, appointment_id, lock=True):
        """
        Fetch an appointment, locking its row by default.

        Raises:
            Appointment.DoesNotExist
        """
        queryset = Appointment.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        return queryset.get(pk=appointment_id)

    def update_appointment(self, appointment, expected_version=None, **patch):
        return self._compare_and_swap(appointment, expected_version, patch)

    def insert_appointment(self, **record):
        return Appointment.objects.create(**record)

    def query_appointments(self, **filters):
        return Appointment.objects.filter(**filters)

    # =========================================================================
    # History
    # =========================================================================

    def insert_history_entry(self, **record):
        return MedicalHistoryEntry.objects.create(**record)

    def get_unified_history(self, order):
        history, _ = UnifiedMedicalHistory.objects.select_for_update().get_or_create(
            medical_order=order,
            defaults={'patient_id': order.patient_id, 'template_data': {}},
        )
        return history

    def upsert_unified_history(self, order, patch, **fields):
        """
        Create the order's unified history if absent, then shallow-merge
        `patch` into template_data. Extra model fields go in **fields.
        """
        history = self.get_unified_history(order)
        template_data = dict(history.template_data or {})
        template_data.update(patch)
        return self._compare_and_swap(history, None, {'template_data': template_data, **fields})

    def insert_no_show_reset(self, **record):
        return NoShowReset.objects.create(**record)

    def insert_status_history(self, appointment, old_status, new_status, actor,
                              action_type, reason=None):
        return AppointmentStatusHistory.objects.create(
            appointment=appointment,
            old_status=old_status,
            new_status=new_status,
            action_type=action_type,
            reason=reason,
            changed_by=actor,
            changed_at=timezone.now(),
        )

    # =========================================================================
    # Optimistic locking
    # =========================================================================

    def ensure_version(self, instance, expected_version):
        """
        Fail early when a client's copy is older than the locked row.

        Lets an operation report the lost update before it validates state
        the client never saw. No-op when expected_version is None.
        """
        if expected_version is not None and int(expected_version) != instance.row_version:
            self._stale(type(instance), instance.pk, int(expected_version))

    def _stale(self, model, pk, version):
        metrics.stale_record_conflicts_total.labels(model=model.__name__).inc()
        log_stale_record(model.__name__, pk, version)
        raise StaleRecordError(
            f'{model._meta.verbose_name} {pk} was modified concurrently '
            f'(expected version {version})'
        )

    def _compare_and_swap(self, instance, expected_version, patch):
        """
        UPDATE ... WHERE id = ? AND row_version = ?, then refresh instance.

        expected_version defaults to the version the instance was loaded
        with. A caller holding an older copy (e.g. an edit form) passes
        the version it saw.
        """
        model = type(instance)
        version = instance.row_version if expected_version is None else int(expected_version)

        values = dict(patch)
        values['row_version'] = F('row_version') + 1
        if any(f.name == 'updated_at' for f in model._meta.fields):
            values['updated_at'] = timezone.now()

        updated = model.objects.filter(pk=instance.pk, row_version=version).update(**values)
        if updated != 1:
            self._stale(model, instance.pk, version)

        for field_name, value in patch.items():
            setattr(instance, field_name, value)
        instance.row_version = version + 1
        return instance


ledger = LedgerStore()
