"""
Tests for the ledger store (row_version compare-and-swap, history merge).
"""
import pytest
from prometheus_client import REGISTRY

from apps.clinical.exceptions import StaleRecordError
from apps.clinical.ledger import ledger
from apps.clinical.models import MedicalOrder


@pytest.mark.django_db
class TestCompareAndSwap:

    def test_update_bumps_version_and_refreshes_instance(self, medical_order):
        ledger.update_order(medical_order, description='Cervical rehabilitation')

        assert medical_order.row_version == 2
        assert medical_order.description == 'Cervical rehabilitation'
        stored = MedicalOrder.objects.get(pk=medical_order.pk)
        assert stored.row_version == 2
        assert stored.description == 'Cervical rehabilitation'

    def test_lost_update_is_detected(self, medical_order):
        stale_copy = MedicalOrder.objects.get(pk=medical_order.pk)
        ledger.update_order(medical_order, description='First writer')

        before = REGISTRY.get_sample_value(
            'stale_record_conflicts_total', {'model': 'MedicalOrder'}
        ) or 0

        with pytest.raises(StaleRecordError):
            ledger.update_order(stale_copy, description='Second writer')

        after = REGISTRY.get_sample_value('stale_record_conflicts_total', {'model': 'MedicalOrder'})
        assert after == before + 1
        assert MedicalOrder.objects.get(pk=medical_order.pk).description == 'First writer'

    def test_explicit_expected_version(self, medical_order):
        with pytest.raises(StaleRecordError):
            ledger.update_order(medical_order, expected_version=7, description='Edited')


@pytest.mark.django_db
class TestUnifiedHistory:

    def test_upsert_creates_then_merges(self, medical_order):
        ledger.upsert_unified_history(medical_order, {'discharge_summary': {'reason': 'A'}})
        history = ledger.upsert_unified_history(medical_order, {'final_summary': {'treatment_outcome': 'B'}})

        assert history.template_data == {
            'discharge_summary': {'reason': 'A'},
            'final_summary': {'treatment_outcome': 'B'},
        }
        assert history.patient_id == medical_order.patient_id
        assert history.row_version == 3
