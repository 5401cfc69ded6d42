"""
Unit tests for FinancialService.

payment_deficit = total - paid，按 deficit / name 排序，内存分页。
"""
import uuid
from decimal import Decimal

import pytest

from clinic.exceptions import NotFoundError, ValidationError
from clinic.services import ConsultationService, FinancialService
from clinic.services.financial import name_sort_key


@pytest.fixture
def service(storage):
    return FinancialService(storage)


def _history(storage, patient, paid, unpaid):
    """给患者造 paid 次已支付 + unpaid 次未支付的已结束问诊。"""
    consultations = ConsultationService(storage)
    for index in range(paid + unpaid):
        created = consultations.create_consultation(patient.id)
        if index < paid:
            consultations.pay_consultation(created.id)
        consultations.finalize_consultation(created.id)


class TestFinancialOverview:

    def test_empty_overview(self, service):
        page = service.get_financial_overview()

        assert page.items == []
        assert page.total_count == 0
        assert page.total_pages == 0
        assert page.has_next_page is False
        assert page.has_previous_page is False

    def test_default_sort_by_deficit_desc(self, service, storage, make_patient):
        low = make_patient(name='Baixo')
        high = make_patient(name='Alto')
        none = make_patient(name='Zero')
        _history(storage, low, paid=1, unpaid=1)
        _history(storage, high, paid=0, unpaid=3)
        _history(storage, none, paid=2, unpaid=0)

        page = service.get_financial_overview()

        assert [s.name for s in page.items] == ['Alto', 'Baixo', 'Zero']
        deficits = [s.payment_deficit for s in page.items]
        assert deficits == sorted(deficits, reverse=True)
        for summary in page.items:
            assert summary.payment_deficit == summary.total_consultations - summary.paid_consultations
            assert summary.has_payment_issues == (summary.payment_deficit > 0)

    def test_equal_deficits_keep_name_order(self, service, storage, make_patient):
        for name in ('Clara', 'Ana', 'Beatriz'):
            _history(storage, make_patient(name=name), paid=0, unpaid=1)

        page = service.get_financial_overview(sort_by='payment_deficit', sort_order='desc')

        assert [s.name for s in page.items] == ['Ana', 'Beatriz', 'Clara']

    def test_sort_by_name_is_accent_insensitive(self, service, make_patient):
        for name in ('Otávio', 'Élia', 'Bruno', 'Eduardo'):
            make_patient(name=name)

        page = service.get_financial_overview(sort_by='name', sort_order='asc')

        assert [s.name for s in page.items] == ['Bruno', 'Eduardo', 'Élia', 'Otávio']

    def test_pagination_in_memory(self, service, make_patient):
        for i in range(5):
            make_patient(name=f'Paciente {i}')

        page = service.get_financial_overview(page=2, limit=2, sort_by='name', sort_order='asc')

        assert [s.name for s in page.items] == ['Paciente 2', 'Paciente 3']
        assert page.total_pages == 3
        assert page.has_next_page is True
        assert page.has_previous_page is True

    def test_credits_and_price_exposed(self, service, make_patient):
        make_patient(credits=7, consultation_price=Decimal('220.00'))

        summary = service.get_financial_overview().items[0]

        assert summary.available_credits == 7
        assert summary.consultation_price == Decimal('220.00')

    def test_invalid_sort(self, service):
        with pytest.raises(ValidationError):
            service.get_financial_overview(sort_by='credits')


class TestFinancialQueries:

    def test_patient_financial_data(self, service, storage, make_patient):
        patient = make_patient()
        _history(storage, patient, paid=1, unpaid=2)

        summary = service.get_patient_financial_data(patient.id)

        assert summary.total_consultations == 3
        assert summary.paid_consultations == 1
        assert summary.payment_deficit == 2

    def test_patient_financial_data_unknown(self, service):
        with pytest.raises(NotFoundError):
            service.get_patient_financial_data(str(uuid.uuid4()))

    def test_stats_and_revenue(self, service, storage, make_patient):
        first = make_patient(credits=3, consultation_price=Decimal('100.00'))
        second = make_patient(credits=0, consultation_price=Decimal('150.00'))
        _history(storage, second, paid=1, unpaid=1)
        # 用 credit 自动支付：3 → 2
        ConsultationService(storage).create_consultation(first.id)

        stats = service.get_financial_stats()

        assert stats == {
            'total_patients': 2,
            'patients_with_payment_issues': 1,
            'total_unpaid_consultations': 1,
            'total_credits_in_system': 2,
        }
        assert service.get_total_revenue() == Decimal('250.00')

    def test_revenue_without_payments_is_zero(self, service):
        assert service.get_total_revenue() == Decimal('0')

    def test_search(self, service, make_patient):
        make_patient(name='Rafael Torres')

        assert [r['name'] for r in service.search_patients('Rafa')] == ['Rafael Torres']
        assert service.search_patients('R') == []


def test_name_sort_key_folds_case_and_accents():
    assert name_sort_key('Élia')[0] == name_sort_key('elia')[0]
    assert sorted(['b', 'A', 'á'], key=name_sort_key) == ['A', 'á', 'b']
