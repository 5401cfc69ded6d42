"""
Unit tests for PatientService.

重点：
- 有问诊记录的患者不能删除，而且根本不会调用 storage 的 delete
- 出售 credits 的价格规则
- 列表排序 / 搜索 / 分页
"""
import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from clinic.exceptions import BusinessRuleViolation, NotFoundError, ValidationError
from clinic.services import ConsultationService, PatientService
from clinic.storage.types import PatientRecord
from tests.conftest import patient_data


@pytest.fixture
def service(storage):
    return PatientService(storage)


class TestPatientCrud:

    def test_create_and_get_round_trip(self, service):
        data = patient_data(
            name='Helena Costa',
            legal_guardian='Rita Costa',
            legal_guardian_email='rita@example.com',
            consultation_frequency='WEEKLY',
            consultation_day='MONDAY',
            credits=4,
        )

        created = service.create_patient(data)
        fetched = service.get_patient(created.id)

        for name, value in data.items():
            assert getattr(fetched, name) == value, name
        assert fetched.phone2 is None
        assert fetched.created_at is not None

    def test_get_unknown_raises(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.get_patient(str(uuid.uuid4()))

        assert exc_info.value.code == 'PATIENT_NOT_FOUND'

    def test_get_malformed_id_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            service.get_patient('not-a-uuid')

    def test_partial_update(self, service, make_patient):
        patient = make_patient(phone1='(11) 1111-1111')

        updated = service.update_patient(patient.id, {'phone1': '(11) 2222-2222'})

        assert updated.phone1 == '(11) 2222-2222'
        assert updated.name == patient.name

    def test_update_unknown_raises(self, service):
        with pytest.raises(NotFoundError):
            service.update_patient(str(uuid.uuid4()), {'name': 'X'})


class TestDeletePatient:

    def test_delete_without_consultations(self, service, storage, make_patient):
        patient = make_patient()

        service.delete_patient(patient.id)

        assert storage.patients.find_by_id(patient.id) is None

    def test_delete_with_consultations_rejected(self, service, storage, make_patient):
        patient = make_patient()
        ConsultationService(storage).create_consultation(patient.id)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.delete_patient(patient.id)

        assert exc_info.value.code == 'PATIENT_HAS_CONSULTATIONS'
        assert storage.patients.find_by_id(patient.id) is not None

    def test_delete_unknown_raises(self, service):
        with pytest.raises(NotFoundError):
            service.delete_patient(str(uuid.uuid4()))


class TestDeleteGuardNeverCallsDelete:
    """用假的 storage 断言 delete 原语没有被调用。"""

    def _storage(self, consultation_count):
        storage = MagicMock()
        storage.run_in_transaction.side_effect = lambda fn: fn(storage)
        storage.consultations.count.return_value = consultation_count
        storage.patients.delete.return_value = True
        return storage

    def test_guard_short_circuits(self):
        storage = self._storage(consultation_count=2)

        with pytest.raises(BusinessRuleViolation):
            PatientService(storage).delete_patient('p-1')

        storage.patients.delete.assert_not_called()

    def test_delete_called_when_no_consultations(self):
        storage = self._storage(consultation_count=0)

        PatientService(storage).delete_patient('p-1')

        storage.patients.delete.assert_called_once_with('p-1')


class TestListPatients:

    def test_sorted_by_name_with_active_flag(self, service, storage, make_patient):
        bruno = make_patient(name='Bruno')
        make_patient(name='Alice')
        make_patient(name='Carla')
        ConsultationService(storage).create_consultation(bruno.id)

        page = service.list_patients()

        assert [p.name for p in page.items] == ['Alice', 'Bruno', 'Carla']
        assert [p.has_active_consultation for p in page.items] == [False, True, False]

    def test_sort_by_age(self, service, make_patient):
        make_patient(name='Jovem', birth_date=date(2005, 1, 1))
        make_patient(name='Idoso', birth_date=date(1950, 1, 1))
        make_patient(name='Adulto', birth_date=date(1985, 1, 1))

        page = service.list_patients(sort_by='age', sort_order='desc')

        assert [p.name for p in page.items] == ['Idoso', 'Adulto', 'Jovem']

    def test_search_filters_by_name(self, service, make_patient):
        make_patient(name='Fernanda Alves')
        make_patient(name='Fernando Reis')
        make_patient(name='Paulo Nunes')

        page = service.list_patients(search='Fernand')

        assert page.total_count == 2

    def test_pagination_metadata(self, service, make_patient):
        for i in range(5):
            make_patient(name=f'Paciente {i}')

        page = service.list_patients(page=3, limit=2)

        assert page.total_count == 5
        assert page.total_pages == 3
        assert page.current_page == 3
        assert len(page.items) == 1
        assert page.has_next_page is False
        assert page.has_previous_page is True

    @pytest.mark.parametrize('page, limit', [(0, 10), (1, 0), (1, 101)])
    def test_invalid_pagination(self, service, page, limit):
        with pytest.raises(ValidationError) as exc_info:
            service.list_patients(page=page, limit=limit)

        assert exc_info.value.code == 'INVALID_PAGINATION'

    def test_invalid_sort(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.list_patients(sort_by='cpf')

        assert exc_info.value.code == 'INVALID_SORT'


class TestSearchAndStats:

    def test_short_query_returns_empty(self, service, make_patient):
        make_patient(name='Ana')

        assert service.search_patients('A') == []

    def test_search_respects_limit(self, service, make_patient):
        for i in range(4):
            make_patient(name=f'Silva {i}')

        results = service.search_patients('Silva', limit=2)

        assert len(results) == 2
        assert set(results[0]) == {'id', 'name'}

    def test_search_limit_out_of_range(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.search_patients('Silva', limit=51)

        assert exc_info.value.code == 'INVALID_SEARCH_LIMIT'

    def test_stats(self, service, storage, make_patient):
        with_credits = make_patient(credits=2)
        make_patient(credits=0)
        ConsultationService(storage).create_consultation(with_credits.id)

        stats = service.get_patient_stats()

        assert stats == {
            'total_patients': 2,
            'patients_with_credits': 1,
            'patients_with_active_consultations': 1,
        }

    def test_recent_patients(self, service, make_patient):
        for i in range(4):
            make_patient(name=f'Paciente {i}')

        recent = service.recent_patients()

        assert len(recent) == 3
        assert all(isinstance(p, PatientRecord) for p in recent)


class TestSellCredits:

    def test_sale_increments_balance(self, service, storage, make_patient):
        patient = make_patient(credits=1, consultation_price=Decimal('150.00'))

        sale = service.sell_credits(patient.id, 4, Decimal('150.00'))

        assert sale.credits_sold == 4
        assert sale.unit_price == Decimal('150.00')
        assert sale.total_cost == Decimal('600.00')
        assert sale.new_credit_balance == 5
        assert storage.patients.find_by_id(patient.id).credits == 5

    def test_price_not_set(self, service, make_patient):
        patient = make_patient(consultation_price=None)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.sell_credits(patient.id, 1, Decimal('150.00'))

        assert exc_info.value.code == 'CONSULTATION_PRICE_NOT_SET'

    def test_unit_price_mismatch(self, service, storage, make_patient):
        patient = make_patient(credits=0, consultation_price=Decimal('150.00'))

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.sell_credits(patient.id, 2, Decimal('120.00'))

        assert exc_info.value.code == 'UNIT_PRICE_MISMATCH'
        assert storage.patients.find_by_id(patient.id).credits == 0

    @pytest.mark.parametrize('quantity', [0, 101, 2.5, True])
    def test_invalid_quantity(self, service, make_patient, quantity):
        patient = make_patient()

        with pytest.raises(ValidationError) as exc_info:
            service.sell_credits(patient.id, quantity, Decimal('150.00'))

        assert 'quantity' in exc_info.value.detail

    def test_unknown_patient(self, service):
        with pytest.raises(NotFoundError):
            service.sell_credits(str(uuid.uuid4()), 1, Decimal('150.00'))
