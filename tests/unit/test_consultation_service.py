"""
Unit tests for ConsultationService.

覆盖：
1. 有 credits → 自动支付并扣 1 个 credit（与价格无关）
2. 没有 credits → 未支付，credits 不变
3. 已有 OPEN 问诊 → UNFINALIZED_CONSULTATION，不插入、不扣 credit
4. 价格：显式价格优先，否则用患者登记价格，都没有 → CONSULTATION_PRICE_REQUIRED
5. 扣 credit 失败 → 整个事务回滚
6. 唯一索引兜底（应用层检查被绕过时）
7. 更新 / 结束 / 支付 / 删除规则

`storage` fixture 参数化了两个后端，每个测试跑两遍。
"""
import uuid
from decimal import Decimal

import pytest

from clinic.exceptions import BusinessRuleViolation, NotFoundError, PersistenceError, ValidationError
from clinic.services import ConsultationService
from clinic.services.consultations import UNFINALIZED_CONSULTATION_MESSAGE
from clinic.storage.base import StorageError


@pytest.fixture
def service(storage):
    return ConsultationService(storage)


class TestCreateConsultation:

    def test_credit_marks_paid_and_decrements(self, service, storage, make_patient):
        patient = make_patient(credits=3)

        consultation = service.create_consultation(patient.id)

        assert consultation.paid is True
        assert consultation.paid_at is not None
        assert consultation.status == 'OPEN'
        assert storage.patients.find_by_id(patient.id).credits == 2

    def test_credit_used_regardless_of_price(self, service, storage, make_patient):
        patient = make_patient(credits=1, consultation_price=Decimal('150.00'))

        consultation = service.create_consultation(patient.id, price=Decimal('400.00'))

        assert consultation.paid is True
        assert consultation.price == Decimal('400.00')
        assert storage.patients.find_by_id(patient.id).credits == 0

    def test_without_credits_stays_unpaid(self, service, storage, make_patient):
        patient = make_patient(credits=0)

        consultation = service.create_consultation(patient.id)

        assert consultation.paid is False
        assert consultation.paid_at is None
        assert storage.patients.find_by_id(patient.id).credits == 0

    def test_result_includes_patient_summary(self, service, make_patient):
        patient = make_patient(name='Joana Prado')

        consultation = service.create_consultation(patient.id)

        assert consultation.patient is not None
        assert consultation.patient.name == 'Joana Prado'

    def test_uses_patient_price_when_not_given(self, service, make_patient):
        patient = make_patient(consultation_price=Decimal('175.50'))

        consultation = service.create_consultation(patient.id)

        assert consultation.price == Decimal('175.50')

    def test_missing_price_raises(self, service, storage, make_patient):
        patient = make_patient(consultation_price=None)

        with pytest.raises(ValidationError) as exc_info:
            service.create_consultation(patient.id)

        assert exc_info.value.code == 'CONSULTATION_PRICE_REQUIRED'
        assert storage.consultations.count(patient_id=patient.id) == 0

    def test_non_positive_explicit_price_raises(self, service, make_patient):
        patient = make_patient()

        with pytest.raises(ValidationError) as exc_info:
            service.create_consultation(patient.id, price=Decimal('0'))

        assert exc_info.value.code == 'CONSULTATION_PRICE_REQUIRED'

    def test_unknown_patient_raises_not_found(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.create_consultation(str(uuid.uuid4()))

        assert exc_info.value.code == 'PATIENT_NOT_FOUND'
        assert exc_info.value.http_status == 404

    def test_second_open_consultation_blocked(self, service, storage, make_patient):
        patient = make_patient(credits=2)
        service.create_consultation(patient.id)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.create_consultation(patient.id)

        assert exc_info.value.code == 'UNFINALIZED_CONSULTATION'
        assert exc_info.value.message == UNFINALIZED_CONSULTATION_MESSAGE
        assert storage.consultations.count(patient_id=patient.id) == 1
        # 第二次尝试没有再扣 credit
        assert storage.patients.find_by_id(patient.id).credits == 1

    def test_failed_credit_consumption_rolls_back_insert(
        self, service, storage, make_patient, monkeypatch,
    ):
        patient = make_patient(credits=1)
        monkeypatch.setattr(storage.patients, 'consume_credit', lambda *args: False)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.create_consultation(patient.id)

        assert exc_info.value.code == 'CREDIT_BALANCE_CHANGED'
        assert storage.consultations.count(patient_id=patient.id) == 0
        assert storage.patients.find_by_id(patient.id).credits == 1

    def test_unique_index_blocks_when_check_is_bypassed(
        self, service, storage, make_patient, monkeypatch,
    ):
        patient = make_patient()
        service.create_consultation(patient.id)
        # 模拟并发：应用层检查没看到已有的 OPEN 问诊
        monkeypatch.setattr(
            storage.consultations, 'find_open_for_patient', lambda *args, **kwargs: None,
        )

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.create_consultation(patient.id)

        assert exc_info.value.code == 'UNFINALIZED_CONSULTATION'
        assert storage.consultations.count(patient_id=patient.id) == 1

    def test_storage_failure_wrapped(self, service, storage, make_patient, monkeypatch):
        patient = make_patient()

        def _boom(data):
            raise StorageError('disk I/O error')

        monkeypatch.setattr(storage.consultations, 'create', _boom)

        with pytest.raises(PersistenceError) as exc_info:
            service.create_consultation(patient.id)

        assert exc_info.value.message.startswith('Erro ao criar consulta')
        assert exc_info.value.http_status == 500

    def test_credit_lifecycle_scenario(self, service, storage, make_patient):
        patient = make_patient(credits=1, consultation_price=Decimal('150'))

        first = service.create_consultation(patient.id)
        assert first.paid is True
        assert first.paid_at is not None
        assert first.price == Decimal('150.00')
        assert storage.patients.find_by_id(patient.id).credits == 0

        with pytest.raises(BusinessRuleViolation):
            service.create_consultation(patient.id)

        service.update_consultation(first.id, {'status': 'FINALIZED'})

        third = service.create_consultation(patient.id)
        assert third.paid is False
        assert third.paid_at is None


class TestUpdateConsultation:

    def test_update_content_and_notes(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)

        updated = service.update_consultation(
            consultation.id, {'content': '<p>Sessão inicial</p>', 'notes': 'retorno em 7 dias'},
        )

        assert updated.content == '<p>Sessão inicial</p>'
        assert updated.notes == 'retorno em 7 dias'

    def test_immutable_fields_ignored(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)
        other = make_patient(name='Outro Paciente')

        updated = service.update_consultation(
            consultation.id, {'patient_id': other.id, 'price': Decimal('999.00')},
        )

        assert updated.patient_id == consultation.patient_id
        assert updated.price == consultation.price

    def test_finalize_stamps_finished_at(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)

        finalized = service.finalize_consultation(consultation.id)

        assert finalized.status == 'FINALIZED'
        assert finalized.finished_at is not None

    def test_finalize_twice_is_noop(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)
        first = service.finalize_consultation(consultation.id)

        second = service.finalize_consultation(consultation.id)

        assert second.status == 'FINALIZED'
        assert second.finished_at == first.finished_at

    def test_reopen_rejected(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)
        service.finalize_consultation(consultation.id)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.update_consultation(consultation.id, {'status': 'OPEN'})

        assert exc_info.value.code == 'CONSULTATION_FINALIZED'

    def test_pay_stamps_paid_at(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)

        paid = service.pay_consultation(consultation.id)

        assert paid.paid is True
        assert paid.paid_at is not None

    def test_pay_twice_keeps_original_timestamp(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)
        first = service.pay_consultation(consultation.id)

        second = service.pay_consultation(consultation.id)

        assert second.paid_at == first.paid_at

    def test_payment_reversal_rejected(self, service, make_patient):
        consultation = service.create_consultation(make_patient(credits=1).id)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.update_consultation(consultation.id, {'paid': False})

        assert exc_info.value.code == 'PAYMENT_REVERSAL'

    def test_finished_at_requires_finalized(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)

        with pytest.raises(ValidationError) as exc_info:
            service.update_consultation(consultation.id, {'finished_at': consultation.started_at})

        assert 'finished_at' in exc_info.value.detail

    def test_paid_at_requires_paid(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)

        with pytest.raises(ValidationError) as exc_info:
            service.update_consultation(consultation.id, {'paid_at': consultation.started_at})

        assert 'paid_at' in exc_info.value.detail

    def test_unknown_consultation(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.update_consultation(str(uuid.uuid4()), {'notes': 'x'})

        assert exc_info.value.code == 'CONSULTATION_NOT_FOUND'


class TestDeleteConsultation:

    def test_delete_open_unpaid(self, service, storage, make_patient):
        consultation = service.create_consultation(make_patient().id)

        service.delete_consultation(consultation.id)

        assert storage.consultations.find_by_id(consultation.id) is None

    def test_delete_paid_rejected(self, service, make_patient):
        consultation = service.create_consultation(make_patient(credits=1).id)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.delete_consultation(consultation.id)

        assert exc_info.value.code == 'PAID_CONSULTATION'
        assert exc_info.value.message == 'Não é possível excluir consulta paga'

    def test_delete_finalized_rejected(self, service, make_patient):
        consultation = service.create_consultation(make_patient().id)
        service.finalize_consultation(consultation.id)

        with pytest.raises(BusinessRuleViolation) as exc_info:
            service.delete_consultation(consultation.id)

        assert exc_info.value.code == 'FINALIZED_CONSULTATION'
        assert exc_info.value.message == 'Não é possível excluir consulta finalizada'

    def test_delete_unknown(self, service):
        with pytest.raises(NotFoundError):
            service.delete_consultation(str(uuid.uuid4()))


class TestConsultationQueries:

    def test_active_consultation(self, service, make_patient):
        patient = make_patient()
        assert service.get_active_consultation(patient.id) is None

        created = service.create_consultation(patient.id)

        assert service.get_active_consultation(patient.id).id == created.id

    def test_active_consultation_unknown_patient(self, service):
        with pytest.raises(NotFoundError):
            service.get_active_consultation(str(uuid.uuid4()))

    def test_list_filters_and_pagination(self, service, make_patient):
        for i in range(3):
            patient = make_patient(name=f'Paciente {i}', credits=1 if i == 0 else 0)
            service.create_consultation(patient.id)

        page = service.list_consultations(page=1, limit=2)
        assert page.total_count == 3
        assert page.total_pages == 2
        assert len(page.items) == 2
        assert page.has_next_page is True
        assert page.has_previous_page is False

        paid_page = service.list_consultations(paid=True)
        assert paid_page.total_count == 1

        open_page = service.list_consultations(status='OPEN')
        assert open_page.total_count == 3

    def test_list_invalid_status(self, service):
        with pytest.raises(ValidationError):
            service.list_consultations(status='CLOSED')

    def test_list_invalid_sort(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.list_consultations(sort_by='price')

        assert exc_info.value.code == 'INVALID_SORT'

    def test_patient_history_unknown_patient(self, service):
        with pytest.raises(NotFoundError):
            service.list_patient_consultations(str(uuid.uuid4()))

    def test_search_only_patients_with_consultations(self, service, make_patient):
        with_history = make_patient(name='Carlos Mendes')
        make_patient(name='Carla Dias')
        service.create_consultation(with_history.id)

        results = service.search_patients_with_consultations('Carl')

        assert results == [{'id': with_history.id, 'name': 'Carlos Mendes'}]

    def test_stats(self, service, make_patient):
        paid = service.create_consultation(make_patient(credits=1).id)
        service.create_consultation(make_patient().id)
        service.finalize_consultation(paid.id)

        stats = service.get_consultation_stats()

        assert stats == {
            'total_consultations': 2,
            'open_consultations': 1,
            'finalized_consultations': 1,
            'paid_consultations': 1,
            'unpaid_consultations': 1,
        }

    def test_recent_limited_to_three(self, service, make_patient):
        for i in range(4):
            service.create_consultation(make_patient(name=f'Paciente {i}').id)

        assert len(service.recent_consultations()) == 3
