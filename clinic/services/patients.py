"""
患者服务：建档、查询、更新、删除保护、出售 credits、统计。

输入已由 clinic/intake 校验清洗过，这里只守业务不变量。
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.utils import timezone

from ..exceptions import BusinessRuleViolation, NotFoundError, PersistenceError, ValidationError
from ..storage.base import StorageError
from .common import build_page, normalize_search, to_price, validate_page_params, validate_sort

logger = logging.getLogger(__name__)

PATIENT_SORT_FIELDS = ('name', 'age')
MAX_CREDITS_PER_SALE = 100

# age 升序 == birth_date 降序
_SORT_COLUMNS = {
    ('name', 'asc'): (('name', 'asc'),),
    ('name', 'desc'): (('name', 'desc'),),
    ('age', 'asc'): (('birth_date', 'desc'),),
    ('age', 'desc'): (('birth_date', 'asc'),),
}


@dataclass
class CreditSale:
    patient_id: str
    patient_name: str
    credits_sold: int
    unit_price: Decimal
    total_cost: Decimal
    new_credit_balance: int


class PatientService:

    def __init__(self, storage, clock=None):
        self.storage = storage
        self._now = clock or timezone.now

    def _guard(self, fn, context):
        try:
            return fn()
        except StorageError as exc:
            logger.error("[Patient] %s: %s", context, exc)
            raise PersistenceError(f'{context}: {exc}') from exc

    @staticmethod
    def _not_found():
        return NotFoundError('Paciente não encontrado', code='PATIENT_NOT_FOUND')

    def create_patient(self, data):
        patient = self._guard(
            lambda: self.storage.patients.create(data), 'Erro ao criar paciente',
        )
        logger.info("[Patient] 建档 id=%s", patient.id)
        return patient

    def get_patient(self, patient_id):
        patient = self._guard(
            lambda: self.storage.patients.find_by_id(patient_id), 'Erro ao buscar paciente',
        )
        if patient is None:
            raise self._not_found()
        return patient

    def update_patient(self, patient_id, data):
        patient = self._guard(
            lambda: self.storage.patients.update(patient_id, data), 'Erro ao atualizar paciente',
        )
        if patient is None:
            raise self._not_found()
        logger.info("[Patient] 更新 id=%s fields=%s", patient.id, sorted(data))
        return patient

    def delete_patient(self, patient_id):
        """
        有问诊记录的患者不能删除。

        先数问诊，数量 > 0 时直接拒绝，根本不会调用 storage 的 delete。
        """

        def _delete(storage):
            if storage.consultations.count(patient_id=patient_id) > 0:
                logger.warning("[Patient] 拒绝删除有问诊记录的患者 %s", patient_id)
                raise BusinessRuleViolation(
                    'Não é possível excluir paciente com consultas registradas',
                    code='PATIENT_HAS_CONSULTATIONS',
                )
            if not storage.patients.delete(patient_id):
                raise self._not_found()
            logger.info("[Patient] 删除 id=%s", patient_id)

        self._guard(
            lambda: self.storage.run_in_transaction(_delete), 'Erro ao excluir paciente',
        )

    def list_patients(self, page=1, limit=10, sort_by=None, sort_order=None, search=None):
        page, limit = validate_page_params(page, limit)
        sort_by, sort_order = validate_sort(sort_by, sort_order, PATIENT_SORT_FIELDS, 'name', 'asc')
        search = (search or '').strip() or None

        def _list():
            total = self.storage.patients.count(search=search)
            items = self.storage.patients.find_many(
                search=search,
                order_by=_SORT_COLUMNS[(sort_by, sort_order)],
                offset=(page - 1) * limit,
                limit=limit,
                with_active_flag=True,
            )
            return build_page(items, total, page, limit)

        return self._guard(_list, 'Erro ao listar pacientes')

    def search_patients(self, query, limit=10):
        """自动补全：[{id, name}]，查询少于 2 个字符返回 []。"""
        term, limit = normalize_search(query, limit)
        if term is None:
            return []
        patients = self._guard(
            lambda: self.storage.patients.find_many(search=term, limit=limit),
            'Erro ao buscar pacientes',
        )
        return [{'id': p.id, 'name': p.name} for p in patients]

    def recent_patients(self, limit=3):
        return self._guard(
            lambda: self.storage.patients.find_many(
                order_by=(('created_at', 'desc'),), limit=limit,
            ),
            'Erro ao buscar pacientes recentes',
        )

    def get_patient_stats(self):
        def _stats():
            repo = self.storage.patients
            return {
                'total_patients': repo.count(),
                'patients_with_credits': repo.count(has_credits=True),
                'patients_with_active_consultations': repo.count_with_open_consultation(),
            }

        return self._guard(_stats, 'Erro ao obter estatísticas')

    def sell_credits(self, patient_id, quantity, unit_price):
        """
        出售 credits（预付问诊次数）。

        单价必须等于患者登记的问诊价格；余额在数据库里原子递增。

        Raises:
            ValidationError:        数量不在 1–100 或单价非正
            NotFoundError:          患者不存在
            BusinessRuleViolation:  患者未设置问诊价格 / 单价与问诊价格不一致
        """
        errors = {}
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            errors['quantity'] = 'Quantidade deve ser um número inteiro'
        elif quantity < 1 or quantity > MAX_CREDITS_PER_SALE:
            errors['quantity'] = f'Quantidade deve estar entre 1 e {MAX_CREDITS_PER_SALE}'
        price = to_price(unit_price)
        if price is None:
            errors['unit_price'] = 'Preço unitário deve ser positivo'
        if errors:
            raise ValidationError('Dados inválidos', detail=errors)

        def _sell(storage):
            patient = storage.patients.find_by_id(patient_id, for_update=True)
            if patient is None:
                raise self._not_found()
            if patient.consultation_price is None or patient.consultation_price <= 0:
                raise BusinessRuleViolation(
                    'Não é possível vender créditos. Valor da consulta não foi estabelecido.',
                    code='CONSULTATION_PRICE_NOT_SET',
                )
            if patient.consultation_price != price:
                raise BusinessRuleViolation(
                    'Preço unitário deve corresponder ao valor da consulta do paciente',
                    code='UNIT_PRICE_MISMATCH',
                )
            balance = storage.patients.add_credits(patient.id, quantity, self._now())
            if balance is None:
                raise self._not_found()
            logger.info(
                "[Patient] 出售 credits patient=%s quantity=%s balance=%s",
                patient.id, quantity, balance,
            )
            return CreditSale(
                patient_id=patient.id,
                patient_name=patient.name,
                credits_sold=quantity,
                unit_price=price,
                total_cost=price * quantity,
                new_credit_balance=balance,
            )

        return self._guard(
            lambda: self.storage.run_in_transaction(_sell), 'Erro ao vender créditos',
        )
