"""
财务聚合：每个患者的问诊数 / 已付数 / 欠费数（payment deficit）。

计数在数据库里一次 GROUP BY 算完，排序和分页在内存里做。
排序稳定：基础顺序是 (name, id)，再按 deficit 或 name 做稳定排序。
"""

import logging
import unicodedata
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from ..exceptions import NotFoundError, PersistenceError
from ..storage.base import StorageError
from .common import normalize_search, paginate_list, validate_page_params, validate_sort

logger = logging.getLogger(__name__)

FINANCIAL_SORT_FIELDS = ('payment_deficit', 'name')


@dataclass
class PatientFinancialSummary:
    id: str
    name: str
    profile_photo: Optional[str]
    birth_date: date
    total_consultations: int
    paid_consultations: int
    available_credits: int
    consultation_price: Optional[Decimal]

    @property
    def payment_deficit(self) -> int:
        return self.total_consultations - self.paid_consultations

    @property
    def has_payment_issues(self) -> bool:
        return self.payment_deficit > 0


def name_sort_key(name):
    """去重音 + casefold 作为主键，原始字符串作为次键（'Élia' 与 'Elia' 排在一起）。"""
    decomposed = unicodedata.normalize('NFKD', name)
    folded = ''.join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
    return folded, name


def _summary(patient, total, paid):
    return PatientFinancialSummary(
        id=patient.id,
        name=patient.name,
        profile_photo=patient.profile_photo,
        birth_date=patient.birth_date,
        total_consultations=total,
        paid_consultations=paid,
        available_credits=patient.credits,
        consultation_price=patient.consultation_price,
    )


class FinancialService:

    def __init__(self, storage):
        self.storage = storage

    def _guard(self, fn, context):
        try:
            return fn()
        except StorageError as exc:
            logger.error("[Financial] %s: %s", context, exc)
            raise PersistenceError(f'{context}: {exc}') from exc

    def _summaries(self, search=None):
        rows = self._guard(
            lambda: self.storage.patients.find_with_consultation_counts(search),
            'Erro ao obter visão financeira',
        )
        return [_summary(r.patient, r.total_consultations, r.paid_consultations) for r in rows]

    def get_financial_overview(self, page=1, limit=10, sort_by=None, sort_order=None, search=None):
        """
        分页的财务总览。

        默认按 payment_deficit 降序（欠费最多的在前）。
        空患者列表返回 total_count=0, total_pages=0，前后翻页都是 False。
        """
        page, limit = validate_page_params(page, limit)
        sort_by, sort_order = validate_sort(
            sort_by, sort_order, FINANCIAL_SORT_FIELDS, 'payment_deficit', 'desc',
        )
        summaries = self._summaries((search or '').strip() or None)

        descending = sort_order == 'desc'
        if sort_by == 'payment_deficit':
            summaries.sort(key=lambda s: s.payment_deficit, reverse=descending)
        else:
            summaries.sort(key=lambda s: name_sort_key(s.name), reverse=descending)

        return paginate_list(summaries, page, limit)

    def get_patient_financial_data(self, patient_id):
        def _load():
            patient = self.storage.patients.find_by_id(patient_id)
            if patient is None:
                return None
            total = self.storage.consultations.count(patient_id=patient.id)
            paid = self.storage.consultations.count(patient_id=patient.id, paid=True)
            return _summary(patient, total, paid)

        summary = self._guard(_load, 'Erro ao obter dados financeiros do paciente')
        if summary is None:
            raise NotFoundError('Paciente não encontrado', code='PATIENT_NOT_FOUND')
        return summary

    def get_financial_stats(self):
        def _stats():
            rows = self.storage.patients.find_with_consultation_counts()
            return {
                'total_patients': len(rows),
                'patients_with_payment_issues': sum(
                    1 for r in rows if r.total_consultations > r.paid_consultations
                ),
                'total_unpaid_consultations': self.storage.consultations.count(paid=False),
                'total_credits_in_system': self.storage.patients.sum_credits(),
            }

        return self._guard(_stats, 'Erro ao obter estatísticas financeiras')

    def get_total_revenue(self) -> Decimal:
        return self._guard(
            self.storage.consultations.sum_paid_prices, 'Erro ao calcular receita total',
        )

    def search_patients(self, query, limit=10):
        term, limit = normalize_search(query, limit)
        if term is None:
            return []
        patients = self._guard(
            lambda: self.storage.patients.find_many(search=term, limit=limit),
            'Erro ao buscar pacientes',
        )
        return [{'id': p.id, 'name': p.name} for p in patients]
