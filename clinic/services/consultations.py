"""
问诊生命周期：创建（含 credits 自动支付）、更新 / 结束 / 支付、删除、列表与统计。

只依赖 storage 契约（clinic/storage/base.py），通过构造函数注入。
所有写操作走 storage.run_in_transaction，业务异常在事务内抛出即整体回滚。
"""

import logging

from django.utils import timezone

from ..exceptions import BusinessRuleViolation, NotFoundError, PersistenceError, ValidationError
from ..storage.base import OpenConsultationConflict, StorageError
from ..storage.types import CONSULTATION_STATUSES, FINALIZED, OPEN
from .common import build_page, normalize_search, to_price, validate_page_params, validate_sort

logger = logging.getLogger(__name__)

UNFINALIZED_CONSULTATION_MESSAGE = (
    'Paciente possui consulta não finalizada. '
    'Finalize a consulta atual antes de criar uma nova.'
)

CONSULTATION_SORT_FIELDS = ('started_at', 'status', 'paid')

_TEXT_FIELDS = ('content', 'notes')


class ConsultationService:

    def __init__(self, storage, clock=None):
        self.storage = storage
        self._now = clock or timezone.now

    # ── 内部工具 ───────────────────────────────────────────────────────────

    def _atomic(self, fn, context):
        try:
            return self.storage.run_in_transaction(fn)
        except StorageError as exc:
            logger.error("[Consultation] %s: %s", context, exc)
            raise PersistenceError(f'{context}: {exc}') from exc

    def _read(self, fn, context):
        try:
            return fn()
        except StorageError as exc:
            logger.error("[Consultation] %s: %s", context, exc)
            raise PersistenceError(f'{context}: {exc}') from exc

    @staticmethod
    def _not_found():
        return NotFoundError('Consulta não encontrada', code='CONSULTATION_NOT_FOUND')

    @staticmethod
    def _patient_not_found():
        return NotFoundError('Paciente não encontrado', code='PATIENT_NOT_FOUND')

    # ── 创建 ──────────────────────────────────────────────────────────────

    def create_consultation(self, patient_id, price=None):
        """
        为患者开一个新的 OPEN 问诊。

        同一个事务内：插入问诊；患者有 credits 时标记已支付并扣减 1 个 credit
        （与价格无关，credit 按次计）。任一步失败则全部回滚。

        Raises:
            NotFoundError:          患者不存在
            BusinessRuleViolation:  患者已有 OPEN 问诊（应用层检查或唯一索引）
            ValidationError:        没有可用的正数价格
            PersistenceError:       存储失败
        """

        def _create(storage):
            patient = storage.patients.find_by_id(patient_id, for_update=True)
            if patient is None:
                raise self._patient_not_found()

            if storage.consultations.find_open_for_patient(patient.id) is not None:
                logger.warning("[Consultation] 拒绝创建：患者 %s 已有 OPEN 问诊", patient.id)
                raise BusinessRuleViolation(
                    UNFINALIZED_CONSULTATION_MESSAGE, code='UNFINALIZED_CONSULTATION',
                )

            amount = to_price(price if price is not None else patient.consultation_price)
            if amount is None:
                raise ValidationError(
                    'Preço da consulta deve ser definido no cadastro do paciente '
                    'antes de criar uma consulta',
                    code='CONSULTATION_PRICE_REQUIRED',
                    detail={'price': 'Valor deve ser maior que zero'},
                )

            now = self._now()
            use_credit = patient.credits > 0
            try:
                created = storage.consultations.create({
                    'patient_id': patient.id,
                    'price': amount,
                    'status': OPEN,
                    'started_at': now,
                    'paid': use_credit,
                    'paid_at': now if use_credit else None,
                })
            except OpenConsultationConflict:
                logger.warning("[Consultation] 唯一索引拦截：患者 %s 并发创建", patient.id)
                raise BusinessRuleViolation(
                    UNFINALIZED_CONSULTATION_MESSAGE, code='UNFINALIZED_CONSULTATION',
                )

            if use_credit and not storage.patients.consume_credit(patient.id, now):
                raise BusinessRuleViolation(
                    'Saldo de créditos do paciente foi alterado. Tente novamente.',
                    code='CREDIT_BALANCE_CHANGED',
                )

            logger.info(
                "[Consultation] 创建 id=%s patient=%s price=%s paid_with_credit=%s",
                created.id, patient.id, amount, use_credit,
            )
            return storage.consultations.find_by_id(created.id, with_patient=True)

        return self._atomic(_create, 'Erro ao criar consulta')

    # ── 更新 / 结束 / 支付 ─────────────────────────────────────────────────

    def _resolve_changes(self, current, data):
        """
        把请求里的字段变成真正要写入的变更。

        patient_id / price / started_at 不可变，直接忽略。
        重复结束、重复支付是 no-op，保留原时间戳。
        """
        changes = {}
        errors = {}
        now = self._now()

        for name in _TEXT_FIELDS:
            if name in data:
                changes[name] = data[name] or ''

        status = data.get('status')
        if status is not None and status not in CONSULTATION_STATUSES:
            errors['status'] = "Status deve ser 'OPEN' ou 'FINALIZED'"
        target_status = status or current.status

        paid = data.get('paid')
        target_paid = current.paid if paid is None else bool(paid)

        if data.get('finished_at') is not None and target_status != FINALIZED:
            errors['finished_at'] = 'Data de finalização só pode ser informada para consultas finalizadas'
        if data.get('paid_at') is not None and not target_paid:
            errors['paid_at'] = 'Data de pagamento só pode ser informada para consultas pagas'
        if errors:
            raise ValidationError('Dados inválidos', detail=errors)

        if current.status == FINALIZED and status == OPEN:
            logger.warning("[Consultation] 拒绝重新打开已结束的问诊 %s", current.id)
            raise BusinessRuleViolation(
                'Não é possível reabrir uma consulta finalizada',
                code='CONSULTATION_FINALIZED',
            )
        if current.paid and paid is False:
            logger.warning("[Consultation] 拒绝撤销已支付问诊 %s 的支付", current.id)
            raise BusinessRuleViolation(
                'Não é possível estornar o pagamento de uma consulta paga',
                code='PAYMENT_REVERSAL',
            )

        if status == FINALIZED and current.status != FINALIZED:
            changes['status'] = FINALIZED
            changes['finished_at'] = data.get('finished_at') or now
        if paid and not current.paid:
            changes['paid'] = True
            changes['paid_at'] = data.get('paid_at') or now

        return changes

    def update_consultation(self, consultation_id, data):
        """部分更新。可变字段：content, notes, status, paid, finished_at, paid_at。"""

        def _update(storage):
            current = storage.consultations.find_by_id(consultation_id)
            if current is None:
                raise self._not_found()

            changes = self._resolve_changes(current, data)
            if changes:
                storage.consultations.update(current.id, changes)
                logger.info(
                    "[Consultation] 更新 id=%s fields=%s", current.id, sorted(changes),
                )
            return storage.consultations.find_by_id(current.id, with_patient=True)

        return self._atomic(_update, 'Erro ao atualizar consulta')

    def finalize_consultation(self, consultation_id):
        return self.update_consultation(consultation_id, {'status': FINALIZED})

    def pay_consultation(self, consultation_id):
        return self.update_consultation(consultation_id, {'paid': True})

    # ── 删除 ──────────────────────────────────────────────────────────────

    def delete_consultation(self, consultation_id):
        """已支付或已结束的问诊不能删除。"""

        def _delete(storage):
            current = storage.consultations.find_by_id(consultation_id)
            if current is None:
                raise self._not_found()
            if current.paid:
                logger.warning("[Consultation] 拒绝删除已支付问诊 %s", current.id)
                raise BusinessRuleViolation(
                    'Não é possível excluir consulta paga', code='PAID_CONSULTATION',
                )
            if current.status == FINALIZED:
                logger.warning("[Consultation] 拒绝删除已结束问诊 %s", current.id)
                raise BusinessRuleViolation(
                    'Não é possível excluir consulta finalizada', code='FINALIZED_CONSULTATION',
                )
            storage.consultations.delete(current.id)
            logger.info("[Consultation] 删除 id=%s", current.id)

        self._atomic(_delete, 'Erro ao excluir consulta')

    # ── 读取 ──────────────────────────────────────────────────────────────

    def get_consultation(self, consultation_id):
        consultation = self._read(
            lambda: self.storage.consultations.find_by_id(consultation_id, with_patient=True),
            'Erro ao buscar consulta',
        )
        if consultation is None:
            raise self._not_found()
        return consultation

    def get_active_consultation(self, patient_id):
        """患者当前的 OPEN 问诊，没有则返回 None。"""

        def _find():
            if self.storage.patients.find_by_id(patient_id) is None:
                raise self._patient_not_found()
            return self.storage.consultations.find_open_for_patient(patient_id, with_patient=True)

        return self._read(_find, 'Erro ao buscar consulta ativa')

    def list_consultations(self, page=1, limit=10, sort_by=None, sort_order=None,
                           patient_id=None, status=None, paid=None):
        page, limit = validate_page_params(page, limit)
        sort_by, sort_order = validate_sort(
            sort_by, sort_order, CONSULTATION_SORT_FIELDS, 'started_at', 'desc',
        )
        if status is not None and status not in CONSULTATION_STATUSES:
            raise ValidationError(
                'Parâmetros inválidos', detail={'status': "Status deve ser 'OPEN' ou 'FINALIZED'"},
            )

        def _list():
            filters = {'patient_id': patient_id, 'status': status, 'paid': paid}
            total = self.storage.consultations.count(**filters)
            items = self.storage.consultations.find_many(
                **filters,
                order_by=((sort_by, sort_order),),
                offset=(page - 1) * limit,
                limit=limit,
                with_patient=True,
            )
            return build_page(items, total, page, limit)

        return self._read(_list, 'Erro ao listar consultas')

    def list_patient_consultations(self, patient_id, **options):
        options.pop('patient_id', None)
        exists = self._read(
            lambda: self.storage.patients.find_by_id(patient_id), 'Erro ao buscar paciente',
        )
        if exists is None:
            raise self._patient_not_found()
        return self.list_consultations(patient_id=patient_id, **options)

    def search_patients_with_consultations(self, query, limit=10):
        """只返回至少有一次问诊的患者：[{id, name}]。"""
        term, limit = normalize_search(query, limit)
        if term is None:
            return []
        rows = self._read(
            lambda: self.storage.patients.find_with_consultation_counts(term),
            'Erro ao buscar pacientes',
        )
        matches = [row.patient for row in rows if row.total_consultations > 0]
        return [{'id': p.id, 'name': p.name} for p in matches[:limit]]

    def get_consultation_stats(self):
        def _stats():
            repo = self.storage.consultations
            return {
                'total_consultations': repo.count(),
                'open_consultations': repo.count(status=OPEN),
                'finalized_consultations': repo.count(status=FINALIZED),
                'paid_consultations': repo.count(paid=True),
                'unpaid_consultations': repo.count(paid=False),
            }

        return self._read(_stats, 'Erro ao obter estatísticas')

    def recent_consultations(self, limit=3):
        return self._read(
            lambda: self.storage.consultations.find_many(
                order_by=(('started_at', 'desc'),), limit=limit, with_patient=True,
            ),
            'Erro ao buscar consultas recentes',
        )
