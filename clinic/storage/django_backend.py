"""
Django ORM 存储后端（DATABASES['default']，生产环境是 PostgreSQL）。

ORM 对象只在本模块内部出现，对外一律转成 storage/types.py 里的记录。
"""

import functools
import logging
import uuid
from decimal import Decimal

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Count, Exists, F, OuterRef, Q, Sum

from ..models import Consultation, Patient
from .base import (
    BaseConsultationRepository,
    BasePatientRepository,
    BaseStorage,
    OpenConsultationConflict,
    StorageError,
)
from .types import (
    CONSULTATION_COLUMNS,
    OPEN,
    PATIENT_COLUMNS,
    PATIENT_WRITABLE_FIELDS,
    ConsultationRecord,
    FinancialRow,
    PatientRecord,
)

logger = logging.getLogger(__name__)

CONSULTATION_MUTABLE_FIELDS = ('content', 'notes', 'status', 'paid', 'finished_at', 'paid_at')

_SORTABLE_PATIENT_FIELDS = {'name', 'birth_date', 'created_at', 'credits'}
_SORTABLE_CONSULTATION_FIELDS = {'started_at', 'status', 'paid', 'created_at'}


def _wrap_db_errors(method):
    """驱动层 DatabaseError → StorageError，业务层只需要认一种存储异常。"""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except DatabaseError as exc:
            logger.error("[Storage] %s 失败: %s", method.__qualname__, exc)
            raise StorageError(str(exc)) from exc

    return wrapper


def _parse_id(value):
    """非法 UUID 一律视为不存在。"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def _order_args(order_by, allowed):
    args = []
    for field_name, direction in order_by:
        if field_name not in allowed:
            raise StorageError(f"Unsupported sort field: {field_name!r}")
        args.append(f'-{field_name}' if direction == 'desc' else field_name)
    args.append('id')
    return args


def _is_open_conflict(exc):
    text = str(exc).lower()
    return 'unique' in text or 'duplicate key' in text


def _patient_record(obj, has_active=None):
    values = {name: getattr(obj, name) for name in PATIENT_COLUMNS}
    values['id'] = str(obj.id)
    return PatientRecord(**values, has_active_consultation=has_active)


def _consultation_record(obj, with_patient=False):
    values = {name: getattr(obj, name) for name in CONSULTATION_COLUMNS}
    values['id'] = str(obj.id)
    values['patient_id'] = str(obj.patient_id)
    record = ConsultationRecord(**values)
    if with_patient:
        record.patient = _patient_record(obj.patient)
    return record


class DjangoPatientRepository(BasePatientRepository):

    @_wrap_db_errors
    def find_by_id(self, patient_id, for_update=False):
        pk = _parse_id(patient_id)
        if pk is None:
            return None
        qs = Patient.objects.filter(pk=pk)
        if for_update:
            qs = qs.select_for_update()
        obj = qs.first()
        return _patient_record(obj) if obj else None

    def _filtered(self, search=None, has_credits=None):
        qs = Patient.objects.all()
        if search:
            qs = qs.filter(name__contains=search)
        if has_credits is True:
            qs = qs.filter(credits__gt=0)
        elif has_credits is False:
            qs = qs.filter(credits=0)
        return qs

    @_wrap_db_errors
    def find_many(self, search=None, order_by=(('name', 'asc'),), offset=0, limit=None,
                  with_active_flag=False):
        qs = self._filtered(search).order_by(*_order_args(order_by, _SORTABLE_PATIENT_FIELDS))
        if with_active_flag:
            open_consultations = Consultation.objects.filter(patient=OuterRef('pk'), status=OPEN)
            qs = qs.annotate(has_active=Exists(open_consultations))
        qs = qs[offset:offset + limit] if limit is not None else qs[offset:]
        return [
            _patient_record(obj, obj.has_active if with_active_flag else None)
            for obj in qs
        ]

    @_wrap_db_errors
    def count(self, search=None, has_credits=None):
        return self._filtered(search, has_credits).count()

    @_wrap_db_errors
    def count_with_open_consultation(self):
        return Patient.objects.filter(consultations__status=OPEN).distinct().count()

    @_wrap_db_errors
    def create(self, data):
        values = {k: v for k, v in data.items() if k in PATIENT_WRITABLE_FIELDS}
        with transaction.atomic():
            obj = Patient.objects.create(**values)
        return _patient_record(obj)

    @_wrap_db_errors
    def update(self, patient_id, data):
        pk = _parse_id(patient_id)
        obj = Patient.objects.filter(pk=pk).first() if pk else None
        if obj is None:
            return None
        changed = [k for k in data if k in PATIENT_WRITABLE_FIELDS]
        for name in changed:
            setattr(obj, name, data[name])
        with transaction.atomic():
            obj.save(update_fields=changed + ['updated_at'])
        return _patient_record(obj)

    @_wrap_db_errors
    def delete(self, patient_id):
        pk = _parse_id(patient_id)
        if pk is None:
            return False
        deleted, _ = Patient.objects.filter(pk=pk).delete()
        return deleted > 0

    @_wrap_db_errors
    def consume_credit(self, patient_id, now):
        rows = Patient.objects.filter(pk=_parse_id(patient_id), credits__gt=0).update(
            credits=F('credits') - 1, updated_at=now,
        )
        return rows == 1

    @_wrap_db_errors
    def add_credits(self, patient_id, quantity, now):
        pk = _parse_id(patient_id)
        if pk is None:
            return None
        rows = Patient.objects.filter(pk=pk).update(
            credits=F('credits') + quantity, updated_at=now,
        )
        if rows == 0:
            return None
        return Patient.objects.values_list('credits', flat=True).get(pk=pk)

    @_wrap_db_errors
    def find_with_consultation_counts(self, search=None):
        qs = (
            self._filtered(search)
            .annotate(
                total_count=Count('consultations'),
                paid_count=Count('consultations', filter=Q(consultations__paid=True)),
            )
            .order_by('name', 'id')
        )
        return [
            FinancialRow(
                patient=_patient_record(obj),
                total_consultations=obj.total_count,
                paid_consultations=obj.paid_count,
            )
            for obj in qs
        ]

    @_wrap_db_errors
    def sum_credits(self):
        return Patient.objects.aggregate(total=Sum('credits'))['total'] or 0


class DjangoConsultationRepository(BaseConsultationRepository):

    def _base(self, with_patient):
        qs = Consultation.objects.all()
        return qs.select_related('patient') if with_patient else qs

    @_wrap_db_errors
    def find_by_id(self, consultation_id, with_patient=False):
        pk = _parse_id(consultation_id)
        if pk is None:
            return None
        obj = self._base(with_patient).filter(pk=pk).first()
        return _consultation_record(obj, with_patient) if obj else None

    @_wrap_db_errors
    def find_open_for_patient(self, patient_id, with_patient=False):
        pk = _parse_id(patient_id)
        if pk is None:
            return None
        obj = self._base(with_patient).filter(patient_id=pk, status=OPEN).first()
        return _consultation_record(obj, with_patient) if obj else None

    def _filtered(self, patient_id=None, status=None, paid=None, with_patient=False):
        qs = self._base(with_patient)
        if patient_id is not None:
            pk = _parse_id(patient_id)
            if pk is None:
                return qs.none()
            qs = qs.filter(patient_id=pk)
        if status is not None:
            qs = qs.filter(status=status)
        if paid is not None:
            qs = qs.filter(paid=paid)
        return qs

    @_wrap_db_errors
    def find_many(self, patient_id=None, status=None, paid=None,
                  order_by=(('started_at', 'desc'),), offset=0, limit=None, with_patient=False):
        qs = self._filtered(patient_id, status, paid, with_patient).order_by(
            *_order_args(order_by, _SORTABLE_CONSULTATION_FIELDS)
        )
        qs = qs[offset:offset + limit] if limit is not None else qs[offset:]
        return [_consultation_record(obj, with_patient) for obj in qs]

    @_wrap_db_errors
    def count(self, patient_id=None, status=None, paid=None):
        return self._filtered(patient_id, status, paid).count()

    @_wrap_db_errors
    def create(self, data):
        values = dict(data)
        values['patient_id'] = _parse_id(values['patient_id'])
        try:
            # savepoint：约束冲突只回滚这一条 INSERT，外层事务仍可用
            with transaction.atomic():
                obj = Consultation.objects.create(**values)
        except IntegrityError as exc:
            if _is_open_conflict(exc):
                raise OpenConsultationConflict(str(exc)) from exc
            raise StorageError(str(exc)) from exc
        return _consultation_record(obj)

    @_wrap_db_errors
    def update(self, consultation_id, data):
        pk = _parse_id(consultation_id)
        obj = Consultation.objects.filter(pk=pk).first() if pk else None
        if obj is None:
            return None
        changed = [k for k in data if k in CONSULTATION_MUTABLE_FIELDS]
        for name in changed:
            setattr(obj, name, data[name])
        try:
            with transaction.atomic():
                obj.save(update_fields=changed + ['updated_at'])
        except IntegrityError as exc:
            if _is_open_conflict(exc):
                raise OpenConsultationConflict(str(exc)) from exc
            raise StorageError(str(exc)) from exc
        return _consultation_record(obj)

    @_wrap_db_errors
    def delete(self, consultation_id):
        pk = _parse_id(consultation_id)
        if pk is None:
            return False
        deleted, _ = Consultation.objects.filter(pk=pk).delete()
        return deleted > 0

    @_wrap_db_errors
    def sum_paid_prices(self):
        total = Consultation.objects.filter(paid=True).aggregate(total=Sum('price'))['total']
        return total if total is not None else Decimal('0.00')


class DjangoStorage(BaseStorage):

    def __init__(self):
        self.patients = DjangoPatientRepository()
        self.consultations = DjangoConsultationRepository()

    def run_in_transaction(self, fn):
        try:
            with transaction.atomic():
                return fn(self)
        except DatabaseError as exc:
            raise StorageError(str(exc)) from exc
