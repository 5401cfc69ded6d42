"""
嵌入式存储后端：SQLAlchemy Core + 单文件 SQLite。

和 Django 后端实现同一份契约，schema 由本模块的 metadata 自己建（create_all），
不依赖 Django 的迁移。金额以整数分（cents）存储，读出时转回 Decimal。

所有时间统一按 UTC 存成 naive datetime，读出时补上 tzinfo=UTC。
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy import exc as sa_exc
from sqlalchemy.pool import StaticPool

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

metadata = sa.MetaData()

patients = sa.Table(
    "patients",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("profile_photo", sa.Text),
    sa.Column("birth_date", sa.Date, nullable=False),
    sa.Column("gender", sa.String(20), nullable=False),
    sa.Column("cpf", sa.String(14)),
    sa.Column("rg", sa.String(20)),
    sa.Column("religion", sa.String(20), nullable=False),
    sa.Column("legal_guardian", sa.String(255)),
    sa.Column("legal_guardian_email", sa.String(255)),
    sa.Column("legal_guardian_cpf", sa.String(14)),
    sa.Column("phone1", sa.String(20), nullable=False),
    sa.Column("phone2", sa.String(20)),
    sa.Column("email", sa.String(255)),
    sa.Column("has_therapy_history", sa.Boolean, nullable=False, server_default=sa.false()),
    sa.Column("therapy_history_details", sa.Text),
    sa.Column("takes_medication", sa.Boolean, nullable=False, server_default=sa.false()),
    sa.Column("medication_since", sa.String(100)),
    sa.Column("medication_names", sa.Text),
    sa.Column("has_hospitalization", sa.Boolean, nullable=False, server_default=sa.false()),
    sa.Column("hospitalization_date", sa.String(100)),
    sa.Column("hospitalization_reason", sa.Text),
    sa.Column("consultation_price_cents", sa.Integer),
    sa.Column("consultation_frequency", sa.String(10)),
    sa.Column("consultation_day", sa.String(10)),
    sa.Column("credits", sa.Integer, nullable=False, server_default=sa.text("0")),
    sa.Column("created_at", sa.DateTime, nullable=False),
    sa.Column("updated_at", sa.DateTime, nullable=False),
    sa.CheckConstraint("credits >= 0", name="ck_patients_credits_non_negative"),
    sa.CheckConstraint(
        "consultation_price_cents IS NULL OR consultation_price_cents > 0",
        name="ck_patients_price_positive",
    ),
)
sa.Index("idx_patients_name", patients.c.name)
sa.Index("idx_patients_birth_date", patients.c.birth_date)
sa.Index("idx_patients_credits", patients.c.credits)

consultations = sa.Table(
    "consultations",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column(
        "patient_id",
        sa.String(36),
        sa.ForeignKey("patients.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    sa.Column("started_at", sa.DateTime, nullable=False),
    sa.Column("finished_at", sa.DateTime),
    sa.Column("paid_at", sa.DateTime),
    sa.Column("status", sa.String(10), nullable=False, server_default=sa.text("'OPEN'")),
    sa.Column("content", sa.Text, nullable=False, server_default=sa.text("''")),
    sa.Column("notes", sa.Text, nullable=False, server_default=sa.text("''")),
    sa.Column("price_cents", sa.Integer, nullable=False),
    sa.Column("paid", sa.Boolean, nullable=False, server_default=sa.false()),
    sa.Column("created_at", sa.DateTime, nullable=False),
    sa.Column("updated_at", sa.DateTime, nullable=False),
    sa.CheckConstraint("price_cents > 0", name="ck_consultations_price_positive"),
)
sa.Index("idx_consultations_patient_status", consultations.c.patient_id, consultations.c.status)
sa.Index("idx_consultations_status_started", consultations.c.status, consultations.c.started_at)
sa.Index("idx_consultations_paid", consultations.c.paid)
# 每个患者最多一个 OPEN 问诊
sa.Index(
    "uq_consultations_open_per_patient",
    consultations.c.patient_id,
    unique=True,
    sqlite_where=consultations.c.status == OPEN,
    postgresql_where=consultations.c.status == OPEN,
)

CONSULTATION_MUTABLE_FIELDS = ('content', 'notes', 'status', 'paid', 'finished_at', 'paid_at')

_DATETIME_FIELDS = {'started_at', 'finished_at', 'paid_at', 'created_at', 'updated_at'}
_CENT = Decimal('0.01')
_PATIENT_PREFIX = 'patient__'


# ── 类型转换 ───────────────────────────────────────────────────────────────

def _key(value):
    """规范化 id；非法 UUID 返回 None（视为不存在）。"""
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        return None


def _to_db_datetime(value):
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_datetime(value):
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _to_cents(amount):
    if amount is None:
        return None
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _from_cents(cents):
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(_CENT)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _patient_record(row, prefix='', has_active=None):
    values = {}
    for name in PATIENT_COLUMNS:
        if name == 'consultation_price':
            values[name] = _from_cents(row[prefix + 'consultation_price_cents'])
        elif name in _DATETIME_FIELDS:
            values[name] = _from_db_datetime(row[prefix + name])
        else:
            values[name] = row[prefix + name]
    return PatientRecord(**values, has_active_consultation=has_active)


def _consultation_record(row, with_patient=False):
    values = {}
    for name in CONSULTATION_COLUMNS:
        if name == 'price':
            values[name] = _from_cents(row['price_cents'])
        elif name in _DATETIME_FIELDS:
            values[name] = _from_db_datetime(row[name])
        else:
            values[name] = row[name]
    record = ConsultationRecord(**values)
    if with_patient:
        record.patient = _patient_record(row, prefix=_PATIENT_PREFIX)
    return record


def _patient_values(data):
    values = {}
    for name, value in data.items():
        if name not in PATIENT_WRITABLE_FIELDS:
            continue
        if name == 'consultation_price':
            values['consultation_price_cents'] = _to_cents(value)
        else:
            values[name] = value
    return values


def _order_clauses(table, order_by, allowed):
    clauses = []
    for field_name, direction in order_by:
        if field_name not in allowed:
            raise StorageError(f"Unsupported sort field: {field_name!r}")
        column = table.c[field_name]
        clauses.append(column.desc() if direction == 'desc' else column.asc())
    clauses.append(table.c.id.asc())
    return clauses


def _is_open_conflict(exc):
    text = str(exc.orig if getattr(exc, 'orig', None) is not None else exc).lower()
    return 'unique' in text or 'duplicate key' in text


# ── engine ────────────────────────────────────────────────────────────────

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url):
    """
    创建 engine 并确保 schema 存在。

    sqlite:// (内存库) 用 StaticPool，让所有连接共享同一个内存数据库。
    """
    kwargs = {}
    if url.startswith('sqlite'):
        kwargs['connect_args'] = {'check_same_thread': False}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            kwargs['poolclass'] = StaticPool
        else:
            db_path = Path(url.replace('sqlite:///', '', 1))
            db_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs['pool_pre_ping'] = True

    engine = sa.create_engine(url, **kwargs)
    if engine.dialect.name == 'sqlite':
        event.listen(engine, 'connect', _enable_sqlite_foreign_keys)

    metadata.create_all(engine)
    logger.info("[Storage] embedded engine ready dialect=%s", engine.dialect.name)
    return engine


# ── repositories ──────────────────────────────────────────────────────────

class _Repository:

    def __init__(self, storage):
        self._storage = storage

    def _connection(self):
        return self._storage.connection()


class SqlAlchemyPatientRepository(_Repository, BasePatientRepository):

    _sortable = {'name', 'birth_date', 'created_at', 'credits'}

    def _select_by_id(self, conn, key, for_update=False):
        stmt = sa.select(patients).where(patients.c.id == key)
        if for_update:
            stmt = stmt.with_for_update()
        row = conn.execute(stmt).mappings().first()
        return _patient_record(row) if row else None

    def find_by_id(self, patient_id, for_update=False):
        key = _key(patient_id)
        if key is None:
            return None
        with self._connection() as conn:
            return self._select_by_id(conn, key, for_update)

    @staticmethod
    def _where(stmt, search=None, has_credits=None):
        if search:
            stmt = stmt.where(patients.c.name.contains(search, autoescape=True))
        if has_credits is True:
            stmt = stmt.where(patients.c.credits > 0)
        elif has_credits is False:
            stmt = stmt.where(patients.c.credits == 0)
        return stmt

    def find_many(self, search=None, order_by=(('name', 'asc'),), offset=0, limit=None,
                  with_active_flag=False):
        columns = [patients]
        if with_active_flag:
            active = (
                sa.exists()
                .where(consultations.c.patient_id == patients.c.id)
                .where(consultations.c.status == OPEN)
            )
            columns.append(active.label('has_active'))
        stmt = self._where(sa.select(*columns), search)
        stmt = stmt.order_by(*_order_clauses(patients, order_by, self._sortable)).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._connection() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            _patient_record(row, has_active=bool(row['has_active']) if with_active_flag else None)
            for row in rows
        ]

    def count(self, search=None, has_credits=None):
        stmt = self._where(sa.select(sa.func.count()).select_from(patients), search, has_credits)
        with self._connection() as conn:
            return conn.execute(stmt).scalar_one()

    def count_with_open_consultation(self):
        stmt = (
            sa.select(sa.func.count(sa.distinct(consultations.c.patient_id)))
            .where(consultations.c.status == OPEN)
        )
        with self._connection() as conn:
            return conn.execute(stmt).scalar_one()

    def create(self, data):
        now = _utcnow()
        values = _patient_values(data)
        values.update(id=str(uuid.uuid4()), created_at=now, updated_at=now)
        values.setdefault('credits', 0)
        with self._connection() as conn:
            conn.execute(sa.insert(patients).values(**values))
            return self._select_by_id(conn, values['id'])

    def update(self, patient_id, data):
        key = _key(patient_id)
        if key is None:
            return None
        values = _patient_values(data)
        values['updated_at'] = _utcnow()
        with self._connection() as conn:
            result = conn.execute(sa.update(patients).where(patients.c.id == key).values(**values))
            if result.rowcount == 0:
                return None
            return self._select_by_id(conn, key)

    def delete(self, patient_id):
        key = _key(patient_id)
        if key is None:
            return False
        with self._connection() as conn:
            result = conn.execute(sa.delete(patients).where(patients.c.id == key))
        return result.rowcount > 0

    def consume_credit(self, patient_id, now):
        key = _key(patient_id)
        if key is None:
            return False
        stmt = (
            sa.update(patients)
            .where(patients.c.id == key)
            .where(patients.c.credits > 0)
            .values(credits=patients.c.credits - 1, updated_at=_to_db_datetime(now))
        )
        with self._connection() as conn:
            return conn.execute(stmt).rowcount == 1

    def add_credits(self, patient_id, quantity, now):
        key = _key(patient_id)
        if key is None:
            return None
        stmt = (
            sa.update(patients)
            .where(patients.c.id == key)
            .values(credits=patients.c.credits + quantity, updated_at=_to_db_datetime(now))
        )
        with self._connection() as conn:
            if conn.execute(stmt).rowcount == 0:
                return None
            return conn.execute(
                sa.select(patients.c.credits).where(patients.c.id == key)
            ).scalar_one()

    def find_with_consultation_counts(self, search=None):
        paid_count = sa.func.coalesce(
            sa.func.sum(sa.case((consultations.c.paid == sa.true(), 1), else_=0)), 0,
        )
        stmt = (
            sa.select(
                patients,
                sa.func.count(consultations.c.id).label('total_count'),
                paid_count.label('paid_count'),
            )
            .select_from(
                patients.outerjoin(consultations, consultations.c.patient_id == patients.c.id)
            )
            .group_by(patients.c.id)
            .order_by(patients.c.name, patients.c.id)
        )
        stmt = self._where(stmt, search)
        with self._connection() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            FinancialRow(
                patient=_patient_record(row),
                total_consultations=int(row['total_count']),
                paid_consultations=int(row['paid_count']),
            )
            for row in rows
        ]

    def sum_credits(self):
        stmt = sa.select(sa.func.coalesce(sa.func.sum(patients.c.credits), 0))
        with self._connection() as conn:
            return int(conn.execute(stmt).scalar_one())


class SqlAlchemyConsultationRepository(_Repository, BaseConsultationRepository):

    _sortable = {'started_at', 'status', 'paid', 'created_at'}

    @staticmethod
    def _select(with_patient):
        if not with_patient:
            return sa.select(consultations)
        patient_columns = [c.label(_PATIENT_PREFIX + c.name) for c in patients.c]
        return sa.select(consultations, *patient_columns).select_from(
            consultations.join(patients, consultations.c.patient_id == patients.c.id)
        )

    def _fetch_one(self, conn, stmt, with_patient):
        row = conn.execute(stmt).mappings().first()
        return _consultation_record(row, with_patient) if row else None

    def find_by_id(self, consultation_id, with_patient=False):
        key = _key(consultation_id)
        if key is None:
            return None
        stmt = self._select(with_patient).where(consultations.c.id == key)
        with self._connection() as conn:
            return self._fetch_one(conn, stmt, with_patient)

    def find_open_for_patient(self, patient_id, with_patient=False):
        key = _key(patient_id)
        if key is None:
            return None
        stmt = (
            self._select(with_patient)
            .where(consultations.c.patient_id == key)
            .where(consultations.c.status == OPEN)
        )
        with self._connection() as conn:
            return self._fetch_one(conn, stmt, with_patient)

    @staticmethod
    def _where(stmt, patient_id=None, status=None, paid=None):
        if patient_id is not None:
            stmt = stmt.where(consultations.c.patient_id == _key(patient_id))
        if status is not None:
            stmt = stmt.where(consultations.c.status == status)
        if paid is not None:
            stmt = stmt.where(consultations.c.paid == paid)
        return stmt

    def find_many(self, patient_id=None, status=None, paid=None,
                  order_by=(('started_at', 'desc'),), offset=0, limit=None, with_patient=False):
        stmt = self._where(self._select(with_patient), patient_id, status, paid)
        stmt = stmt.order_by(*_order_clauses(consultations, order_by, self._sortable)).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._connection() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_consultation_record(row, with_patient) for row in rows]

    def count(self, patient_id=None, status=None, paid=None):
        stmt = self._where(
            sa.select(sa.func.count()).select_from(consultations), patient_id, status, paid,
        )
        with self._connection() as conn:
            return conn.execute(stmt).scalar_one()

    def create(self, data):
        now = _utcnow()
        values = {
            'id': str(uuid.uuid4()),
            'patient_id': _key(data['patient_id']),
            'started_at': _to_db_datetime(data.get('started_at')) or now,
            'finished_at': _to_db_datetime(data.get('finished_at')),
            'paid_at': _to_db_datetime(data.get('paid_at')),
            'status': data.get('status', OPEN),
            'content': data.get('content', ''),
            'notes': data.get('notes', ''),
            'price_cents': _to_cents(data['price']),
            'paid': data.get('paid', False),
            'created_at': now,
            'updated_at': now,
        }
        with self._connection() as conn:
            try:
                conn.execute(sa.insert(consultations).values(**values))
            except sa_exc.IntegrityError as exc:
                if _is_open_conflict(exc):
                    raise OpenConsultationConflict(str(exc.orig)) from exc
                raise StorageError(str(exc.orig)) from exc
            stmt = sa.select(consultations).where(consultations.c.id == values['id'])
            return self._fetch_one(conn, stmt, with_patient=False)

    def update(self, consultation_id, data):
        key = _key(consultation_id)
        if key is None:
            return None
        values = {}
        for name in CONSULTATION_MUTABLE_FIELDS:
            if name in data:
                value = data[name]
                values[name] = _to_db_datetime(value) if name in _DATETIME_FIELDS else value
        values['updated_at'] = _utcnow()
        with self._connection() as conn:
            try:
                result = conn.execute(
                    sa.update(consultations).where(consultations.c.id == key).values(**values)
                )
            except sa_exc.IntegrityError as exc:
                if _is_open_conflict(exc):
                    raise OpenConsultationConflict(str(exc.orig)) from exc
                raise StorageError(str(exc.orig)) from exc
            if result.rowcount == 0:
                return None
            stmt = sa.select(consultations).where(consultations.c.id == key)
            return self._fetch_one(conn, stmt, with_patient=False)

    def delete(self, consultation_id):
        key = _key(consultation_id)
        if key is None:
            return False
        with self._connection() as conn:
            result = conn.execute(sa.delete(consultations).where(consultations.c.id == key))
        return result.rowcount > 0

    def sum_paid_prices(self):
        stmt = (
            sa.select(sa.func.coalesce(sa.func.sum(consultations.c.price_cents), 0))
            .where(consultations.c.paid == sa.true())
        )
        with self._connection() as conn:
            return _from_cents(conn.execute(stmt).scalar_one())


class SqlAlchemyStorage(BaseStorage):

    def __init__(self, engine):
        self.engine = engine
        self._conn = None
        self.patients = SqlAlchemyPatientRepository(self)
        self.consultations = SqlAlchemyConsultationRepository(self)

    @contextmanager
    def connection(self):
        """事务内复用当前连接；事务外每次调用自成一个短事务。"""
        try:
            if self._conn is not None:
                yield self._conn
            else:
                with self.engine.begin() as conn:
                    yield conn
        except sa_exc.SQLAlchemyError as exc:
            logger.error("[Storage] embedded query failed: %s", exc)
            raise StorageError(str(exc)) from exc

    def run_in_transaction(self, fn):
        if self._conn is not None:
            return fn(self)
        try:
            with self.engine.begin() as conn:
                self._conn = conn
                try:
                    return fn(self)
                finally:
                    self._conn = None
        except sa_exc.SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
