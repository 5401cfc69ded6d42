"""
存储层的标准记录结构。

两个存储后端（Django ORM / SQLAlchemy 嵌入式 SQLite）的所有读操作都返回这些 dataclass。
业务层（services/）只认识这个格式，不知道背后是哪种存储引擎。
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

OPEN = 'OPEN'
FINALIZED = 'FINALIZED'
CONSULTATION_STATUSES = (OPEN, FINALIZED)


@dataclass
class PatientRecord:
    id: str
    name: str
    birth_date: date
    gender: str
    religion: str
    phone1: str
    has_therapy_history: bool = False
    takes_medication: bool = False
    has_hospitalization: bool = False
    profile_photo: Optional[str] = None
    cpf: Optional[str] = None
    rg: Optional[str] = None
    legal_guardian: Optional[str] = None
    legal_guardian_email: Optional[str] = None
    legal_guardian_cpf: Optional[str] = None
    phone2: Optional[str] = None
    email: Optional[str] = None
    therapy_history_details: Optional[str] = None
    medication_since: Optional[str] = None
    medication_names: Optional[str] = None
    hospitalization_date: Optional[str] = None
    hospitalization_reason: Optional[str] = None
    consultation_price: Optional[Decimal] = None
    consultation_frequency: Optional[str] = None
    consultation_day: Optional[str] = None
    credits: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # 只在列表查询里填充（同一条 SQL 的 EXISTS 子查询）
    has_active_consultation: Optional[bool] = None


@dataclass
class ConsultationRecord:
    id: str
    patient_id: str
    started_at: datetime
    status: str
    price: Decimal
    paid: bool = False
    content: str = ''
    notes: str = ''
    finished_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    patient: Optional[PatientRecord] = field(default=None, repr=False)


@dataclass
class FinancialRow:
    """一个患者 + 其问诊计数，financial 聚合的原始输入。"""

    patient: PatientRecord
    total_consultations: int
    paid_consultations: int


_PATIENT_READONLY = {'id', 'created_at', 'updated_at', 'has_active_consultation'}

# create/update 时允许写入的患者字段
PATIENT_WRITABLE_FIELDS = tuple(
    f.name for f in fields(PatientRecord) if f.name not in _PATIENT_READONLY
)

PATIENT_COLUMNS = tuple(
    f.name for f in fields(PatientRecord) if f.name != 'has_active_consultation'
)

CONSULTATION_COLUMNS = tuple(
    f.name for f in fields(ConsultationRecord) if f.name != 'patient'
)
