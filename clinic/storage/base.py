"""
BaseStorage - 所有存储后端的抽象基类。

每个新存储后端只需：
1. 实现 BasePatientRepository / BaseConsultationRepository
2. 继承 BaseStorage，暴露 .patients / .consultations，实现 run_in_transaction()
3. 在 factory.py 的 _build_registry() 注册一行

services/ 完全不知道背后用哪种数据库。
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from .types import ConsultationRecord, FinancialRow, PatientRecord

T = TypeVar('T')


class StorageError(Exception):
    """驱动层错误的统一包装，services 再转成 PersistenceError。"""


class OpenConsultationConflict(StorageError):
    """部分唯一索引 (patient_id) WHERE status='OPEN' 拒绝了写入。"""


class BasePatientRepository(ABC):

    @abstractmethod
    def find_by_id(self, patient_id: str, for_update: bool = False) -> Optional[PatientRecord]:
        """
        按 id 读取患者，不存在（或 id 格式非法）返回 None。

        for_update=True 时在支持的后端上加行锁，只在 run_in_transaction 内有意义。
        """

    @abstractmethod
    def find_many(
        self,
        search: Optional[str] = None,
        order_by: tuple = (('name', 'asc'),),
        offset: int = 0,
        limit: Optional[int] = None,
        with_active_flag: bool = False,
    ) -> list[PatientRecord]:
        """
        列表查询。order_by 是 (字段, 'asc'|'desc') 的序列，后端总是追加 id 作为最终排序键。
        with_active_flag=True 时在同一条查询里填充 has_active_consultation。
        """

    @abstractmethod
    def count(self, search: Optional[str] = None, has_credits: Optional[bool] = None) -> int:
        ...

    @abstractmethod
    def count_with_open_consultation(self) -> int:
        ...

    @abstractmethod
    def create(self, data: dict) -> PatientRecord:
        ...

    @abstractmethod
    def update(self, patient_id: str, data: dict) -> Optional[PatientRecord]:
        """部分更新，患者不存在返回 None。"""

    @abstractmethod
    def delete(self, patient_id: str) -> bool:
        """删除成功返回 True，患者不存在返回 False。"""

    @abstractmethod
    def consume_credit(self, patient_id: str, now: datetime) -> bool:
        """
        条件扣减：credits > 0 时减 1 并返回 True，否则不写入并返回 False。
        余额永远不会低于 0。
        """

    @abstractmethod
    def add_credits(self, patient_id: str, quantity: int, now: datetime) -> Optional[int]:
        """原子地增加 credits，返回新余额；患者不存在返回 None。"""

    @abstractmethod
    def find_with_consultation_counts(self, search: Optional[str] = None) -> list[FinancialRow]:
        """每个患者一行，带 total / paid 问诊数，按 (name, id) 排序。"""

    @abstractmethod
    def sum_credits(self) -> int:
        ...


class BaseConsultationRepository(ABC):

    @abstractmethod
    def find_by_id(self, consultation_id: str, with_patient: bool = False) -> Optional[ConsultationRecord]:
        ...

    @abstractmethod
    def find_open_for_patient(self, patient_id: str, with_patient: bool = False) -> Optional[ConsultationRecord]:
        ...

    @abstractmethod
    def find_many(
        self,
        patient_id: Optional[str] = None,
        status: Optional[str] = None,
        paid: Optional[bool] = None,
        order_by: tuple = (('started_at', 'desc'),),
        offset: int = 0,
        limit: Optional[int] = None,
        with_patient: bool = False,
    ) -> list[ConsultationRecord]:
        ...

    @abstractmethod
    def count(
        self,
        patient_id: Optional[str] = None,
        status: Optional[str] = None,
        paid: Optional[bool] = None,
    ) -> int:
        ...

    @abstractmethod
    def create(self, data: dict) -> ConsultationRecord:
        """
        插入问诊。

        Raises:
            OpenConsultationConflict: 该患者已有 OPEN 问诊（唯一索引拦截）
            StorageError:             其他驱动错误
        """

    @abstractmethod
    def update(self, consultation_id: str, data: dict) -> Optional[ConsultationRecord]:
        ...

    @abstractmethod
    def delete(self, consultation_id: str) -> bool:
        ...

    @abstractmethod
    def sum_paid_prices(self) -> Decimal:
        ...


class BaseStorage(ABC):
    patients: BasePatientRepository
    consultations: BaseConsultationRepository

    @abstractmethod
    def run_in_transaction(self, fn: Callable[['BaseStorage'], T]) -> T:
        """
        在一个事务里执行 fn(storage)。

        fn 抛异常则全部回滚，异常原样向上抛。
        """
