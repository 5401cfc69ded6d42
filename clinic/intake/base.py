"""
BasePatientIntake - 所有终端建档入口的抽象基类。

每个新终端只需：
1. 继承 BasePatientIntake，指定 serializer_class
2. 实现 transform()
3. 在 factory.py 的 _build_registry() 注册一行

views / services 无需任何改动。
"""

from abc import ABC, abstractmethod
from typing import Any


class BasePatientIntake(ABC):
    """
    两步流水线：parse → transform

    parse() 用 serializer 校验 + 清洗（失败抛 DRF ValidationError）；
    transform() 把校验后的数据变成交给 PatientService 的 dict。
    """

    # 子类声明自己对应的终端标识（与 factory 注册键一致）
    device: str = ""
    serializer_class: Any = None

    def __init__(self, data, partial: bool = False, current=None):
        self._data = data
        self._partial = partial
        # 部分更新时的已存患者记录，跨字段校验用
        self._current = current
        self._parsed: dict = {}

    def parse(self) -> dict:
        serializer = self.serializer_class(
            data=self._data,
            partial=self._partial,
            context={"current_patient": self._current},
        )
        serializer.is_valid(raise_exception=True)
        self._parsed = dict(serializer.validated_data)
        return self._parsed

    @abstractmethod
    def transform(self) -> dict:
        """把 self._parsed 转成存储层可写入的字段 dict。"""

    def process(self) -> dict:
        """parse → transform，返回可以直接交给 service 的数据。"""
        self.parse()
        return self.transform()
