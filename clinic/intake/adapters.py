from .base import BasePatientIntake
from .serializers import PatientSerializer, TabletPatientSerializer


class DesktopPatientIntake(BasePatientIntake):
    """桌面端：完整表单，包括价格、频率、日期和初始 credits。"""

    device = "desktop"
    serializer_class = PatientSerializer

    def transform(self) -> dict:
        return dict(self._parsed)


class TabletPatientIntake(BasePatientIntake):
    """
    平板端（iPad）：患者自助填写。

    价格、频率、日期和 credits 由诊所在桌面端设置；即使请求里带了也会被丢弃，
    新建档时 credits 固定为 0。
    """

    device = "tablet"
    serializer_class = TabletPatientSerializer

    RESTRICTED_FIELDS = (
        "consultation_price",
        "consultation_frequency",
        "consultation_day",
        "credits",
    )

    def transform(self) -> dict:
        data = {k: v for k, v in self._parsed.items() if k not in self.RESTRICTED_FIELDS}
        if not self._partial:
            data["credits"] = 0
        return data
