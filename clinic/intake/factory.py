"""
工厂函数：根据终端类型返回对应的建档 Intake。

新增终端只需：
  1. 在 adapters.py 新建 Intake 类
  2. 在此处 _build_registry() 加一行
  不需要修改任何业务代码。
"""

from ..exceptions import ValidationError
from .base import BasePatientIntake

TABLET_USER_AGENT_MARKER = "iPad"


# ── 注册表 ──────────────────────────────────────────────────────────────────
# key: 终端标识（detect_device() 的返回值）
# value: Intake 类（未实例化）
def _build_registry() -> dict[str, type[BasePatientIntake]]:
    # 延迟导入，避免循环依赖
    from .adapters import DesktopPatientIntake, TabletPatientIntake

    return {
        "desktop": DesktopPatientIntake,
        "tablet":  TabletPatientIntake,
    }


def detect_device(request) -> str:
    """请求体里 is_tablet=true，或 User-Agent 含 iPad，视为平板。"""
    body = request.data if isinstance(request.data, dict) else {}
    if body.get("is_tablet") is True:
        return "tablet"
    if TABLET_USER_AGENT_MARKER in request.META.get("HTTP_USER_AGENT", ""):
        return "tablet"
    return "desktop"


def get_patient_intake(device: str, data, partial: bool = False, current=None) -> BasePatientIntake:
    """
    根据 device 返回已实例化的 Intake。

    Args:
        device:  终端标识，"desktop" 或 "tablet"
        data:    请求体（已解析的 JSON dict）
        partial: 部分更新（PATCH / PUT）时为 True
        current: 部分更新时的已存患者记录（PatientRecord）

    Raises:
        ValidationError: 未知的 device
    """
    registry = _build_registry()
    intake_cls = registry.get(device)

    if intake_cls is None:
        raise ValidationError(
            message=f"Dispositivo desconhecido: {device!r}.",
            code="UNKNOWN_DEVICE",
            detail={"known_devices": list(registry.keys())},
        )

    return intake_cls(data=data, partial=partial, current=current)
