"""
工厂函数：根据 settings.STORAGE_BACKEND 返回对应的 Storage 实例。

新增存储后端只需：
  1. 新建 XxxStorage(BaseStorage) 类
  2. 在此处 _build_registry() 加一行
  不需要修改 services/ 或任何业务代码。
"""

import functools

from django.conf import settings

from .base import BaseStorage


def _django_storage() -> BaseStorage:
    from .django_backend import DjangoStorage

    return DjangoStorage()


def _embedded_storage() -> BaseStorage:
    from .sqlalchemy_backend import SqlAlchemyStorage

    return SqlAlchemyStorage(get_engine(settings.EMBEDDED_DATABASE_URL))


def _build_registry():
    return {
        "django":     _django_storage,
        "sqlalchemy": _embedded_storage,
    }


@functools.lru_cache(maxsize=None)
def get_engine(url: str):
    """每个 URL 只建一次 engine（连接池 + schema 检查）。"""
    # 延迟导入，只用 Django 后端时不加载 SQLAlchemy
    from .sqlalchemy_backend import build_engine

    return build_engine(url)


def get_storage(backend: str | None = None) -> BaseStorage:
    """
    返回一个新的 Storage 实例（每个请求一个），底层 engine / 连接池是共享的。

    backend 缺省时读 settings.STORAGE_BACKEND（环境变量 STORAGE_BACKEND，默认 "django"）。

    Raises:
        ValueError: 未知的 backend
    """
    backend = backend or getattr(settings, "STORAGE_BACKEND", "django")
    registry = _build_registry()
    builder = registry.get(backend)

    if builder is None:
        raise ValueError(
            f"Unknown STORAGE_BACKEND: {backend!r}. "
            f"Known backends: {list(registry.keys())}"
        )

    return builder()
