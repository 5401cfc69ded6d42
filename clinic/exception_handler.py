"""
统一异常处理器。

挂到 DRF 的 EXCEPTION_HANDLER setting 上。
所有响应（无论成功还是失败）前端都能用同一套逻辑判断：
  response.type === 'validation_error' / 'not_found' / 'business_rule' / 'error'  → 出问题了
  没有 type 字段  → 成功

统一错误响应格式：
{
    "type":    "validation_error" | "not_found" | "business_rule" | "error",
    "code":    "UNFINALIZED_CONSULTATION",
    "message": "Paciente possui consulta não finalizada. ...",
    "detail":  { "campo": "mensagem" }  // 可选
}
"""
import logging

from rest_framework.views import exception_handler as drf_default_handler
from rest_framework.exceptions import ValidationError as DRFValidationError
from django.http import JsonResponse

from .exceptions import BaseAppException

logger = logging.getLogger(__name__)


def flatten_validation_detail(detail, prefix=''):
    """
    DRF 的 detail 是嵌套的 {field: [ErrorDetail, ...]}。
    压平成 {field: 第一条消息}，嵌套字段用点号连接。
    """
    if isinstance(detail, dict):
        flat = {}
        for key, value in detail.items():
            path = f'{prefix}.{key}' if prefix else str(key)
            flat.update(flatten_validation_detail(value, path))
        return flat

    if isinstance(detail, list):
        if detail and all(not isinstance(item, (dict, list)) for item in detail):
            return {prefix or 'non_field_errors': str(detail[0])}
        flat = {}
        for index, item in enumerate(detail):
            flat.update(flatten_validation_detail(item, f'{prefix}[{index}]'))
        return flat

    return {prefix or 'non_field_errors': str(detail)}


def unified_exception_handler(exc, context):
    """
    DRF exception handler entry point.

    优先级：
    1. BaseAppException 及其子类 → 统一格式
    2. DRF 自带的 ValidationError（serializer.is_valid raise 的）→ 转成统一格式
    3. 其他 DRF 异常（ParseError / MethodNotAllowed ...）→ 交给 DRF 默认处理
    4. 未知异常 → 记录 traceback，返回 500
    """

    # --- 1. 我们自己的异常体系 ---
    if isinstance(exc, BaseAppException):
        if exc.http_status >= 500:
            logger.error("[API] %s: %s", exc.code, exc.message, exc_info=exc)
        body = {
            'type': exc.type,
            'code': exc.code,
            'message': exc.message,
        }
        if exc.detail is not None:
            body['detail'] = exc.detail
        return JsonResponse(body, status=exc.http_status)

    # --- 2. DRF 自带的 ValidationError ---
    if isinstance(exc, DRFValidationError):
        body = {
            'type': 'validation_error',
            'code': 'VALIDATION_ERROR',
            'message': 'Dados inválidos',
            'detail': flatten_validation_detail(exc.detail),
        }
        return JsonResponse(body, status=400)

    # --- 3. 其他的交给 DRF 默认处理 ---
    response = drf_default_handler(exc, context)
    if response is not None:
        return response

    # --- 4. 兜底 ---
    view = context.get('view') if context else None
    logger.error(
        "[API] 未处理异常 view=%s", type(view).__name__ if view else '-', exc_info=exc,
    )
    return JsonResponse(
        {
            'type': 'error',
            'code': 'INTERNAL_ERROR',
            'message': 'Erro interno do servidor',
        },
        status=500,
    )
