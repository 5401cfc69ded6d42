"""
统一异常体系。

所有业务异常继承 BaseAppException，包含：
- type:        错误类型标识（validation_error / not_found / business_rule / error）
- code:        业务错误码（UNFINALIZED_CONSULTATION / PAID_CONSULTATION / ...）
- message:     人类可读的描述（直接展示给前端用户，葡萄牙语）
- detail:      可选的附加信息（dict / list / None）
- http_status: HTTP 状态码

Service 层只需 raise，exception_handler 统一捕获并格式化响应。
"""


class BaseAppException(Exception):
    """所有业务异常的基类。"""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """输入缺失或格式错误。调用方修正输入后可重试，400。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class NotFoundError(BaseAppException):
    """引用的患者 / 问诊不存在，404。"""

    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404


class BusinessRuleViolation(BaseAppException):
    """
    结构合法但违反业务不变量的请求。

    例如：患者已有 OPEN 问诊、删除已支付/已结束的问诊、删除有问诊记录的患者。
    message 原样返回给用户，不重试。400。
    """

    type = 'business_rule'
    code = 'BUSINESS_RULE_VIOLATION'
    http_status = 400


class PersistenceError(BaseAppException):
    """存储层失败（连接、约束等），附带上下文后抛出，不重试，500。"""

    type = 'error'
    code = 'PERSISTENCE_ERROR'
    http_status = 500
