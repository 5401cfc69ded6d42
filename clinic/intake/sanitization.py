"""
文本清洗：去 HTML 标签、控制字符、脚本片段，统一空白。

serializer 的 validate_<field> 调用这些函数；空字符串由调用方决定是否转成 None。
"""

import re

from django.utils.html import strip_tags

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]')
_SCRIPT_FRAGMENTS = re.compile(r'javascript:|on\w+\s*=|alert\s*\(|eval\s*\(', re.IGNORECASE)
_WHITESPACE = re.compile(r'\s+')
_PHONE_DISALLOWED = re.compile(r'[^\d\s()\-+]')
_DOCUMENT_DISALLOWED = re.compile(r'[^\dA-Za-z.\-/]')
_EMAIL_DISALLOWED = re.compile(r'[<>\'"&]')


def sanitize_text(value):
    if not value:
        return ''
    text = strip_tags(value)
    text = _CONTROL_CHARS.sub('', text)
    text = _SCRIPT_FRAGMENTS.sub('', text)
    return _WHITESPACE.sub(' ', text).strip()


def sanitize_name(value):
    # 保留重音字母、撇号和连字符
    return sanitize_text(value)


def sanitize_phone(value):
    if not value:
        return ''
    return _WHITESPACE.sub(' ', _PHONE_DISALLOWED.sub('', value)).strip()


def sanitize_document(value):
    """CPF / RG：只保留数字、字母和 . - / 分隔符。"""
    if not value:
        return ''
    return _DOCUMENT_DISALLOWED.sub('', value)


def sanitize_email(value):
    if not value:
        return ''
    return _EMAIL_DISALLOWED.sub('', value.strip().lower())


def sanitize_url(value):
    if not value:
        return ''
    value = value.strip()
    if value.lower().startswith('javascript:'):
        return ''
    return value
