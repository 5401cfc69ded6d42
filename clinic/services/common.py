"""
services 共用的小工具：分页、排序参数校验、金额规范化、年龄计算。

校验失败统一 raise ValidationError，detail 以字段名为 key。
"""

import math
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from ..exceptions import ValidationError

MAX_PAGE_SIZE = 100
MAX_SEARCH_LIMIT = 50
MIN_SEARCH_LENGTH = 2
MAX_PRICE = Decimal('99999.99')
CENT = Decimal('0.01')
SORT_ORDERS = ('asc', 'desc')


@dataclass
class Page:
    items: list = field(default_factory=list)
    total_count: int = 0
    total_pages: int = 0
    current_page: int = 1
    has_next_page: bool = False
    has_previous_page: bool = False


def _as_int(value, name):
    if isinstance(value, bool):
        raise ValidationError('Parâmetros inválidos', detail={name: 'Deve ser um número inteiro'})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError('Parâmetros inválidos', detail={name: 'Deve ser um número inteiro'})


def validate_page_params(page=1, limit=10):
    """page ≥ 1，1 ≤ limit ≤ 100，返回 (page, limit)。"""
    page = _as_int(page, 'page')
    limit = _as_int(limit, 'limit')
    if page < 1:
        raise ValidationError(
            'Parâmetros inválidos', code='INVALID_PAGINATION',
            detail={'page': 'Página deve ser maior ou igual a 1'},
        )
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(
            'Parâmetros inválidos', code='INVALID_PAGINATION',
            detail={'limit': f'Limite deve estar entre 1 e {MAX_PAGE_SIZE}'},
        )
    return page, limit


def validate_sort(sort_by, sort_order, allowed, default_by, default_order):
    sort_by = sort_by or default_by
    sort_order = (sort_order or default_order).lower()
    if sort_by not in allowed:
        raise ValidationError(
            'Parâmetros inválidos', code='INVALID_SORT',
            detail={'sort_by': f"Ordenação deve ser uma de: {', '.join(allowed)}"},
        )
    if sort_order not in SORT_ORDERS:
        raise ValidationError(
            'Parâmetros inválidos', code='INVALID_SORT',
            detail={'sort_order': "Direção deve ser 'asc' ou 'desc'"},
        )
    return sort_by, sort_order


def build_page(items, total_count, page, limit) -> Page:
    total_pages = math.ceil(total_count / limit) if total_count else 0
    return Page(
        items=list(items),
        total_count=total_count,
        total_pages=total_pages,
        current_page=page,
        has_next_page=page < total_pages,
        has_previous_page=page > 1 and total_pages > 0,
    )


def paginate_list(items, page, limit) -> Page:
    """内存分页，financial 聚合之后用。"""
    offset = (page - 1) * limit
    return build_page(items[offset:offset + limit], len(items), page, limit)


def normalize_search(query, limit=10):
    """
    自动补全搜索的参数。

    Returns:
        (term, limit)；term 为 None 表示查询太短，调用方直接返回 []。
    """
    limit = _as_int(limit, 'limit')
    if limit < 1 or limit > MAX_SEARCH_LIMIT:
        raise ValidationError(
            'Parâmetros inválidos', code='INVALID_SEARCH_LIMIT',
            detail={'limit': f'Limite deve estar entre 1 e {MAX_SEARCH_LIMIT}'},
        )
    term = (query or '').strip()
    if len(term) < MIN_SEARCH_LENGTH:
        return None, limit
    return term, limit


def to_price(value) -> Optional[Decimal]:
    """
    转成两位小数的 Decimal；非正数、非有限数、超过 99999.99 或无法解析时返回 None。
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0 or amount > MAX_PRICE:
        return None
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    return amount if amount > 0 else None


def calculate_age(birth_date: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age
