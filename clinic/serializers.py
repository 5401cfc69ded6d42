"""
Response serializers - storage 记录 / service 结果 → JSON-able dict。

只负责「输出格式化」，不做任何解析或校验。
输入解析和校验在 clinic/intake/ 里。

金额一律输出为两位小数的字符串（"150.00"），时间为 ISO 8601。
"""

from dataclasses import asdict

from .services.common import calculate_age
from .storage.types import PATIENT_COLUMNS


def _money(value):
    return None if value is None else f'{value:.2f}'


def _iso(value):
    return value.isoformat() if value is not None else None


def serialize_patient(patient):
    """Serialize a full patient record (detail / list / create responses)."""
    data = {name: getattr(patient, name) for name in PATIENT_COLUMNS}
    data['id'] = str(patient.id)
    data['birth_date'] = _iso(patient.birth_date)
    data['age'] = calculate_age(patient.birth_date)
    data['consultation_price'] = _money(patient.consultation_price)
    data['created_at'] = _iso(patient.created_at)
    data['updated_at'] = _iso(patient.updated_at)
    if patient.has_active_consultation is not None:
        data['has_active_consultation'] = patient.has_active_consultation
    return data


def serialize_patient_summary(patient):
    """问诊响应里内嵌的患者摘要。"""
    return {
        'id': str(patient.id),
        'name': patient.name,
        'profile_photo': patient.profile_photo,
        'birth_date': _iso(patient.birth_date),
        'age': calculate_age(patient.birth_date),
    }


def serialize_consultation(consultation):
    data = {
        'id': str(consultation.id),
        'patient_id': str(consultation.patient_id),
        'started_at': _iso(consultation.started_at),
        'finished_at': _iso(consultation.finished_at),
        'status': consultation.status,
        'content': consultation.content,
        'notes': consultation.notes,
        'price': _money(consultation.price),
        'paid': consultation.paid,
        'paid_at': _iso(consultation.paid_at),
        'created_at': _iso(consultation.created_at),
        'updated_at': _iso(consultation.updated_at),
    }
    if consultation.patient is not None:
        data['patient'] = serialize_patient_summary(consultation.patient)
    return data


def serialize_page(page, serialize_item):
    """Serialize a services.common.Page with the given item serializer."""
    return {
        'items': [serialize_item(item) for item in page.items],
        'pagination': {
            'total_count': page.total_count,
            'total_pages': page.total_pages,
            'current_page': page.current_page,
            'has_next_page': page.has_next_page,
            'has_previous_page': page.has_previous_page,
        },
    }


def serialize_search_results(results):
    return [{'id': str(item['id']), 'name': item['name']} for item in results]


def serialize_credit_sale(sale):
    data = asdict(sale)
    data['patient_id'] = str(sale.patient_id)
    data['unit_price'] = _money(sale.unit_price)
    data['total_cost'] = _money(sale.total_cost)
    return data


def serialize_financial_summary(summary):
    return {
        'id': str(summary.id),
        'name': summary.name,
        'profile_photo': summary.profile_photo,
        'birth_date': _iso(summary.birth_date),
        'age': calculate_age(summary.birth_date),
        'total_consultations': summary.total_consultations,
        'paid_consultations': summary.paid_consultations,
        'payment_deficit': summary.payment_deficit,
        'has_payment_issues': summary.has_payment_issues,
        'available_credits': summary.available_credits,
        'consultation_price': _money(summary.consultation_price),
    }


def serialize_dashboard(patient_stats, consultation_stats, financial_stats,
                        total_revenue, recent_consultations, recent_patients):
    return {
        'patients': patient_stats,
        'consultations': consultation_stats,
        'financial': {**financial_stats, 'total_revenue': _money(total_revenue)},
        'recent_consultations': [serialize_consultation(c) for c in recent_consultations],
        'recent_patients': [serialize_patient(p) for p in recent_patients],
    }
