"""
输入校验 serializers（DRF）。

只负责「解析 + 校验 + 清洗」，不碰数据库。
校验失败抛 DRF ValidationError，由 exception_handler 压平成 {field: message}。
"""

from datetime import date
from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from ..models import Consultation, Patient
from .sanitization import (
    sanitize_document,
    sanitize_email,
    sanitize_name,
    sanitize_phone,
    sanitize_text,
    sanitize_url,
)

MAX_PRICE = Decimal('99999.99')
MAX_AGE_YEARS = 120


def _optional(value):
    return value or None


def _validate_price(value):
    if value is None:
        return None
    if value <= 0:
        raise serializers.ValidationError('Valor deve ser maior que zero')
    if value > MAX_PRICE:
        raise serializers.ValidationError('Valor muito alto')
    return value


def _optional_text(max_length, message):
    return serializers.CharField(
        max_length=max_length,
        required=False,
        allow_blank=True,
        allow_null=True,
        error_messages={'max_length': message},
    )


class PatientSerializer(serializers.Serializer):
    """完整的患者建档表单（桌面端）。"""

    name = serializers.CharField(
        max_length=255,
        error_messages={
            'required': 'Nome é obrigatório',
            'blank': 'Nome é obrigatório',
            'max_length': 'Nome muito longo',
        },
    )
    birth_date = serializers.DateField(
        error_messages={'required': 'Data de nascimento é obrigatória', 'invalid': 'Data inválida'},
    )
    gender = serializers.ChoiceField(
        choices=Patient.Gender.choices,
        error_messages={'required': 'Gênero é obrigatório', 'invalid_choice': 'Gênero é obrigatório'},
    )
    religion = serializers.ChoiceField(
        choices=Patient.Religion.choices,
        error_messages={'required': 'Religião é obrigatória', 'invalid_choice': 'Religião é obrigatória'},
    )
    phone1 = serializers.CharField(
        max_length=20,
        error_messages={
            'required': 'Telefone é obrigatório',
            'blank': 'Telefone é obrigatório',
            'max_length': 'Telefone muito longo',
        },
    )
    cpf = serializers.CharField(
        max_length=14,
        error_messages={
            'required': 'CPF é obrigatório',
            'blank': 'CPF é obrigatório',
            'max_length': 'CPF muito longo',
        },
    )
    has_therapy_history = serializers.BooleanField(error_messages={'required': 'Campo obrigatório'})
    takes_medication = serializers.BooleanField(error_messages={'required': 'Campo obrigatório'})
    has_hospitalization = serializers.BooleanField(error_messages={'required': 'Campo obrigatório'})

    profile_photo = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    rg = _optional_text(20, 'RG muito longo')
    legal_guardian = _optional_text(255, 'Nome do responsável muito longo')
    legal_guardian_email = serializers.EmailField(
        required=False, allow_blank=True, allow_null=True,
        error_messages={'invalid': 'Email inválido'},
    )
    legal_guardian_cpf = _optional_text(14, 'CPF do responsável muito longo')
    phone2 = _optional_text(20, 'Telefone muito longo')
    email = serializers.EmailField(
        required=False, allow_blank=True, allow_null=True,
        error_messages={'invalid': 'Email inválido'},
    )
    therapy_history_details = _optional_text(1000, 'Detalhes muito longos')
    medication_since = _optional_text(100, 'Texto muito longo')
    medication_names = _optional_text(500, 'Lista de medicamentos muito longa')
    hospitalization_date = _optional_text(100, 'Data muito longa')
    hospitalization_reason = _optional_text(500, 'Razão muito longa')

    consultation_price = serializers.DecimalField(
        max_digits=7, decimal_places=2, required=False, allow_null=True,
        error_messages={'max_digits': 'Valor muito alto'},
    )
    consultation_frequency = serializers.ChoiceField(
        choices=Patient.Frequency.choices, required=False, allow_null=True,
    )
    consultation_day = serializers.ChoiceField(
        choices=Patient.Weekday.choices, required=False, allow_null=True,
    )
    credits = serializers.IntegerField(
        min_value=0, default=0,
        error_messages={'min_value': 'Valor não pode ser negativo'},
    )

    # ── 字段级清洗 ─────────────────────────────────────────────────────────

    def validate_name(self, value):
        value = sanitize_name(value)
        if not value:
            raise serializers.ValidationError('Nome é obrigatório')
        return value

    def validate_birth_date(self, value):
        today = timezone.localdate()
        if value > today or value < date(today.year - MAX_AGE_YEARS, 1, 1):
            raise serializers.ValidationError('Data inválida')
        return value

    def validate_phone1(self, value):
        value = sanitize_phone(value)
        if not value:
            raise serializers.ValidationError('Telefone é obrigatório')
        return value

    def validate_cpf(self, value):
        value = sanitize_document(value)
        if not value:
            raise serializers.ValidationError('CPF é obrigatório')
        return value

    def validate_profile_photo(self, value):
        value = sanitize_url(value)
        if value and not value.startswith(('data:image/', 'http://', 'https://')):
            raise serializers.ValidationError('URL da foto inválida')
        return _optional(value)

    def validate_rg(self, value):
        return _optional(sanitize_document(value))

    def validate_legal_guardian(self, value):
        return _optional(sanitize_name(value))

    def validate_legal_guardian_email(self, value):
        return _optional(sanitize_email(value))

    def validate_legal_guardian_cpf(self, value):
        return _optional(sanitize_document(value))

    def validate_phone2(self, value):
        return _optional(sanitize_phone(value))

    def validate_email(self, value):
        return _optional(sanitize_email(value))

    def validate_therapy_history_details(self, value):
        return _optional(sanitize_text(value))

    def validate_medication_since(self, value):
        return _optional(sanitize_text(value))

    def validate_medication_names(self, value):
        return _optional(sanitize_text(value))

    def validate_hospitalization_date(self, value):
        return _optional(sanitize_text(value))

    def validate_hospitalization_reason(self, value):
        return _optional(sanitize_text(value))

    def validate_consultation_price(self, value):
        return _validate_price(value)

    # ── 跨字段 ────────────────────────────────────────────────────────────

    def _merged(self, attrs, name):
        """部分更新时，未提交的字段取 context['current_patient'] 里的已存值。"""
        if name in attrs or not self.partial:
            return attrs.get(name)
        current = self.context.get('current_patient')
        return getattr(current, name, None)

    def validate(self, attrs):
        if self.partial and not attrs.keys() & {'legal_guardian', 'legal_guardian_email'}:
            return attrs
        guardian = self._merged(attrs, 'legal_guardian')
        if guardian and not self._merged(attrs, 'legal_guardian_email'):
            raise serializers.ValidationError({
                'legal_guardian_email': 'Email do responsável é obrigatório quando responsável é informado',
            })
        return attrs


class TabletPatientSerializer(PatientSerializer):
    """平板端建档：不允许填写价格、频率、日期和 credits。"""

    consultation_price = None
    consultation_frequency = None
    consultation_day = None
    credits = None


class ConsultationCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField(
        error_messages={'required': 'ID do paciente é obrigatório', 'invalid': 'ID do paciente inválido'},
    )
    # 正数校验在 service 里做（CONSULTATION_PRICE_REQUIRED）
    price = serializers.DecimalField(
        max_digits=7, decimal_places=2, required=False, allow_null=True,
        error_messages={'max_digits': 'Preço muito alto'},
    )


class ConsultationUpdateSerializer(serializers.Serializer):
    """
    问诊部分更新。

    patient_id / price / started_at 不在这里声明，请求里带了也会被丢弃。
    """

    content = serializers.CharField(
        max_length=10000, required=False, allow_blank=True, trim_whitespace=False,
        error_messages={'max_length': 'Conteúdo muito longo'},
    )
    notes = serializers.CharField(
        max_length=10000, required=False, allow_blank=True, trim_whitespace=False,
        error_messages={'max_length': 'Notas muito longas'},
    )
    status = serializers.ChoiceField(choices=Consultation.Status.choices, required=False)
    paid = serializers.BooleanField(required=False)
    finished_at = serializers.DateTimeField(required=False, allow_null=True)
    paid_at = serializers.DateTimeField(required=False, allow_null=True)


class CreditSaleSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(
        min_value=1, max_value=100,
        error_messages={
            'min_value': 'Quantidade deve ser pelo menos 1',
            'max_value': 'Quantidade muito alta',
        },
    )
    unit_price = serializers.DecimalField(
        max_digits=7, decimal_places=2,
        error_messages={'max_digits': 'Preço unitário muito alto'},
    )

    def validate_unit_price(self, value):
        if value <= 0:
            raise serializers.ValidationError('Valor deve ser positivo')
        return value


# ── query string ─────────────────────────────────────────────────────────
# 范围（page ≥ 1、1 ≤ limit ≤ 100 …）由 services 校验，这里只做类型解析。

class PageQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(default=1)
    limit = serializers.IntegerField(default=10)
    sort_by = serializers.CharField(required=False)
    sort_order = serializers.CharField(required=False)


class PatientListQuerySerializer(PageQuerySerializer):
    search = serializers.CharField(required=False, allow_blank=True)


class ConsultationListQuerySerializer(PageQuerySerializer):
    patient_id = serializers.UUIDField(required=False)
    status = serializers.ChoiceField(choices=Consultation.Status.choices, required=False)
    paid = serializers.BooleanField(required=False)


class FinancialQuerySerializer(PageQuerySerializer):
    search = serializers.CharField(required=False, allow_blank=True)
    stats = serializers.BooleanField(default=False)


class SearchQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True, default='')
    limit = serializers.IntegerField(default=10)
