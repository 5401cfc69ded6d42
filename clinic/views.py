"""
HTTP 层（DRF APIView）。

每个 view 只做三件事：解析请求 → 调 service → 用 clinic/serializers.py 格式化响应。
异常不在这里处理，统一交给 clinic/exception_handler.unified_exception_handler。
"""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import NotFoundError
from .intake import detect_device, get_patient_intake
from .intake.serializers import (
    ConsultationCreateSerializer,
    ConsultationListQuerySerializer,
    ConsultationUpdateSerializer,
    CreditSaleSerializer,
    FinancialQuerySerializer,
    PatientListQuerySerializer,
    SearchQuerySerializer,
)
from .serializers import (
    serialize_consultation,
    serialize_credit_sale,
    serialize_dashboard,
    serialize_financial_summary,
    serialize_page,
    serialize_patient,
    serialize_search_results,
)
from .services import ConsultationService, FinancialService, PatientService
from .storage import get_storage


def _validated(serializer_class, data, partial=False):
    serializer = serializer_class(data=data, partial=partial)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def _query(request, serializer_class):
    # .dict() 让缺省的 BooleanField 保持「未提供」，而不是被当成 False
    return _validated(serializer_class, request.query_params.dict())


def _page_options(params):
    return {
        'page': params['page'],
        'limit': params['limit'],
        'sort_by': params.get('sort_by'),
        'sort_order': params.get('sort_order'),
    }


def _patient_payload(request, partial=False, current=None):
    intake = get_patient_intake(
        detect_device(request), request.data, partial=partial, current=current,
    )
    return intake.process()


class ServiceMixin:
    """每个请求拿一个 storage 句柄，注入到 service。"""

    def patient_service(self):
        return PatientService(get_storage())

    def consultation_service(self):
        return ConsultationService(get_storage())

    def financial_service(self):
        return FinancialService(get_storage())


# ── patients ─────────────────────────────────────────────────────────────

class PatientListCreateView(ServiceMixin, APIView):
    """GET/POST /api/patients/"""

    def get(self, request):
        params = _query(request, PatientListQuerySerializer)
        page = self.patient_service().list_patients(
            **_page_options(params), search=params.get('search'),
        )
        return Response(serialize_page(page, serialize_patient))

    def post(self, request):
        patient = self.patient_service().create_patient(_patient_payload(request))
        return Response(serialize_patient(patient), status=status.HTTP_201_CREATED)


class PatientSearchView(ServiceMixin, APIView):
    """GET /api/patients/search/?q=&limit="""

    def get(self, request):
        params = _query(request, SearchQuerySerializer)
        results = self.patient_service().search_patients(params['q'], params['limit'])
        return Response(serialize_search_results(results))


class PatientStatsView(ServiceMixin, APIView):
    def get(self, request):
        return Response(self.patient_service().get_patient_stats())


class PatientDetailView(ServiceMixin, APIView):
    """GET/PUT/PATCH/DELETE /api/patients/<patient_id>/ - PUT 与 PATCH 都是部分更新。"""

    def get(self, request, patient_id):
        return Response(serialize_patient(self.patient_service().get_patient(patient_id)))

    def put(self, request, patient_id):
        service = self.patient_service()
        current = service.get_patient(patient_id)
        data = _patient_payload(request, partial=True, current=current)
        patient = service.update_patient(patient_id, data)
        return Response(serialize_patient(patient))

    def patch(self, request, patient_id):
        return self.put(request, patient_id)

    def delete(self, request, patient_id):
        self.patient_service().delete_patient(patient_id)
        return Response({'message': 'Paciente excluído com sucesso'})


class PatientActiveConsultationView(ServiceMixin, APIView):
    def get(self, request, patient_id):
        consultation = self.consultation_service().get_active_consultation(patient_id)
        if consultation is None:
            raise NotFoundError(
                'Nenhuma consulta ativa encontrada', code='NO_ACTIVE_CONSULTATION',
            )
        return Response(serialize_consultation(consultation))


class PatientConsultationsView(ServiceMixin, APIView):
    def get(self, request, patient_id):
        params = _query(request, ConsultationListQuerySerializer)
        page = self.consultation_service().list_patient_consultations(
            patient_id,
            **_page_options(params),
            status=params.get('status'),
            paid=params.get('paid'),
        )
        return Response(serialize_page(page, serialize_consultation))


class PatientCreditsView(ServiceMixin, APIView):
    """POST /api/patients/<patient_id>/credits/ - 出售 credits。"""

    def post(self, request, patient_id):
        data = _validated(CreditSaleSerializer, request.data)
        sale = self.patient_service().sell_credits(
            patient_id, data['quantity'], data['unit_price'],
        )
        return Response(serialize_credit_sale(sale))


class PatientFinancialView(ServiceMixin, APIView):
    def get(self, request, patient_id):
        summary = self.financial_service().get_patient_financial_data(patient_id)
        return Response(serialize_financial_summary(summary))


# ── consultations ────────────────────────────────────────────────────────

class ConsultationListCreateView(ServiceMixin, APIView):
    """GET/POST /api/consultations/"""

    def get(self, request):
        params = _query(request, ConsultationListQuerySerializer)
        patient_id = params.get('patient_id')
        page = self.consultation_service().list_consultations(
            **_page_options(params),
            patient_id=str(patient_id) if patient_id else None,
            status=params.get('status'),
            paid=params.get('paid'),
        )
        return Response(serialize_page(page, serialize_consultation))

    def post(self, request):
        data = _validated(ConsultationCreateSerializer, request.data)
        consultation = self.consultation_service().create_consultation(
            str(data['patient_id']), price=data.get('price'),
        )
        return Response(serialize_consultation(consultation), status=status.HTTP_201_CREATED)


class ConsultationStatsView(ServiceMixin, APIView):
    def get(self, request):
        return Response(self.consultation_service().get_consultation_stats())


class ConsultationPatientSearchView(ServiceMixin, APIView):
    """GET /api/consultations/search-patients/ - 只搜有问诊记录的患者。"""

    def get(self, request):
        params = _query(request, SearchQuerySerializer)
        results = self.consultation_service().search_patients_with_consultations(
            params['q'], params['limit'],
        )
        return Response(serialize_search_results(results))


class ConsultationDetailView(ServiceMixin, APIView):
    def get(self, request, consultation_id):
        consultation = self.consultation_service().get_consultation(consultation_id)
        return Response(serialize_consultation(consultation))

    def put(self, request, consultation_id):
        data = _validated(ConsultationUpdateSerializer, request.data, partial=True)
        consultation = self.consultation_service().update_consultation(consultation_id, data)
        return Response(serialize_consultation(consultation))

    def patch(self, request, consultation_id):
        return self.put(request, consultation_id)

    def delete(self, request, consultation_id):
        self.consultation_service().delete_consultation(consultation_id)
        return Response({'message': 'Consulta excluída com sucesso'})


class ConsultationFinalizeView(ServiceMixin, APIView):
    def post(self, request, consultation_id):
        consultation = self.consultation_service().finalize_consultation(consultation_id)
        return Response(serialize_consultation(consultation))


class ConsultationPaymentView(ServiceMixin, APIView):
    def post(self, request, consultation_id):
        consultation = self.consultation_service().pay_consultation(consultation_id)
        return Response(serialize_consultation(consultation))


# ── financial / dashboard ────────────────────────────────────────────────

class FinancialOverviewView(ServiceMixin, APIView):
    """GET /api/financial/ - 加 ?stats=true 返回统计而不是分页列表。"""

    def get(self, request):
        params = _query(request, FinancialQuerySerializer)
        service = self.financial_service()
        if params['stats']:
            return Response(service.get_financial_stats())
        page = service.get_financial_overview(
            **_page_options(params), search=params.get('search'),
        )
        return Response(serialize_page(page, serialize_financial_summary))


class FinancialPatientSearchView(ServiceMixin, APIView):
    def get(self, request):
        params = _query(request, SearchQuerySerializer)
        results = self.financial_service().search_patients(params['q'], params['limit'])
        return Response(serialize_search_results(results))


class DashboardView(APIView):
    """GET /api/dashboard/ - 三组统计 + 总收入 + 最近 3 条问诊 / 3 个患者。"""

    def get(self, request):
        storage = get_storage()
        patients = PatientService(storage)
        consultations = ConsultationService(storage)
        financial = FinancialService(storage)
        return Response(serialize_dashboard(
            patient_stats=patients.get_patient_stats(),
            consultation_stats=consultations.get_consultation_stats(),
            financial_stats=financial.get_financial_stats(),
            total_revenue=financial.get_total_revenue(),
            recent_consultations=consultations.recent_consultations(3),
            recent_patients=patients.recent_patients(3),
        ))
