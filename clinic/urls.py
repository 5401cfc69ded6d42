from django.urls import path

from .views import (
    ConsultationDetailView,
    ConsultationFinalizeView,
    ConsultationListCreateView,
    ConsultationPatientSearchView,
    ConsultationPaymentView,
    ConsultationStatsView,
    DashboardView,
    FinancialOverviewView,
    FinancialPatientSearchView,
    PatientActiveConsultationView,
    PatientConsultationsView,
    PatientCreditsView,
    PatientDetailView,
    PatientFinancialView,
    PatientListCreateView,
    PatientSearchView,
    PatientStatsView,
)

urlpatterns = [
    path('patients/', PatientListCreateView.as_view(), name='patient-list'),
    path('patients/search/', PatientSearchView.as_view(), name='patient-search'),
    path('patients/stats/', PatientStatsView.as_view(), name='patient-stats'),
    path('patients/<uuid:patient_id>/', PatientDetailView.as_view(), name='patient-detail'),
    path('patients/<uuid:patient_id>/active-consultation/',
         PatientActiveConsultationView.as_view(), name='patient-active-consultation'),
    path('patients/<uuid:patient_id>/consultations/',
         PatientConsultationsView.as_view(), name='patient-consultations'),
    path('patients/<uuid:patient_id>/credits/', PatientCreditsView.as_view(), name='patient-credits'),
    path('patients/<uuid:patient_id>/financial/', PatientFinancialView.as_view(), name='patient-financial'),

    path('consultations/', ConsultationListCreateView.as_view(), name='consultation-list'),
    path('consultations/stats/', ConsultationStatsView.as_view(), name='consultation-stats'),
    path('consultations/search-patients/',
         ConsultationPatientSearchView.as_view(), name='consultation-search-patients'),
    path('consultations/<uuid:consultation_id>/',
         ConsultationDetailView.as_view(), name='consultation-detail'),
    path('consultations/<uuid:consultation_id>/finalize/',
         ConsultationFinalizeView.as_view(), name='consultation-finalize'),
    path('consultations/<uuid:consultation_id>/payment/',
         ConsultationPaymentView.as_view(), name='consultation-payment'),

    path('financial/', FinancialOverviewView.as_view(), name='financial-overview'),
    path('financial/search-patients/',
         FinancialPatientSearchView.as_view(), name='financial-search-patients'),

    path('dashboard/', DashboardView.as_view(), name='dashboard'),
]
