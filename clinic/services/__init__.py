from .consultations import ConsultationService
from .financial import FinancialService
from .patients import CreditSale, PatientService

__all__ = ['ConsultationService', 'CreditSale', 'FinancialService', 'PatientService']
