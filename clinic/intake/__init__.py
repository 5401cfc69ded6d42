from .factory import detect_device, get_patient_intake

__all__ = ['detect_device', 'get_patient_intake']
