from .base import BaseStorage, OpenConsultationConflict, StorageError
from .factory import get_storage

__all__ = ['BaseStorage', 'OpenConsultationConflict', 'StorageError', 'get_storage']
