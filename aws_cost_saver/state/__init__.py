"""State document model and storage backends."""

from .document import StateDocument
from .storage import StorageBackend, LocalStorage, S3Storage, StorageResolver

__all__ = [
    'StateDocument',
    'StorageBackend',
    'LocalStorage',
    'S3Storage',
    'StorageResolver',
]
