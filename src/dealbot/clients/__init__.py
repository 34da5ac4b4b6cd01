"""Collaborator contracts and concrete clients for the deal pipeline."""

from .datasets import LocalDatasetSource
from .postgres_client import PostgresDealStore
from .protocols import (
    DatasetSource,
    DealStore,
    ProviderDirectory,
    StorageBackend,
    StorageContext,
    UploadCallbacks,
    UploadResult,
)
from .providers import StaticProviderDirectory, StoreProviderDirectory

__all__ = [
    'DatasetSource',
    'DealStore',
    'LocalDatasetSource',
    'PostgresDealStore',
    'ProviderDirectory',
    'StaticProviderDirectory',
    'StorageBackend',
    'StorageContext',
    'StoreProviderDirectory',
    'UploadCallbacks',
    'UploadResult',
]
