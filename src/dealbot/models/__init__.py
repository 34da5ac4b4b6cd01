"""
Data models for the dealbot pipeline.

Provides the persisted Deal entity with its lifecycle enums, provider
records, per-addon metadata, and the preprocessing input/output structures.
"""

from .provider import ProviderInfo, StorageProvider
from .deal import (
    Deal,
    DealStatus,
    IpniStatus,
    ServiceType,
    can_advance_status,
    can_advance_ipni_status,
)
from .metadata import AddonMetadata, CdnMetadata, DirectMetadata, IpniMetadata
from .configuration import (
    AddonExecutionContext,
    AddonResult,
    DataFile,
    DealConfiguration,
    DealPreprocessingResult,
    ProviderConfig,
)

__all__ = [
    # Deal
    'Deal',
    'DealStatus',
    'IpniStatus',
    'ServiceType',
    'can_advance_status',
    'can_advance_ipni_status',
    # Providers
    'ProviderInfo',
    'StorageProvider',
    # Addon metadata
    'AddonMetadata',
    'CdnMetadata',
    'DirectMetadata',
    'IpniMetadata',
    # Preprocessing
    'AddonExecutionContext',
    'AddonResult',
    'DataFile',
    'DealConfiguration',
    'DealPreprocessingResult',
    'ProviderConfig',
]
