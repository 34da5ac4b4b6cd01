"""
CDN addon.

Enables fast retrieval through the CDN. The payload is not modified; the
addon only marks the data set as CDN-backed.
"""

from ...errors import AddonValidationError
from ...logging import get_logger
from ...models.configuration import (
    WITH_CDN,
    AddonExecutionContext,
    AddonResult,
    DealConfiguration,
    ProviderConfig,
)
from ...models.deal import ServiceType
from ...models.metadata import AddonMetadata, CdnMetadata
from ..base import AddonCapability, AddonPriority, DealAddon

logger = get_logger(__name__)


class CdnAddonStrategy(DealAddon):
    name = ServiceType.CDN
    priority = AddonPriority.MEDIUM  # after data transformation
    capabilities = frozenset({AddonCapability.PROVIDER_CONFIG, AddonCapability.VALIDATION})

    def is_applicable(self, config: DealConfiguration) -> bool:
        return config.enable_cdn

    async def preprocess_data(self, context: AddonExecutionContext) -> AddonResult:
        logger.debug('cdn_addon.enabled', file_name=context.current_data.name)
        return AddonResult(
            data=context.current_data.data,
            size=context.current_data.size,
            metadata=CdnMetadata(enabled=True, provider='fil-beam'),
        )

    def get_provider_config(self, deal_metadata: dict[str, AddonMetadata]) -> ProviderConfig:
        return ProviderConfig(data_set_metadata={WITH_CDN: ''})

    async def validate(self, result: AddonResult) -> None:
        if not isinstance(result.metadata, CdnMetadata) or not result.metadata.enabled:
            raise AddonValidationError(
                self.name.value, 'CDN validation failed: cdnEnabled flag not set'
            )
        if not result.data or result.size == 0:
            raise AddonValidationError(self.name.value, 'CDN validation failed: data is empty')
