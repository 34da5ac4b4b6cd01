"""Direct storage: the default pass-through addon."""

from ...models.configuration import AddonExecutionContext, AddonResult, DealConfiguration
from ...models.deal import ServiceType
from ...models.metadata import DirectMetadata
from ..base import AddonPriority, DealAddon


class DirectAddonStrategy(DealAddon):
    """Stores the payload as-is. Used when no other addon is requested."""

    name = ServiceType.DIRECT_SP
    priority = AddonPriority.LOW

    def is_applicable(self, config: DealConfiguration) -> bool:
        return not config.enable_cdn and not config.enable_ipni

    async def preprocess_data(self, context: AddonExecutionContext) -> AddonResult:
        return AddonResult(
            data=context.current_data.data,
            size=context.current_data.size,
            metadata=DirectMetadata(),
        )
