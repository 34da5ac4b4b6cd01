"""
Deal preprocessing addons.

Addons transform the payload before upload and contribute provider
configuration. DealAddonsService runs the applicable ones in priority order.
"""

from .base import AddonCapability, AddonPriority, DealAddon
from .registry import AddonRegistry
from .service import DealAddonsService, merge_provider_configs, sort_by_priority
from .strategies import CdnAddonStrategy, DirectAddonStrategy, IpniAddonStrategy

__all__ = [
    'AddonCapability',
    'AddonPriority',
    'AddonRegistry',
    'CdnAddonStrategy',
    'DealAddon',
    'DealAddonsService',
    'DirectAddonStrategy',
    'IpniAddonStrategy',
    'merge_provider_configs',
    'sort_by_priority',
]
