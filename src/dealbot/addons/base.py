"""
Addon contract for the preprocessing pipeline.

Every addon must say whether it applies to a configuration and how it
transforms the payload. Everything else is optional and declared up front in
``capabilities``; the pipeline asks ``has_capability()`` before calling an
optional hook instead of probing for methods.
"""

from abc import ABC, abstractmethod
from enum import Enum, IntEnum
from typing import ClassVar

from ..models.configuration import (
    AddonExecutionContext,
    AddonResult,
    DealConfiguration,
    ProviderConfig,
)
from ..models.deal import Deal, ServiceType
from ..models.metadata import AddonMetadata


class AddonPriority(IntEnum):
    """Execution order: lower runs earlier."""

    HIGH = 1  # data transformation (e.g. CAR conversion)
    MEDIUM = 5  # configuration only (e.g. CDN)
    LOW = 10  # post-processing / pass-through


class AddonCapability(str, Enum):
    """Optional hooks an addon may implement."""

    PROVIDER_CONFIG = 'provider_config'
    VALIDATION = 'validation'
    UPLOAD_COMPLETE_HOOK = 'upload_complete_hook'
    POST_PROCESS_HOOK = 'post_process_hook'


class DealAddon(ABC):
    """Base class for preprocessing strategies."""

    name: ClassVar[ServiceType]
    priority: ClassVar[int]
    capabilities: ClassVar[frozenset[AddonCapability]] = frozenset()

    def has_capability(self, capability: AddonCapability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    def is_applicable(self, config: DealConfiguration) -> bool:
        """Whether this addon should run for the given configuration."""

    @abstractmethod
    async def preprocess_data(self, context: AddonExecutionContext) -> AddonResult:
        """Transform the current payload and return it with this addon's metadata."""

    # Optional capabilities. Only called when declared in ``capabilities``.

    def get_provider_config(self, deal_metadata: dict[str, AddonMetadata]) -> ProviderConfig:
        return ProviderConfig()

    async def validate(self, result: AddonResult) -> None:
        return None

    async def on_upload_complete(self, deal: Deal) -> None:
        return None

    async def post_process(self, deal: Deal) -> None:
        return None

    def __repr__(self) -> str:
        return f'{type(self).__name__}(name={self.name.value!r}, priority={self.priority})'
