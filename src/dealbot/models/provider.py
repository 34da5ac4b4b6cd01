"""Storage provider models: the directory entry and the stored provider record."""

from typing import Any

from pydantic import BaseModel, Field


class ProviderInfo(BaseModel):
    """A provider selected for testing, as returned by the provider directory."""

    service_provider: str = Field(..., description='Provider address (deal counterparty)')
    service_url: str | None = Field(default=None, description='PDP service base URL')
    provider_id: int | None = None
    name: str | None = None


class StorageProvider(BaseModel):
    """Row of the storage_providers table, attached to a Deal during creation."""

    address: str
    provider_id: int | None = None
    name: str = ''
    description: str = ''
    payee: str = ''
    service_url: str | None = None
    is_active: bool = True
    is_approved: bool = False
    region: str = ''
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            service_provider=self.address,
            service_url=self.service_url,
            provider_id=self.provider_id,
            name=self.name or None,
        )
